from __future__ import annotations

import base64
import binascii
import logging
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from soundtrack.config import Settings, get_settings
from soundtrack.errors import SoundtrackError, ValidationError
from soundtrack.models.api import (
    AnalysisRequest,
    AnalysisResponse,
    DescriptionResponse,
    ErrorResponse,
    MediaUploadRequest,
    MediaUploadResponse,
    SoundtrackJobListResponse,
    SoundtrackJobResponse,
    SoundtrackRequest,
    TaskInfoResponse,
)
from soundtrack.models.domain import InlineMedia, MediaRef, MediaUrl
from soundtrack.queue.queue import KafkaQueue, LocalQueue
from soundtrack.services.soundtrack_service import SoundtrackService, build_soundtrack_service
from soundtrack.storage.repository import SoundtrackJobRepository

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(title="soundtrack-service")

_repo = SoundtrackJobRepository()
_service: SoundtrackService | None = None

ERROR_STATUS = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "config": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "upstream": status.HTTP_502_BAD_GATEWAY,
    "provider": status.HTTP_502_BAD_GATEWAY,
    "parse": status.HTTP_502_BAD_GATEWAY,
    "timeout": status.HTTP_504_GATEWAY_TIMEOUT,
}


@app.exception_handler(SoundtrackError)
async def soundtrack_error_handler(request: Request, exc: SoundtrackError) -> JSONResponse:
    body = ErrorResponse(error=exc.message, kind=exc.kind).model_dump()
    body.update(exc.details())
    return JSONResponse(status_code=ERROR_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR), content=body)


def get_soundtrack_service(settings: Settings = Depends(get_settings)) -> SoundtrackService:
    global _service
    if _service is None:
        service = build_soundtrack_service(settings, repo=_repo)
        queue = _build_queue(settings, service)
        service.bind_queue(queue)
        _service = service
    return _service


def _build_queue(settings: Settings, service: SoundtrackService):
    if settings.kafka_enabled:
        return KafkaQueue(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            topic=settings.kafka_topic,
            group_id=settings.kafka_group_id,
            processor=service.process_job,
        )
    return LocalQueue(processor=service.process_job)


def _media_from_request(payload: AnalysisRequest) -> MediaRef | None:
    if payload.video_data:
        try:
            data = base64.b64decode(payload.video_data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError("invalid base64 payload") from exc
        if payload.mime_type:
            return InlineMedia(data=data, mime_type=payload.mime_type)
        return InlineMedia(data=data)
    if payload.video_url:
        if payload.mime_type:
            return MediaUrl(url=payload.video_url.strip(), mime_type=payload.mime_type)
        return MediaUrl(url=payload.video_url.strip())
    return None


@app.post("/analysis", response_model=AnalysisResponse)
async def analyze(
    payload: AnalysisRequest,
    service: SoundtrackService = Depends(get_soundtrack_service),
) -> AnalysisResponse:
    result = await service.analyze(payload.script_text, _media_from_request(payload), payload.mode)
    return AnalysisResponse(analysis=result)


@app.post("/analysis:describe", response_model=DescriptionResponse)
async def describe_video(
    payload: AnalysisRequest,
    service: SoundtrackService = Depends(get_soundtrack_service),
) -> DescriptionResponse:
    description = await service.describe(_media_from_request(payload), payload.mode)
    return DescriptionResponse(description=description)


@app.post("/soundtracks", response_model=SoundtrackJobResponse, status_code=status.HTTP_202_ACCEPTED)
def create_soundtrack(
    payload: SoundtrackRequest,
    service: SoundtrackService = Depends(get_soundtrack_service),
) -> SoundtrackJobResponse:
    job = service.create_job(payload)
    return SoundtrackJobResponse(job=job)


@app.get("/soundtracks", response_model=SoundtrackJobListResponse)
def list_soundtracks(service: SoundtrackService = Depends(get_soundtrack_service)) -> SoundtrackJobListResponse:
    return SoundtrackJobListResponse(items=service.list_jobs())


@app.get("/soundtracks/{job_id}", response_model=SoundtrackJobResponse)
def get_soundtrack(job_id: UUID, service: SoundtrackService = Depends(get_soundtrack_service)) -> SoundtrackJobResponse:
    try:
        job = service.get_job(job_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return SoundtrackJobResponse(job=job)


@app.get("/tasks/{task_id}", response_model=TaskInfoResponse)
async def get_task(
    task_id: str,
    x_suno_api_key: str | None = Header(default=None, alias="X-Suno-Api-Key"),
    service: SoundtrackService = Depends(get_soundtrack_service),
) -> TaskInfoResponse:
    info = await service.task_info(task_id, api_key=x_suno_api_key)
    return TaskInfoResponse(task=info)


@app.post("/media", response_model=MediaUploadResponse, status_code=status.HTTP_201_CREATED)
def upload_media(
    payload: MediaUploadRequest,
    service: SoundtrackService = Depends(get_soundtrack_service),
) -> MediaUploadResponse:
    try:
        data = base64.b64decode(payload.data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid base64 payload") from exc
    asset = service.upload_media(payload.filename, data, content_type=payload.content_type)
    return MediaUploadResponse(asset=asset)
