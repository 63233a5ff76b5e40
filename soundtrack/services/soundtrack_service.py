from __future__ import annotations

import fnmatch
import logging
import pathlib
from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

import httpx

from soundtrack.clients.gemini import GeminiClient
from soundtrack.clients.payload import PayloadBuilder
from soundtrack.clients.s3_storage import S3StorageClient
from soundtrack.clients.suno import SunoClient
from soundtrack.config import Settings
from soundtrack.errors import ParseError, SoundtrackError, UpstreamError, ValidationError
from soundtrack.events.publisher import JobEventPublisher
from soundtrack.models.api import MediaAsset, SoundtrackRequest
from soundtrack.models.domain import (
    AnalysisMode,
    AnalysisResult,
    GenerationTask,
    MediaRef,
    MediaUrl,
    SoundtrackJob,
    SoundtrackJobStage,
    SoundtrackJobStatusHistory,
    SoundtrackResult,
    TaskInfo,
)
from soundtrack.queue.queue import BaseQueue
from soundtrack.services.normalizer import ResultNormalizer, classify_status
from soundtrack.services.poller import ProgressCallback, TaskPoller
from soundtrack.storage.repository import SoundtrackJobRepository


class SoundtrackService:
    """Runs analysis, submission and polling for one soundtrack at a time.

    Collaborators are injected; ``build_soundtrack_service`` wires the real
    ones from settings. Every ``compose``/``generate`` call owns its own poll
    state, so several may run concurrently.
    """

    def __init__(
        self,
        repo: SoundtrackJobRepository,
        settings: Settings,
        analysis: GeminiClient,
        music: SunoClient,
        poller: TaskPoller,
        storage: S3StorageClient,
        normalizer: Optional[ResultNormalizer] = None,
        events: Optional[JobEventPublisher] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.repo = repo
        self.queue: BaseQueue | None = None
        self.settings = settings
        self.analysis = analysis
        self.music = music
        self.poller = poller
        self.storage = storage
        self.normalizer = normalizer or poller.normalizer
        self.events = events
        self.log = logger or logging.getLogger(__name__)

    def bind_queue(self, queue: BaseQueue) -> None:
        self.queue = queue

    async def analyze(
        self,
        script_text: str,
        media: Optional[MediaRef] = None,
        mode: AnalysisMode | str | None = None,
    ) -> AnalysisResult:
        self.log.info(
            "starting multimodal analysis",
            extra={"has_script": bool(script_text and script_text.strip()), "has_media": media is not None},
        )
        return await self.analysis.analyze(script_text, media, mode)

    async def describe(self, media: Optional[MediaRef], mode: AnalysisMode | str | None = None) -> str:
        return await self.analysis.describe(media, mode)

    async def submit(
        self,
        prompt: str,
        *,
        api_key: str | None = None,
        instrumental: bool | None = None,
        title: str | None = None,
        style: str | None = None,
    ) -> str:
        if not prompt or not prompt.strip():
            raise ValidationError("A music prompt is required to generate a soundtrack.")
        return await self.music.submit(
            prompt.strip(),
            api_key=api_key,
            instrumental=self.settings.default_instrumental if instrumental is None else instrumental,
            title=title or self.settings.default_title,
            style=style or self.settings.default_style,
        )

    async def poll(
        self,
        task_id: str,
        *,
        api_key: str | None = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[GenerationTask]:
        return await self.poller.poll(task_id, api_key=api_key, on_progress=on_progress)

    async def generate(
        self,
        prompt: str,
        *,
        api_key: str | None = None,
        instrumental: bool | None = None,
        title: str | None = None,
        style: str | None = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[GenerationTask]:
        task_id = await self.submit(prompt, api_key=api_key, instrumental=instrumental, title=title, style=style)
        return await self.poll(task_id, api_key=api_key, on_progress=on_progress)

    async def compose(
        self,
        script_text: str = "",
        media: Optional[MediaRef] = None,
        *,
        prompt: str | None = None,
        mode: AnalysisMode | str | None = None,
        api_key: str | None = None,
        instrumental: bool | None = None,
        title: str | None = None,
        style: str | None = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SoundtrackResult:
        analysis: AnalysisResult | None = None
        if not (prompt and prompt.strip()):
            analysis = await self.analyze(script_text, media, mode)
            prompt = self._prompt_from_analysis(analysis)
        task_id = await self.submit(
            prompt,
            api_key=api_key,
            instrumental=instrumental,
            title=title or (analysis.title if analysis else None),
            style=style,
        )
        tracks = await self.poll(task_id, api_key=api_key, on_progress=on_progress)
        return SoundtrackResult(analysis=analysis, prompt=prompt, task_id=task_id, tracks=tracks)

    async def task_info(self, task_id: str, api_key: str | None = None) -> TaskInfo:
        if not task_id or not task_id.strip():
            raise ValidationError("task_id is required")
        payload = await self.music.fetch_status(task_id.strip(), api_key=api_key)
        record = self.normalizer.record(payload)
        return TaskInfo(
            task_id=record.task_id or task_id,
            status=record.status_label,
            status_class=classify_status(record.status_label).value,
            error_message=record.error_message,
            tracks=self.normalizer.normalize(record),
        )

    def upload_media(self, filename: str | None, data: bytes, content_type: str | None = None) -> MediaAsset:
        if not data:
            raise ValidationError("Uploaded file is empty")
        resolved_type = (content_type or self.settings.default_media_type).strip().lower()
        if not any(fnmatch.fnmatch(resolved_type, pattern) for pattern in self.settings.upload_allowed_types):
            raise ValidationError(f"Content type {resolved_type} is not allowed")
        if len(data) > self.settings.upload_max_bytes:
            raise ValidationError(f"File exceeds the {self.settings.upload_max_bytes} byte upload limit")
        safe_name = pathlib.PurePosixPath(filename or "").name or "video.mp4"
        folder = self.settings.storage_folder_prefix.strip("/")
        key = self.storage.with_random_suffix("/".join(part for part in (folder, safe_name) if part))
        try:
            url = self.storage.upload_bytes(key, data, content_type=resolved_type)
        except ValueError as exc:
            raise UpstreamError(str(exc)) from exc
        self.log.info("video uploaded", extra={"key": key, "size": len(data)})
        return MediaAsset(key=key, url=url, content_type=resolved_type, size=len(data))

    def create_job(self, payload: SoundtrackRequest) -> SoundtrackJob:
        has_prompt = bool(payload.prompt and payload.prompt.strip())
        if not has_prompt and not payload.script_text.strip() and not payload.video_url:
            raise ValidationError("Please upload a video or provide a script/description.")
        job = SoundtrackJob(
            id=uuid4(),
            script_text=payload.script_text,
            video_url=(payload.video_url.strip() if payload.video_url else None),
            mime_type=payload.mime_type or self.settings.default_media_type,
            analysis_mode=payload.analysis_mode or AnalysisMode(self.settings.analysis_mode),
            prompt=payload.prompt.strip() if has_prompt else None,
            title=payload.title,
            style=payload.style or self.settings.default_style,
            instrumental=(
                self.settings.default_instrumental if payload.instrumental is None else payload.instrumental
            ),
            status=SoundtrackJobStage.QUEUED.value,
            stage=SoundtrackJobStage.QUEUED,
            status_history=[
                SoundtrackJobStatusHistory(
                    status=SoundtrackJobStage.QUEUED.value,
                    stage=SoundtrackJobStage.QUEUED,
                    message="Job enqueued",
                )
            ],
        )
        self._save_job(job)
        if self.queue is not None:
            self.queue.enqueue(job.id)
        return job

    def get_job(self, job_id: UUID) -> SoundtrackJob:
        job = self.repo.get(job_id)
        if not job:
            raise ValueError("Soundtrack job not found")
        return job

    def list_jobs(self) -> list[SoundtrackJob]:
        return self.repo.list()

    async def process_job(self, job_id: UUID) -> None:
        job = self.repo.get(job_id)
        if not job:
            return
        try:
            await self._pipeline(job)
        except SoundtrackError as exc:
            self.log.warning(
                "soundtrack job failed",
                extra={"job_id": str(job_id), "kind": exc.kind, "error": exc.message},
            )
            self._update_status(
                job, SoundtrackJobStage.FAILED, "Soundtrack generation failed", error=exc.message, error_kind=exc.kind
            )
        except Exception as exc:
            self.log.exception("soundtrack job crashed", extra={"job_id": str(job_id)})
            self._update_status(
                job, SoundtrackJobStage.FAILED, "Soundtrack generation failed", error=str(exc), error_kind="internal"
            )

    async def _pipeline(self, job: SoundtrackJob) -> None:
        prompt = job.prompt
        if not prompt:
            self._update_status(job, SoundtrackJobStage.ANALYZING, "Analyzing video content & composing prompt...")
            media = MediaUrl(url=job.video_url, mime_type=job.mime_type) if job.video_url else None
            job.analysis = await self.analyze(job.script_text, media, job.analysis_mode)
            prompt = self._prompt_from_analysis(job.analysis)
            job.prompt = prompt
            job.title = job.title or job.analysis.title or None

        self._update_status(job, SoundtrackJobStage.SUBMITTING, "Submitting generation task...")
        job.task_id = await self.submit(
            prompt,
            instrumental=job.instrumental,
            title=job.title,
            style=job.style,
        )
        self._update_status(job, SoundtrackJobStage.POLLING, "Task submitted, waiting for generation...")

        def on_progress(message: str, percent: int | None) -> None:
            job.progress_message = message
            if percent is not None:
                job.progress = percent
            job.updated_at = datetime.utcnow()
            self._save_job(job)

        job.tracks = await self.poll(job.task_id, on_progress=on_progress)
        job.progress = 100
        self._update_status(job, SoundtrackJobStage.READY, "Soundtrack is ready")

    def _prompt_from_analysis(self, analysis: AnalysisResult) -> str:
        prompt = analysis.music_prompt.strip()
        if not prompt:
            raise ParseError("Analysis returned no music prompt", raw=analysis.model_dump_json())
        return prompt

    def _update_status(
        self,
        job: SoundtrackJob,
        stage: SoundtrackJobStage,
        message: str,
        error: str | None = None,
        error_kind: str | None = None,
    ) -> None:
        job.status = stage.value
        job.stage = stage
        job.progress_message = message
        job.status_history.append(
            SoundtrackJobStatusHistory(
                status=stage.value,
                stage=stage,
                message=message,
            )
        )
        job.updated_at = datetime.utcnow()
        if error:
            job.error = error
            job.error_kind = error_kind
        self._save_job(job)

    def _save_job(self, job: SoundtrackJob) -> None:
        self.repo.save(job)
        self._emit_job_update(job)

    def _emit_job_update(self, job: SoundtrackJob) -> None:
        if not self.events:
            return
        try:
            self.events.publish_job(job)
        except Exception:  # pragma: no cover
            self.log.warning("job event emission failed", extra={"job_id": str(job.id)}, exc_info=True)


def build_soundtrack_service(
    settings: Settings,
    repo: Optional[SoundtrackJobRepository] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SoundtrackService:
    log = logging.getLogger("soundtrack")
    builder = PayloadBuilder(default_mime_type=settings.default_media_type)
    analysis = GeminiClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
        timeout=settings.gemini_http_timeout,
        analysis_timeout=settings.analysis_timeout_seconds,
        mode=settings.analysis_mode,
        auth_scheme=settings.gemini_auth_scheme,
        builder=builder,
        transport=transport,
    )
    music = SunoClient(
        api_key=settings.suno_api_key,
        base_url=settings.suno_base_url,
        model=settings.suno_model,
        callback_url=settings.suno_callback_url,
        default_title=settings.default_title,
        default_style=settings.default_style,
        timeout=settings.suno_http_timeout,
        transport=transport,
    )
    normalizer = ResultNormalizer(default_title=settings.default_title)
    poller = TaskPoller(
        music,
        normalizer=normalizer,
        interval=settings.poll_interval_seconds,
        max_attempts=settings.poll_max_attempts,
        error_threshold=settings.poll_error_threshold,
    )
    storage = S3StorageClient(
        bucket=settings.s3_bucket,
        access_key=settings.s3_access_key,
        secret_key=settings.s3_secret_key,
        endpoint_url=settings.s3_endpoint_url,
        region_name=settings.s3_region,
        public_url=settings.s3_public_url,
        addressing_style=settings.s3_addressing_style,
        memory_limit_bytes=settings.storage_memory_limit_bytes,
    )
    events: JobEventPublisher | None = None
    if settings.kafka_enabled and settings.kafka_updates_topic:
        try:
            events = JobEventPublisher(
                bootstrap_servers=settings.kafka_bootstrap_servers,
                topic=settings.kafka_updates_topic,
                logger=log,
            )
        except Exception:  # pragma: no cover - best effort logging
            log.warning(
                "job event publisher unavailable",
                extra={"topic": settings.kafka_updates_topic},
                exc_info=True,
            )
    return SoundtrackService(
        repo=repo or SoundtrackJobRepository(),
        settings=settings,
        analysis=analysis,
        music=music,
        poller=poller,
        storage=storage,
        normalizer=normalizer,
        events=events,
        logger=log,
    )
