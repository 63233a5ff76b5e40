from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from soundtrack.errors import ParseError
from soundtrack.models.domain import GenerationTask, TaskStatus

DEFAULT_TRACK_TITLE = "Generated Soundtrack"

_FAILURE_MARKERS = ("FAILED", "ERROR", "EXCEPTION")


class StatusClass(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


def classify_status(status: Any) -> StatusClass:
    """Map a provider status string onto pending / success / failure.

    ``TEXT_SUCCESS`` and ``FIRST_SUCCESS`` are progress markers, not
    completion, and anything unrecognised stays pending.
    """
    value = str(status or "").strip().upper()
    if any(marker in value for marker in _FAILURE_MARKERS):
        return StatusClass.FAILURE
    if value.startswith("SUCCESS"):
        return StatusClass.SUCCESS
    return StatusClass.PENDING


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)


class TrackPayload(_ProviderModel):
    id: Optional[str] = Field(default=None, validation_alias=AliasChoices("id", "audioId", "musicId", "clipId"))
    audio_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("audioUrl", "audio_url", "sourceAudioUrl", "source_audio_url"),
    )
    stream_audio_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("streamAudioUrl", "stream_audio_url", "sourceStreamAudioUrl"),
    )
    image_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("imageUrl", "image_url", "sourceImageUrl"),
    )
    title: Optional[str] = None
    prompt: Optional[str] = None
    model_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("modelName", "model_name"))
    tags: Optional[str] = None
    duration: Optional[float] = None


class TrackListResponse(_ProviderModel):
    tracks: List[TrackPayload] = Field(validation_alias=AliasChoices("sunoData", "data", "tracks"))


class WavResponse(_ProviderModel):
    audio_wav_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("audioWavUrl", "audio_wav_url"))


ProviderResponse = Union[TrackListResponse, WavResponse]


class RecordInfo(_ProviderModel):
    task_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("taskId", "task_id"))
    status: Optional[str] = Field(default=None, validation_alias=AliasChoices("status", "successFlag"))
    response: Optional[dict[str, Any]] = None
    error_code: Optional[str] = Field(default=None, validation_alias=AliasChoices("errorCode", "error_code"))
    error_message: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("errorMessage", "error_message")
    )

    @property
    def status_label(self) -> str:
        return (self.status or "").strip().upper()

    def parsed_response(self) -> Optional[ProviderResponse]:
        raw = self.response or {}
        for key in ("sunoData", "data", "tracks"):
            if isinstance(raw.get(key), list):
                entries = [item for item in raw[key] if isinstance(item, dict)]
                return TrackListResponse.model_validate({"tracks": entries})
        if "audioWavUrl" in raw or "audio_wav_url" in raw:
            return WavResponse.model_validate(raw)
        return None


class ResultNormalizer:
    def __init__(self, default_title: str = DEFAULT_TRACK_TITLE) -> None:
        self.default_title = default_title

    def record(self, payload: dict[str, Any]) -> RecordInfo:
        try:
            return RecordInfo.model_validate(payload or {})
        except PydanticValidationError as exc:
            raise ParseError("Unrecognised task status payload", raw=str(payload)) from exc

    def normalize(self, payload: dict[str, Any] | RecordInfo) -> List[GenerationTask]:
        record = payload if isinstance(payload, RecordInfo) else self.record(payload)
        status_class = classify_status(record.status_label)
        try:
            response = record.parsed_response()
        except PydanticValidationError as exc:
            raise ParseError("Unrecognised track payload", raw=str(record.response)) from exc
        if isinstance(response, TrackListResponse):
            return [
                self._task(track, index, record, status_class)
                for index, track in enumerate(response.tracks)
            ]
        if isinstance(response, WavResponse):
            track = TrackPayload(id=record.task_id, audio_url=response.audio_wav_url)
            return [self._task(track, 0, record, status_class)]
        return []

    def _task(
        self,
        track: TrackPayload,
        index: int,
        record: RecordInfo,
        status_class: StatusClass,
    ) -> GenerationTask:
        audio_url = (track.audio_url or "").strip() or None
        if status_class is StatusClass.FAILURE:
            status = TaskStatus.FAILURE
        elif audio_url:
            status = TaskStatus.SUCCESS
        elif status_class is StatusClass.SUCCESS:
            status = TaskStatus.FAILURE
        else:
            status = TaskStatus.PENDING
        return GenerationTask(
            id=track.id or f"{record.task_id or 'track'}-{index}",
            status=status,
            audio_url=audio_url if status is TaskStatus.SUCCESS else None,
            title=(track.title or "").strip() or self.default_title,
            prompt=track.prompt or "",
            image_url=track.image_url,
            model_name=track.model_name,
            stream_audio_url=track.stream_audio_url,
            tags=track.tags,
            duration=track.duration,
        )
