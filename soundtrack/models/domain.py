from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AnalysisMode(str, Enum):
    PROXY = "proxy"
    INLINE = "inline"


class InlineMedia(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["inline"] = "inline"
    data: bytes
    mime_type: str = "video/mp4"


class MediaUrl(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["url"] = "url"
    url: str
    mime_type: str = "video/mp4"


MediaRef = Annotated[Union[InlineMedia, MediaUrl], Field(discriminator="kind")]


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str = ""
    mood: str = ""
    title: str = ""
    music_prompt: str = ""

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AnalysisResult":
        values: dict[str, str] = {}
        for name in ("summary", "mood", "title", "music_prompt"):
            value = payload.get(name)
            values[name] = "" if value is None else str(value)
        return cls(**values)


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class GenerationTask(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    status: TaskStatus
    audio_url: Optional[str] = None
    title: str
    prompt: str = ""
    image_url: Optional[str] = None
    model_name: Optional[str] = None
    stream_audio_url: Optional[str] = None
    tags: Optional[str] = None
    duration: Optional[float] = None

    @model_validator(mode="after")
    def check_audio_matches_status(self) -> "GenerationTask":
        if self.status is TaskStatus.SUCCESS and not self.audio_url:
            raise ValueError("successful track requires an audio_url")
        if self.status is not TaskStatus.SUCCESS and self.audio_url:
            raise ValueError(f"{self.status.value} track must not carry an audio_url")
        return self


class SoundtrackResult(BaseModel):
    analysis: Optional[AnalysisResult] = None
    prompt: str
    task_id: str
    tracks: List[GenerationTask] = Field(default_factory=list)


class TaskInfo(BaseModel):
    task_id: str
    status: str
    status_class: str
    error_message: Optional[str] = None
    tracks: List[GenerationTask] = Field(default_factory=list)


class SoundtrackJobStage(str, Enum):
    QUEUED = "queued"
    ANALYZING = "analyzing"
    SUBMITTING = "submitting"
    POLLING = "polling"
    READY = "ready"
    FAILED = "failed"


class SoundtrackJobStatusHistory(BaseModel):
    status: str
    stage: SoundtrackJobStage
    message: str
    occurred_at: datetime = Field(default_factory=datetime.utcnow)


class SoundtrackJob(BaseModel):
    id: UUID
    script_text: str = ""
    video_url: Optional[str] = None
    mime_type: str = "video/mp4"
    analysis_mode: AnalysisMode = AnalysisMode.PROXY
    prompt: Optional[str] = None
    title: Optional[str] = None
    style: Optional[str] = None
    instrumental: bool = True
    status: str
    stage: SoundtrackJobStage
    status_history: List[SoundtrackJobStatusHistory] = Field(default_factory=list)
    progress_message: Optional[str] = None
    progress: Optional[int] = None
    analysis: Optional[AnalysisResult] = None
    task_id: Optional[str] = None
    tracks: List[GenerationTask] = Field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
