from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .domain import AnalysisMode, AnalysisResult, SoundtrackJob, TaskInfo


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    script_text: str = Field(default="", validation_alias="script_text")
    video_url: Optional[str] = Field(default=None, validation_alias="video_url")
    video_data: Optional[str] = Field(
        default=None,
        validation_alias="video_data",
        description="Base64-encoded video bytes, sent inline to the model",
    )
    mime_type: Optional[str] = Field(default=None, validation_alias="mime_type")
    mode: Optional[AnalysisMode] = Field(default=None, validation_alias="mode")


class AnalysisResponse(BaseModel):
    analysis: AnalysisResult


class DescriptionResponse(BaseModel):
    description: str


class SoundtrackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    script_text: str = Field(default="", validation_alias="script_text")
    video_url: Optional[str] = Field(default=None, validation_alias="video_url")
    mime_type: Optional[str] = Field(default=None, validation_alias="mime_type")
    analysis_mode: Optional[AnalysisMode] = Field(default=None, validation_alias="analysis_mode")
    prompt: Optional[str] = Field(
        default=None,
        validation_alias="prompt",
        description="Edited music prompt; skips the analysis step when set",
    )
    title: Optional[str] = Field(default=None, validation_alias="title")
    style: Optional[str] = Field(default=None, validation_alias="style")
    instrumental: Optional[bool] = Field(default=None, validation_alias="instrumental")


class SoundtrackJobResponse(BaseModel):
    job: SoundtrackJob


class SoundtrackJobListResponse(BaseModel):
    items: List[SoundtrackJob]


class TaskInfoResponse(BaseModel):
    task: TaskInfo


class MediaAsset(BaseModel):
    key: str
    url: str
    content_type: str
    size: Optional[int] = None


class MediaUploadRequest(BaseModel):
    filename: Optional[str] = None
    content_type: Optional[str] = None
    data: str


class MediaUploadResponse(BaseModel):
    asset: MediaAsset


class ErrorResponse(BaseModel):
    error: str
    kind: str
