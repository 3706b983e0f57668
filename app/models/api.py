from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain import AudioArtifact, Clip, Content, GenerationRequest, VideoArtifact


class ContentCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(default=None, max_length=200)
    target_duration_minutes: Optional[int] = Field(default=None, gt=0, le=600)
    generation_prompt: Optional[str] = Field(default=None, max_length=3000)


class ContentUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    target_duration_minutes: Optional[int] = Field(default=None, gt=0, le=600)
    generation_prompt: Optional[str] = Field(default=None, max_length=3000)


class ContentResponse(BaseModel):
    content: Content


class ContentListResponse(BaseModel):
    items: List[Content]


class ContentSummaryResponse(BaseModel):
    content: Content
    clips_required: int
    clips_total: int
    clips_completed: int
    clips_failed: int
    requests_by_status: Dict[str, int]


class BulkQueueRequest(BaseModel):
    count: Optional[int] = Field(default=None, ge=1, le=50)


class GenerationRequestResponse(BaseModel):
    request: GenerationRequest


class GenerationRequestListResponse(BaseModel):
    items: List[GenerationRequest]


class ClipListResponse(BaseModel):
    items: List[Clip]


class ArtworkUploadRequest(BaseModel):
    filename: Optional[str] = None
    data: str

    @field_validator("data")
    @classmethod
    def validate_data(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("data must not be empty")
        return value


class AudioResponse(BaseModel):
    audio: AudioArtifact


class VideoResponse(BaseModel):
    video: VideoArtifact
