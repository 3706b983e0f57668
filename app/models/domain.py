from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class GenerationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStatus.COMPLETED, GenerationStatus.FAILED)

    @property
    def is_in_flight(self) -> bool:
        return self in (GenerationStatus.PENDING, GenerationStatus.PROCESSING)


class Content(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    title: Optional[str] = None
    target_duration_minutes: Optional[int] = None
    generation_prompt: Optional[str] = None
    artwork_path: Optional[str] = None
    thumbnail_path: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def target_duration_seconds(self) -> int:
        return (self.target_duration_minutes or 0) * 60


class GenerationRequest(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    content_id: UUID
    external_task_id: Optional[str] = None
    status: GenerationStatus = GenerationStatus.PENDING
    prompt: str
    model_id: str
    request_params: dict[str, Any] = Field(default_factory=dict)
    api_response: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Clip(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    content_id: UUID
    generation_request_id: Optional[UUID] = None
    variant_index: int = 0
    duration_seconds: Optional[int] = None
    status: GenerationStatus = GenerationStatus.PENDING
    audio_path: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class CompositionResult(BaseModel):
    selected_clips: List[Clip]
    total_duration_seconds: int
    clip_count: int
    target_duration_seconds: int

    @property
    def clip_ids(self) -> List[UUID]:
        return [clip.id for clip in self.selected_clips]


class AudioArtifact(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    content_id: UUID
    status: GenerationStatus = GenerationStatus.PENDING
    clip_ids: List[UUID] = Field(default_factory=list)
    total_duration_seconds: Optional[int] = None
    duration_seconds: Optional[int] = None
    audio_path: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class VideoArtifact(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    content_id: UUID
    audio_id: UUID
    status: GenerationStatus = GenerationStatus.PENDING
    progress: float = 0.0
    resolution: Optional[str] = None
    duration_seconds: Optional[int] = None
    file_size_bytes: Optional[int] = None
    video_path: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
