from __future__ import annotations

from typing import List
from uuid import UUID

import pytest

from app.config import Settings
from app.models.domain import Clip, Content, GenerationStatus
from app.queue.queue import BaseQueue
from app.storage.repository import ContentRepository


class RecordingQueue(BaseQueue):
    def __init__(self) -> None:
        self.job_ids: List[UUID] = []

    def enqueue(self, job_id: UUID) -> None:
        self.job_ids.append(job_id)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        kie_api_key="test-key",
        media_root=tmp_path / "media",
        kie_retry_base_delay=0.0,
        polling_initial_interval=0.0,
        polling_max_interval=0.0,
    )


@pytest.fixture
def repo() -> ContentRepository:
    return ContentRepository()


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def content(repo) -> Content:
    content = Content(target_duration_minutes=10, generation_prompt="lofi hip hop, rainy night")
    repo.save_content(content)
    return content


def add_clips(repo: ContentRepository, content: Content, count: int, **fields) -> List[Clip]:
    fields.setdefault("status", GenerationStatus.COMPLETED)
    clips = [Clip(content_id=content.id, **fields) for _ in range(count)]
    for clip in clips:
        repo.save_clip(clip)
    return clips
