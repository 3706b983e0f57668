from __future__ import annotations

from contextlib import contextmanager
from threading import RLock
from typing import Dict, Iterator, List, Optional
from uuid import UUID

from app.models.domain import (
    AudioArtifact,
    Clip,
    Content,
    GenerationRequest,
    GenerationStatus,
    VideoArtifact,
)


class ContentRepository:
    """In-memory store for contents and everything they own.

    Every read returns a deep copy so callers mutate and ``save_*`` explicitly.
    ``atomic()`` holds the write lock across several calls, which is how the
    queueing service makes its capacity check and inserts one critical section.
    """

    def __init__(self) -> None:
        self._contents: Dict[UUID, Content] = {}
        self._requests: Dict[UUID, GenerationRequest] = {}
        self._clips: Dict[UUID, Clip] = {}
        self._audios: Dict[UUID, AudioArtifact] = {}
        self._videos: Dict[UUID, VideoArtifact] = {}
        self._lock = RLock()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            yield

    def save_content(self, content: Content) -> Content:
        with self._lock:
            self._contents[content.id] = content.model_copy(deep=True)
        return content

    def get_content(self, content_id: UUID) -> Content | None:
        with self._lock:
            content = self._contents.get(content_id)
            return content.model_copy(deep=True) if content else None

    def list_contents(self) -> List[Content]:
        with self._lock:
            return [content.model_copy(deep=True) for content in self._contents.values()]

    def delete_content(self, content_id: UUID) -> bool:
        with self._lock:
            if self._contents.pop(content_id, None) is None:
                return False
            for store in (self._requests, self._clips, self._audios, self._videos):
                owned = [key for key, item in store.items() if item.content_id == content_id]
                for key in owned:
                    del store[key]
            return True

    def save_request(self, request: GenerationRequest) -> GenerationRequest:
        with self._lock:
            self._require_content(request.content_id)
            self._requests[request.id] = request.model_copy(deep=True)
        return request

    def get_request(self, request_id: UUID) -> GenerationRequest | None:
        with self._lock:
            request = self._requests.get(request_id)
            return request.model_copy(deep=True) if request else None

    def list_requests(self, content_id: UUID) -> List[GenerationRequest]:
        with self._lock:
            return [
                request.model_copy(deep=True)
                for request in self._requests.values()
                if request.content_id == content_id
            ]

    def delete_request(self, request_id: UUID) -> bool:
        with self._lock:
            return self._requests.pop(request_id, None) is not None

    def count_requests(self, content_id: UUID, statuses: Optional[set[GenerationStatus]] = None) -> int:
        with self._lock:
            return sum(
                1
                for request in self._requests.values()
                if request.content_id == content_id and (statuses is None or request.status in statuses)
            )

    def save_clip(self, clip: Clip) -> Clip:
        with self._lock:
            self._require_content(clip.content_id)
            self._clips[clip.id] = clip.model_copy(deep=True)
        return clip

    def get_clip(self, clip_id: UUID) -> Clip | None:
        with self._lock:
            clip = self._clips.get(clip_id)
            return clip.model_copy(deep=True) if clip else None

    def list_clips(self, content_id: UUID, status: Optional[GenerationStatus] = None) -> List[Clip]:
        with self._lock:
            return [
                clip.model_copy(deep=True)
                for clip in self._clips.values()
                if clip.content_id == content_id and (status is None or clip.status == status)
            ]

    def count_clips(self, content_id: UUID, status: Optional[GenerationStatus] = None) -> int:
        with self._lock:
            return sum(
                1
                for clip in self._clips.values()
                if clip.content_id == content_id and (status is None or clip.status == status)
            )

    def save_audio(self, audio: AudioArtifact) -> AudioArtifact:
        with self._lock:
            self._require_content(audio.content_id)
            self._audios[audio.id] = audio.model_copy(deep=True)
        return audio

    def get_audio(self, audio_id: UUID) -> AudioArtifact | None:
        with self._lock:
            audio = self._audios.get(audio_id)
            return audio.model_copy(deep=True) if audio else None

    def list_audios(self, content_id: UUID) -> List[AudioArtifact]:
        with self._lock:
            audios = [audio.model_copy(deep=True) for audio in self._audios.values() if audio.content_id == content_id]
        audios.sort(key=lambda audio: audio.created_at)
        return audios

    def save_video(self, video: VideoArtifact) -> VideoArtifact:
        with self._lock:
            self._require_content(video.content_id)
            self._videos[video.id] = video.model_copy(deep=True)
        return video

    def get_video(self, video_id: UUID) -> VideoArtifact | None:
        with self._lock:
            video = self._videos.get(video_id)
            return video.model_copy(deep=True) if video else None

    def _require_content(self, content_id: UUID) -> None:
        if content_id not in self._contents:
            raise ValueError(f"Content {content_id} not found")
