from __future__ import annotations

import logging
from typing import List, Optional

from app.config import Settings
from app.models.domain import Content, GenerationRequest, GenerationStatus
from app.queue.queue import BaseQueue
from app.services.counts import required_request_count
from app.storage.repository import ContentRepository

IN_FLIGHT = {GenerationStatus.PENDING, GenerationStatus.PROCESSING}


class QueueingValidationError(ValueError):
    """Raised when a content is not in a state that allows queueing."""


class GenerationQueueingService:
    def __init__(
        self,
        repo: ContentRepository,
        queue: Optional[BaseQueue],
        settings: Settings,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.repo = repo
        self.queue = queue
        self.settings = settings
        self.log = logger or logging.getLogger(__name__)

    def required_count(self, content: Content) -> int:
        return required_request_count(
            content.target_duration_minutes,
            minutes_per_clip=self.settings.minutes_per_clip,
            clips_per_request=self.settings.clips_per_request,
            buffer_requests=self.settings.buffer_requests,
        )

    def queue_batch(self, content: Content) -> List[GenerationRequest]:
        with self.repo.atomic():
            self._validate_content(content)
            shortfall = self.required_count(content) - self.repo.count_requests(content.id)
            if shortfall <= 0:
                self.log.info(
                    "generation batch already satisfied",
                    extra={"content_id": str(content.id)},
                )
                return []
            self._validate_capacity(content, shortfall)
            created = self._create_requests(content, shortfall)
        self._hand_off(created)
        return created

    def queue_single(self, content: Content) -> GenerationRequest:
        with self.repo.atomic():
            self._validate_content(content)
            self._validate_capacity(content, 1)
            created = self._create_requests(content, 1)
        self._hand_off(created)
        return created[0]

    def queue_bulk(self, content: Content, count: Optional[int] = None) -> List[GenerationRequest]:
        count = self.settings.default_bulk_count if count is None else count
        if count < 1:
            raise QueueingValidationError("Bulk count must be at least 1")
        with self.repo.atomic():
            self._validate_content(content)
            self._validate_capacity(content, count)
            created = self._create_requests(content, count)
        self._hand_off(created)
        return created

    def projected_clip_count(self, content: Content) -> int:
        existing = self.repo.count_clips(content.id)
        in_flight = self.repo.count_requests(content.id, IN_FLIGHT)
        return existing + in_flight * self.settings.clips_per_request

    def _validate_content(self, content: Content) -> None:
        if not content.target_duration_minutes or content.target_duration_minutes <= 0:
            raise QueueingValidationError("Content target duration is required")
        if not (content.generation_prompt or "").strip():
            raise QueueingValidationError("Content generation prompt is required")
        if self.repo.count_clips(content.id, GenerationStatus.PROCESSING):
            raise QueueingValidationError("Content already has clips being generated")

    def _validate_capacity(self, content: Content, requests_to_create: int) -> None:
        projected = self.projected_clip_count(content) + requests_to_create * self.settings.clips_per_request
        if projected > self.settings.max_clips_per_content:
            raise QueueingValidationError(
                f"Content would exceed maximum clip limit ({self.settings.max_clips_per_content})"
            )

    def _create_requests(self, content: Content, count: int) -> List[GenerationRequest]:
        created: List[GenerationRequest] = []
        for _ in range(count):
            request = GenerationRequest(
                content_id=content.id,
                status=GenerationStatus.PENDING,
                prompt=content.generation_prompt.strip(),
                model_id=self.settings.kie_model,
            )
            created.append(self.repo.save_request(request))
        return created

    def _hand_off(self, requests: List[GenerationRequest]) -> None:
        if self.queue is not None:
            for handed, request in enumerate(requests):
                try:
                    self.queue.enqueue(request.id)
                except Exception:
                    self._discard(requests[handed:])
                    raise
        self.log.info(
            "queued generation requests",
            extra={
                "count": len(requests),
                "content_id": str(requests[0].content_id) if requests else None,
            },
        )

    def _discard(self, requests: List[GenerationRequest]) -> None:
        # only requests that reached the queue may stay pending
        with self.repo.atomic():
            for request in requests:
                self.repo.delete_request(request.id)
        self.log.error(
            "queue hand-off failed, discarded requests",
            extra={"count": len(requests), "content_id": str(requests[0].content_id)},
        )
