from __future__ import annotations

import logging
import random
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional
from uuid import UUID

from app.clients.errors import PollingTimeoutError
from app.clients.kie import ClipMetadata, KieClient, TaskStatus
from app.models.domain import Clip, GenerationRequest, GenerationStatus
from app.services.audio_analysis import AudioAnalyzer
from app.storage.repository import ContentRepository


class GenerationWorker:
    """Runs one generation request end to end and writes its clips back."""

    def __init__(
        self,
        repo: ContentRepository,
        client: KieClient,
        analyzer: AudioAnalyzer,
        clips_dir: Path,
        max_polling_attempts: int = 30,
        initial_interval: float = 5.0,
        max_interval: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[], float] = random.random,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.repo = repo
        self.client = client
        self.analyzer = analyzer
        self.clips_dir = Path(clips_dir)
        self.max_polling_attempts = max_polling_attempts
        self.initial_interval = initial_interval
        self.max_interval = max_interval
        self._sleep = sleep
        self._jitter = jitter
        self.log = logger or logging.getLogger(__name__)

    def process(self, request_id: UUID) -> None:
        request = self.repo.get_request(request_id)
        if request is None:
            self.log.warning("generation request not found", extra={"request_id": str(request_id)})
            return
        if request.status.is_terminal:
            self.log.debug(
                "generation request already finished",
                extra={"request_id": str(request_id), "status": request.status.value},
            )
            return

        try:
            self._update(request, GenerationStatus.PROCESSING)
            self._submit(request)
            task = self._poll_until_done(request)
            self._store_clips(request, task)
            self._update(request, GenerationStatus.COMPLETED)
        except Exception as exc:
            self.log.error(
                "music generation failed",
                extra={"request_id": str(request.id), "error": str(exc)},
                exc_info=True,
            )
            request.error = str(exc)
            self._update(request, GenerationStatus.FAILED)

    def polling_interval(self, attempt: int) -> float:
        base = min(self.initial_interval * (2 ** (attempt - 1)), self.max_interval)
        return round(base + self._jitter() * 0.3 * base, 2)

    def _submit(self, request: GenerationRequest) -> None:
        params = {
            "prompt": request.prompt,
            "model": request.model_id or self.client.model,
            "instrumental": True,
        }
        request.request_params = params
        self._update(request)
        request.external_task_id = self.client.submit(**params)
        self._update(request)

    def _poll_until_done(self, request: GenerationRequest) -> TaskStatus:
        attempt = 0
        while True:
            attempt += 1
            task = self.client.poll_status(request.external_task_id)
            if task.is_success:
                self.log.info(
                    "music generation completed",
                    extra={"request_id": str(request.id), "status": task.status},
                )
                return task
            if task.status is None:
                self.log.warning("empty task status", extra={"request_id": str(request.id), "attempt": attempt})
            elif not task.is_pending:
                self.log.warning(
                    "unknown task status %r, continuing to poll",
                    task.status,
                    extra={"request_id": str(request.id)},
                )
            if attempt >= self.max_polling_attempts:
                raise PollingTimeoutError(f"Polling timeout exceeded after {attempt} attempts")
            self._sleep(self.polling_interval(attempt))

    def _store_clips(self, request: GenerationRequest, task: TaskStatus) -> List[Clip]:
        request.api_response = task.payload
        self._update(request)
        variants = self.client.parse_clips(task.payload)
        if not variants:
            self.log.warning("generation returned no usable clips", extra={"request_id": str(request.id)})
        return [self._store_clip(request, variant, index) for index, variant in enumerate(variants)]

    def _store_clip(self, request: GenerationRequest, variant: ClipMetadata, index: int) -> Clip:
        clip = Clip(
            content_id=request.content_id,
            generation_request_id=request.id,
            variant_index=index,
            status=GenerationStatus.PROCESSING,
            duration_seconds=int(variant.duration) if variant.duration else None,
            metadata={
                "title": variant.title,
                "tags": variant.tags,
                "model_name": variant.model_name,
                "generated_prompt": variant.generated_prompt,
                "audio_id": variant.audio_id,
                "task_id": request.external_task_id,
            },
        )
        self.repo.save_clip(clip)
        try:
            path = self.client.download_audio(variant.audio_url, self.clips_dir / f"{clip.id}.mp3")
            clip.audio_path = str(path)
            if clip.duration_seconds is None:
                clip.duration_seconds = self.analyzer.analyze_duration(path)
            clip.status = GenerationStatus.COMPLETED
        except Exception:
            clip.status = GenerationStatus.FAILED
            raise
        finally:
            clip.updated_at = datetime.utcnow()
            self.repo.save_clip(clip)
        return clip

    def _update(self, request: GenerationRequest, status: Optional[GenerationStatus] = None) -> None:
        if status is not None:
            request.status = status
        request.updated_at = datetime.utcnow()
        self.repo.save_request(request)
