from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional
from uuid import UUID

from app.clients.kie import KieClient, RetryPolicy
from app.config import Settings
from app.models.api import ContentCreateRequest, ContentUpdateRequest
from app.models.domain import (
    AudioArtifact,
    Clip,
    Content,
    GenerationRequest,
    GenerationStatus,
    VideoArtifact,
)
from app.queue.queue import BaseQueue
from app.services.audio_analysis import AudioAnalyzer
from app.services.composition import InsufficientClipsError, select_clips
from app.services.concatenation import (
    AudioConcatenator,
    ConcatenationError,
    InvalidClipsError,
    MissingAudioFileError,
)
from app.services.counts import required_clip_count
from app.services.generation_worker import GenerationWorker
from app.services.queueing import GenerationQueueingService
from app.services.thumbnail import ThumbnailError, ThumbnailGenerator
from app.services.video_assembler import GenerationError, VideoAssembler, VideoProfile
from app.storage.repository import ContentRepository

_FILENAME_SAFE = re.compile(r"[^A-Za-z0-9._-]+")


class ContentService:
    def __init__(
        self,
        repo: ContentRepository,
        settings: Settings,
        client: Optional[KieClient] = None,
        analyzer: Optional[AudioAnalyzer] = None,
        assembler: Optional[VideoAssembler] = None,
        thumbnailer: Optional[ThumbnailGenerator] = None,
    ) -> None:
        self.repo = repo
        self.queue: BaseQueue | None = None
        self.settings = settings
        self.log = logging.getLogger(__name__)
        self.media_root = Path(settings.media_root)
        self.client = client or KieClient(
            api_key=settings.kie_api_key,
            base_url=settings.kie_base_url,
            model=settings.kie_model,
            callback_url=settings.kie_callback_url,
            timeout=settings.kie_timeout,
            retry=RetryPolicy(
                max_attempts=settings.kie_max_attempts,
                base_delay=settings.kie_retry_base_delay,
            ),
            logger=self.log,
        )
        self.analyzer = analyzer or AudioAnalyzer(
            ffprobe=settings.ffprobe_binary,
            timeout=settings.probe_timeout,
            fallback_duration=settings.fallback_duration_seconds,
        )
        self.assembler = assembler or VideoAssembler(
            profile=VideoProfile(
                resolution=settings.video_resolution,
                fps=settings.video_fps,
                crf=settings.video_crf,
                preset=settings.video_preset,
                audio_bitrate=settings.video_audio_bitrate,
                audio_sample_rate=settings.video_audio_sample_rate,
            ),
            ffmpeg=settings.ffmpeg_binary,
            ffprobe=settings.ffprobe_binary,
        )
        self.thumbnailer = thumbnailer or ThumbnailGenerator(text=settings.thumbnail_text)
        self.worker = GenerationWorker(
            repo=repo,
            client=self.client,
            analyzer=self.analyzer,
            clips_dir=self.media_root / "clips",
            max_polling_attempts=settings.polling_max_attempts,
            initial_interval=settings.polling_initial_interval,
            max_interval=settings.polling_max_interval,
        )
        self.queueing = GenerationQueueingService(repo=repo, queue=None, settings=settings)

    def bind_queue(self, queue: BaseQueue) -> None:
        self.queue = queue
        self.queueing.queue = queue

    # contents

    def create_content(self, payload: ContentCreateRequest) -> Content:
        content = Content(
            title=payload.title,
            target_duration_minutes=payload.target_duration_minutes,
            generation_prompt=(payload.generation_prompt or "").strip() or None,
        )
        self.repo.save_content(content)
        self.log.info("content created", extra={"content_id": str(content.id)})
        return content

    def update_content(self, content_id: UUID, payload: ContentUpdateRequest) -> Content:
        content = self.get_content(content_id)
        changes = payload.model_dump(exclude_unset=True)
        if "generation_prompt" in changes:
            changes["generation_prompt"] = (changes["generation_prompt"] or "").strip() or None
        content = content.model_copy(update=changes)
        content.updated_at = datetime.utcnow()
        self.repo.save_content(content)
        return content

    def get_content(self, content_id: UUID) -> Content:
        content = self.repo.get_content(content_id)
        if not content:
            raise ValueError("Content not found")
        return content

    def list_contents(self) -> list[Content]:
        contents = self.repo.list_contents()
        contents.sort(key=lambda content: content.created_at, reverse=True)
        return contents

    def delete_content(self, content_id: UUID) -> None:
        if not self.repo.delete_content(content_id):
            raise ValueError("Content not found")
        self.log.info("content deleted", extra={"content_id": str(content_id)})

    def set_artwork(self, content_id: UUID, filename: str | None, data: bytes) -> Content:
        content = self.get_content(content_id)
        if not data:
            raise ValueError("artwork payload is empty")
        name = _FILENAME_SAFE.sub("_", Path(filename or "artwork.png").name).strip("._") or "artwork.png"
        path = self.media_root / "artwork" / str(content.id) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        content.artwork_path = str(path)
        content.thumbnail_path = None
        content.updated_at = datetime.utcnow()
        self.repo.save_content(content)
        if self.thumbnailer.is_eligible(path):
            self._dispatch(content.id, self._build_thumbnail)
        return content

    def content_summary(self, content_id: UUID) -> dict[str, Any]:
        content = self.get_content(content_id)
        clips = self.repo.list_clips(content_id)
        requests = self.repo.list_requests(content_id)
        return {
            "content": content,
            "clips_required": required_clip_count(
                content.target_duration_minutes, minutes_per_clip=self.settings.minutes_per_clip
            ),
            "clips_total": len(clips),
            "clips_completed": sum(1 for clip in clips if clip.status == GenerationStatus.COMPLETED),
            "clips_failed": sum(1 for clip in clips if clip.status == GenerationStatus.FAILED),
            "requests_by_status": {
                status.value: sum(1 for request in requests if request.status == status)
                for status in GenerationStatus
            },
        }

    # generation requests

    def queue_batch(self, content_id: UUID) -> List[GenerationRequest]:
        return self.queueing.queue_batch(self.get_content(content_id))

    def queue_single(self, content_id: UUID) -> GenerationRequest:
        return self.queueing.queue_single(self.get_content(content_id))

    def queue_bulk(self, content_id: UUID, count: Optional[int] = None) -> List[GenerationRequest]:
        return self.queueing.queue_bulk(self.get_content(content_id), count)

    def list_requests(self, content_id: UUID) -> List[GenerationRequest]:
        self.get_content(content_id)
        requests = self.repo.list_requests(content_id)
        requests.sort(key=lambda request: request.created_at)
        return requests

    def list_clips(self, content_id: UUID) -> List[Clip]:
        self.get_content(content_id)
        clips = self.repo.list_clips(content_id)
        clips.sort(key=lambda clip: clip.created_at)
        return clips

    # artifacts

    def create_audio(self, content_id: UUID) -> AudioArtifact:
        content = self.get_content(content_id)
        if not content.target_duration_minutes:
            raise ValueError("Content target duration is required")
        audio = AudioArtifact(content_id=content.id)
        self.repo.save_audio(audio)
        self._dispatch(audio.id, self._build_audio)
        return self.get_audio(audio.id)

    def get_audio(self, audio_id: UUID) -> AudioArtifact:
        audio = self.repo.get_audio(audio_id)
        if not audio:
            raise ValueError("Audio not found")
        return audio

    def create_video(self, content_id: UUID) -> VideoArtifact:
        content = self.get_content(content_id)
        audio = self._latest_completed_audio(content.id)
        if audio is None:
            raise ValueError("Audio must be completed before generating video")
        if not content.artwork_path:
            raise ValueError("Artwork must be set before generating video")
        video = VideoArtifact(content_id=content.id, audio_id=audio.id)
        self.repo.save_video(video)
        self._dispatch(video.id, self._build_video)
        return self.get_video(video.id)

    def get_video(self, video_id: UUID) -> VideoArtifact:
        video = self.repo.get_video(video_id)
        if not video:
            raise ValueError("Video not found")
        return video

    def process_job(self, job_id: UUID) -> None:
        if self.repo.get_request(job_id) is not None:
            self.worker.process(job_id)
        elif self.repo.get_audio(job_id) is not None:
            self._build_audio(job_id)
        elif self.repo.get_video(job_id) is not None:
            self._build_video(job_id)
        elif self.repo.get_content(job_id) is not None:
            self._build_thumbnail(job_id)
        else:
            self.log.warning("queued job not found", extra={"job_id": str(job_id)})

    def _dispatch(self, job_id: UUID, run) -> None:
        if self.queue is not None:
            self.queue.enqueue(job_id)
        else:  # pragma: no cover
            run(job_id)

    def _build_audio(self, audio_id: UUID) -> None:
        audio = self.repo.get_audio(audio_id)
        if audio is None or audio.status != GenerationStatus.PENDING:
            return
        content = self.repo.get_content(audio.content_id)
        if content is None:
            return
        self.log.info("starting audio generation", extra={"audio_id": str(audio.id)})
        try:
            result = select_clips(self.repo.list_clips(content.id), content.target_duration_seconds)
            audio.clip_ids = result.clip_ids
            audio.total_duration_seconds = result.total_duration_seconds
            self._save_artifact(audio, GenerationStatus.PROCESSING)

            output = self.media_root / "audio" / f"{audio.id}.mp3"
            concatenator = AudioConcatenator(result.selected_clips, ffmpeg=self.settings.ffmpeg_binary)
            audio.audio_path = str(concatenator.concatenate(output))
            audio.duration_seconds = self.analyzer.analyze_duration(audio.audio_path)
            self._save_artifact(audio, GenerationStatus.COMPLETED)
        except InsufficientClipsError as exc:
            self._fail_artifact(audio, f"Clip selection failed: {exc}")
        except (InvalidClipsError, MissingAudioFileError, ConcatenationError) as exc:
            self._fail_artifact(audio, f"Audio concatenation failed: {exc}")
        except Exception as exc:
            self.log.exception("audio job failed", extra={"audio_id": str(audio.id)})
            self._fail_artifact(audio, f"Job error: {exc}")

    def _build_video(self, video_id: UUID) -> None:
        video = self.repo.get_video(video_id)
        if video is None or video.status != GenerationStatus.PENDING:
            return
        content = self.repo.get_content(video.content_id)
        audio = self.repo.get_audio(video.audio_id)
        if content is None or audio is None:
            return
        self.log.info("starting video generation", extra={"video_id": str(video.id)})
        try:
            if audio.status != GenerationStatus.COMPLETED or not audio.audio_path:
                raise GenerationError("Audio must be completed before generating video")
            if not content.artwork_path:
                raise GenerationError("Artwork must be set before generating video")
            self._save_artifact(video, GenerationStatus.PROCESSING)

            def on_progress(fraction: float) -> None:
                video.progress = fraction
                self._save_artifact(video)

            output = self.media_root / "video" / f"{video.id}.mp4"
            metadata = self.assembler.generate(audio.audio_path, content.artwork_path, output, on_progress)
            video.video_path = str(output)
            video.file_size_bytes = metadata.file_size
            video.resolution = metadata.resolution or self.settings.video_resolution
            if metadata.duration is not None:
                video.duration_seconds = int(metadata.duration)
            else:
                video.duration_seconds = audio.duration_seconds
            video.progress = 1.0
            self._save_artifact(video, GenerationStatus.COMPLETED)
        except GenerationError as exc:
            self._fail_artifact(video, f"Video generation failed: {exc}")
        except Exception as exc:
            self.log.exception("video job failed", extra={"video_id": str(video.id)})
            self._fail_artifact(video, f"Job error: {exc}")

    def _build_thumbnail(self, content_id: UUID) -> None:
        content = self.repo.get_content(content_id)
        if content is None or not content.artwork_path:
            return
        if content.thumbnail_path and Path(content.thumbnail_path).is_file():
            self.log.info("content already has a thumbnail", extra={"content_id": str(content.id)})
            return
        artwork_path = content.artwork_path
        output = self.media_root / "thumbnails" / f"{content.id}.jpg"
        try:
            self.thumbnailer.generate(artwork_path, output)
        except ThumbnailError as exc:
            self.log.error(
                "thumbnail generation failed",
                extra={"content_id": str(content.id), "error": str(exc)},
            )
            raise
        with self.repo.atomic():
            content = self.repo.get_content(content_id)
            # artwork replaced while the thumbnail was rendered
            if content is None or content.artwork_path != artwork_path:
                return
            content.thumbnail_path = str(output)
            content.updated_at = datetime.utcnow()
            self.repo.save_content(content)

    def _latest_completed_audio(self, content_id: UUID) -> AudioArtifact | None:
        completed = [
            audio for audio in self.repo.list_audios(content_id) if audio.status == GenerationStatus.COMPLETED
        ]
        return completed[-1] if completed else None

    def _save_artifact(self, artifact, status: Optional[GenerationStatus] = None) -> None:
        if status is not None:
            artifact.status = status
        artifact.updated_at = datetime.utcnow()
        if isinstance(artifact, AudioArtifact):
            self.repo.save_audio(artifact)
        else:
            self.repo.save_video(artifact)

    def _fail_artifact(self, artifact, message: str) -> None:
        self.log.error(message, extra={"artifact_id": str(artifact.id)})
        artifact.error = message
        self._save_artifact(artifact, GenerationStatus.FAILED)
