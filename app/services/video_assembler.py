from __future__ import annotations

import json
import logging
import os
import subprocess
from collections import deque
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from PIL import Image, UnidentifiedImageError

from app.services.audio_analysis import DurationProbeError, probe_duration

SUPPORTED_AUDIO_FORMATS = (".mp3", ".m4a", ".aac", ".wav", ".flac", ".ogg")
SUPPORTED_IMAGE_FORMATS = (".jpg", ".jpeg", ".png", ".bmp", ".tiff")

ProgressCallback = Callable[[float], None]


class GenerationError(Exception):
    """Raised when a video cannot be produced from the given inputs."""


@dataclass
class VideoProfile:
    resolution: str = "1920x1080"
    fps: int = 30
    crf: int = 18
    preset: str = "slow"
    audio_bitrate: str = "192k"
    audio_sample_rate: int = 48000


@dataclass
class VideoMetadata:
    file_size: int
    duration: Optional[float] = None
    resolution: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class VideoAssembler:
    """Loops a still image over an audio track and writes an H.264/AAC mp4."""

    def __init__(
        self,
        profile: Optional[VideoProfile] = None,
        ffmpeg: str = "ffmpeg",
        ffprobe: str = "ffprobe",
        probe_timeout: float = 30.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.profile = profile or VideoProfile()
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.probe_timeout = probe_timeout
        self.log = logger or logging.getLogger(__name__)

    def generate(
        self,
        audio_path: Path | str,
        artwork_path: Path | str,
        output_path: Path | str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> VideoMetadata:
        audio = Path(audio_path).absolute()
        artwork = Path(artwork_path).absolute()
        output = Path(output_path).absolute()
        self._validate_inputs(audio, artwork)
        output.parent.mkdir(parents=True, exist_ok=True)

        self.log.info(
            "starting video generation",
            extra={"audio": str(audio), "artwork": str(artwork), "output": str(output)},
        )
        self._run_ffmpeg(audio, artwork, output, on_progress)
        self._validate_output(output)
        return self.extract_metadata(output)

    def build_command(self, audio: Path, artwork: Path, output: Path) -> list[str]:
        profile = self.profile
        return [
            self.ffmpeg,
            "-hide_banner",
            "-nostats",
            "-loglevel",
            "error",
            "-loop",
            "1",
            "-framerate",
            "1",
            "-i",
            str(artwork),
            "-i",
            str(audio),
            "-c:v",
            "libx264",
            "-preset",
            profile.preset,
            "-crf",
            str(profile.crf),
            "-tune",
            "stillimage",
            "-r",
            str(profile.fps),
            "-vf",
            f"scale={profile.resolution.replace('x', ':')}",
            "-c:a",
            "aac",
            "-b:a",
            profile.audio_bitrate,
            "-ar",
            str(profile.audio_sample_rate),
            "-shortest",
            "-pix_fmt",
            "yuv420p",
            "-movflags",
            "+faststart",
            "-progress",
            "pipe:1",
            "-y",
            str(output),
        ]

    def extract_metadata(self, output: Path) -> VideoMetadata:
        file_size = output.stat().st_size
        cmd = [
            self.ffprobe,
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=width,height:format=duration",
            "-of",
            "json",
            str(output),
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.probe_timeout, check=True)
            payload = json.loads(result.stdout or "{}")
            stream = (payload.get("streams") or [{}])[0]
            duration = float(payload["format"]["duration"])
            resolution = f"{int(stream['width'])}x{int(stream['height'])}"
        except (OSError, subprocess.SubprocessError, ValueError, KeyError, TypeError, IndexError) as exc:
            self.log.warning(
                "failed to extract metadata from video",
                extra={"output": str(output), "error": str(exc)},
            )
            return VideoMetadata(file_size=file_size)
        return VideoMetadata(file_size=file_size, duration=duration, resolution=resolution)

    def _validate_inputs(self, audio: Path, artwork: Path) -> None:
        if not audio.is_file():
            raise GenerationError(f"Audio file not found: {audio}")
        if not artwork.is_file():
            raise GenerationError(f"Artwork file not found: {artwork}")
        if audio.stat().st_size == 0:
            raise GenerationError(f"Audio file is empty: {audio}")
        if artwork.stat().st_size == 0:
            raise GenerationError(f"Artwork file is empty: {artwork}")
        if audio.suffix.lower() not in SUPPORTED_AUDIO_FORMATS:
            raise GenerationError(
                f"Invalid audio format: {audio.suffix}. Supported formats: {', '.join(SUPPORTED_AUDIO_FORMATS)}"
            )
        if artwork.suffix.lower() not in SUPPORTED_IMAGE_FORMATS:
            raise GenerationError(
                f"Invalid artwork format: {artwork.suffix}. Supported formats: {', '.join(SUPPORTED_IMAGE_FORMATS)}"
            )
        try:
            with Image.open(artwork) as image:
                image.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as exc:
            raise GenerationError(f"Artwork is not a readable image: {artwork}") from exc

    def _run_ffmpeg(
        self,
        audio: Path,
        artwork: Path,
        output: Path,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        tracker = _ProgressTracker(self._audio_duration(audio), on_progress)
        tracker.report(0.0)
        cmd = self.build_command(audio, artwork, output)
        self.log.debug("executing ffmpeg", extra={"cmd": cmd})
        tail: deque[str] = deque(maxlen=20)
        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except OSError as exc:
            raise GenerationError(f"Failed to start ffmpeg: {exc}") from exc

        with process:
            for raw_line in process.stdout:
                line = raw_line.strip()
                if not tracker.feed(line) and line:
                    tail.append(line)
            returncode = process.wait()

        if returncode != 0:
            stderr = "\n".join(tail)
            self.log.error("ffmpeg video generation failed", extra={"returncode": returncode, "stderr": stderr})
            raise GenerationError(f"FFmpeg command failed ({returncode}): {stderr}")
        self.log.info("ffmpeg video generation finished", extra={"output": str(output)})

    def _audio_duration(self, audio: Path) -> Optional[float]:
        try:
            return probe_duration(audio, self.ffprobe)
        except DurationProbeError as exc:
            self.log.warning("audio duration unknown, progress will be coarse", extra={"error": str(exc)})
            return None

    def _validate_output(self, output: Path) -> None:
        if not output.exists():
            raise GenerationError(f"Output file was not created: {output}")
        size = output.stat().st_size
        if size == 0:
            raise GenerationError(f"Output file is empty: {output}")
        self.log.info("video generated", extra={"output": str(output), "bytes": size})


class _ProgressTracker:
    def __init__(self, total_seconds: Optional[float], callback: Optional[ProgressCallback]) -> None:
        self.total_seconds = total_seconds if total_seconds and total_seconds > 0 else None
        self.callback = callback
        self.last: Optional[float] = None

    def feed(self, line: str) -> bool:
        key, sep, value = line.partition("=")
        if not sep:
            return False
        key = key.strip()
        if key in ("out_time_us", "out_time_ms"):
            # ffmpeg reports microseconds under both keys
            if self.total_seconds is not None:
                try:
                    seconds = int(value) / 1_000_000
                except ValueError:
                    return True
                self.report(seconds / self.total_seconds)
            return True
        if key == "progress":
            if value.strip() == "end":
                self.report(1.0)
            return True
        return key in _PROGRESS_KEYS

    def report(self, fraction: float) -> None:
        fraction = max(0.0, min(fraction, 1.0))
        if self.last is not None and fraction <= self.last:
            return
        self.last = fraction
        if self.callback is not None:
            self.callback(fraction)


_PROGRESS_KEYS = frozenset(
    {
        "frame",
        "fps",
        "stream_0_0_q",
        "bitrate",
        "total_size",
        "out_time",
        "dup_frames",
        "drop_frames",
        "speed",
    }
)
