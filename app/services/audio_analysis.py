from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional

DEFAULT_DURATION = 180
PROBE_TIMEOUT = 5.0


class DurationProbeError(Exception):
    """Raised when ffprobe cannot report a duration."""


def probe_duration(path: Path | str, ffprobe: str = "ffprobe", timeout: float = PROBE_TIMEOUT) -> float:
    cmd = [
        ffprobe,
        "-v",
        "quiet",
        "-show_entries",
        "format=duration",
        "-of",
        "csv=p=0",
        str(Path(path).absolute()),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout, check=False)
    except subprocess.TimeoutExpired as exc:
        raise DurationProbeError("ffprobe command timed out") from exc
    except OSError as exc:
        raise DurationProbeError(f"ffprobe could not be started: {exc}") from exc
    if result.returncode != 0:
        raise DurationProbeError(f"ffprobe command failed: {result.stderr.strip()}")
    try:
        return float(result.stdout.strip())
    except ValueError as exc:
        raise DurationProbeError(f"unparsable ffprobe output: {result.stdout!r}") from exc


class AudioAnalyzer:
    def __init__(
        self,
        ffprobe: str = "ffprobe",
        timeout: float = PROBE_TIMEOUT,
        fallback_duration: int = DEFAULT_DURATION,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.ffprobe = ffprobe
        self.timeout = timeout
        self.fallback_duration = fallback_duration
        self.log = logger or logging.getLogger(__name__)

    def analyze_duration(self, audio_path: Path | str) -> int:
        try:
            return int(probe_duration(audio_path, self.ffprobe, self.timeout))
        except DurationProbeError as exc:
            self.log.error(
                "failed to analyze audio duration, using fallback",
                extra={"path": str(audio_path), "error": str(exc), "fallback": self.fallback_duration},
            )
            return self.fallback_duration
