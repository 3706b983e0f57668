from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Optional, Sequence

from app.models.domain import Clip


class InvalidClipsError(ValueError):
    """Raised when there is nothing to concatenate."""


class MissingAudioFileError(Exception):
    """Raised when a clip has no audio file on disk."""


class ConcatenationError(Exception):
    """Raised when ffmpeg fails to join the clips."""


def escape_playlist_path(path: str) -> str:
    # concat demuxer quoting: close the quote, emit an escaped quote, reopen
    return path.replace("'", "'\\''")


class AudioConcatenator:
    def __init__(
        self,
        clips: Sequence[Clip],
        ffmpeg: str = "ffmpeg",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not clips:
            raise InvalidClipsError("No clips provided for concatenation")
        self.clips = list(clips)
        self.ffmpeg = ffmpeg
        self.log = logger or logging.getLogger(__name__)

    def concatenate(self, output_path: Path | str) -> Path:
        self._validate_audio_files()
        output = Path(output_path).absolute()
        output.parent.mkdir(parents=True, exist_ok=True)
        self.log.info("starting audio concatenation", extra={"clips": len(self.clips), "output": str(output)})

        playlist_path: Optional[str] = None
        try:
            fd, playlist_path = tempfile.mkstemp(prefix="playlist_", suffix=".txt")
            self._write_playlist(fd)
            cmd = [
                self.ffmpeg,
                "-hide_banner",
                "-loglevel",
                "error",
                "-f",
                "concat",
                "-safe",
                "0",
                "-i",
                playlist_path,
                "-c",
                "copy",
                "-y",
                str(output),
            ]
            try:
                result = subprocess.run(cmd, capture_output=True, text=True, check=False)
            except OSError as exc:
                raise ConcatenationError(f"Failed to start ffmpeg: {exc}") from exc
            if result.returncode != 0:
                stderr = (result.stderr or "").strip()[-2000:]
                self.log.error(
                    "ffmpeg concat failed",
                    extra={"returncode": result.returncode, "stderr": stderr},
                )
                raise ConcatenationError(
                    f"Failed to concatenate audio files. ffmpeg exited with {result.returncode}: {stderr}"
                )
        finally:
            if playlist_path is not None and os.path.exists(playlist_path):
                os.remove(playlist_path)

        self.log.info("audio concatenation completed", extra={"output": str(output)})
        return output

    def _validate_audio_files(self) -> None:
        for clip in self.clips:
            if not clip.audio_path or not os.path.isfile(clip.audio_path):
                raise MissingAudioFileError(f"Clip {clip.id} has no audio file attached")
            # the concat playlist is line based
            if "\n" in clip.audio_path or "\r" in clip.audio_path:
                raise MissingAudioFileError(f"Clip {clip.id} audio path contains a line break")

    def _write_playlist(self, fd: int) -> None:
        with os.fdopen(fd, "w", encoding="utf-8") as playlist:
            for clip in self.clips:
                audio_path = str(Path(clip.audio_path).absolute())
                playlist.write(f"file '{escape_playlist_path(audio_path)}'\n")
