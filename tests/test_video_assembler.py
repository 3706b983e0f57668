from __future__ import annotations

import json
import subprocess

import pytest
from PIL import Image

from app.services.video_assembler import GenerationError, VideoAssembler, VideoProfile


class FakeProcess:
    def __init__(self, cmd, lines, returncode=0, output_bytes=b"\x00" * 2048):
        self.cmd = cmd
        self.stdout = iter(lines)
        self.returncode = returncode
        if output_bytes is not None:
            with open(cmd[-1], "wb") as f:
                f.write(output_bytes)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def wait(self):
        return self.returncode


class FakeFfmpeg:
    def __init__(self, lines=(), returncode=0, output_bytes=b"\x00" * 2048):
        self.lines = list(lines)
        self.returncode = returncode
        self.output_bytes = output_bytes
        self.cmd = None

    def __call__(self, cmd, **kwargs):
        self.cmd = cmd
        return FakeProcess(cmd, self.lines, self.returncode, self.output_bytes)


def ffprobe_run(audio_duration="100.0", video_payload=None, video_ok=True):
    def run(cmd, **kwargs):
        if "json" in cmd:
            if not video_ok:
                raise subprocess.CalledProcessError(1, cmd, stderr="broken")
            return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(video_payload or {}), stderr="")
        return subprocess.CompletedProcess(cmd, 0, stdout=audio_duration, stderr="")

    return run


@pytest.fixture
def inputs(tmp_path):
    audio = tmp_path / "mix.mp3"
    audio.write_bytes(b"ID3" + b"\x00" * 64)
    artwork = tmp_path / "cover.png"
    Image.new("RGB", (32, 18), color=(20, 40, 80)).save(artwork)
    return audio, artwork


PROGRESS_LINES = [
    "frame=10\n",
    "out_time_us=25000000\n",
    "progress=continue\n",
    "out_time_us=75000000\n",
    "out_time_us=50000000\n",
    "progress=end\n",
]


def test_generate_reports_progress_and_metadata(tmp_path, inputs, monkeypatch):
    audio, artwork = inputs
    ffmpeg = FakeFfmpeg(PROGRESS_LINES)
    monkeypatch.setattr(subprocess, "Popen", ffmpeg)
    run = ffprobe_run(
        audio_duration="100.0",
        video_payload={"streams": [{"width": 1920, "height": 1080}], "format": {"duration": "99.98"}},
    )
    monkeypatch.setattr(subprocess, "run", run)
    progress = []

    metadata = VideoAssembler().generate(audio, artwork, tmp_path / "out" / "video.mp4", progress.append)

    assert progress == [0.0, 0.25, 0.75, 1.0]
    assert metadata.file_size == 2048
    assert metadata.resolution == "1920x1080"
    assert metadata.duration == pytest.approx(99.98)
    assert metadata.as_dict()["file_size"] == 2048


def test_command_uses_profile(tmp_path, inputs, monkeypatch):
    audio, artwork = inputs
    ffmpeg = FakeFfmpeg()
    monkeypatch.setattr(subprocess, "Popen", ffmpeg)
    monkeypatch.setattr(subprocess, "run", ffprobe_run(video_ok=False))
    profile = VideoProfile(resolution="1280x720", crf=23, preset="fast", audio_bitrate="128k")

    VideoAssembler(profile=profile, ffmpeg="/usr/local/bin/ffmpeg").generate(audio, artwork, tmp_path / "v.mp4")

    cmd = ffmpeg.cmd
    assert cmd[0] == "/usr/local/bin/ffmpeg"
    assert cmd[cmd.index("-loop") + 1] == "1"
    assert cmd[cmd.index("-c:v") + 1] == "libx264"
    assert cmd[cmd.index("-preset") + 1] == "fast"
    assert cmd[cmd.index("-crf") + 1] == "23"
    assert cmd[cmd.index("-vf") + 1] == "scale=1280:720"
    assert cmd[cmd.index("-c:a") + 1] == "aac"
    assert cmd[cmd.index("-b:a") + 1] == "128k"
    assert cmd[cmd.index("-ar") + 1] == "48000"
    assert cmd[cmd.index("-pix_fmt") + 1] == "yuv420p"
    assert "-shortest" in cmd
    assert cmd[-1] == str((tmp_path / "v.mp4").absolute())


def test_metadata_falls_back_to_file_size(tmp_path, inputs, monkeypatch):
    audio, artwork = inputs
    monkeypatch.setattr(subprocess, "Popen", FakeFfmpeg(output_bytes=b"\x01" * 10))
    monkeypatch.setattr(subprocess, "run", ffprobe_run(video_ok=False))

    metadata = VideoAssembler().generate(audio, artwork, tmp_path / "v.mp4")

    assert metadata.file_size == 10
    assert metadata.duration is None
    assert metadata.resolution is None


def test_unknown_audio_duration_still_completes(tmp_path, inputs, monkeypatch):
    audio, artwork = inputs
    monkeypatch.setattr(subprocess, "Popen", FakeFfmpeg(PROGRESS_LINES))
    monkeypatch.setattr(subprocess, "run", ffprobe_run(audio_duration="N/A", video_ok=False))
    progress = []

    VideoAssembler().generate(audio, artwork, tmp_path / "v.mp4", progress.append)

    assert progress == [0.0, 1.0]


def test_ffmpeg_failure_raises_with_output_tail(tmp_path, inputs, monkeypatch):
    audio, artwork = inputs
    lines = ["out_time_us=10000000\n", "Conversion failed!\n"]
    monkeypatch.setattr(subprocess, "Popen", FakeFfmpeg(lines, returncode=1))
    monkeypatch.setattr(subprocess, "run", ffprobe_run())
    progress = []

    with pytest.raises(GenerationError, match="Conversion failed!"):
        VideoAssembler().generate(audio, artwork, tmp_path / "v.mp4", progress.append)
    assert progress and all(value <= 1.0 for value in progress)


def test_empty_output_is_rejected(tmp_path, inputs, monkeypatch):
    audio, artwork = inputs
    monkeypatch.setattr(subprocess, "Popen", FakeFfmpeg(output_bytes=b""))
    monkeypatch.setattr(subprocess, "run", ffprobe_run())
    progress = []

    with pytest.raises(GenerationError, match="empty"):
        VideoAssembler().generate(audio, artwork, tmp_path / "v.mp4", progress.append)
    assert progress and all(value <= 1.0 for value in progress)


def test_missing_ffmpeg_binary(tmp_path, inputs, monkeypatch):
    audio, artwork = inputs

    def missing(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "Popen", missing)
    monkeypatch.setattr(subprocess, "run", ffprobe_run())

    with pytest.raises(GenerationError, match="Failed to start ffmpeg"):
        VideoAssembler().generate(audio, artwork, tmp_path / "v.mp4")


@pytest.mark.parametrize(
    ("audio_name", "artwork_name", "message"),
    [
        ("mix.txt", "cover.png", "Invalid audio format"),
        ("mix.mp3", "cover.gif", "Invalid artwork format"),
    ],
)
def test_rejects_unsupported_formats(tmp_path, inputs, monkeypatch, audio_name, artwork_name, message):
    audio, artwork = inputs
    audio = audio.rename(tmp_path / audio_name)
    artwork = artwork.rename(tmp_path / artwork_name)
    ffmpeg = FakeFfmpeg()
    monkeypatch.setattr(subprocess, "Popen", ffmpeg)

    with pytest.raises(GenerationError, match=message):
        VideoAssembler().generate(audio, artwork, tmp_path / "v.mp4")
    assert ffmpeg.cmd is None


def test_rejects_missing_and_empty_inputs(tmp_path, inputs):
    audio, artwork = inputs

    with pytest.raises(GenerationError, match="Audio file not found"):
        VideoAssembler().generate(tmp_path / "nope.mp3", artwork, tmp_path / "v.mp4")
    with pytest.raises(GenerationError, match="Artwork file not found"):
        VideoAssembler().generate(audio, tmp_path / "nope.png", tmp_path / "v.mp4")

    audio.write_bytes(b"")
    with pytest.raises(GenerationError, match="Audio file is empty"):
        VideoAssembler().generate(audio, artwork, tmp_path / "v.mp4")


def test_rejects_unreadable_artwork(tmp_path, inputs):
    audio, _ = inputs
    artwork = tmp_path / "cover.jpg"
    artwork.write_bytes(b"definitely not a jpeg")

    with pytest.raises(GenerationError, match="not a readable image"):
        VideoAssembler().generate(audio, artwork, tmp_path / "v.mp4")
