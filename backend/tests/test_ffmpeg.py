import asyncio
import json
import subprocess
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from engine.ffmpeg_transcoder import FfmpegTranscodeHandle, FfmpegTranscoder, parse_progress_line
from engine.media_probe import FfprobeMediaProbe, parse_dimensions
from engine.presets import (
    PRESET_1280x720,
    PRESET_PASSTHROUGH,
    build_export_command,
    get_preset,
)
from engine.transcoder import OutcomeKind, TranscodeState
from models.asset import SourceAsset
from utils.exceptions import ExportCancelled, SourceUnavailable, TranscodeFailed, ValidationError


class FakeStream:
    def __init__(self, lines):
        self._lines = [f"{line}\n".encode() for line in lines]

    def __aiter__(self):
        return self._read()

    async def _read(self):
        for line in self._lines:
            await asyncio.sleep(0)
            yield line


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    def __init__(self, stdout=(), stderr=(), returncode=0):
        self.stdout = FakeStream(stdout)
        self.stderr = FakeStream(stderr)
        self.returncode = None
        self.pid = 4242
        self.terminated = False
        self._exit_code = returncode

    async def wait(self):
        self.returncode = 255 if self.terminated else self._exit_code
        return self.returncode

    def terminate(self):
        self.terminated = True

    def kill(self):
        self.terminated = True


# --- Progress parsing ---

def test_parse_progress_line():
    assert parse_progress_line("out_time=00:00:05.000000", 10.0) == pytest.approx(0.5)
    assert parse_progress_line("out_time=00:01:00.000000", 30.0) == 1.0
    assert parse_progress_line("frame=120", 10.0) is None
    assert parse_progress_line("progress=continue", 10.0) is None


def test_parse_progress_line_unknown_values():
    assert parse_progress_line("out_time=N/A", 10.0) == 0.0
    assert parse_progress_line("out_time=00:00:05.000000", 0.0) == 0.0


# --- Command building ---

def test_passthrough_command_for_mp4():
    cmd = build_export_command("ffmpeg", Path("/in/a.mov"), Path("/out/a.mp4"), PRESET_PASSTHROUGH, "mp4")

    assert cmd[:4] == ["ffmpeg", "-hide_banner", "-i", "/in/a.mov"]
    assert cmd[cmd.index("-progress") + 1] == "pipe:1"
    assert "-c" in cmd and cmd[cmd.index("-c") + 1] == "copy"
    assert cmd[cmd.index("-f") + 1] == "mp4"
    assert cmd[cmd.index("-movflags") + 1] == "+faststart"
    assert cmd[-2:] == ["-y", "/out/a.mp4"]


def test_scaled_preset_for_mkv():
    cmd = build_export_command("ffmpeg", Path("a.mov"), Path("a.mkv"), PRESET_1280x720, "mkv")

    assert "libx264" in cmd
    assert "min(1280,iw)" in cmd[cmd.index("-vf") + 1]
    assert cmd[cmd.index("-f") + 1] == "matroska"
    assert "-movflags" not in cmd


def test_command_without_known_format_lets_ffmpeg_pick():
    cmd = build_export_command("ffmpeg", Path("a.mov"), Path("a.xyz"), PRESET_PASSTHROUGH, "xyz")
    assert "-f" not in cmd


def test_unknown_preset():
    with pytest.raises(ValidationError):
        get_preset("ExportPresetNope")


# --- Dimension parsing ---

def test_parse_dimensions_plain():
    data = {"streams": [{"width": 1920, "height": 1080}]}
    assert parse_dimensions(data) == (1920, 1080)


def test_parse_dimensions_rotated_side_data():
    data = {"streams": [{"width": 1920, "height": 1080, "side_data_list": [{"rotation": -90}]}]}
    assert parse_dimensions(data) == (1080, 1920)


def test_parse_dimensions_rotate_tag():
    data = {"streams": [{"width": 1280, "height": 720, "tags": {"rotate": "270"}}]}
    assert parse_dimensions(data) == (720, 1280)


def test_parse_dimensions_missing():
    assert parse_dimensions({}) is None
    assert parse_dimensions({"streams": [{"width": 0, "height": 0}]}) is None


# --- FfprobeMediaProbe ---

def test_probe_byte_size(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"x" * 10)
    probe = FfprobeMediaProbe("ffprobe")
    assert probe.byte_size(path) == 10
    assert probe.byte_size(tmp_path / "missing.mp4") is None


def test_probe_dimensions_uses_ffprobe(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"x")
    output = json.dumps({"streams": [{"width": 640, "height": 480}]})

    with patch("engine.media_probe.subprocess.run", return_value=MagicMock(stdout=output)) as mock_run:
        assert FfprobeMediaProbe("ffprobe").dimensions(path) == (640, 480)
        assert mock_run.call_args[0][0][0] == "ffprobe"


def test_probe_dimensions_unknown_cases(tmp_path):
    text_file = tmp_path / "notes.txt"
    text_file.write_text("hello")
    video = tmp_path / "clip.mov"
    video.write_bytes(b"x")
    probe = FfprobeMediaProbe("ffprobe")

    with patch("engine.media_probe.subprocess.run") as mock_run:
        assert probe.dimensions(text_file) is None
        assert probe.dimensions(tmp_path / "missing.mov") is None
        mock_run.assert_not_called()

    error = subprocess.CalledProcessError(1, ["ffprobe"], stderr="moov atom not found")
    with patch("engine.media_probe.subprocess.run", side_effect=error):
        assert probe.dimensions(video) is None


def test_probe_type_detection():
    probe = FfprobeMediaProbe("ffprobe")
    assert probe.is_video(Path("a.mkv"))
    assert probe.is_image(Path("a.heic"))
    assert probe.mime_type(Path("a.unknownext")) == "application/octet-stream"


# --- FfmpegTranscodeHandle ---

@pytest.mark.asyncio
async def test_handle_success():
    process = FakeProcess(stdout=[
        "out_time=00:00:02.500000",
        "progress=continue",
        "out_time=00:00:05.000000",
        "progress=end",
    ])
    handle = FfmpegTranscodeHandle(process, duration=10.0, label="clip [P]")
    states = []
    handle.add_listener(states.append)

    outcome = await handle.wait()

    assert outcome.kind is OutcomeKind.SUCCEEDED
    assert handle.progress() == 1.0
    assert handle.state is TranscodeState.COMPLETED
    assert states == [TranscodeState.EXPORTING, TranscodeState.COMPLETED]


@pytest.mark.asyncio
async def test_handle_failure_carries_stderr():
    process = FakeProcess(stderr=["Invalid data found when processing input"], returncode=1)
    handle = FfmpegTranscodeHandle(process, duration=10.0, label="clip [P]")

    outcome = await handle.wait()

    assert outcome.kind is OutcomeKind.FAILED
    assert isinstance(outcome.error, TranscodeFailed)
    assert "Invalid data found" in str(outcome.error)
    assert handle.state is TranscodeState.FAILED


@pytest.mark.asyncio
async def test_handle_cancel_terminates_process():
    process = FakeProcess(stdout=["out_time=00:00:01.000000"])
    handle = FfmpegTranscodeHandle(process, duration=10.0, label="clip [P]")

    handle.cancel()
    outcome = await handle.wait()

    assert process.terminated
    assert outcome.kind is OutcomeKind.CANCELLED
    assert isinstance(outcome.error, ExportCancelled)
    assert handle.state is TranscodeState.CANCELLED


# --- FfmpegTranscoder ---

@pytest.mark.asyncio
async def test_begin_missing_source(tmp_path):
    transcoder = FfmpegTranscoder("ffmpeg", "ffprobe")
    asset = SourceAsset.from_path(tmp_path / "gone.mov")

    with pytest.raises(SourceUnavailable):
        await transcoder.begin(asset, PRESET_PASSTHROUGH, tmp_path / "out.mov")


@pytest.mark.asyncio
async def test_begin_launches_ffmpeg(asset, tmp_path):
    probe_process = MagicMock(returncode=0)
    probe_process.communicate = AsyncMock(return_value=(b"12.5\n", b""))
    ffmpeg_process = FakeProcess(stdout=["out_time=00:00:12.500000", "progress=end"])

    with patch(
        "engine.ffmpeg_transcoder.asyncio.create_subprocess_exec",
        AsyncMock(side_effect=[probe_process, ffmpeg_process]),
    ) as mock_exec:
        handle = await FfmpegTranscoder("ffmpeg", "ffprobe").begin(
            asset, PRESET_PASSTHROUGH, tmp_path / "out.mov"
        )
        outcome = await handle.wait()

    ffmpeg_args = mock_exec.call_args_list[1][0]
    assert ffmpeg_args[0] == "ffmpeg"
    assert str(asset.path) in ffmpeg_args
    assert outcome.kind is OutcomeKind.SUCCEEDED


@pytest.mark.asyncio
async def test_duration_probe_errors(tmp_path):
    transcoder = FfmpegTranscoder("ffmpeg", "ffprobe")

    failing = MagicMock(returncode=1)
    failing.communicate = AsyncMock(return_value=(b"", b"Invalid data"))
    with patch("engine.ffmpeg_transcoder.asyncio.create_subprocess_exec", AsyncMock(return_value=failing)):
        with pytest.raises(SourceUnavailable):
            await transcoder.get_duration(tmp_path / "a.mov")

    with patch("engine.ffmpeg_transcoder.asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError())):
        with pytest.raises(SourceUnavailable):
            await transcoder.get_duration(tmp_path / "a.mov")

    unknown = MagicMock(returncode=0)
    unknown.communicate = AsyncMock(return_value=(b"N/A\n", b""))
    with patch("engine.ffmpeg_transcoder.asyncio.create_subprocess_exec", AsyncMock(return_value=unknown)):
        assert await transcoder.get_duration(tmp_path / "a.mov") == 0.0
