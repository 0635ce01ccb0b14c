"""
FFmpeg-backed Transcoder.

begin() prepares the source (it must exist and ffprobe must be able to read
its duration), then launches ffmpeg as an asyncio subprocess. The returned
handle parses ffmpeg's machine-readable progress lines from stdout, drains
stderr concurrently so the pipe never fills up, and notifies listeners on
Waiting -> Exporting -> terminal transitions.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import List, Optional

from config import settings
from engine.presets import build_export_command, command_as_string
from engine.transcoder import TranscodeHandle, TranscodeOutcome, TranscodeState, Transcoder
from models.asset import SourceAsset
from utils.exceptions import SourceUnavailable, TranscodeFailed

logger = logging.getLogger(__name__)

# Lines of ffmpeg stderr kept for error messages
STDERR_TAIL_LINES = 5


class FfmpegTranscodeHandle(TranscodeHandle):
    """A running ffmpeg process."""

    def __init__(self, process: asyncio.subprocess.Process, duration: float, label: str):
        super().__init__()
        self._process = process
        self._duration = duration
        self._label = label
        self._progress = 0.0
        self._state = TranscodeState.WAITING
        self._cancel_requested = False
        self._stderr_lines: List[str] = []
        self._monitor_task = asyncio.create_task(self._monitor())

    @property
    def state(self) -> TranscodeState:
        return self._state

    def progress(self) -> float:
        return self._progress

    def cancel(self) -> None:
        if self._state.is_terminal or self._cancel_requested:
            return
        self._cancel_requested = True
        if self._process.returncode is None:
            try:
                self._process.terminate()
            except ProcessLookupError:
                pass  # Already exited
        logger.info(f"Terminating ffmpeg for {self._label} (pid={self._process.pid})")

    async def wait(self) -> TranscodeOutcome:
        return await asyncio.shield(self._monitor_task)

    def _set_state(self, state: TranscodeState) -> None:
        if state is self._state:
            return
        self._state = state
        self._notify_status(state)

    async def _drain_stderr(self) -> None:
        async for raw in self._process.stderr:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                self._stderr_lines.append(line)
                del self._stderr_lines[:-STDERR_TAIL_LINES]

    async def _monitor(self) -> TranscodeOutcome:
        stderr_task = asyncio.create_task(self._drain_stderr())
        try:
            async for raw in self._process.stdout:
                line = raw.decode("utf-8", errors="replace").strip()
                if line == "progress=end":
                    self._progress = 1.0
                    continue
                fraction = parse_progress_line(line, self._duration)
                if fraction is None:
                    continue
                self._progress = max(self._progress, fraction)
                self._set_state(TranscodeState.EXPORTING)

            await stderr_task
            returncode = await self._process.wait()
        except asyncio.CancelledError:
            stderr_task.cancel()
            if self._process.returncode is None:
                self._process.kill()
            raise

        logger.info(f"ffmpeg exited with code {returncode} for {self._label}")

        if self._cancel_requested:
            self._set_state(TranscodeState.CANCELLED)
            return TranscodeOutcome.cancelled()

        if returncode != 0:
            message = f"ffmpeg exited with code {returncode} for {self._label}"
            if self._stderr_lines:
                message += ": " + " | ".join(self._stderr_lines)
            self._set_state(TranscodeState.FAILED)
            return TranscodeOutcome.failed(TranscodeFailed(message))

        self._progress = 1.0
        self._set_state(TranscodeState.COMPLETED)
        return TranscodeOutcome.succeeded()


class FfmpegTranscoder(Transcoder):
    """Exports with the ffmpeg CLI."""

    def __init__(self, ffmpeg_path: Optional[str] = None, ffprobe_path: Optional[str] = None):
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.ffprobe_path = ffprobe_path or settings.ffprobe_path

    async def begin(
        self,
        source: SourceAsset,
        preset: str,
        destination: Path,
        output_format: Optional[str] = None,
    ) -> FfmpegTranscodeHandle:
        source_path = Path(source.path)
        if not source_path.is_file():
            raise SourceUnavailable(f"Source file not found: {source_path}")
        if not os.access(source_path, os.R_OK):
            raise SourceUnavailable(f"Cannot read source file: {source_path}")

        duration = await self.get_duration(source_path)

        cmd = build_export_command(self.ffmpeg_path, source_path, Path(destination), preset, output_format)
        logger.info(f"Command:\n  {command_as_string(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeFailed(f"Could not launch ffmpeg ({self.ffmpeg_path}): {e}") from e

        logger.info(f"ffmpeg started for {source_path.name} [{preset}] (pid={process.pid})")
        return FfmpegTranscodeHandle(process, duration, label=f"{source_path.name} [{preset}]")

    async def get_duration(self, path: Path) -> float:
        """
        Duration of a media file in seconds (0.0 if ffprobe cannot tell).

        Raises:
            SourceUnavailable: If ffprobe cannot run or cannot read the file.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffprobe_path,
                "-v", "error",
                "-show_entries", "format=duration",
                "-of", "default=noprint_wrappers=1:nokey=1",
                str(path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SourceUnavailable(f"Could not run ffprobe ({self.ffprobe_path}): {e}") from e

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise SourceUnavailable(
                f"ffprobe could not read {path.name}: {stderr.decode('utf-8', errors='replace').strip()}"
            )

        try:
            return float(stdout.decode("utf-8", errors="replace").strip())
        except ValueError:
            logger.warning(f"Unknown duration for {path.name}, progress will stay at 0 until done")
            return 0.0


# --- Progress line parser ---

def parse_progress_line(line: str, duration: float) -> Optional[float]:
    """
    Turn an ffmpeg "out_time=HH:MM:SS.micro" progress line into a fraction
    of *duration*. Returns None for any other line and 0.0 while the
    position or duration is unknown.
    """
    if not line.startswith("out_time="):
        return None

    seconds = _hhmmss_to_seconds(line.split("=", 1)[1])
    if duration <= 0 or seconds <= 0:
        return 0.0
    return min(seconds / duration, 1.0)


def _hhmmss_to_seconds(time_str: str) -> float:
    try:
        h, m, s = time_str.strip().split(":")
        return float(h) * 3600 + float(m) * 60 + float(s)
    except ValueError:
        # ffmpeg prints N/A before the first frame is written
        return 0.0
