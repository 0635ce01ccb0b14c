"""
Scripted Transcoder and MediaProbe doubles for queue and API tests.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from engine.media_probe import MediaProbe
from engine.transcoder import TranscodeHandle, TranscodeOutcome, TranscodeState, Transcoder


@dataclass
class Script:
    """How the stub transcoder behaves for one preset."""
    progress_steps: Sequence[float] = (0.25, 0.5, 1.0)
    step_delay: float = 0.01
    hold: bool = False  # Keep exporting until cancelled
    error: Optional[Exception] = None
    begin_error: Optional[Exception] = None
    begin_delay: float = 0.0
    output_size: int = 2048
    dimensions: Tuple[int, int] = (1920, 1080)


class StubHandle(TranscodeHandle):
    def __init__(self, transcoder: "StubTranscoder", script: Script, destination: Path):
        super().__init__()
        self._transcoder = transcoder
        self._script = script
        self._destination = destination
        self._state = TranscodeState.WAITING
        self._progress = 0.0
        self._cancel_event = asyncio.Event()
        self.cancel_calls = 0
        self._task = asyncio.create_task(self._run())

    @property
    def state(self) -> TranscodeState:
        return self._state

    def progress(self) -> float:
        return self._progress

    def cancel(self) -> None:
        self.cancel_calls += 1
        self._cancel_event.set()

    async def wait(self) -> TranscodeOutcome:
        return await asyncio.shield(self._task)

    def _set_state(self, state: TranscodeState) -> None:
        self._state = state
        self._notify_status(state)

    async def _cancelled_within(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run(self) -> TranscodeOutcome:
        try:
            return await self._export()
        finally:
            self._transcoder.active -= 1

    async def _export(self) -> TranscodeOutcome:
        script = self._script
        if self._cancel_event.is_set():
            self._set_state(TranscodeState.CANCELLED)
            return TranscodeOutcome.cancelled()

        self._set_state(TranscodeState.EXPORTING)
        for value in script.progress_steps:
            if await self._cancelled_within(script.step_delay):
                self._set_state(TranscodeState.CANCELLED)
                return TranscodeOutcome.cancelled()
            self._progress = value

        if script.hold:
            await self._cancel_event.wait()
            self._set_state(TranscodeState.CANCELLED)
            return TranscodeOutcome.cancelled()

        if script.error is not None:
            self._set_state(TranscodeState.FAILED)
            return TranscodeOutcome.failed(script.error)

        if script.output_size:
            self._destination.write_bytes(b"\0" * script.output_size)
            self._transcoder.outputs[self._destination] = script.dimensions
        self._set_state(TranscodeState.COMPLETED)
        return TranscodeOutcome.succeeded()


class StubTranscoder(Transcoder):
    """Transcoder whose behaviour per preset is scripted by the test."""

    def __init__(self, scripts: Optional[Dict[str, Script]] = None, default: Optional[Script] = None):
        self.scripts = scripts or {}
        self.default = default or Script()
        self.outputs: Dict[Path, Tuple[int, int]] = {}
        self.begun: List[str] = []
        self.handles: Dict[str, StubHandle] = {}
        self.active = 0
        self.max_active = 0

    async def begin(self, source, preset, destination, output_format=None) -> StubHandle:
        script = self.scripts.get(preset, self.default)
        self.begun.append(preset)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if script.begin_delay:
                await asyncio.sleep(script.begin_delay)
            if script.begin_error is not None:
                raise script.begin_error
        except BaseException:
            self.active -= 1
            raise

        handle = StubHandle(self, script, Path(destination))
        self.handles[preset] = handle
        return handle


class StubProbe(MediaProbe):
    """Reports what the stub transcoder wrote."""

    def __init__(self, transcoder: StubTranscoder):
        self._transcoder = transcoder

    def dimensions(self, path: Path) -> Optional[Tuple[int, int]]:
        return self._transcoder.outputs.get(Path(path))

    def byte_size(self, path: Path) -> Optional[int]:
        try:
            return Path(path).stat().st_size
        except OSError:
            return None


async def wait_for_terminal(jobs, timeout: float = 5.0) -> None:
    """Poll until every job has finished."""
    async def _poll():
        while not all(job.is_terminal for job in jobs):
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_poll(), timeout)


async def wait_until(predicate, timeout: float = 5.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_poll(), timeout)


