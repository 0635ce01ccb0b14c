"""
Progress watcher for the export currently running.

Transcoders only answer point-in-time progress queries, so the watcher
samples the handle on a fixed cadence and also refreshes immediately when
the handle reports a status change. Both paths publish through the job's
progress observer on the worker's event loop.
"""

import asyncio
import logging
from typing import Optional

from config import settings
from engine.transcoder import TranscodeHandle, TranscodeState
from models.export_job import ExportJob

logger = logging.getLogger(__name__)


class ProgressWatcher:
    """
    Samples a TranscodeHandle while its job is exporting.

    Use as an async context manager around the export so the sampling task
    lives exactly as long as the export does:

        async with ProgressWatcher(job, handle):
            outcome = await handle.wait()
    """

    def __init__(
        self,
        job: ExportJob,
        handle: TranscodeHandle,
        interval: Optional[float] = None,
    ):
        self._job = job
        self._handle = handle
        self._interval = settings.progress_interval_seconds if interval is None else interval
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._active = False

    async def __aenter__(self) -> "ProgressWatcher":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_sampling(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Begin sampling. Must be called from the worker's event loop."""
        if self._active:
            return
        self._loop = asyncio.get_running_loop()
        self._active = True
        self._handle.add_listener(self._on_status_change)
        self._task = asyncio.create_task(self._sample_loop())
        logger.debug(f"Progress watcher started: job_id={self._job.job_id}")

    async def stop(self) -> None:
        """Stop sampling and detach from the handle. Safe to call twice."""
        self._active = False
        self._handle.remove_listener(self._on_status_change)

        task = self._cancel_sampling()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.debug(f"Progress watcher stopped: job_id={self._job.job_id}")

    def refresh(self) -> Optional[float]:
        """Publish the handle's current progress. Returns the published value."""
        if not self._active:
            return None

        if self._handle.state.is_terminal:
            self._cancel_sampling()

        try:
            value = self._handle.progress()
        except Exception:
            logger.exception(f"Progress query failed: job_id={self._job.job_id}")
            return None

        return self._job.update_progress(value or 0.0)

    # --- Internal ---

    async def _sample_loop(self) -> None:
        while self._active:
            self.refresh()
            await asyncio.sleep(self._interval)

    def _cancel_sampling(self) -> Optional[asyncio.Task]:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        return task

    def _on_status_change(self, state: TranscodeState) -> None:
        # May be called from a transcoder thread
        loop = self._loop
        if loop is None or not self._active:
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self.refresh()
            return

        try:
            loop.call_soon_threadsafe(self.refresh)
        except RuntimeError:
            # Loop already closed; nothing left to publish to
            logger.debug(f"Dropped status notification ({state.value}) for job_id={self._job.job_id}")
