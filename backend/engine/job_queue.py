"""
Async export queue.
Implements single-worker concurrency: exactly one transcode runs at a time,
in strict FIFO order.
"""

import asyncio
import logging
import threading
from collections import deque
from concurrent.futures import Future
from pathlib import Path
from typing import Deque, Optional, Tuple

from config import settings
from engine.media_probe import MediaProbe
from engine.progress_watcher import ProgressWatcher
from engine.transcoder import OutcomeKind, TranscodeHandle, TranscodeOutcome, Transcoder
from models.export_job import ExportJob, ExportStatus
from utils.exceptions import ConflictError, ExportError, SourceUnavailable, TranscodeFailed
from utils.perf_logger import perf_logger

logger = logging.getLogger(__name__)


def _as_source_error(exc: Exception) -> ExportError:
    """Errors raised while preparing the source surface as SourceUnavailable."""
    if isinstance(exc, ExportError):
        return exc
    error = SourceUnavailable(f"{type(exc).__name__}: {exc}")
    error.__cause__ = exc
    return error


class JobQueue:
    """
    Async export queue with single-worker concurrency.

    Ensures only one transcoder invocation is active at a time. The worker
    is the only code that calls the transcoder or changes a job's status,
    timing and result fields; callers enqueue, cancel, and read snapshots.
    """

    _instance: Optional["JobQueue"] = None

    def __init__(
        self,
        transcoder: Transcoder,
        probe: MediaProbe,
        progress_interval: Optional[float] = None,
    ):
        self._transcoder = transcoder
        self._probe = probe
        self._progress_interval = (
            settings.progress_interval_seconds if progress_interval is None else progress_interval
        )

        self._pending: Deque[ExportJob] = deque()
        self._lock = threading.Lock()
        self._wakeup = asyncio.Event()
        self._stop = asyncio.Event()
        self._worker_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False
        self._current_job: Optional[ExportJob] = None
        self._current_handle: Optional[TranscodeHandle] = None

    @classmethod
    def get_instance(cls) -> "JobQueue":
        """Get or create the shared queue backed by ffmpeg/ffprobe."""
        if cls._instance is None:
            from engine.ffmpeg_transcoder import FfmpegTranscoder
            from engine.media_probe import FfprobeMediaProbe
            cls._instance = cls(FfmpegTranscoder(), FfprobeMediaProbe())
        return cls._instance

    # --- Caller side ---

    async def enqueue(self, job: ExportJob) -> None:
        """Append a job to the tail of the queue, starting the worker if needed."""
        with self._lock:
            if job.status != ExportStatus.QUEUED:
                raise ConflictError(f"Job {job.job_id} is {job.status.value}, not queued")
            if job in self._pending or job is self._current_job:
                raise ConflictError(f"Job {job.job_id} is already enqueued")
            self._pending.append(job)
            size = len(self._pending)

        logger.info(f"Job enqueued: job_id={job.job_id}, preset={job.preset}, queue_size={size}")

        if not self._running:
            await self.start_worker()
        self._wakeup.set()

    def enqueue_threadsafe(self, job: ExportJob) -> Future:
        """Enqueue from a thread other than the worker's event loop."""
        if not self._running or self._loop is None:
            raise RuntimeError("Worker is not running. Call start_worker() first.")
        return asyncio.run_coroutine_threadsafe(self.enqueue(job), self._loop)

    def cancel(self, job: ExportJob) -> bool:
        """
        Cancel a job.

        A pending job is removed and marked cancelled without ever reaching
        the transcoder. For the active job, cancellation is requested from the
        transcoder; the job becomes cancelled once the transcoder acknowledges.
        Terminal jobs are left untouched.

        Returns:
            True if the job was cancelled or a cancellation was requested.
        """
        if job.is_terminal:
            logger.debug(f"Cancel ignored for finished job: job_id={job.job_id} ({job.status.value})")
            return False

        with self._lock:
            removed = job in self._pending
            if removed:
                self._pending.remove(job)
            is_current = job is self._current_job

        if removed:
            job.mark_cancelled()
            logger.info(f"Cancelled pending job: job_id={job.job_id}, preset={job.preset}")
            return True

        if not is_current:
            logger.warning(f"Cancel requested for a job this queue does not own: job_id={job.job_id}")
            return False

        if job.cancel_requested:
            return False

        job.cancel_requested = True
        handle = self._current_handle
        if handle is not None:
            handle.cancel()
        logger.info(f"Cancellation requested for active job: job_id={job.job_id}, preset={job.preset}")
        return True

    def pending_jobs(self) -> Tuple[ExportJob, ...]:
        """Snapshot of jobs waiting to run, head first."""
        with self._lock:
            return tuple(self._pending)

    @property
    def current_job(self) -> Optional[ExportJob]:
        return self._current_job

    @property
    def queue_size(self) -> int:
        """Current number of jobs waiting."""
        with self._lock:
            return len(self._pending)

    @property
    def is_running(self) -> bool:
        """Whether the worker is running."""
        return self._running

    # --- Worker lifecycle ---

    async def start_worker(self) -> None:
        """
        Start the background worker loop.

        A worker that is still finishing its job after stop_worker() keeps
        the slot: the new loop only begins popping once that one has exited.
        """
        if self._running:
            logger.warning("Worker already running")
            return

        previous = self._worker_task
        if previous is not None and previous.done():
            previous = None

        self._running = True
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._stop = asyncio.Event()
        self._worker_task = asyncio.create_task(self._worker_loop(self._stop, previous))
        logger.info("Export queue worker started (concurrency=1)")

    async def stop_worker(self, wait_for_current: bool = True) -> None:
        """
        Stop the worker loop. Pending jobs stay queued.

        Args:
            wait_for_current: If True, let the active job finish; otherwise
                cancel it and wait for the transcoder to acknowledge.
        """
        self._running = False
        self._stop.set()

        current = self._current_job
        if not wait_for_current and current is not None:
            self.cancel(current)

        self._wakeup.set()
        task = self._worker_task
        if task is not None:
            await asyncio.shield(task)
            if self._worker_task is task:
                self._worker_task = None

        logger.info("Export queue worker stopped")

    # --- Worker ---

    async def _worker_loop(self, stop: asyncio.Event, previous: Optional[asyncio.Task] = None) -> None:
        """Main worker loop - processes one job at a time until *stop* is set."""
        if previous is not None:
            # Single flight: a stopping worker finishes its job first
            await asyncio.wait({previous})

        while not stop.is_set():
            self._wakeup.clear()
            job = self._pop_next()
            if job is None:
                await self._wakeup.wait()
                continue

            try:
                await self._run_job(job)
            except asyncio.CancelledError:
                logger.info("Worker cancelled")
                if not job.is_terminal:
                    job.mark_cancelled()
                raise
            except Exception as e:
                logger.exception(f"Export crashed: job_id={job.job_id}")
                if not job.is_terminal:
                    job.mark_failed(e)
            finally:
                with self._lock:
                    self._current_job = None
                    self._current_handle = None

    def _pop_next(self) -> Optional[ExportJob]:
        with self._lock:
            if not self._pending:
                return None
            job = self._pending.popleft()
            self._current_job = job
            return job

    async def _run_job(self, job: ExportJob) -> None:
        label = f"{job.display_name} (Job {job.job_id[:8]})"
        logger.info(f"Processing job: job_id={job.job_id}, preset={job.preset}")
        job.mark_awaiting_source()

        # --- PHASE 1: ACQUIRE SOURCE ---
        acquire_phase = f"Acquire Source {label}"
        perf_logger.start_phase(acquire_phase)
        try:
            handle = await self._transcoder.begin(
                job.source, job.preset, job.destination, job.output_format
            )
        except Exception as e:
            job.time_to_acquire_source = perf_logger.end_phase(acquire_phase, "FAILED")
            if job.cancel_requested:
                logger.info(f"Job cancelled while acquiring source: job_id={job.job_id}")
                job.mark_cancelled()
            else:
                error = _as_source_error(e)
                logger.error(f"Source unavailable: job_id={job.job_id}, error={error}")
                job.mark_failed(error)
            return

        job.time_to_acquire_source = perf_logger.end_phase(acquire_phase)
        with self._lock:
            self._current_handle = handle

        if job.cancel_requested:
            # Cancelled before the export began: wait for the abort, never export
            logger.info(f"Aborting export cancelled during source acquisition: job_id={job.job_id}")
            handle.cancel()
            await handle.wait()
            job.mark_cancelled()
            return

        # --- PHASE 2: EXPORT ---
        job.mark_exporting()
        export_phase = f"Export {label}"
        perf_logger.start_phase(export_phase)
        try:
            async with ProgressWatcher(job, handle, self._progress_interval):
                outcome = await handle.wait()
        except asyncio.CancelledError:
            handle.cancel()
            raise
        except Exception as e:
            logger.exception(f"Transcoder lost track of export: job_id={job.job_id}")
            outcome = TranscodeOutcome.failed(TranscodeFailed(f"{type(e).__name__}: {e}"))
        finally:
            job.time_to_export = perf_logger.end_phase(export_phase, job.preset)

        await self._finish(job, outcome)

    async def _finish(self, job: ExportJob, outcome: TranscodeOutcome) -> None:
        if outcome.kind is OutcomeKind.SUCCEEDED:
            try:
                byte_size, dimensions = await self._confirm_output(job.destination)
            except TranscodeFailed as e:
                logger.error(f"Export reported success but output is unusable: job_id={job.job_id}, error={e}")
                job.mark_failed(e)
                return
            job.mark_completed(byte_size, dimensions)
            logger.info(
                f"Export complete: job_id={job.job_id}, preset={job.preset}, "
                f"size={byte_size}, dimensions={dimensions[0]}x{dimensions[1]}, "
                f"time={job.time_to_export:.3f}s"
            )
        elif outcome.kind is OutcomeKind.CANCELLED or job.cancel_requested:
            job.mark_cancelled()
            logger.info(f"Export cancelled: job_id={job.job_id}, preset={job.preset}")
        else:
            error = outcome.error or TranscodeFailed()
            logger.error(f"Export failed: job_id={job.job_id}, preset={job.preset}, error={error}")
            job.mark_failed(error)

    async def _confirm_output(self, destination: Path) -> Tuple[int, Tuple[int, int]]:
        """
        Probe the exported file once. The probe, not the transcoder's own
        report, decides whether the export really succeeded.

        Raises:
            TranscodeFailed: If the file is missing, empty, or unreadable.
        """
        loop = asyncio.get_running_loop()
        try:
            byte_size, dimensions = await loop.run_in_executor(None, self._probe_output, destination)
        except Exception as e:
            raise TranscodeFailed(f"Could not probe exported file {destination}: {e}") from e

        if not byte_size:
            raise TranscodeFailed(f"Exported file is missing or empty: {destination}")
        if dimensions is None:
            raise TranscodeFailed(f"Exported file is unreadable: {destination}")
        return byte_size, dimensions

    def _probe_output(self, destination: Path):
        return self._probe.byte_size(destination), self._probe.dimensions(destination)
