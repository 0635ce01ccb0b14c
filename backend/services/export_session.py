"""
Export session: fans one source asset out into one export job per preset.
"""

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from engine.job_queue import JobQueue
from engine.presets import PRESET_ORDER
from models.asset import SourceAsset
from models.export_job import ExportJob
from services.report import ReportRow, SizeUnit, build_report_rows
from utils.exceptions import ConflictError, DestinationUnallocatable
from utils.paths import allocate_destination

logger = logging.getLogger(__name__)


class ExportSession:
    """
    The ordered jobs of one asset export.

    Jobs are kept in creation order, which is also the order they are
    enqueued in and the order they are presented in. No job depends on
    another's outcome.
    """

    def __init__(
        self,
        queue: JobQueue,
        presets: Optional[Sequence[str]] = None,
        output_format: Optional[str] = None,
        allocate: Callable[[str], Path] = allocate_destination,
    ):
        self.session_id = uuid.uuid4().hex
        self.created_at = datetime.now(timezone.utc)
        self.asset: Optional[SourceAsset] = None
        self.output_format = output_format
        self._queue = queue
        self._presets = list(PRESET_ORDER if presets is None else presets)
        self._allocate = allocate
        self._jobs: List[ExportJob] = []

    @property
    def jobs(self) -> Tuple[ExportJob, ...]:
        return tuple(self._jobs)

    @property
    def is_finished(self) -> bool:
        return all(job.is_terminal for job in self._jobs)

    async def start_export(self, asset: SourceAsset) -> List[ExportJob]:
        """
        Create and enqueue one job per preset, in preset priority order.
        Presets whose destination cannot be allocated are skipped.
        """
        if self.asset is not None:
            raise ConflictError(f"Session {self.session_id} already started")
        self.asset = asset

        filename = self._destination_filename(asset)
        for preset in self._presets:
            try:
                destination = self._allocate(filename)
            except DestinationUnallocatable as e:
                logger.warning(f"Skipping preset {preset} for {asset.original_filename}: {e}")
                continue

            job = ExportJob(
                source=asset,
                preset=preset,
                destination=destination,
                output_format=self.output_format,
            )
            self._jobs.append(job)
            await self._queue.enqueue(job)

        logger.info(
            f"Export session {self.session_id}: {len(self._jobs)}/{len(self._presets)} "
            f"presets queued for {asset.original_filename}"
        )
        return list(self._jobs)

    def report(self, unit: SizeUnit = SizeUnit.MEGABYTES) -> List[ReportRow]:
        """One row per completed job, in enqueue order."""
        return build_report_rows(self._jobs, unit)

    def cancel_all(self) -> int:
        """Cancel every job that has not finished. Returns how many were affected."""
        return sum(1 for job in self._jobs if self._queue.cancel(job))

    def _destination_filename(self, asset: SourceAsset) -> str:
        filename = asset.original_filename or "Unknown"
        if self.output_format and self.output_format.lower() != (asset.format or ""):
            filename = str(Path(filename).with_suffix(f".{self.output_format.lower()}"))
        return filename
