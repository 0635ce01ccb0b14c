"""
Export job model and its status state machine.

Status moves forward only:

    QUEUED -> AWAITING_SOURCE -> EXPORTING -> COMPLETED | FAILED
                     |
                     +-> FAILED

CANCELLED is reachable from every non-terminal status. COMPLETED, FAILED and
CANCELLED are terminal; once there, nothing about the job changes again.
"""

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Tuple

from config import settings
from models.asset import SourceAsset
from utils.exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)


class ExportStatus(enum.Enum):
    """Status of an export job."""
    QUEUED = "queued"
    AWAITING_SOURCE = "awaiting_source"
    EXPORTING = "exporting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ExportStatus.COMPLETED,
    ExportStatus.FAILED,
    ExportStatus.CANCELLED,
})

_ALLOWED_TRANSITIONS = {
    ExportStatus.QUEUED: {ExportStatus.AWAITING_SOURCE, ExportStatus.CANCELLED},
    ExportStatus.AWAITING_SOURCE: {ExportStatus.EXPORTING, ExportStatus.FAILED, ExportStatus.CANCELLED},
    ExportStatus.EXPORTING: {ExportStatus.COMPLETED, ExportStatus.FAILED, ExportStatus.CANCELLED},
}

STATUS_LABELS = {
    ExportStatus.QUEUED: "Waiting on Queue",
    ExportStatus.AWAITING_SOURCE: "Downloading asset data",
    ExportStatus.EXPORTING: "Exporting",
    ExportStatus.COMPLETED: "Completed",
    ExportStatus.FAILED: "Failed",
    ExportStatus.CANCELLED: "Cancelled",
}

ProgressCallback = Callable[[float], None]


@dataclass(eq=False)
class ExportJob:
    """
    One (source, preset) transcode attempt.

    The JobQueue worker is the only writer of status, timing and result
    fields. Everyone else reads them, or asks the queue to cancel.
    """
    source: SourceAsset
    preset: str
    destination: Path
    output_format: Optional[str] = None
    on_progress: Optional[ProgressCallback] = field(default=None, repr=False)
    on_status: Optional[Callable[["ExportJob"], None]] = field(default=None, repr=False)
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Runtime state, managed by the queue
    status: ExportStatus = field(default=ExportStatus.QUEUED, init=False)
    time_to_acquire_source: float = field(default=0.0, init=False)
    time_to_export: float = field(default=0.0, init=False)
    result_byte_size: Optional[int] = field(default=None, init=False)
    result_pixel_dimensions: Optional[Tuple[int, int]] = field(default=None, init=False)
    last_error: Optional[BaseException] = field(default=None, init=False)
    cancel_requested: bool = field(default=False, init=False)
    _progress: float = field(default=0.0, init=False, repr=False)

    def __post_init__(self):
        self.destination = Path(self.destination)
        if self.output_format is None:
            self.output_format = self.source.format

    # --- Read side ---

    @property
    def progress(self) -> float:
        """Fraction complete; only meaningful while exporting."""
        if self.status != ExportStatus.EXPORTING:
            return 0.0
        return self._progress

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def display_name(self) -> str:
        """Preset identifier without the shared vendor prefix."""
        return self.preset.replace(settings.preset_prefix, "") or self.preset

    @property
    def status_label(self) -> str:
        return STATUS_LABELS[self.status]

    # --- Transitions ---

    def mark_awaiting_source(self) -> None:
        self._transition(ExportStatus.AWAITING_SOURCE)

    def mark_exporting(self) -> None:
        self._progress = 0.0
        self._transition(ExportStatus.EXPORTING)

    def mark_completed(self, byte_size: int, pixel_dimensions: Tuple[int, int]) -> None:
        self._check_transition(ExportStatus.COMPLETED)
        self.result_byte_size = byte_size
        self.result_pixel_dimensions = pixel_dimensions
        self._transition(ExportStatus.COMPLETED)

    def mark_failed(self, error: BaseException) -> None:
        self._check_transition(ExportStatus.FAILED)
        self.last_error = error
        self._transition(ExportStatus.FAILED)

    def mark_cancelled(self) -> bool:
        """Cancel the job. Returns False (and changes nothing) if already terminal."""
        if self.is_terminal:
            return False
        self._transition(ExportStatus.CANCELLED)
        return True

    def update_progress(self, value: Optional[float]) -> Optional[float]:
        """
        Record a progress sample and notify the observer.

        Values are clamped to [0, 1] and never go backwards within a run.
        Returns the published value, or None when the job is not exporting.
        """
        if self.status != ExportStatus.EXPORTING:
            return None

        value = min(max(float(value or 0.0), 0.0), 1.0)
        self._progress = max(self._progress, value)

        if self.on_progress:
            try:
                self.on_progress(self._progress)
            except Exception:
                logger.exception(f"Progress observer failed: job_id={self.job_id}")
        return self._progress

    def _check_transition(self, new_status: ExportStatus) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransitionError(
                f"Cannot move job {self.job_id} from {self.status.value} to {new_status.value}"
            )

    def _transition(self, new_status: ExportStatus) -> None:
        self._check_transition(new_status)

        logger.debug(f"Job {self.job_id} ({self.preset}): {self.status.value} -> {new_status.value}")
        self.status = new_status

        if self.on_status:
            try:
                self.on_status(self)
            except Exception:
                logger.exception(f"Status observer failed: job_id={self.job_id}")
