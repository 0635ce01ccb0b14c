"""
Transcoder interface consumed by the export queue.

A Transcoder prepares a source and starts an asynchronous encode, handing
back a TranscodeHandle. The handle answers point-in-time progress queries,
accepts a cooperative cancel request, resolves to exactly one terminal
TranscodeOutcome and, optionally, notifies listeners on status changes.
"""

import enum
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from models.asset import SourceAsset
from utils.exceptions import ExportCancelled

logger = logging.getLogger(__name__)


class TranscodeState(enum.Enum):
    """Lifecycle of a single transcoder invocation."""
    WAITING = "waiting"
    EXPORTING = "exporting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TranscodeState.COMPLETED, TranscodeState.FAILED, TranscodeState.CANCELLED)


class OutcomeKind(enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TranscodeOutcome:
    """Terminal result of a transcoder invocation."""
    kind: OutcomeKind
    error: Optional[BaseException] = None

    @classmethod
    def succeeded(cls) -> "TranscodeOutcome":
        return cls(OutcomeKind.SUCCEEDED)

    @classmethod
    def failed(cls, error: Optional[BaseException] = None) -> "TranscodeOutcome":
        return cls(OutcomeKind.FAILED, error)

    @classmethod
    def cancelled(cls) -> "TranscodeOutcome":
        return cls(OutcomeKind.CANCELLED, ExportCancelled())


StatusListener = Callable[[TranscodeState], None]


class TranscodeHandle(ABC):
    """
    A running transcoder invocation.

    Listeners may be called from any thread; consumers that need a
    particular execution context must hop onto it themselves.
    """

    def __init__(self):
        self._listeners: List[StatusListener] = []
        self._listener_lock = threading.Lock()

    @property
    @abstractmethod
    def state(self) -> TranscodeState:
        """Current state of the invocation."""

    @abstractmethod
    def progress(self) -> float:
        """Fraction complete in [0, 1]; 0 before any data has been produced."""

    @abstractmethod
    def cancel(self) -> None:
        """Request a cooperative abort. The outcome reports when it is honored."""

    @abstractmethod
    async def wait(self) -> TranscodeOutcome:
        """Suspend until the invocation reaches its terminal outcome."""

    def add_listener(self, listener: StatusListener) -> None:
        with self._listener_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        with self._listener_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify_status(self, state: TranscodeState) -> None:
        with self._listener_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Transcode status listener failed")


class Transcoder(ABC):
    """Starts encodes of a source asset with a given preset."""

    @abstractmethod
    async def begin(
        self,
        source: SourceAsset,
        preset: str,
        destination: Path,
        output_format: Optional[str] = None,
    ) -> TranscodeHandle:
        """
        Prepare the source and start encoding into *destination*.

        Raises:
            SourceUnavailable: If the source cannot be obtained or prepared.
        """
