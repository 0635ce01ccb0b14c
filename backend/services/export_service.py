"""
Export service.
Keeps the export sessions of this process and the queue that runs them.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from config import settings
from engine.job_queue import JobQueue
from engine.presets import MUXERS
from models.asset import SourceAsset
from models.export_job import ExportJob
from services.export_session import ExportSession
from services.report import SizeUnit, write_report
from utils.exceptions import ConflictError, NotFoundError, ValidationError
from utils.paths import allocate_destination

logger = logging.getLogger(__name__)


class ExportService:
    """In-memory registry of export sessions, in creation order."""

    def __init__(self, queue: Optional[JobQueue] = None):
        self.queue = queue or JobQueue.get_instance()
        self._sessions: Dict[str, ExportSession] = {}

    async def start_export(self, source_path: str, output_format: Optional[str] = None) -> ExportSession:
        """
        Start exporting a source file through every preset.

        Raises:
            NotFoundError: If the source file does not exist
            ValidationError: If the output format is not supported
        """
        path = Path(source_path).expanduser()
        if not path.is_file():
            raise NotFoundError(f"Source file not found: {source_path}")

        if output_format is not None:
            output_format = output_format.lower().lstrip(".")
            if output_format not in MUXERS:
                raise ValidationError(
                    f"Output format '{output_format}' not supported. "
                    f"Supported formats: {', '.join(sorted(MUXERS))}"
                )

        session = ExportSession(self.queue, output_format=output_format)
        self._sessions[session.session_id] = session
        await session.start_export(SourceAsset.from_path(path))

        if not session.jobs:
            logger.warning(f"No export destinations could be allocated for {path.name}")
        return session

    def list_sessions(self) -> List[ExportSession]:
        return list(self._sessions.values())

    def get_session(self, session_id: str) -> ExportSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError("Export session not found")
        return session

    def get_job(self, session_id: str, job_id: str) -> ExportJob:
        for job in self.get_session(session_id).jobs:
            if job.job_id == job_id:
                return job
        raise NotFoundError("Export job not found")

    def cancel_job(self, session_id: str, job_id: str) -> ExportJob:
        job = self.get_job(session_id, job_id)
        if job.is_terminal:
            raise ConflictError(f"Cannot cancel export in {job.status.value} state")
        self.queue.cancel(job)
        return job

    def discard_session(self, session_id: str) -> int:
        """Cancel outstanding jobs and forget the session. Returns jobs cancelled."""
        session = self.get_session(session_id)
        cancelled = session.cancel_all()
        del self._sessions[session_id]
        logger.info(f"Discarded export session {session_id} ({cancelled} jobs cancelled)")
        return cancelled

    async def save_report(self, session_id: str, unit: SizeUnit = SizeUnit.MEGABYTES) -> Path:
        """Write the session's CSV report to a fresh file and return its path."""
        session = self.get_session(session_id)
        path = allocate_destination(settings.report_filename)
        return await write_report(session.report(unit), path, unit)


_export_service: Optional[ExportService] = None


def get_export_service() -> ExportService:
    """Dependency for getting the shared export service."""
    global _export_service
    if _export_service is None:
        _export_service = ExportService()
    return _export_service
