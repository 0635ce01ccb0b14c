"""
Export session endpoints: start, list, cancel, download, report.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse
from pydantic import BaseModel

from config import settings
from engine.presets import PRESET_ORDER
from models.export_job import ExportJob, ExportStatus
from services.export_service import ExportService, get_export_service
from services.export_session import ExportSession
from services.report import SizeUnit
from utils.exceptions import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)
router = APIRouter()

_UNITS_BY_LABEL = {unit.label: unit for unit in SizeUnit}


class ExportRequest(BaseModel):
    """Request body for starting an export."""
    source_path: str
    output_format: Optional[str] = None  # Defaults to the source's own format


def _job_view(job: ExportJob) -> dict:
    dimensions = job.result_pixel_dimensions
    return {
        "id": job.job_id,
        "preset": job.preset,
        "name": job.display_name,
        "status": job.status.value,
        "status_label": job.status_label,
        "progress": job.progress,
        "output_format": job.output_format,
        "destination": str(job.destination),
        "time_to_acquire_source": job.time_to_acquire_source,
        "time_to_export": job.time_to_export,
        "result_byte_size": job.result_byte_size,
        "result_width": dimensions[0] if dimensions else None,
        "result_height": dimensions[1] if dimensions else None,
        "error_message": str(job.last_error) if job.last_error else None,
        "error_type": type(job.last_error).__name__ if job.last_error else None,
        "created_at": job.created_at.isoformat(),
    }


def _session_view(session: ExportSession) -> dict:
    return {
        "id": session.session_id,
        "source_path": str(session.asset.path) if session.asset else None,
        "source_filename": session.asset.original_filename if session.asset else None,
        "output_format": session.output_format,
        "created_at": session.created_at.isoformat(),
        "finished": session.is_finished,
        "jobs": [_job_view(job) for job in session.jobs],
    }


@router.get("/presets")
async def list_presets():
    """Export presets, in the order they are tried."""
    prefix = settings.preset_prefix
    return [
        {"preset": preset, "name": preset.replace(prefix, "") or preset}
        for preset in PRESET_ORDER
    ]


@router.post("/")
async def start_export(
    request: ExportRequest,
    service: ExportService = Depends(get_export_service),
):
    """
    Export a source video through every preset, one after another.

    Returns the new session with its queued jobs.
    """
    logger.info(f"Export request: {request.source_path}")
    session = await service.start_export(request.source_path, request.output_format)
    return _session_view(session)


@router.get("/")
async def list_sessions(service: ExportService = Depends(get_export_service)):
    """All export sessions, oldest first."""
    return [_session_view(session) for session in service.list_sessions()]


@router.get("/{session_id}")
async def get_session(session_id: str, service: ExportService = Depends(get_export_service)):
    """Get one export session with the live state of its jobs."""
    return _session_view(service.get_session(session_id))


@router.delete("/{session_id}")
async def discard_session(session_id: str, service: ExportService = Depends(get_export_service)):
    """Cancel outstanding jobs and discard the session."""
    cancelled = service.discard_session(session_id)
    return {"status": "success", "cancelled": cancelled}


@router.post("/{session_id}/jobs/{job_id}/cancel")
async def cancel_job(
    session_id: str,
    job_id: str,
    service: ExportService = Depends(get_export_service),
):
    """
    Cancel an export job.
    Waiting jobs are dropped from the queue; the running job is aborted.
    """
    job = service.cancel_job(session_id, job_id)
    return {"status": "success", "job": _job_view(job)}


@router.get("/{session_id}/jobs/{job_id}/file")
async def download_job_file(
    session_id: str,
    job_id: str,
    service: ExportService = Depends(get_export_service),
):
    """Download the exported file of a completed job."""
    job = service.get_job(session_id, job_id)
    if job.status != ExportStatus.COMPLETED:
        raise ConflictError(f"Export is {job.status.value}, no file to download")
    if not job.destination.exists():
        raise NotFoundError("Exported file no longer exists")
    return FileResponse(job.destination, filename=job.destination.name)


@router.get("/{session_id}/report")
async def download_report(
    session_id: str,
    unit: str = "MB",
    service: ExportService = Depends(get_export_service),
):
    """Download the CSV stats table for the session's completed exports."""
    size_unit = _UNITS_BY_LABEL.get(unit.upper())
    if size_unit is None:
        raise ValidationError(f"Unknown size unit '{unit}'. Use one of: {', '.join(_UNITS_BY_LABEL)}")

    path = await service.save_report(session_id, size_unit)
    return FileResponse(path, media_type="text/csv", filename=settings.report_filename)
