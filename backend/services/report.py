"""
Export report: one row per completed export, rendered as CSV.
"""

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List

import aiofiles

from models.export_job import ExportJob, ExportStatus

logger = logging.getLogger(__name__)


class SizeUnit(enum.Enum):
    """Units for reporting file sizes (binary multiples)."""
    BYTES = 1
    KILOBYTES = 1024
    MEGABYTES = 1024 ** 2
    GIGABYTES = 1024 ** 3

    @property
    def label(self) -> str:
        return {"BYTES": "B", "KILOBYTES": "KB", "MEGABYTES": "MB", "GIGABYTES": "GB"}[self.name]

    def convert(self, byte_count: int) -> float:
        return byte_count / self.value


@dataclass(frozen=True)
class ReportRow:
    """Outcome of one completed export."""
    preset: str
    display_name: str
    width: int
    height: int
    size: float
    time_to_export: float
    unit: SizeUnit = SizeUnit.MEGABYTES


def build_report_rows(jobs: Iterable[ExportJob], unit: SizeUnit = SizeUnit.MEGABYTES) -> List[ReportRow]:
    """Rows for completed jobs, in job order. Anything else is left out."""
    rows = []
    for job in jobs:
        if job.status != ExportStatus.COMPLETED:
            continue
        width, height = job.result_pixel_dimensions
        rows.append(ReportRow(
            preset=job.preset,
            display_name=job.display_name,
            width=width,
            height=height,
            size=unit.convert(job.result_byte_size),
            time_to_export=job.time_to_export,
            unit=unit,
        ))
    return rows


def render_csv(rows: Iterable[ReportRow], unit: SizeUnit = SizeUnit.MEGABYTES) -> str:
    """Render rows as the comma-separated stats table."""
    lines = [f"Preset, Width (px), Height (px), Size ({unit.label}), Time (s)"]
    for row in rows:
        lines.append(", ".join([
            row.display_name,
            str(row.width),
            str(row.height),
            str(round(row.size, 4)),
            str(round(row.time_to_export, 3)),
        ]))
    return "\n".join(lines) + "\n"


async def write_report(
    rows: List[ReportRow],
    path: Path,
    unit: SizeUnit = SizeUnit.MEGABYTES,
) -> Path:
    """Write the CSV report to *path* and return it."""
    text = render_csv(rows, unit)
    async with aiofiles.open(path, "w", encoding="utf-8") as out_file:
        await out_file.write(text)
    logger.info(f"Saved export report: {path} ({len(rows)} rows)")
    return Path(path)
