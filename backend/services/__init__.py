"""
Services package.
"""

from services.export_session import ExportSession
from services.export_service import ExportService
from services.report import ReportRow, SizeUnit, render_csv

__all__ = ["ExportSession", "ExportService", "ReportRow", "SizeUnit", "render_csv"]
