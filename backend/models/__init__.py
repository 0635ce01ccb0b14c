"""
Export models package.
"""

from models.asset import SourceAsset
from models.export_job import ExportJob, ExportStatus, STATUS_LABELS

__all__ = [
    "SourceAsset",
    "ExportJob",
    "ExportStatus",
    "STATUS_LABELS",
]
