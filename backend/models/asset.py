"""
Source asset model.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class SourceAsset:
    """A picked source video on local storage."""
    path: Path

    @classmethod
    def from_path(cls, path) -> "SourceAsset":
        return cls(path=Path(path).expanduser().resolve())

    @property
    def original_filename(self) -> str:
        return self.path.name

    @property
    def format(self) -> Optional[str]:
        """Container format identifier, e.g. 'mov' (None when there is no suffix)."""
        suffix = self.path.suffix.lower().lstrip(".")
        return suffix or None
