"""
Destination path allocation for exported files.
Every export gets its own freshly created folder so file names never collide.
"""

import logging
import uuid
from pathlib import Path
from typing import Optional

from config import settings
from utils.exceptions import DestinationUnallocatable

logger = logging.getLogger(__name__)


def allocate_destination(filename: str, base_dir: Optional[Path] = None) -> Path:
    """
    Create a unique folder under the export directory and return the path
    of *filename* inside it. The file itself is not created.

    Raises:
        DestinationUnallocatable: If the folder cannot be created.
    """
    if not filename:
        raise ValueError("filename cannot be empty")

    root = Path(base_dir or settings.export_dir)
    folder = root / uuid.uuid4().hex
    try:
        folder.mkdir(parents=True, exist_ok=False)
    except OSError as e:
        logger.warning(f"Could not create export folder {folder}: {e}")
        raise DestinationUnallocatable(f"Could not create export folder: {e}") from e

    return folder / Path(filename).name
