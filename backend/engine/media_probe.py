"""
Media probes: pixel dimensions, byte size and type detection for files.

FfprobeMediaProbe wraps the ffprobe CLI. Every query is side-effect free
and reports "unknown" as None instead of raising.
"""

import json
import logging
import mimetypes
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Tuple

from config import settings

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"

# Not every platform's mime table knows these
for _mime, _ext in (
    ("video/x-matroska", ".mkv"),
    ("video/webm", ".webm"),
    ("video/mp4", ".m4v"),
    ("image/heic", ".heic"),
):
    mimetypes.add_type(_mime, _ext)


class MediaProbe(ABC):
    """Read-only metadata queries on a file path."""

    @abstractmethod
    def dimensions(self, path: Path) -> Optional[Tuple[int, int]]:
        """Display (width, height) in pixels, or None if unknown."""

    @abstractmethod
    def byte_size(self, path: Path) -> Optional[int]:
        """File size in bytes, or None if the file cannot be read."""

    def mime_type(self, path: Path) -> str:
        mime, _ = mimetypes.guess_type(str(path))
        return mime or DEFAULT_MIME_TYPE

    def is_video(self, path: Path) -> bool:
        return self.mime_type(path).startswith("video/")

    def is_image(self, path: Path) -> bool:
        return self.mime_type(path).startswith("image/")


class FfprobeMediaProbe(MediaProbe):
    """MediaProbe backed by ffprobe JSON output."""

    def __init__(self, ffprobe_path: Optional[str] = None):
        self.ffprobe_path = ffprobe_path or settings.ffprobe_path

    def byte_size(self, path: Path) -> Optional[int]:
        try:
            return Path(path).stat().st_size
        except OSError as e:
            logger.warning(f"Could not stat {path}: {e}")
            return None

    def dimensions(self, path: Path) -> Optional[Tuple[int, int]]:
        path = Path(path)
        if not path.is_file():
            return None
        if not (self.is_video(path) or self.is_image(path)):
            logger.debug(f"Not a video or image, no dimensions: {path}")
            return None

        data = self._run_ffprobe(path)
        if data is None:
            return None
        return parse_dimensions(data)

    def _run_ffprobe(self, path: Path) -> Optional[dict]:
        """Execute ffprobe and return parsed JSON output."""
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height:stream_tags=rotate:stream_side_data=rotation",
            "-print_format", "json",
            str(path),
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
            return json.loads(result.stdout or "{}")
        except FileNotFoundError:
            logger.error(f"ffprobe not found at {self.ffprobe_path}")
        except subprocess.CalledProcessError as e:
            logger.warning(f"ffprobe failed on {path.name}: {e.stderr.strip()}")
        except json.JSONDecodeError as e:
            logger.warning(f"ffprobe returned invalid JSON for {path.name}: {e}")
        return None


def parse_dimensions(data: dict) -> Optional[Tuple[int, int]]:
    """
    Extract display dimensions from ffprobe stream JSON.

    Width and height are swapped for streams rotated by 90 or 270 degrees,
    so portrait phone footage reports its upright size.
    """
    streams = data.get("streams") or []
    if not streams:
        return None

    stream = streams[0]
    width = int(stream.get("width") or 0)
    height = int(stream.get("height") or 0)
    if width <= 0 or height <= 0:
        return None

    if _rotation(stream) % 180 == 90:
        width, height = height, width
    return width, height


def _rotation(stream: dict) -> int:
    for side_data in stream.get("side_data_list") or []:
        if "rotation" in side_data:
            try:
                return abs(int(float(side_data["rotation"])))
            except (TypeError, ValueError):
                return 0
    try:
        return abs(int((stream.get("tags") or {}).get("rotate", 0)))
    except (TypeError, ValueError):
        return 0
