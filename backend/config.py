"""
Application configuration management.
Centralizes all configuration settings for the export service.
"""

import os
import sys
import shutil
from pathlib import Path
from pydantic_settings import BaseSettings


def get_app_data_dir() -> Path:
    """Get persistent application data directory."""
    if getattr(sys, 'frozen', False):
        # Production: %APPDATA%/VideoExporter
        app_data = Path(os.getenv('APPDATA', os.path.expanduser('~'))) / "VideoExporter"
        app_data.mkdir(parents=True, exist_ok=True)
        return app_data
    # Development: Project root
    return Path(__file__).parent


def _detect_ffprobe(ffmpeg_path: str) -> str:
    """Find ffprobe on PATH, else next to the configured ffmpeg binary."""
    found = shutil.which("ffprobe")
    if found:
        return found
    if ffmpeg_path:
        sibling = Path(ffmpeg_path).with_name(Path(ffmpeg_path).name.replace("ffmpeg", "ffprobe"))
        if sibling.exists():
            return str(sibling)
    return "ffprobe"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Video Exporter"
    debug: bool = False

    # Paths
    base_dir: Path = get_app_data_dir()
    export_dir: Path = base_dir / "exports"

    # FFmpeg auto-detection with fallback
    ffmpeg_path: str = shutil.which("ffmpeg") or os.getenv("FFMPEG_PATH", "ffmpeg")
    ffprobe_path: str = _detect_ffprobe(shutil.which("ffmpeg") or os.getenv("FFMPEG_PATH", ""))

    # Export queue
    progress_interval_seconds: float = 1.0
    preset_prefix: str = "ExportPreset"
    report_filename: str = "Video Transcoding Stats.csv"

    # Server
    host: str = "127.0.0.1"
    port: int = 8081
    cors_origins: list[str] = ["*"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
