"""
Export presets and ffmpeg command construction.

Presets are listed in priority order, from the highest fidelity (stream
copy) down to progressively smaller resolutions. An export session tries
every one of them, in this order.

Keeping command construction separate means the exact command can be
logged before it runs and flag generation can be tested without ffmpeg.
"""

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from utils.exceptions import ValidationError

PRESET_PASSTHROUGH = "ExportPresetPassthrough"
PRESET_HIGHEST_QUALITY = "ExportPresetHighestQuality"
PRESET_MEDIUM_QUALITY = "ExportPresetMediumQuality"
PRESET_LOW_QUALITY = "ExportPresetLowQuality"
PRESET_1920x1080 = "ExportPreset1920x1080"
PRESET_1280x720 = "ExportPreset1280x720"
PRESET_960x540 = "ExportPreset960x540"

_AAC = ("-c:a", "aac", "-b:a", "128k")


def _fit_within(width: int, height: int) -> Tuple[str, ...]:
    """Scale down (never up) to fit the box, keeping aspect ratio and even sizes."""
    return (
        "-vf",
        f"scale=w='min({width},iw)':h='min({height},ih)'"
        ":force_original_aspect_ratio=decrease:force_divisible_by=2",
    )


def _h264(crf: int, speed: str = "medium") -> Tuple[str, ...]:
    return ("-c:v", "libx264", "-preset", speed, "-crf", str(crf), "-pix_fmt", "yuv420p")


@dataclass(frozen=True)
class ExportPreset:
    """A named set of ffmpeg output flags."""
    name: str
    video_args: Tuple[str, ...]
    audio_args: Tuple[str, ...] = _AAC


EXPORT_PRESETS: List[ExportPreset] = [
    ExportPreset(PRESET_PASSTHROUGH, ("-map", "0", "-c", "copy"), ()),
    ExportPreset(PRESET_HIGHEST_QUALITY, _h264(18, "slow")),
    ExportPreset(PRESET_MEDIUM_QUALITY, _h264(23)),
    ExportPreset(PRESET_LOW_QUALITY, _h264(30, "fast") + _fit_within(640, 480)),
    ExportPreset(PRESET_1920x1080, _h264(20) + _fit_within(1920, 1080)),
    ExportPreset(PRESET_1280x720, _h264(21) + _fit_within(1280, 720)),
    ExportPreset(PRESET_960x540, _h264(22) + _fit_within(960, 540)),
]

PRESET_ORDER: List[str] = [p.name for p in EXPORT_PRESETS]

_PRESETS_BY_NAME = {p.name: p for p in EXPORT_PRESETS}

# Output format identifier -> ffmpeg muxer
MUXERS = {
    "mp4": "mp4",
    "m4v": "mp4",
    "mov": "mov",
    "qt": "mov",
    "mkv": "matroska",
    "webm": "webm",
    "avi": "avi",
}

# Muxers that can move the index up front for progressive playback
_FASTSTART_MUXERS = {"mp4", "mov"}


def get_preset(name: str) -> ExportPreset:
    """Look up a preset by identifier."""
    try:
        return _PRESETS_BY_NAME[name]
    except KeyError:
        raise ValidationError(f"Unknown export preset: {name}")


def build_export_command(
    ffmpeg_path: str,
    source: Path,
    destination: Path,
    preset: str,
    output_format: Optional[str] = None,
) -> List[str]:
    """
    Build the full ffmpeg command for exporting *source* with *preset*.

    Progress is written as key=value lines on stdout (-progress pipe:1);
    stderr only carries errors.
    """
    export_preset = get_preset(preset)

    cmd = [
        ffmpeg_path,
        "-hide_banner",
        "-i", str(source),
        "-nostats",
        "-progress", "pipe:1",
        "-loglevel", "error",
        *export_preset.video_args,
        *export_preset.audio_args,
    ]

    muxer = MUXERS.get((output_format or "").lower())
    if muxer:
        cmd.extend(["-f", muxer])
        if muxer in _FASTSTART_MUXERS:
            cmd.extend(["-movflags", "+faststart"])

    cmd.extend(["-y", str(destination)])
    return cmd


def command_as_string(cmd: List[str]) -> str:
    """Human-readable version of the command for logging."""
    return shlex.join(cmd)
