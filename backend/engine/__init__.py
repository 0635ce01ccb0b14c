"""
Engine package for export processing.
Contains the single-worker job queue and the transcoder/probe seams it drives.
"""

from engine.transcoder import Transcoder, TranscodeHandle, TranscodeOutcome, TranscodeState
from engine.job_queue import JobQueue
from engine.progress_watcher import ProgressWatcher
from engine.media_probe import MediaProbe, FfprobeMediaProbe
from engine.ffmpeg_transcoder import FfmpegTranscoder

__all__ = [
    "Transcoder",
    "TranscodeHandle",
    "TranscodeOutcome",
    "TranscodeState",
    "JobQueue",
    "ProgressWatcher",
    "MediaProbe",
    "FfprobeMediaProbe",
    "FfmpegTranscoder",
]
