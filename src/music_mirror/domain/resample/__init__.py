"""Resample domain - bringing tracks down to a browser-playable sample rate."""

from .executor import FfmpegResampler, ResamplingTool
from .pipeline import FileOutcome, RunReport, Status, resample_all, resample_file

__all__ = [
    "FfmpegResampler",
    "ResamplingTool",
    "FileOutcome",
    "RunReport",
    "Status",
    "resample_all",
    "resample_file",
]
