"""
Resampling tool port and its ffmpeg implementation.

A tool writes the resampled audio to a private temporary file next to the
source and returns that path; it never touches the source itself. Swapping
the temp file over the source is the pipeline's job.
"""

import os
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol

from loguru import logger

from music_mirror.exceptions import ResampleToolError

# Output codec per container; mp3 has to be re-encoded, the rest stay lossless
CODECS = {
    "flac": "flac",
    "wav": "pcm_s24le",
    "mp3": "libmp3lame",
}


class ResamplingTool(Protocol):
    def run(self, input_path: str, target_sample_rate: int) -> str:
        """Resample input_path into a new temp file and return its path.

        Raises:
            ResampleToolError: If no usable output was produced
        """
        ...


def make_temp_path(input_path: str) -> str:
    """Reserve a hidden temp file beside input_path with the same extension.

    Same directory keeps the later os.replace on one filesystem; the leading
    dot keeps scans from cataloguing it.
    """
    source = Path(input_path)
    fd, temp_path = tempfile.mkstemp(
        dir=source.parent, prefix=f".{source.stem}.", suffix=source.suffix
    )
    os.close(fd)
    return temp_path


def discard(temp_path: str) -> None:
    """Remove a temp file if it is still there."""
    try:
        os.remove(temp_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temp file {temp_path}: {e}")


class FfmpegResampler:
    """Resample with a pre-provisioned ffmpeg binary."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", timeout_seconds: int = 600):
        self.ffmpeg_path = ffmpeg_path
        self.timeout_seconds = timeout_seconds

    def build_command(self, input_path: str, output_path: str, target_sample_rate: int) -> list[str]:
        file_type = Path(input_path).suffix.lower().lstrip(".")
        codec = CODECS.get(file_type)
        if codec is None:
            raise ResampleToolError(f"No output codec for .{file_type} files")

        command = [self.ffmpeg_path, "-y", "-i", input_path, "-map_metadata", "0"]
        if file_type == "wav":
            command += ["-map", "0:a"]
        else:
            # Keep embedded cover art
            command += ["-map", "0:a", "-map", "0:v?", "-c:v", "copy"]
        command += [
            "-ar",
            str(target_sample_rate),
            "-c:a",
            codec,
            output_path,
            "-loglevel",
            "error",
        ]
        return command

    def run(self, input_path: str, target_sample_rate: int) -> str:
        temp_path = make_temp_path(input_path)
        try:
            command = self.build_command(input_path, temp_path, target_sample_rate)
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except ResampleToolError:
            discard(temp_path)
            raise
        except subprocess.TimeoutExpired as e:
            discard(temp_path)
            raise ResampleToolError(
                f"ffmpeg timed out after {self.timeout_seconds}s on {input_path}"
            ) from e
        except OSError as e:
            discard(temp_path)
            raise ResampleToolError(f"Could not start {self.ffmpeg_path}: {e}") from e

        if result.returncode != 0:
            discard(temp_path)
            error = (result.stderr or "").strip()[-500:]
            raise ResampleToolError(
                f"ffmpeg exited with {result.returncode} on {input_path}: {error}"
            )

        if os.path.getsize(temp_path) == 0:
            discard(temp_path)
            raise ResampleToolError(f"ffmpeg produced empty output for {input_path}")

        return temp_path
