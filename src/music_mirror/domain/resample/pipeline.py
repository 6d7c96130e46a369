"""
Batch resampling of tracks above the playback threshold.

Each file is resampled into a temp file by the tool and then swapped over
the original with os.replace, so readers see either the old bytes or the
new ones. One file failing is recorded and the batch moves on; the file
stays above the threshold and comes back as a candidate next sync.
"""

import functools
import os
import shutil
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from loguru import logger

from music_mirror.core.config import Config
from music_mirror.core.workers import BoundedWorkerPool
from music_mirror.exceptions import ResampleToolError

from .executor import ResamplingTool, discard

SKIP_NO_SAMPLE_RATE = "no_sample_rate"
SKIP_BELOW_THRESHOLD = "below_threshold"
SKIP_MISSING_FILE = "missing_file"
SKIP_CANCELLED = "cancelled"


class Status(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class FileOutcome(NamedTuple):
    file_path: str
    status: Status
    reason: str = ""
    target_sample_rate: Optional[int] = None


@dataclass
class RunReport:
    """Per-file outcomes of one resample batch, keyed by path."""

    outcomes: Dict[str, FileOutcome] = field(default_factory=dict)

    def record(self, outcome: FileOutcome) -> None:
        self.outcomes[outcome.file_path] = outcome

    def _with_status(self, status: Status) -> List[FileOutcome]:
        return sorted(
            (o for o in self.outcomes.values() if o.status == status),
            key=lambda o: o.file_path,
        )

    @property
    def succeeded(self) -> List[FileOutcome]:
        return self._with_status(Status.SUCCEEDED)

    @property
    def failed(self) -> List[FileOutcome]:
        return self._with_status(Status.FAILED)

    @property
    def skipped(self) -> List[FileOutcome]:
        return self._with_status(Status.SKIPPED)


def resample_file(candidate, tool: ResamplingTool, config: Config) -> FileOutcome:
    """Resample one file in place. Never raises for per-file problems."""
    source = candidate.file_path
    target = config.resample.target_rate_for(candidate.file_type)

    if not os.path.isfile(source):
        return FileOutcome(source, Status.SKIPPED, SKIP_MISSING_FILE)

    try:
        temp_path = tool.run(source, target)
    except ResampleToolError as e:
        logger.warning(f"Resample failed for {source}: {e}")
        return FileOutcome(source, Status.FAILED, str(e), target)

    try:
        shutil.copymode(source, temp_path)
        os.replace(temp_path, source)
    except OSError as e:
        discard(temp_path)
        logger.warning(f"Could not replace {source} with resampled output: {e}")
        return FileOutcome(source, Status.FAILED, f"replace failed: {e}", target)

    logger.info(f"Resampled {source}: {candidate.sample_rate} Hz -> {target} Hz")
    return FileOutcome(source, Status.SUCCEEDED, "", target)


def resample_all(
    candidates: Iterable,
    tool: ResamplingTool,
    config: Config,
    cancel_event: Optional[threading.Event] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> RunReport:
    """Resample every candidate above the playback threshold.

    Args:
        candidates: Objects with file_path, file_type and sample_rate
        tool: Resampling tool (ffmpeg, or a test double)
        config: Supplies threshold, target rates and the pool size
        cancel_event: Set it to stop dispatching; in-flight files finish
        progress_callback: Optional callback(completed, total) on the caller's thread

    Returns:
        RunReport with one outcome per candidate
    """
    threshold = config.resample.playback_threshold_hz
    report = RunReport()
    jobs = []

    for candidate in sorted(candidates, key=lambda c: c.file_path):
        if candidate.sample_rate is None:
            report.record(FileOutcome(candidate.file_path, Status.SKIPPED, SKIP_NO_SAMPLE_RATE))
        elif candidate.sample_rate <= threshold:
            report.record(FileOutcome(candidate.file_path, Status.SKIPPED, SKIP_BELOW_THRESHOLD))
        else:
            jobs.append(candidate)

    if not jobs:
        return report

    pool = BoundedWorkerPool(
        functools.partial(resample_file, tool=tool, config=config),
        workers=config.resample.workers,
        queue_depth=config.resample.queue_depth,
        cancel_event=cancel_event,
        name="resample",
    )

    logger.info(f"Resampling {len(jobs)} files with {pool.workers} workers")
    completed = 0
    for outcome in pool.run(jobs):
        candidate = outcome.item
        if outcome.cancelled:
            report.record(FileOutcome(candidate.file_path, Status.SKIPPED, SKIP_CANCELLED))
        elif outcome.error is not None:
            report.record(
                FileOutcome(
                    candidate.file_path,
                    Status.FAILED,
                    f"{type(outcome.error).__name__}: {outcome.error}",
                )
            )
        else:
            report.record(outcome.result)
        completed += 1
        if progress_callback:
            progress_callback(completed, len(jobs))

    # Never dispatched because the batch was cancelled
    for candidate in jobs:
        if candidate.file_path not in report.outcomes:
            report.record(FileOutcome(candidate.file_path, Status.SKIPPED, SKIP_CANCELLED))

    logger.info(
        f"Resample batch done: {len(report.succeeded)} succeeded, "
        f"{len(report.failed)} failed, {len(report.skipped)} skipped"
    )
    return report
