"""
Media root scanning.

Walks the media root without following symlinks, hands every audio file
to a bounded pool of extraction workers and folds the results into a
Snapshot keyed by normalized path. Unreadable directories and files are
recorded as skips; only an unusable root aborts the scan.
"""

import functools
import os
import threading
from pathlib import Path
from typing import Callable, Iterator, Optional

from loguru import logger

from music_mirror.core.config import Config
from music_mirror.core.workers import BoundedWorkerPool
from music_mirror.exceptions import ScanRootError

from .identity import normalize_path
from .metadata import extract
from .models import (
    ExtractionError,
    ExtractionErrorKind,
    SkipReason,
    SkipRecord,
    Snapshot,
    TrackMetadata,
)

Extractor = Callable[..., "TrackMetadata | ExtractionError"]
ProgressCallback = Callable[[int, Optional[str]], None]

_KIND_TO_REASON = {
    ExtractionErrorKind.UNREADABLE: SkipReason.UNREADABLE,
    ExtractionErrorKind.UNSUPPORTED_FORMAT: SkipReason.UNSUPPORTED_FORMAT,
    ExtractionErrorKind.CORRUPT: SkipReason.CORRUPT,
}


def is_supported_format(local_path: str, supported_formats: list[str]) -> bool:
    """Check if file format is supported."""
    return os.path.splitext(local_path)[1].lower() in supported_formats


class _TreeWalker:
    """Lazy directory walk, run on the pool's feeder thread.

    skipped/ignored are only read by the caller once the pool has finished.
    """

    def __init__(self, supported_formats: list[str], skip_hidden: bool):
        self.supported_formats = [f.lower() for f in supported_formats]
        self.skip_hidden = skip_hidden
        self.skipped: list[SkipRecord] = []
        self.ignored = 0

    def _skip_dir(self, directory: str, error: OSError) -> None:
        reason = (
            SkipReason.PERMISSION_DENIED
            if isinstance(error, PermissionError)
            else SkipReason.UNREADABLE_DIRECTORY
        )
        logger.warning(f"Skipping directory {directory}: {error}")
        self.skipped.append(
            SkipRecord(normalize_path(directory), reason, str(error), is_directory=True)
        )

    def walk(self, directory: str) -> Iterator[str]:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            self._skip_dir(directory, e)
            return

        for entry in entries:
            if self.skip_hidden and entry.name.startswith("."):
                continue
            try:
                if entry.is_symlink():
                    logger.debug(f"Skipping symlink {entry.path}")
                    continue
                if entry.is_dir(follow_symlinks=False):
                    yield from self.walk(entry.path)
                    continue
                if not entry.is_file(follow_symlinks=False):
                    continue
            except OSError as e:
                # Entry vanished between listing and stat
                logger.warning(f"Skipping {entry.path}: {e}")
                self.skipped.append(
                    SkipRecord(normalize_path(entry.path), SkipReason.UNREADABLE, str(e))
                )
                continue

            if is_supported_format(entry.name, self.supported_formats):
                yield entry.path
            else:
                self.ignored += 1


def check_root(root: str) -> str:
    """Resolve the media root, failing the whole scan if it is unusable.

    Raises:
        ScanRootError: If the root is missing, not a directory or unlistable
    """
    path = Path(root).expanduser()
    if not path.exists():
        raise ScanRootError(f"Media root does not exist: {path}")
    if not path.is_dir():
        raise ScanRootError(f"Media root is not a directory: {path}")
    try:
        with os.scandir(path):
            pass
    except OSError as e:
        raise ScanRootError(f"Media root is not readable: {path}: {e}") from e
    return os.path.abspath(path)


def scan(
    root: str,
    config: Config,
    extractor: Extractor = extract,
    cancel_event: Optional[threading.Event] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> Snapshot:
    """Scan a media root and extract metadata from every audio file.

    Args:
        root: Media root directory
        config: Configuration object
        extractor: Called as extractor(path, root=..., contributor_dirs=...)
        cancel_event: Set it to stop dispatching files; in-flight files finish
        progress_callback: Optional callback(files_done, current_path)

    Returns:
        Snapshot of every successfully extracted track plus skip records

    Raises:
        ScanRootError: If the root itself is missing or unreadable
    """
    root = check_root(root)
    snapshot = Snapshot(root=normalize_path(root))
    walker = _TreeWalker(config.music.supported_formats, config.music.skip_hidden)
    cancel_event = cancel_event or threading.Event()

    worker_fn = functools.partial(
        extractor,
        root=root,
        contributor_dirs=tuple(config.contributors.paths.values()),
    )
    pool = BoundedWorkerPool(
        worker_fn,
        workers=config.scan.effective_workers(),
        queue_depth=config.scan.queue_depth,
        cancel_event=cancel_event,
        name="scan",
    )

    logger.info(f"Scanning {root} with {pool.workers} workers")
    done = 0
    for outcome in pool.run(walker.walk(root)):
        local_path = outcome.item
        done += 1
        if outcome.cancelled:
            snapshot.add_skip(normalize_path(local_path), SkipReason.CANCELLED)
        elif outcome.error is not None:
            snapshot.add_skip(
                normalize_path(local_path),
                SkipReason.EXTRACTOR_CRASHED,
                f"{type(outcome.error).__name__}: {outcome.error}",
            )
        elif isinstance(outcome.result, ExtractionError):
            error = outcome.result
            snapshot.add_skip(error.file_path, _KIND_TO_REASON[error.kind], error.detail)
        else:
            track: TrackMetadata = outcome.result
            snapshot.tracks[track.file_path] = track

        if progress_callback:
            progress_callback(done, local_path)

    for record in walker.skipped:
        snapshot.skipped[record.file_path] = record
    snapshot.ignored = walker.ignored
    snapshot.cancelled = cancel_event.is_set()

    logger.info(
        f"Scan of {root} complete: {len(snapshot.tracks)} tracks, "
        f"{len(snapshot.skipped)} skipped, {snapshot.ignored} ignored"
        + (" (cancelled)" if snapshot.cancelled else "")
    )
    return snapshot
