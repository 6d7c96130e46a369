"""
Music library domain models.

Contains the data structures the scanner produces: per-file metadata,
typed extraction failures and the snapshot of a whole media root.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, NamedTuple, Optional

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"


class TrackMetadata(NamedTuple):
    """Everything the catalog needs to know about one audio file.

    duration is whole seconds (rounded down) and file_size comes from the
    filesystem, never from tags.
    """
    file_path: str  # Normalized absolute path
    title: str
    artist: str
    album: str
    year: Optional[int]
    duration: int
    sample_rate: Optional[int]  # Hz
    file_size: int
    file_type: str  # Lowercase extension without the dot, e.g. "flac"


class ExtractionErrorKind(Enum):
    UNREADABLE = "unreadable"
    UNSUPPORTED_FORMAT = "unsupported_format"
    CORRUPT = "corrupt"


class ExtractionError(NamedTuple):
    """Returned (not raised) when no parser could describe a file."""
    file_path: str
    kind: ExtractionErrorKind
    detail: str = ""


class SkipReason(str, Enum):
    """Reason codes attached to every path the scanner could not catalog."""
    PERMISSION_DENIED = "permission_denied"
    UNREADABLE_DIRECTORY = "unreadable_directory"
    UNREADABLE = "unreadable"
    UNSUPPORTED_FORMAT = "unsupported_format"
    CORRUPT = "corrupt"
    EXTRACTOR_CRASHED = "extractor_crashed"
    CANCELLED = "cancelled"


class SkipRecord(NamedTuple):
    file_path: str
    reason: SkipReason
    detail: str = ""
    is_directory: bool = False


@dataclass
class Snapshot:
    """Order-independent view of what the media root currently holds."""

    root: str
    tracks: Dict[str, TrackMetadata] = field(default_factory=dict)
    skipped: Dict[str, SkipRecord] = field(default_factory=dict)
    ignored: int = 0  # Files rejected by the extension allow-list
    cancelled: bool = False

    def add_skip(
        self,
        file_path: str,
        reason: SkipReason,
        detail: str = "",
        is_directory: bool = False,
    ) -> None:
        self.skipped[file_path] = SkipRecord(file_path, reason, detail, is_directory)

    def is_unobservable(self, file_path: str) -> bool:
        """True when a path was skipped or sits under a directory that was.

        Catalog rows for such paths are kept as-is since the scan could not
        tell whether the file still exists.
        """
        if file_path in self.skipped:
            return True
        for record in self.skipped.values():
            if record.is_directory and file_path.startswith(record.file_path + "/"):
                return True
        return False
