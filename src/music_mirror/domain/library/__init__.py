"""Library domain - audio file scanning and metadata.

This domain handles:
- Deterministic identity for artists, albums and tracks
- Metadata extraction from audio files
- Concurrent media root scanning
"""

# Models
from .models import (
    ExtractionError,
    ExtractionErrorKind,
    SkipReason,
    SkipRecord,
    Snapshot,
    TrackMetadata,
)

# Identity
from .identity import (
    album_id,
    artist_id,
    derive_id,
    normalize,
    normalize_path,
    track_id,
)

# Metadata extraction
from .metadata import extract

# Scanning
from .scanner import check_root, is_supported_format, scan

__all__ = [
    "ExtractionError",
    "ExtractionErrorKind",
    "SkipReason",
    "SkipRecord",
    "Snapshot",
    "TrackMetadata",
    "album_id",
    "artist_id",
    "derive_id",
    "normalize",
    "normalize_path",
    "track_id",
    "extract",
    "check_root",
    "is_supported_format",
    "scan",
]
