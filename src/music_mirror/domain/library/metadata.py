"""
Audio metadata extraction.

Reads tags and stream info with Mutagen, falls back to ffprobe (through
pydub) when Mutagen cannot parse a file, and fills missing tags from the
file name and folder layout. extract() never raises: a file nobody can
parse comes back as an ExtractionError value.
"""

import os
import re
from pathlib import Path
from typing import Any, Iterable, NamedTuple, Optional

from loguru import logger
from mutagen import File as MutagenFile
from mutagen import MutagenError
from pydub.utils import mediainfo

from .identity import normalize_path
from .models import (
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    ExtractionError,
    ExtractionErrorKind,
    TrackMetadata,
)

_YEAR_RE = re.compile(r"(\d{4})")
_DIR_YEAR_RE = re.compile(r"^(?P<name>.*?)\s*[\(\[](?P<year>\d{4})[\)\]]\s*$")

TITLE_TAGS = ["TIT2", "\xa9nam", "TITLE", "title"]
ARTIST_TAGS = ["TPE1", "\xa9ART", "ARTIST", "artist"]
ALBUM_TAGS = ["TALB", "\xa9alb", "ALBUM", "album"]
YEAR_TAGS = ["TDRC", "TYER", "\xa9day", "DATE", "YEAR", "date", "year"]


class _Probe(NamedTuple):
    """What a parser managed to read, before fallbacks are applied."""
    title: Optional[str]
    artist: Optional[str]
    album: Optional[str]
    year: Optional[int]
    duration: Optional[float]
    sample_rate: Optional[int]


class _ProbeFailure(NamedTuple):
    kind: ExtractionErrorKind
    detail: str


def get_tag_value(audio_file: Any, tag_names: list[str]) -> Optional[str]:
    """Get tag value, trying multiple possible tag names."""
    for tag_name in tag_names:
        try:
            value = audio_file.get(tag_name)
            if value:
                # Handle different formats
                if isinstance(value, list) and value:
                    value = value[0]
                text = str(value).strip()
                if text:
                    return text
        except (KeyError, ValueError):
            # Some formats (like Vorbis) raise ValueError for non-existent keys
            continue
    return None


def parse_year(value: Optional[str]) -> Optional[int]:
    """First four-digit group of a date tag ("2001-05-02" -> 2001)."""
    if not value:
        return None
    match = _YEAR_RE.search(value)
    if not match:
        return None
    year = int(match.group(1))
    return year if year > 0 else None


def split_album_dir(dir_name: str) -> tuple[str, Optional[int]]:
    """Split "Album X (2001)" into ("Album X", 2001)."""
    match = _DIR_YEAR_RE.match(dir_name)
    if match and match.group("name").strip():
        return match.group("name").strip(), int(match.group("year"))
    return dir_name, None


def extract_metadata_from_filename(local_path: str) -> dict[str, Optional[str]]:
    """Extract basic info from filename as fallback."""
    title = Path(local_path).stem
    artist = None

    # Try to parse "Artist - Title" format
    if " - " in title:
        parts = title.split(" - ", 1)
        if parts[0].strip() and parts[1].strip():
            artist = parts[0].strip()
            title = parts[1].strip()

    return {"title": title, "artist": artist}


def extract_metadata_from_layout(
    local_path: str, root: Optional[str], contributor_dirs: Iterable[str] = ()
) -> dict[str, Any]:
    """Guess artist/album/year from an Artist/Album (Year)/file layout.

    The contributor folder directly under the root is not part of the layout.
    A file needs at least two folders below that point before either is used.
    """
    layout: dict[str, Any] = {"artist": None, "album": None, "year": None}
    if not root:
        return layout
    try:
        relative = Path(local_path).relative_to(root)
    except ValueError:
        return layout

    folders = list(relative.parts[:-1])
    skip = {d.casefold() for d in contributor_dirs}
    if folders and folders[0].casefold() in skip:
        folders = folders[1:]

    if len(folders) >= 2:
        layout["album"], layout["year"] = split_album_dir(folders[-1])
        layout["artist"] = folders[-2]
    return layout


def _read_with_mutagen(local_path: str) -> _Probe | _ProbeFailure:
    try:
        audio_file = MutagenFile(local_path)
    except MutagenError as e:
        return _ProbeFailure(ExtractionErrorKind.CORRUPT, f"mutagen: {e}")
    except Exception as e:
        # Truncated files surface as struct/index errors from the parsers
        return _ProbeFailure(
            ExtractionErrorKind.CORRUPT, f"mutagen: {type(e).__name__}: {e}"
        )

    if audio_file is None:
        return _ProbeFailure(
            ExtractionErrorKind.UNSUPPORTED_FORMAT, "mutagen: unrecognized container"
        )

    info = getattr(audio_file, "info", None)
    length = getattr(info, "length", None)
    sample_rate = getattr(info, "sample_rate", None)
    if info is None or (not length and not sample_rate):
        return _ProbeFailure(ExtractionErrorKind.CORRUPT, "mutagen: no stream info")

    return _Probe(
        title=get_tag_value(audio_file, TITLE_TAGS),
        artist=get_tag_value(audio_file, ARTIST_TAGS),
        album=get_tag_value(audio_file, ALBUM_TAGS),
        year=parse_year(get_tag_value(audio_file, YEAR_TAGS)),
        duration=length,
        sample_rate=int(sample_rate) if sample_rate else None,
    )


def _to_number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _read_with_ffprobe(local_path: str) -> _Probe | _ProbeFailure:
    try:
        info = mediainfo(local_path)
    except OSError as e:
        # ffprobe missing from PATH
        return _ProbeFailure(ExtractionErrorKind.UNSUPPORTED_FORMAT, f"ffprobe: {e}")
    except Exception as e:
        return _ProbeFailure(
            ExtractionErrorKind.CORRUPT, f"ffprobe: {type(e).__name__}: {e}"
        )

    sample_rate = _to_number(info.get("sample_rate"))
    duration = _to_number(info.get("duration"))
    if not info.get("format_name"):
        return _ProbeFailure(
            ExtractionErrorKind.UNSUPPORTED_FORMAT, "ffprobe: unrecognized container"
        )
    if info.get("codec_type") not in (None, "audio") and sample_rate is None:
        return _ProbeFailure(ExtractionErrorKind.CORRUPT, "ffprobe: no audio stream")
    if sample_rate is None and duration is None:
        return _ProbeFailure(ExtractionErrorKind.CORRUPT, "ffprobe: no stream info")

    tags = {k.lower(): v for k, v in (info.get("TAG") or {}).items()}
    return _Probe(
        title=get_tag_value(tags, ["title"]),
        artist=get_tag_value(tags, ["artist"]),
        album=get_tag_value(tags, ["album"]),
        year=parse_year(get_tag_value(tags, ["date", "year"])),
        duration=duration,
        sample_rate=int(sample_rate) if sample_rate else None,
    )


def _worse(a: _ProbeFailure, b: _ProbeFailure) -> _ProbeFailure:
    """A parser that recognized the container outranks one that did not."""
    if b.kind == ExtractionErrorKind.CORRUPT and a.kind != ExtractionErrorKind.CORRUPT:
        return b
    return a


def extract(
    local_path: str | os.PathLike,
    root: Optional[str] = None,
    contributor_dirs: Iterable[str] = (),
) -> TrackMetadata | ExtractionError:
    """Describe one audio file.

    Args:
        local_path: File to read
        root: Media root, enables the Artist/Album folder fallback
        contributor_dirs: Top-level folders that are not part of the layout

    Returns:
        TrackMetadata, or ExtractionError when neither parser could read it
    """
    local_path = os.fspath(local_path)
    file_path = normalize_path(local_path)

    try:
        file_size = os.stat(local_path).st_size
        with open(local_path, "rb"):
            pass
    except OSError as e:
        logger.warning(f"Cannot read {local_path}: {e}")
        return ExtractionError(file_path, ExtractionErrorKind.UNREADABLE, str(e))

    probe = _read_with_mutagen(local_path)
    if isinstance(probe, _ProbeFailure):
        logger.debug(f"{probe.detail} for {local_path}, trying ffprobe")
        fallback = _read_with_ffprobe(local_path)
        if isinstance(fallback, _ProbeFailure):
            failure = _worse(probe, fallback)
            logger.warning(
                f"Could not extract metadata from {local_path}: "
                f"{probe.detail}; {fallback.detail}"
            )
            return ExtractionError(
                file_path, failure.kind, f"{probe.detail}; {fallback.detail}"
            )
        probe = fallback

    from_name = extract_metadata_from_filename(local_path)
    from_layout = extract_metadata_from_layout(local_path, root, contributor_dirs)

    title = probe.title or from_name["title"] or Path(local_path).stem
    artist = probe.artist or from_name["artist"] or from_layout["artist"] or UNKNOWN_ARTIST
    album = probe.album or from_layout["album"] or UNKNOWN_ALBUM
    year = probe.year or from_layout["year"]
    duration = max(0, int(probe.duration)) if probe.duration else 0

    return TrackMetadata(
        file_path=file_path,
        title=title,
        artist=artist,
        album=album,
        year=year,
        duration=duration,
        sample_rate=probe.sample_rate,
        file_size=file_size,
        file_type=Path(local_path).suffix.lower().lstrip("."),
    )
