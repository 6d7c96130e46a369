"""
Deterministic identifiers for catalog rows.

Artist, album and track ids are UUIDv5 values derived from normalized
names and paths, so an unchanged tree always yields the same ids without
asking the database.
"""

import os
import unicodedata
import uuid

ARTIST_NAMESPACE = uuid.UUID("8d3f3c2e-5a7b-4c1e-9f0a-6b2d4e8c1a01")
ALBUM_NAMESPACE = uuid.UUID("8d3f3c2e-5a7b-4c1e-9f0a-6b2d4e8c1a02")
TRACK_NAMESPACE = uuid.UUID("8d3f3c2e-5a7b-4c1e-9f0a-6b2d4e8c1a03")

NAMESPACES = {
    "artist": ARTIST_NAMESPACE,
    "album": ALBUM_NAMESPACE,
    "track": TRACK_NAMESPACE,
}


def normalize(text: str) -> str:
    """Fold a display name into its canonical key.

    Case, accents, punctuation and runs of whitespace are dropped, so
    "  Beyoncé " and "BEYONCE" share a key. Names made only of punctuation
    keep their case-folded text instead of collapsing to an empty key.
    """
    folded = text.casefold()
    decomposed = unicodedata.normalize("NFKD", folded)
    kept = "".join(
        ch
        for ch in decomposed
        if not unicodedata.combining(ch) and (ch.isalnum() or ch.isspace())
    )
    key = " ".join(kept.split())
    if key:
        return key
    return " ".join(unicodedata.normalize("NFKC", folded).split())


def normalize_path(path: str | os.PathLike) -> str:
    """Canonical form of a file path: absolute, NFC, forward slashes.

    Case is only folded on filesystems that ignore it (os.path.normcase).
    """
    absolute = os.path.normcase(os.path.normpath(os.path.abspath(os.fspath(path))))
    return unicodedata.normalize("NFC", absolute).replace("\\", "/")


def derive_id(namespace: str, canonical_key: str) -> uuid.UUID:
    """Derive the identifier for a canonical key within a namespace.

    Raises:
        ValueError: If the namespace is not artist, album or track
    """
    try:
        namespace_uuid = NAMESPACES[namespace]
    except KeyError:
        raise ValueError(f"Unknown identity namespace: {namespace!r}") from None
    return uuid.uuid5(namespace_uuid, canonical_key)


def artist_id(name: str) -> uuid.UUID:
    return derive_id("artist", normalize(name))


def album_key(name: str, owner_id: uuid.UUID) -> str:
    return f"{owner_id}/{normalize(name)}"


def album_id(name: str, owner_id: uuid.UUID) -> uuid.UUID:
    return derive_id("album", album_key(name, owner_id))


def track_id(path: str | os.PathLike) -> uuid.UUID:
    return derive_id("track", normalize_path(path))
