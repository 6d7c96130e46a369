"""
Catalog and reconciliation models.

Rows mirror the catalog tables; MutationPlan is the ordered set of changes
that takes the catalog to the state of a snapshot.
"""

import uuid
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional


class ArtistRow(NamedTuple):
    id: uuid.UUID
    name: str


class AlbumRow(NamedTuple):
    id: uuid.UUID
    name: str
    artist_id: uuid.UUID
    year: Optional[int] = None


class TrackRow(NamedTuple):
    id: uuid.UUID
    name: str
    album_id: uuid.UUID
    duration: int
    file_path: str
    file_size: int
    file_type: str
    sample_rate: Optional[int]
    contributor: str
    date_added: Optional[str] = None  # None on insert = now


@dataclass
class Catalog:
    """Persisted catalog state, tracks keyed by file path for diffing."""

    artists: Dict[uuid.UUID, ArtistRow] = field(default_factory=dict)
    albums: Dict[uuid.UUID, AlbumRow] = field(default_factory=dict)
    tracks: Dict[str, TrackRow] = field(default_factory=dict)

    @classmethod
    def from_rows(cls, artists: List[dict], albums: List[dict], tracks: List[dict]) -> "Catalog":
        return cls(
            artists={r["id"]: ArtistRow(r["id"], r["name"]) for r in artists},
            albums={
                r["id"]: AlbumRow(r["id"], r["name"], r["artist_id"], r["year"])
                for r in albums
            },
            tracks={
                r["file_path"]: TrackRow(
                    id=r["id"],
                    name=r["name"],
                    album_id=r["album_id"],
                    duration=r["duration"],
                    file_path=r["file_path"],
                    file_size=r["file_size"],
                    file_type=r["file_type"],
                    sample_rate=r["sample_rate"],
                    contributor=r["contributor"],
                    date_added=r["date_added"],
                )
                for r in tracks
            },
        )


class ResampleCandidate(NamedTuple):
    file_path: str
    file_type: str
    sample_rate: Optional[int]


@dataclass
class MutationPlan:
    """Changes in apply order: artists, albums, tracks, then orphan deletes."""

    artist_inserts: List[ArtistRow] = field(default_factory=list)
    album_inserts: List[AlbumRow] = field(default_factory=list)
    album_updates: List[AlbumRow] = field(default_factory=list)
    track_deletes: List[TrackRow] = field(default_factory=list)
    track_inserts: List[TrackRow] = field(default_factory=list)
    track_updates: List[TrackRow] = field(default_factory=list)
    album_deletes: List[uuid.UUID] = field(default_factory=list)
    artist_deletes: List[uuid.UUID] = field(default_factory=list)
    resample_candidates: List[ResampleCandidate] = field(default_factory=list)
    # Paths whose delete+insert pair is a retag, not a removal
    moved_between_albums: List[str] = field(default_factory=list)
    retained: int = 0  # Catalog rows under paths the scan could not observe

    def is_empty(self) -> bool:
        """True when applying the plan would change nothing."""
        return not (
            self.artist_inserts
            or self.album_inserts
            or self.album_updates
            or self.track_deletes
            or self.track_inserts
            or self.track_updates
            or self.album_deletes
            or self.artist_deletes
        )

    def counts(self) -> Dict[str, int]:
        moved = len(self.moved_between_albums)
        return {
            "artists_inserted": len(self.artist_inserts),
            "albums_inserted": len(self.album_inserts),
            "albums_updated": len(self.album_updates),
            "tracks_inserted": len(self.track_inserts) - moved,
            "tracks_updated": len(self.track_updates) + moved,
            "tracks_deleted": len(self.track_deletes) - moved,
            "albums_deleted": len(self.album_deletes),
            "artists_deleted": len(self.artist_deletes),
        }


@dataclass
class SyncReport:
    """Run summary: what changed and every path that was skipped or failed."""

    mutations: Dict[str, int] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)  # path -> reason code
    ignored: int = 0
    retained: int = 0
    resample_candidates: int = 0
    resample_pending: int = 0  # Still above the threshold after this run
    resampled: int = 0
    resample_failed: Dict[str, str] = field(default_factory=dict)
    resample_skipped: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False

    def add_mutations(self, counts: Dict[str, int]) -> None:
        for key, value in counts.items():
            self.mutations[key] = self.mutations.get(key, 0) + value

    def summary(self) -> Dict[str, object]:
        """Flat counts for display, with per-reason breakdowns."""
        reasons: Dict[str, int] = {}
        for reason in self.skipped.values():
            reasons[reason] = reasons.get(reason, 0) + 1
        return {
            "inserted": self.mutations.get("tracks_inserted", 0),
            "updated": self.mutations.get("tracks_updated", 0),
            "deleted": self.mutations.get("tracks_deleted", 0),
            "skipped": len(self.skipped),
            "skipped_by_reason": reasons,
            "ignored": self.ignored,
            "retained": self.retained,
            "resample_candidates": self.resample_candidates,
            "resample_pending": self.resample_pending,
            "resampled": self.resampled,
            "failed": len(self.resample_failed),
            "cancelled": self.cancelled,
        }
