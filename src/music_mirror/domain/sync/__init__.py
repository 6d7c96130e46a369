"""Sync domain - reconciling the catalog with the media root.

This domain handles:
- Catalog row and mutation plan models
- Snapshot vs catalog diffing with orphan cleanup
- The full scan, apply and resample cycle
"""

from .engine import load_catalog, reconcile, sync_library
from .models import (
    AlbumRow,
    ArtistRow,
    Catalog,
    MutationPlan,
    ResampleCandidate,
    SyncReport,
    TrackRow,
)

__all__ = [
    "load_catalog",
    "reconcile",
    "sync_library",
    "AlbumRow",
    "ArtistRow",
    "Catalog",
    "MutationPlan",
    "ResampleCandidate",
    "SyncReport",
    "TrackRow",
]
