"""
Catalog reconciliation.

Diffs a scan snapshot against the persisted catalog by file path and
produces a MutationPlan that, applied in one transaction, leaves the
catalog mirroring the snapshot: inserts for new files, updates for changed
ones, deletes for vanished ones, then an orphan sweep over albums and
artists. sync_library() runs the whole cycle including resampling.
"""

import dataclasses
import sqlite3
import threading
import uuid
from typing import Callable, Dict, Optional, Set

from loguru import logger

from music_mirror.core import database
from music_mirror.core.config import Config
from music_mirror.domain.library.identity import (
    album_key,
    derive_id,
    normalize,
)
from music_mirror.domain.library.metadata import extract
from music_mirror.domain.library.models import (
    ExtractionError,
    SkipReason,
    SkipRecord,
    Snapshot,
    TrackMetadata,
)
from music_mirror.domain.library.scanner import scan
from music_mirror.domain.resample.pipeline import resample_all
from music_mirror.exceptions import (
    CatalogStoreError,
    IdentityCollisionError,
    PlanOrderingError,
    ScanCancelledError,
)

from .models import (
    AlbumRow,
    ArtistRow,
    Catalog,
    MutationPlan,
    ResampleCandidate,
    SyncReport,
    TrackRow,
)

# One reconciliation run at a time per process
_run_lock = threading.Lock()

_COMPARED_FIELDS = ("name", "duration", "file_size", "file_type", "sample_rate", "contributor")


def load_catalog() -> Catalog:
    """Read the persisted catalog through the store."""
    try:
        artists = database.get_all_artists()
        albums = database.get_all_albums()
        tracks = database.get_all_tracks()
    except sqlite3.Error as e:
        logger.error(f"Could not read the catalog: {e}")
        raise CatalogStoreError(f"Could not read the catalog: {e}") from e
    return Catalog.from_rows(artists, albums, tracks)


def contributor_segment(file_path: str, root: str) -> Optional[str]:
    """First folder under the media root, or None for files directly in it."""
    prefix = root.rstrip("/") + "/"
    if not file_path.startswith(prefix):
        return None
    relative = file_path[len(prefix):]
    if "/" not in relative:
        return None
    return relative.split("/", 1)[0]


class _IdentityRegistry:
    """Derives ids and fails loudly if two different keys land on one id."""

    def __init__(self):
        self._keys: Dict[uuid.UUID, str] = {}

    def derive(self, namespace: str, key: str) -> uuid.UUID:
        derived = derive_id(namespace, key)
        existing = self._keys.setdefault(derived, key)
        if existing != key:
            raise IdentityCollisionError(
                f"{namespace} id {derived} derived from both {existing!r} and {key!r}"
            )
        return derived

    def verify(self, namespace: str, derived: uuid.UUID, key: str) -> None:
        """Check a persisted row's content against the key its id was derived from."""
        expected = self._keys.get(derived)
        if expected is not None and expected != key:
            raise IdentityCollisionError(
                f"Persisted {namespace} {derived} has key {key!r}, "
                f"but the same id was derived from {expected!r}"
            )


def reconcile(
    snapshot: Snapshot, catalog: Catalog, config: Optional[Config] = None
) -> MutationPlan:
    """Compute the mutations that make the catalog mirror the snapshot.

    Args:
        snapshot: Fully materialized scan result
        catalog: Persisted catalog state
        config: Supplies the contributor mapping and playback threshold

    Returns:
        MutationPlan in apply order, plus the resampling candidates

    Raises:
        ScanCancelledError: If the snapshot comes from a cancelled scan
        IdentityCollisionError: If two different keys derive the same id
        PlanOrderingError: If the plan would leave a dangling reference
    """
    if snapshot.cancelled:
        raise ScanCancelledError("Refusing to reconcile a cancelled scan")
    config = config or Config()
    threshold = config.resample.playback_threshold_hz
    registry = _IdentityRegistry()
    plan = MutationPlan()

    # Desired rows for everything observed on disk
    desired: Dict[str, TrackRow] = {}
    artist_names: Dict[uuid.UUID, Set[str]] = {}
    album_names: Dict[uuid.UUID, Set[str]] = {}
    album_owner: Dict[uuid.UUID, uuid.UUID] = {}
    album_years: Dict[uuid.UUID, Set[int]] = {}

    for file_path in sorted(snapshot.tracks):
        meta: TrackMetadata = snapshot.tracks[file_path]
        owner = registry.derive("artist", normalize(meta.artist))
        album = registry.derive("album", album_key(meta.album, owner))
        row_id = registry.derive("track", file_path)

        artist_names.setdefault(owner, set()).add(meta.artist)
        album_names.setdefault(album, set()).add(meta.album)
        album_owner[album] = owner
        years = album_years.setdefault(album, set())
        if meta.year is not None:
            years.add(meta.year)

        segment = contributor_segment(file_path, snapshot.root)
        desired[file_path] = TrackRow(
            id=row_id,
            name=meta.title,
            album_id=album,
            duration=meta.duration,
            file_path=file_path,
            file_size=meta.file_size,
            file_type=meta.file_type,
            sample_rate=meta.sample_rate,
            contributor=config.contributors.tag_for_segment(segment),
        )

    # Persisted rows must agree with the ids they were stored under
    for artist in catalog.artists.values():
        registry.verify("artist", artist.id, normalize(artist.name))
    for album in catalog.albums.values():
        registry.verify("album", album.id, album_key(album.name, album.artist_id))

    # Track-level diff keyed by path
    observed = set(desired)
    persisted = set(catalog.tracks)

    for file_path in sorted(persisted - observed):
        if snapshot.is_unobservable(file_path):
            plan.retained += 1
            continue
        plan.track_deletes.append(catalog.tracks[file_path])

    for file_path in sorted(observed - persisted):
        plan.track_inserts.append(desired[file_path])

    for file_path in sorted(observed & persisted):
        new, old = desired[file_path], catalog.tracks[file_path]
        if new.id != old.id:
            raise IdentityCollisionError(
                f"Persisted track {old.id} at {file_path} does not match derived id {new.id}"
            )
        new = new._replace(date_added=old.date_added)
        if new.album_id != old.album_id:
            # Retag moved the track: replace the row, keep when it was added
            plan.track_deletes.append(old)
            plan.track_inserts.append(new)
            plan.moved_between_albums.append(file_path)
        elif any(getattr(new, f) != getattr(old, f) for f in _COMPARED_FIELDS):
            plan.track_updates.append(new)

    # Catalog state once track mutations land
    deleted_paths = {t.file_path for t in plan.track_deletes}
    final_tracks = {p: t for p, t in catalog.tracks.items() if p not in deleted_paths}
    for row in plan.track_inserts + plan.track_updates:
        final_tracks[row.file_path] = row

    referenced_albums = {t.album_id for t in final_tracks.values()}
    for album in sorted(referenced_albums - set(catalog.albums), key=str):
        plan.album_inserts.append(
            AlbumRow(
                id=album,
                name=min(album_names[album]),
                artist_id=album_owner[album],
                year=min(album_years[album]) if album_years[album] else None,
            )
        )

    for album in sorted(referenced_albums & set(catalog.albums), key=str):
        if album not in album_years:
            continue
        year = min(album_years[album]) if album_years[album] else None
        existing = catalog.albums[album]
        if year != existing.year:
            plan.album_updates.append(existing._replace(year=year))

    plan.album_deletes = sorted(set(catalog.albums) - referenced_albums, key=str)

    surviving_albums = {
        a: catalog.albums[a].artist_id for a in referenced_albums & set(catalog.albums)
    }
    surviving_albums.update({a.id: a.artist_id for a in plan.album_inserts})
    referenced_artists = set(surviving_albums.values())

    for artist in sorted(referenced_artists - set(catalog.artists), key=str):
        plan.artist_inserts.append(ArtistRow(id=artist, name=min(artist_names[artist])))
    plan.artist_deletes = sorted(set(catalog.artists) - referenced_artists, key=str)

    _check_ordering(plan, catalog, final_tracks, surviving_albums)

    plan.resample_candidates = [
        ResampleCandidate(row.file_path, row.file_type, row.sample_rate)
        for path, row in sorted(desired.items())
        if row.sample_rate is not None and row.sample_rate > threshold
    ]

    logger.info(
        f"Reconciliation plan: {plan.counts()}, {plan.retained} retained, "
        f"{len(plan.resample_candidates)} resample candidates"
    )
    return plan


def _check_ordering(
    plan: MutationPlan,
    catalog: Catalog,
    final_tracks: Dict[str, TrackRow],
    final_albums: Dict[uuid.UUID, uuid.UUID],
) -> None:
    """Every surviving row must reference a row that survives too."""
    available_albums = (set(catalog.albums) - set(plan.album_deletes)) | {
        a.id for a in plan.album_inserts
    }
    for row in final_tracks.values():
        if row.album_id not in available_albums:
            raise PlanOrderingError(
                f"Track {row.file_path} references missing album {row.album_id}"
            )

    available_artists = (set(catalog.artists) - set(plan.artist_deletes)) | {
        a.id for a in plan.artist_inserts
    }
    for album, owner in final_albums.items():
        if owner not in available_artists:
            raise PlanOrderingError(f"Album {album} references missing artist {owner}")


def refresh_snapshot(
    snapshot: Snapshot,
    paths: list[str],
    config: Config,
    extractor: Callable = extract,
) -> Snapshot:
    """Re-read a few files (e.g. after resampling) into a copy of a snapshot."""
    tracks = dict(snapshot.tracks)
    skipped = dict(snapshot.skipped)
    contributor_dirs = tuple(config.contributors.paths.values())
    for file_path in paths:
        result = extractor(file_path, root=snapshot.root, contributor_dirs=contributor_dirs)
        if isinstance(result, ExtractionError):
            # Keep the catalog row untouched rather than deleting it
            tracks.pop(file_path, None)
            skipped[file_path] = snapshot.skipped.get(file_path) or _skip_from_error(result)
        else:
            tracks[result.file_path] = result
    return dataclasses.replace(snapshot, tracks=tracks, skipped=skipped)


def _skip_from_error(error: ExtractionError) -> SkipRecord:
    return SkipRecord(error.file_path, SkipReason(error.kind.value), error.detail)


def sync_library(
    config: Config,
    resampler=None,
    cancel_event: Optional[threading.Event] = None,
    scan_progress: Optional[Callable] = None,
    resample_progress: Optional[Callable] = None,
    extractor: Callable = extract,
    dry_run: bool = False,
) -> SyncReport:
    """Scan the media root, reconcile the catalog and resample what needs it.

    Args:
        config: Configuration object
        resampler: ResamplingTool; None disables resampling for this run
        cancel_event: Shared cancellation flag (scan and resample)
        scan_progress: callback(files_done, current_path)
        resample_progress: callback(completed, total)
        extractor: Metadata extractor (tests inject fakes)
        dry_run: Compute the plan without applying or resampling

    Returns:
        SyncReport with mutation counts and every skip/failure by path
    """
    report = SyncReport()
    cancel_event = cancel_event or threading.Event()

    with _run_lock:
        database.init_database(config.contributors.allowed)

        snapshot = scan(
            config.music.media_root,
            config,
            extractor=extractor,
            cancel_event=cancel_event,
            progress_callback=scan_progress,
        )
        report.skipped = {p: r.reason.value for p, r in snapshot.skipped.items()}
        report.ignored = snapshot.ignored
        if snapshot.cancelled:
            logger.warning("Scan cancelled, catalog left untouched")
            report.cancelled = True
            return report

        plan = reconcile(snapshot, load_catalog(), config)
        report.retained = plan.retained
        report.resample_candidates = len(plan.resample_candidates)
        report.resample_pending = len(plan.resample_candidates)
        if dry_run:
            report.add_mutations(plan.counts())
            return report

        database.apply_mutation_plan(plan)
        report.add_mutations(plan.counts())

        if resampler is None or not config.resample.enabled or not plan.resample_candidates:
            return report

        run_report = resample_all(
            plan.resample_candidates,
            resampler,
            config,
            cancel_event=cancel_event,
            progress_callback=resample_progress,
        )
        report.resampled = len(run_report.succeeded)
        report.resample_failed = {o.file_path: o.reason for o in run_report.failed}
        report.resample_skipped = {o.file_path: o.reason for o in run_report.skipped}
        report.cancelled = cancel_event.is_set()

        if run_report.succeeded:
            refreshed = refresh_snapshot(
                snapshot,
                [o.file_path for o in run_report.succeeded],
                config,
                extractor=extractor,
            )
            follow_up = reconcile(refreshed, load_catalog(), config)
            database.apply_mutation_plan(follow_up)
            report.add_mutations(follow_up.counts())
            report.resample_pending = len(follow_up.resample_candidates)

    return report
