"""
SQLite catalog store for Music Mirror
"""

import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from music_mirror.exceptions import CatalogApplyError, CatalogStoreError

from .config import get_data_dir

# Database schema version for migrations
SCHEMA_VERSION = 1

_UUID_COLUMNS = ("id", "album_id", "artist_id")

# Single writer: one mutation plan is applied at a time per process
_apply_lock = threading.Lock()

_database_path_override: Optional[Path] = None


def set_database_path(path: Optional[str | Path]) -> None:
    """Point the store at a specific file (None restores the default)."""
    global _database_path_override
    _database_path_override = Path(path).expanduser() if path else None


def get_database_path() -> Path:
    """Get the path to the SQLite database file."""
    if _database_path_override is not None:
        return _database_path_override
    return get_data_dir() / "catalog.db"


@contextmanager
def get_db_connection():
    """Get a database connection with foreign keys enforced."""
    db_path = get_database_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row  # Enable dict-like access

    # WAL lets the serving layer read while a sync writes
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    try:
        yield conn
    finally:
        conn.close()


def _sql_list(values: Iterable[str]) -> str:
    return ", ".join("'" + v.replace("'", "''") + "'" for v in values)


def migrate_database(conn, current_version: int, contributors: List[str]) -> None:
    """Migrate database from current_version to latest schema."""
    if current_version < 1:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS artists (
                id BLOB PRIMARY KEY,
                name TEXT NOT NULL UNIQUE
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS albums (
                id BLOB PRIMARY KEY,
                name TEXT NOT NULL,
                artist_id BLOB NOT NULL,
                year INTEGER,
                FOREIGN KEY (artist_id) REFERENCES artists (id),
                UNIQUE (name, artist_id)
            )
        """)

        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS tracks (
                id BLOB PRIMARY KEY,
                name TEXT NOT NULL,
                album_id BLOB NOT NULL,
                duration INTEGER NOT NULL CHECK (duration >= 0),
                file_path TEXT NOT NULL UNIQUE,
                file_size INTEGER NOT NULL CHECK (file_size >= 0),
                file_type TEXT NOT NULL,
                sample_rate INTEGER,
                contributor TEXT NOT NULL CHECK (contributor IN ({_sql_list(contributors)})),
                date_added TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (album_id) REFERENCES albums (id)
            )
        """)

        conn.execute("CREATE INDEX IF NOT EXISTS idx_tracks_album_id ON tracks (album_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_albums_artist_id ON albums (artist_id)")
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_tracks_sample_rate ON tracks (sample_rate)"
        )


def init_database(contributors: Optional[List[str]] = None) -> None:
    """Create or upgrade the catalog schema.

    Args:
        contributors: Allowed contributor tags, baked into the tracks CHECK
            constraint when the table is first created

    Raises:
        CatalogStoreError: If the catalog file cannot be opened or migrated
    """
    contributors = contributors or ["denis", "masha"]
    try:
        _create_or_migrate(contributors)
    except (sqlite3.Error, OSError) as e:
        logger.error(f"Cannot open catalog at {get_database_path()}: {e}")
        raise CatalogStoreError(f"Cannot open catalog at {get_database_path()}: {e}") from e


def _create_or_migrate(contributors: List[str]) -> None:
    with get_db_connection() as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)
        row = conn.execute("SELECT MAX(version) AS version FROM schema_version").fetchone()
        current_version = row["version"] or 0

        if current_version < SCHEMA_VERSION:
            logger.info(
                f"Migrating catalog schema v{current_version} -> v{SCHEMA_VERSION}"
            )
            migrate_database(conn, current_version, contributors)
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
        conn.commit()


def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    for column in _UUID_COLUMNS:
        value = data.get(column)
        if isinstance(value, bytes):
            data[column] = uuid.UUID(bytes=value)
    return data


def get_all_artists() -> List[Dict[str, Any]]:
    """Get all artist rows."""
    with get_db_connection() as conn:
        cursor = conn.execute("SELECT id, name FROM artists")
        return [_row_to_dict(row) for row in cursor.fetchall()]


def get_all_albums() -> List[Dict[str, Any]]:
    """Get all album rows."""
    with get_db_connection() as conn:
        cursor = conn.execute("SELECT id, name, artist_id, year FROM albums")
        return [_row_to_dict(row) for row in cursor.fetchall()]


def get_all_tracks() -> List[Dict[str, Any]]:
    """Get all track rows."""
    with get_db_connection() as conn:
        cursor = conn.execute("""
            SELECT id, name, album_id, duration, file_path, file_size, file_type,
                   sample_rate, contributor, date_added
            FROM tracks
        """)
        return [_row_to_dict(row) for row in cursor.fetchall()]


def apply_mutation_plan(plan: Any) -> Dict[str, int]:
    """Apply a reconciliation plan as one transaction.

    Order: artist inserts, album inserts, album updates, track deletes,
    track inserts, track updates, album deletes, artist deletes. Either
    everything lands or nothing does.

    Returns:
        Row counts per mutation kind

    Raises:
        CatalogApplyError: If any statement fails (the transaction is rolled back)
    """
    counts = {
        "artists_inserted": len(plan.artist_inserts),
        "albums_inserted": len(plan.album_inserts),
        "albums_updated": len(plan.album_updates),
        "tracks_deleted": len(plan.track_deletes),
        "tracks_inserted": len(plan.track_inserts),
        "tracks_updated": len(plan.track_updates),
        "albums_deleted": len(plan.album_deletes),
        "artists_deleted": len(plan.artist_deletes),
    }
    if not any(counts.values()):
        return counts

    with _apply_lock, get_db_connection() as conn:
        conn.isolation_level = None  # Explicit BEGIN/COMMIT below
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.executemany(
                "INSERT INTO artists (id, name) VALUES (?, ?) ON CONFLICT DO NOTHING",
                [(a.id.bytes, a.name) for a in plan.artist_inserts],
            )
            conn.executemany(
                """
                INSERT INTO albums (id, name, artist_id, year) VALUES (?, ?, ?, ?)
                ON CONFLICT DO NOTHING
                """,
                [(a.id.bytes, a.name, a.artist_id.bytes, a.year) for a in plan.album_inserts],
            )
            conn.executemany(
                "UPDATE albums SET year = ? WHERE id = ?",
                [(a.year, a.id.bytes) for a in plan.album_updates],
            )
            conn.executemany(
                "DELETE FROM tracks WHERE id = ?",
                [(t.id.bytes,) for t in plan.track_deletes],
            )
            conn.executemany(
                """
                INSERT INTO tracks (
                    id, name, album_id, duration, file_path, file_size, file_type,
                    sample_rate, contributor, date_added
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, COALESCE(?, CURRENT_TIMESTAMP))
                """,
                [
                    (
                        t.id.bytes,
                        t.name,
                        t.album_id.bytes,
                        t.duration,
                        t.file_path,
                        t.file_size,
                        t.file_type,
                        t.sample_rate,
                        t.contributor,
                        t.date_added,
                    )
                    for t in plan.track_inserts
                ],
            )
            conn.executemany(
                """
                UPDATE tracks
                SET name = ?, duration = ?, file_size = ?, file_type = ?,
                    sample_rate = ?, contributor = ?
                WHERE id = ?
                """,
                [
                    (
                        t.name,
                        t.duration,
                        t.file_size,
                        t.file_type,
                        t.sample_rate,
                        t.contributor,
                        t.id.bytes,
                    )
                    for t in plan.track_updates
                ],
            )
            conn.executemany(
                "DELETE FROM albums WHERE id = ?",
                [(album_id.bytes,) for album_id in plan.album_deletes],
            )
            conn.executemany(
                "DELETE FROM artists WHERE id = ?",
                [(artist_id.bytes,) for artist_id in plan.artist_deletes],
            )
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error(f"Catalog apply failed, rolled back: {e}")
            raise CatalogApplyError(f"Failed to apply mutation plan: {e}") from e

    logger.info(f"Applied mutation plan: {counts}")
    return counts


def get_track_by_id(track_id: uuid.UUID) -> Optional[Dict[str, Any]]:
    """Get one track with its album and artist names (serving layer read)."""
    with get_db_connection() as conn:
        cursor = conn.execute(
            """
            SELECT t.id, t.name, t.album_id, t.duration, t.file_path, t.file_size,
                   t.file_type, t.sample_rate, t.contributor, t.date_added,
                   al.name AS album, al.year, al.artist_id, ar.name AS artist
            FROM tracks t
            JOIN albums al ON al.id = t.album_id
            JOIN artists ar ON ar.id = al.artist_id
            WHERE t.id = ?
            """,
            (track_id.bytes,),
        )
        row = cursor.fetchone()
        return _row_to_dict(row) if row else None


def get_track_listing(contributor: Optional[str] = None) -> List[Dict[str, Any]]:
    """List tracks ordered by artist, album, title (serving layer read)."""
    query = """
        SELECT t.id, t.name, t.duration, t.file_type, t.sample_rate,
               t.contributor, t.date_added,
               al.name AS album, al.year, ar.name AS artist
        FROM tracks t
        JOIN albums al ON al.id = t.album_id
        JOIN artists ar ON ar.id = al.artist_id
    """
    params: tuple = ()
    if contributor:
        query += " WHERE t.contributor = ?"
        params = (contributor,)
    query += " ORDER BY ar.name, al.year, al.name, t.name"

    with get_db_connection() as conn:
        cursor = conn.execute(query, params)
        return [_row_to_dict(row) for row in cursor.fetchall()]


def get_tracks_above_sample_rate(threshold_hz: int) -> List[Dict[str, Any]]:
    """Tracks a browser cannot play at their current sample rate."""
    with get_db_connection() as conn:
        cursor = conn.execute(
            """
            SELECT id, name, file_path, file_type, sample_rate
            FROM tracks
            WHERE sample_rate > ?
            ORDER BY file_path
            """,
            (threshold_hz,),
        )
        return [_row_to_dict(row) for row in cursor.fetchall()]


def get_catalog_stats(threshold_hz: Optional[int] = None) -> Dict[str, Any]:
    """Get catalog-wide counts and totals."""
    with get_db_connection() as conn:
        stats: Dict[str, Any] = {}
        stats["artists"] = conn.execute("SELECT COUNT(*) FROM artists").fetchone()[0]
        stats["albums"] = conn.execute("SELECT COUNT(*) FROM albums").fetchone()[0]

        row = conn.execute("""
            SELECT COUNT(*) AS tracks,
                   COALESCE(SUM(duration), 0) AS total_duration,
                   COALESCE(SUM(file_size), 0) AS total_size
            FROM tracks
        """).fetchone()
        stats["tracks"] = row["tracks"]
        stats["total_duration"] = row["total_duration"]
        stats["total_size"] = row["total_size"]

        cursor = conn.execute("""
            SELECT contributor, COUNT(*) AS count
            FROM tracks GROUP BY contributor ORDER BY contributor
        """)
        stats["by_contributor"] = {r["contributor"]: r["count"] for r in cursor.fetchall()}

        cursor = conn.execute("""
            SELECT file_type, COUNT(*) AS count
            FROM tracks GROUP BY file_type ORDER BY file_type
        """)
        stats["by_format"] = {r["file_type"]: r["count"] for r in cursor.fetchall()}

        if threshold_hz is not None:
            stats["above_threshold"] = conn.execute(
                "SELECT COUNT(*) FROM tracks WHERE sample_rate > ?", (threshold_hz,)
            ).fetchone()[0]

        return stats
