"""End-to-end sync runs against a temporary media root and catalog."""

import os
import sqlite3
import threading
import uuid

import pytest

from music_mirror.core import database
from music_mirror.domain.library.identity import normalize_path, track_id
from music_mirror.domain.sync.engine import sync_library
from music_mirror.exceptions import CatalogStoreError


def catalog_rows():
    return database.get_all_artists(), database.get_all_albums(), database.get_all_tracks()


@pytest.fixture
def hi_res_track(make_flac, media_root):
    return make_flac(media_root / "Artist A" / "Album X (2001)" / "Song 1.flac", 192000)


class TestFirstSync:
    """A 192 kHz file on first sight: cataloged, resampled, re-cataloged."""

    def test_catalog_and_resample(self, temp_db, config, hi_res_track, fake_resampler):
        report = sync_library(config, resampler=fake_resampler)

        summary = report.summary()
        assert summary["inserted"] == 1
        assert summary["updated"] == 1  # sample rate after resampling
        assert summary["deleted"] == 0
        assert summary["resampled"] == 1
        assert summary["resample_pending"] == 0
        assert fake_resampler.calls == [(normalize_path(hi_res_track), 88200)]

        artists, albums, tracks = catalog_rows()
        assert artists == [
            {"id": uuid.UUID("02397577-0c24-50bd-8cf3-90c3e2792816"), "name": "Artist A"}
        ]
        assert albums[0]["id"] == uuid.UUID("0aa00d6b-9132-585d-8095-5a36e171c621")
        assert albums[0]["name"] == "Album X"
        assert albums[0]["year"] == 2001
        assert len(tracks) == 1
        assert tracks[0]["id"] == track_id(hi_res_track)
        assert tracks[0]["name"] == "Song 1"
        assert tracks[0]["sample_rate"] == 88200
        assert tracks[0]["contributor"] == "denis"

    def test_no_temp_files_left_behind(self, temp_db, config, hi_res_track, fake_resampler):
        sync_library(config, resampler=fake_resampler)

        assert os.listdir(hi_res_track.parent) == ["Song 1.flac"]

    def test_second_sync_is_a_no_op(self, temp_db, config, hi_res_track, fake_resampler):
        sync_library(config, resampler=fake_resampler)
        before = catalog_rows()

        report = sync_library(config, resampler=fake_resampler)

        assert not any(report.mutations.values())
        assert report.resample_candidates == 0
        assert len(fake_resampler.calls) == 1
        assert catalog_rows() == before

    def test_without_resampler_track_stays_pending(self, temp_db, config, hi_res_track):
        report = sync_library(config)

        assert report.summary()["inserted"] == 1
        assert report.resample_pending == 1
        assert database.get_all_tracks()[0]["sample_rate"] == 192000

    def test_dry_run_writes_nothing(self, temp_db, config, hi_res_track, fake_resampler):
        report = sync_library(config, resampler=fake_resampler, dry_run=True)

        assert report.mutations["tracks_inserted"] == 1
        assert fake_resampler.calls == []
        assert database.get_all_tracks() == []


class TestResampleFailure:
    def test_failure_is_reported_and_retried(self, temp_db, config, hi_res_track, fake_resampler):
        fake_resampler.fail_on = {"Song 1.flac"}
        original = hi_res_track.read_bytes()

        report = sync_library(config, resampler=fake_resampler)

        assert list(report.resample_failed) == [normalize_path(hi_res_track)]
        assert report.resample_pending == 1
        assert hi_res_track.read_bytes() == original
        assert database.get_all_tracks()[0]["sample_rate"] == 192000

        fake_resampler.fail_on = set()
        report = sync_library(config, resampler=fake_resampler)

        assert report.resampled == 1
        assert report.resample_pending == 0
        assert database.get_all_tracks()[0]["sample_rate"] == 88200


class TestUnreadableDirectory:
    """A folder that cannot be listed keeps its catalog rows."""

    def test_rows_are_retained(self, temp_db, config, make_flac, media_root, monkeypatch):
        make_flac(media_root / "Artist A" / "Album X" / "01.flac")
        make_flac(media_root / "Artist B" / "Album Y" / "01.flac")
        sync_library(config)
        assert len(database.get_all_tracks()) == 2

        locked = media_root / "Artist B"
        real_scandir = os.scandir

        def guarded_scandir(path="."):
            if os.path.abspath(path) == os.path.abspath(locked):
                raise PermissionError(13, "Permission denied", str(path))
            return real_scandir(path)

        monkeypatch.setattr(os, "scandir", guarded_scandir)

        report = sync_library(config)

        assert report.skipped == {normalize_path(locked): "permission_denied"}
        assert report.retained == 1
        assert not any(report.mutations.values())
        assert len(database.get_all_tracks()) == 2
        assert {a["name"] for a in database.get_all_artists()} == {"Artist A", "Artist B"}


class TestCancelledSync:
    def test_catalog_is_untouched(self, temp_db, config, make_flac, media_root):
        first = make_flac(media_root / "Artist A" / "Album X" / "01.flac")
        make_flac(media_root / "Artist A" / "Album X" / "02.flac")
        sync_library(config)
        before = catalog_rows()
        first.unlink()
        cancel = threading.Event()
        cancel.set()

        report = sync_library(config, cancel_event=cancel)

        assert report.cancelled
        assert report.mutations == {}
        assert catalog_rows() == before


class TestContributors:
    def test_top_level_folder_tags_tracks(self, temp_db, config, make_flac, media_root):
        make_flac(media_root / "masha" / "Artist B" / "Album Y" / "01.flac")
        make_flac(media_root / "denis" / "Artist A" / "Album X" / "01.flac")

        sync_library(config)

        by_contributor = {
            t["contributor"]: t for t in database.get_track_listing()
        }
        assert by_contributor["masha"]["artist"] == "Artist B"
        assert by_contributor["denis"]["artist"] == "Artist A"


class TestCatalogStoreErrors:
    def test_unreadable_catalog_ends_the_run(self, temp_db, config, make_flac, media_root, monkeypatch):
        make_flac(media_root / "Artist A" / "Album X" / "01.flac")

        def locked():
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(database, "get_all_tracks", locked)

        with pytest.raises(CatalogStoreError, match="database is locked"):
            sync_library(config)
