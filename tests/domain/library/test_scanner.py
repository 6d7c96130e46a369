"""Tests for the concurrent media root scanner."""

import os
import threading

import pytest

from music_mirror.domain.library.identity import normalize_path
from music_mirror.domain.library.models import (
    ExtractionError,
    ExtractionErrorKind,
    SkipReason,
    TrackMetadata,
)
from music_mirror.domain.library.scanner import is_supported_format, scan
from music_mirror.exceptions import ScanRootError


def fake_extractor(local_path, root=None, contributor_dirs=()):
    """Describe a file without parsing it: artist/album from the folders."""
    path = normalize_path(local_path)
    if path.endswith("broken.flac"):
        return ExtractionError(path, ExtractionErrorKind.CORRUPT, "bad header")
    parts = path.split("/")
    return TrackMetadata(
        file_path=path,
        title=os.path.splitext(parts[-1])[0],
        artist=parts[-3],
        album=parts[-2],
        year=None,
        duration=60,
        sample_rate=44100,
        file_size=os.path.getsize(local_path),
        file_type=os.path.splitext(path)[1].lstrip("."),
    )


def touch(path, content=b"x"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


@pytest.fixture
def library(media_root):
    """Two artists, a non-audio file, a hidden file and a broken file."""
    touch(media_root / "Artist A" / "Album X" / "01.flac")
    touch(media_root / "Artist A" / "Album X" / "02.flac")
    touch(media_root / "Artist A" / "Album X" / "cover.jpg")
    touch(media_root / "Artist B" / "Album Y" / "01.mp3")
    touch(media_root / "Artist B" / "Album Y" / ".01.tmp.flac")
    touch(media_root / "Artist B" / "Album Y" / "broken.flac")
    return media_root


class TestIsSupportedFormat:
    def test_case_insensitive(self):
        assert is_supported_format("/a/B.FLAC", [".flac"])
        assert not is_supported_format("/a/b.jpg", [".flac"])


class TestScan:
    """Tests for scan()."""

    def test_collects_tracks_keyed_by_path(self, library, config):
        snapshot = scan(str(library), config, extractor=fake_extractor)

        expected = {
            normalize_path(library / "Artist A" / "Album X" / "01.flac"),
            normalize_path(library / "Artist A" / "Album X" / "02.flac"),
            normalize_path(library / "Artist B" / "Album Y" / "01.mp3"),
        }
        assert set(snapshot.tracks) == expected
        assert snapshot.root == normalize_path(library)
        assert not snapshot.cancelled

    def test_non_audio_files_are_ignored(self, library, config):
        snapshot = scan(str(library), config, extractor=fake_extractor)

        assert snapshot.ignored == 1  # cover.jpg

    def test_hidden_files_are_not_candidates(self, library, config):
        snapshot = scan(str(library), config, extractor=fake_extractor)

        assert not any("/." in path for path in snapshot.tracks)

    def test_extraction_errors_become_skips(self, library, config):
        snapshot = scan(str(library), config, extractor=fake_extractor)

        broken = normalize_path(library / "Artist B" / "Album Y" / "broken.flac")
        assert broken not in snapshot.tracks
        assert snapshot.skipped[broken].reason == SkipReason.CORRUPT
        assert snapshot.skipped[broken].detail == "bad header"

    def test_extractor_crash_is_recorded(self, library, config):
        def crashing(local_path, root=None, contributor_dirs=()):
            if local_path.endswith("02.flac"):
                raise RuntimeError("boom")
            return fake_extractor(local_path, root, contributor_dirs)

        snapshot = scan(str(library), config, extractor=crashing)

        crashed = normalize_path(library / "Artist A" / "Album X" / "02.flac")
        assert snapshot.skipped[crashed].reason == SkipReason.EXTRACTOR_CRASHED
        assert len(snapshot.tracks) == 2

    def test_two_scans_are_identical(self, library, config):
        first = scan(str(library), config, extractor=fake_extractor)
        config.scan.workers = 5
        config.scan.queue_depth = 1
        second = scan(str(library), config, extractor=fake_extractor)

        assert first.tracks == second.tracks
        assert first.skipped == second.skipped

    def test_symlinks_are_not_followed(self, library, config, tmp_path):
        outside = touch(tmp_path / "outside" / "Artist Z" / "Album Q" / "x.flac")
        os.symlink(outside.parent.parent, library / "linked")

        snapshot = scan(str(library), config, extractor=fake_extractor)

        assert not any("/linked/" in path for path in snapshot.tracks)

    def test_missing_root_is_fatal(self, tmp_path, config):
        with pytest.raises(ScanRootError):
            scan(str(tmp_path / "nope"), config, extractor=fake_extractor)

    def test_file_as_root_is_fatal(self, tmp_path, config):
        root = touch(tmp_path / "file.flac")
        with pytest.raises(ScanRootError):
            scan(str(root), config, extractor=fake_extractor)

    def test_permission_denied_directory_is_skipped(self, library, config, monkeypatch):
        """A folder that cannot be listed is reported and the rest is cataloged."""
        locked = library / "Artist B"
        real_scandir = os.scandir

        def guarded_scandir(path="."):
            if os.path.abspath(path) == os.path.abspath(locked):
                raise PermissionError(13, "Permission denied", str(path))
            return real_scandir(path)

        monkeypatch.setattr(os, "scandir", guarded_scandir)

        snapshot = scan(str(library), config, extractor=fake_extractor)

        record = snapshot.skipped[normalize_path(locked)]
        assert record.reason == SkipReason.PERMISSION_DENIED
        assert record.is_directory
        assert len(snapshot.tracks) == 2
        assert snapshot.is_unobservable(
            normalize_path(locked / "Album Y" / "01.mp3")
        )

    def test_progress_reports_every_file(self, library, config):
        seen = []

        snapshot = scan(
            str(library),
            config,
            extractor=fake_extractor,
            progress_callback=lambda done, path: seen.append(done),
        )

        assert seen == list(range(1, len(snapshot.tracks) + len(snapshot.skipped) + 1))

    def test_cancelled_before_start(self, library, config):
        cancel = threading.Event()
        cancel.set()

        snapshot = scan(str(library), config, extractor=fake_extractor, cancel_event=cancel)

        assert snapshot.cancelled
        assert snapshot.tracks == {}

    def test_cancel_mid_scan_stops_dispatch(self, media_root, config):
        for i in range(50):
            touch(media_root / "Artist" / "Album" / f"{i:02d}.flac")
        config.scan.workers = 1
        config.scan.queue_depth = 1
        cancel = threading.Event()
        calls = []

        def slow_then_cancel(local_path, root=None, contributor_dirs=()):
            calls.append(local_path)
            if len(calls) == 3:
                cancel.set()
            return fake_extractor(local_path, root, contributor_dirs)

        snapshot = scan(str(media_root), config, extractor=slow_then_cancel, cancel_event=cancel)

        assert snapshot.cancelled
        assert len(calls) < 50
        assert len(snapshot.tracks) == len(calls)
