"""Tests for the resampling pipeline's atomic in-place replacement."""

import os
import stat
import threading

import pytest
from mutagen.flac import FLAC

from music_mirror.domain.resample import pipeline
from music_mirror.domain.resample.pipeline import Status, resample_all, resample_file
from music_mirror.domain.sync.models import ResampleCandidate


def candidate(path, sample_rate=192000, file_type="flac"):
    return ResampleCandidate(str(path), file_type, sample_rate)


@pytest.fixture
def hi_res(make_flac, media_root):
    return make_flac(media_root / "Artist A" / "Album X" / "Song 1.flac", 192000)


class TestResampleFile:
    """Tests for resample_file()."""

    def test_replaces_original(self, hi_res, config, fake_resampler):
        outcome = resample_file(candidate(hi_res), fake_resampler, config)

        assert outcome.status == Status.SUCCEEDED
        assert outcome.target_sample_rate == 88200
        assert os.listdir(hi_res.parent) == ["Song 1.flac"]
        assert hi_res.read_bytes().startswith(b"fLaC")
        assert fake_resampler.calls == [(str(hi_res), 88200)]

    def test_keeps_permission_bits(self, hi_res, config, fake_resampler):
        os.chmod(hi_res, 0o644)

        outcome = resample_file(candidate(hi_res), fake_resampler, config)

        assert outcome.status == Status.SUCCEEDED
        assert stat.S_IMODE(os.stat(hi_res).st_mode) == 0o644

    def test_target_rate_follows_format(self, make_wav, media_root, config, fake_resampler):
        path = make_wav(media_root / "a.mp3")

        outcome = resample_file(candidate(path, 96000, "mp3"), fake_resampler, config)

        assert outcome.target_sample_rate == 44100

    def test_tool_failure_leaves_original(self, hi_res, config, fake_resampler):
        fake_resampler.fail_on = {"Song 1.flac"}
        original = hi_res.read_bytes()

        outcome = resample_file(candidate(hi_res), fake_resampler, config)

        assert outcome.status == Status.FAILED
        assert "simulated failure" in outcome.reason
        assert hi_res.read_bytes() == original
        assert os.listdir(hi_res.parent) == ["Song 1.flac"]

    def test_failed_replace_discards_temp(self, hi_res, config, fake_resampler, monkeypatch):
        original = hi_res.read_bytes()

        def broken_replace(src, dst):
            raise OSError(18, "Invalid cross-device link")

        monkeypatch.setattr(pipeline.os, "replace", broken_replace)

        outcome = resample_file(candidate(hi_res), fake_resampler, config)

        assert outcome.status == Status.FAILED
        assert outcome.reason.startswith("replace failed")
        assert hi_res.read_bytes() == original
        assert os.listdir(hi_res.parent) == ["Song 1.flac"]

    def test_crash_after_swap_leaves_only_new_file(self, hi_res, config, fake_resampler, monkeypatch):
        """A crash right after os.replace must not leave a half state behind."""
        real_replace = os.replace

        def replace_then_crash(src, dst):
            real_replace(src, dst)
            raise KeyboardInterrupt

        monkeypatch.setattr(pipeline.os, "replace", replace_then_crash)

        with pytest.raises(KeyboardInterrupt):
            resample_file(candidate(hi_res), fake_resampler, config)

        assert os.listdir(hi_res.parent) == ["Song 1.flac"]
        assert FLAC(str(hi_res)).info.sample_rate == 88200

    def test_missing_file_is_skipped(self, media_root, config, fake_resampler):
        outcome = resample_file(candidate(media_root / "gone.flac"), fake_resampler, config)

        assert outcome.status == Status.SKIPPED
        assert outcome.reason == pipeline.SKIP_MISSING_FILE
        assert fake_resampler.calls == []


class TestResampleAll:
    """Tests for resample_all()."""

    def test_filters_by_threshold(self, make_flac, media_root, config, fake_resampler):
        hi = make_flac(media_root / "hi.flac", 192000)
        edge = make_flac(media_root / "edge.flac", 88200)

        report = resample_all(
            [candidate(hi), candidate(edge, 88200), candidate(media_root / "x.wav", None, "wav")],
            fake_resampler,
            config,
        )

        assert [o.file_path for o in report.succeeded] == [str(hi)]
        skipped = {o.file_path: o.reason for o in report.skipped}
        assert skipped[str(edge)] == pipeline.SKIP_BELOW_THRESHOLD
        assert skipped[str(media_root / "x.wav")] == pipeline.SKIP_NO_SAMPLE_RATE

    def test_one_failure_does_not_stop_the_batch(self, make_flac, media_root, config, fake_resampler):
        paths = [make_flac(media_root / f"{i}.flac", 176400) for i in range(5)]
        fake_resampler.fail_on = {"2.flac"}

        report = resample_all([candidate(p) for p in paths], fake_resampler, config)

        assert [o.file_path for o in report.failed] == [str(paths[2])]
        assert len(report.succeeded) == 4
        assert len(report.outcomes) == 5

    def test_unexpected_error_is_a_failure(self, hi_res, config):
        class Exploding:
            def run(self, input_path, target_sample_rate):
                raise RuntimeError("tool bug")

        report = resample_all([candidate(hi_res)], Exploding(), config)

        assert report.failed[0].reason == "RuntimeError: tool bug"

    def test_cancel_stops_dispatch(self, make_flac, media_root, config, fake_resampler):
        paths = [make_flac(media_root / f"{i:02d}.flac", 192000) for i in range(20)]
        config.resample.workers = 1
        config.resample.queue_depth = 1
        cancel = threading.Event()
        real_run = fake_resampler.run

        def run_then_cancel(input_path, target_sample_rate):
            cancel.set()
            return real_run(input_path, target_sample_rate)

        fake_resampler.run = run_then_cancel

        report = resample_all(
            [candidate(p) for p in paths], fake_resampler, config, cancel_event=cancel
        )

        assert len(report.outcomes) == 20
        assert 1 <= len(report.succeeded) < 20
        cancelled = [o for o in report.skipped if o.reason == pipeline.SKIP_CANCELLED]
        assert len(cancelled) == 20 - len(report.succeeded)

    def test_progress_counts_jobs(self, make_flac, media_root, config, fake_resampler):
        paths = [make_flac(media_root / f"{i}.flac", 192000) for i in range(3)]
        seen = []

        resample_all(
            [candidate(p) for p in paths],
            fake_resampler,
            config,
            progress_callback=lambda done, total: seen.append((done, total)),
        )

        assert seen == [(1, 3), (2, 3), (3, 3)]

    def test_nothing_to_do(self, config, fake_resampler):
        report = resample_all([], fake_resampler, config)

        assert report.outcomes == {}
