"""Shared fixtures: temporary catalog database and synthetic audio files."""

import struct
import wave
from pathlib import Path

import pytest

import music_mirror.core.database as db_module
from music_mirror.core.config import Config
from music_mirror.domain.resample.executor import make_temp_path
from music_mirror.exceptions import ResampleToolError


def flac_bytes(sample_rate: int, seconds: int = 1, channels: int = 2, bits: int = 24) -> bytes:
    """A header-only FLAC file: magic plus a single STREAMINFO block."""
    total_samples = sample_rate * seconds
    packed = (
        (sample_rate << 44)
        | ((channels - 1) << 41)
        | ((bits - 1) << 36)
        | total_samples
    )
    streaminfo = (
        struct.pack(">HH", 4096, 4096)
        + (0).to_bytes(3, "big")
        + (0).to_bytes(3, "big")
        + packed.to_bytes(8, "big")
        + bytes(16)
    )
    block_header = bytes([0x80]) + len(streaminfo).to_bytes(3, "big")
    return b"fLaC" + block_header + streaminfo


@pytest.fixture
def make_flac():
    """Factory writing a header-only FLAC, optionally tagged via mutagen."""

    def _make(path: Path, sample_rate: int = 44100, seconds: int = 1, **tags) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(flac_bytes(sample_rate, seconds))
        if tags:
            from mutagen.flac import FLAC

            audio = FLAC(str(path))
            for key, value in tags.items():
                audio[key] = value
            audio.save()
        return path

    return _make


@pytest.fixture
def make_wav():
    """Factory writing a silent 16-bit mono WAV with the stdlib wave module."""

    def _make(path: Path, sample_rate: int = 8000, seconds: float = 1.0) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        frames = int(sample_rate * seconds)
        with wave.open(str(path), "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(sample_rate)
            wav.writeframes(b"\x00\x00" * frames)
        return path

    return _make


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the catalog store at a fresh database file."""
    db_path = tmp_path / "catalog.db"
    monkeypatch.setattr(db_module, "get_database_path", lambda: db_path)
    db_module.init_database(["denis", "masha"])
    return db_path


@pytest.fixture
def media_root(tmp_path):
    root = tmp_path / "media"
    root.mkdir()
    return root


@pytest.fixture
def config(media_root, tmp_path):
    """Config rooted at the temporary media folder with small pools."""
    cfg = Config()
    cfg.music.media_root = str(media_root)
    cfg.scan.workers = 2
    cfg.scan.queue_depth = 4
    cfg.resample.workers = 2
    cfg.resample.queue_depth = 2
    cfg.database.path = str(tmp_path / "catalog.db")
    return cfg


class FakeResampler:
    """Resampling tool double: writes a header-only FLAC at the target rate."""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls = []

    def run(self, input_path, target_sample_rate):
        self.calls.append((input_path, target_sample_rate))
        if Path(input_path).name in self.fail_on:
            raise ResampleToolError(f"simulated failure on {input_path}")
        temp_path = make_temp_path(input_path)
        Path(temp_path).write_bytes(flac_bytes(target_sample_rate))
        return temp_path


@pytest.fixture
def fake_resampler():
    return FakeResampler()
