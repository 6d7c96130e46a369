"""
Configuration management for Music Mirror
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from music_mirror.exceptions import ConfigError


@dataclass
class MusicConfig:
    """Configuration for the media folder being mirrored."""

    media_root: str = field(default_factory=lambda: str(Path.home() / "Music"))
    supported_formats: List[str] = field(
        default_factory=lambda: [".flac", ".mp3", ".wav"]
    )
    skip_hidden: bool = True  # Dotfiles, including in-flight resample output


@dataclass
class ContributorConfig:
    """Which top-level folder under the media root belongs to which contributor."""

    default: str = "denis"
    # tag -> top-level directory name
    paths: Dict[str, str] = field(
        default_factory=lambda: {"masha": "masha", "denis": "denis"}
    )

    @property
    def allowed(self) -> List[str]:
        """Closed set of contributor tags the catalog accepts."""
        tags = set(self.paths)
        tags.add(self.default)
        return sorted(tags)

    def tag_for_segment(self, segment: Optional[str]) -> str:
        """Map the first path segment under the media root to a contributor tag."""
        if segment:
            folded = segment.casefold()
            for tag, directory in self.paths.items():
                if directory.casefold() == folded:
                    return tag
        return self.default

    def validate(self) -> None:
        """Validate contributor configuration values.

        Raises:
            ConfigError: If the default tag is blank or a tag is not lowercase
        """
        if not self.default:
            raise ConfigError("contributors.default must not be empty")
        for tag in self.allowed:
            if tag != tag.lower() or not tag.strip():
                raise ConfigError(f"Invalid contributor tag: {tag!r}")


@dataclass
class ScanConfig:
    """Configuration for the metadata extraction pool."""

    workers: int = 0  # 0 = os.cpu_count()
    queue_depth: int = 64

    def effective_workers(self) -> int:
        return self.workers or os.cpu_count() or 1


@dataclass
class ResampleConfig:
    """Configuration for downsampling tracks above the playback threshold."""

    enabled: bool = True
    playback_threshold_hz: int = 88200
    workers: int = 2  # Concurrent ffmpeg jobs
    queue_depth: int = 8
    ffmpeg_path: str = "ffmpeg"
    timeout_seconds: int = 600
    target_rates: Dict[str, int] = field(
        default_factory=lambda: {"flac": 88200, "wav": 88200, "mp3": 44100}
    )

    def target_rate_for(self, file_type: str) -> int:
        """Output rate for a format, never above the playback threshold."""
        rate = self.target_rates.get(file_type.lower(), self.playback_threshold_hz)
        return min(rate, self.playback_threshold_hz)


@dataclass
class DatabaseConfig:
    """Configuration for the catalog database."""

    path: Optional[str] = None  # default: ~/.local/share/music-mirror/catalog.db


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = (
        None  # Custom log file path (default: ~/.local/share/music-mirror/music-mirror.log)
    )
    rotation: str = "10 MB"
    retention: int = 5  # Number of rotated files to keep
    console_output: bool = False  # Also output to stderr (for debugging)


@dataclass
class Config:
    """Main configuration container."""

    music: MusicConfig = field(default_factory=MusicConfig)
    contributors: ContributorConfig = field(default_factory=ContributorConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    resample: ResampleConfig = field(default_factory=ResampleConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Validate the whole configuration.

        Raises:
            ConfigError: If any section holds an invalid value
        """
        self.contributors.validate()
        if self.resample.playback_threshold_hz <= 0:
            raise ConfigError("resample.playback_threshold_hz must be positive")
        if self.scan.workers < 0:
            raise ConfigError("scan.workers must be >= 0")
        if self.resample.workers < 1:
            raise ConfigError("resample.workers must be >= 1")
        if self.scan.queue_depth < 1 or self.resample.queue_depth < 1:
            raise ConfigError("queue_depth must be >= 1")
        for rate in self.resample.target_rates.values():
            if rate <= 0:
                raise ConfigError(f"Invalid resample target rate: {rate}")


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "music-mirror"
    return Path.home() / ".config" / "music-mirror"


def get_data_dir() -> Path:
    """Get the data directory path."""
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "music-mirror"
    return Path.home() / ".local" / "share" / "music-mirror"


def get_config_path() -> Path:
    """Get the main configuration file path.

    Checks for config.toml in the following order:
    1. MUSIC_MIRROR_CONFIG environment variable
    2. Current working directory
    3. XDG_CONFIG_HOME/music-mirror (or ~/.config/music-mirror)
    """
    explicit = os.environ.get("MUSIC_MIRROR_CONFIG")
    if explicit:
        return Path(explicit).expanduser()

    local_config = Path.cwd() / "config.toml"
    if local_config.exists():
        return local_config

    return get_config_dir() / "config.toml"


def create_default_config() -> str:
    """Create a default configuration TOML content."""
    return """
# Music Mirror Configuration

[music]
# Folder whose audio files the catalog mirrors
media_root = "~/Music"

# Extensions considered audio (everything else is ignored before extraction)
supported_formats = [".flac", ".mp3", ".wav"]

# Skip dotfiles and dot-directories
skip_hidden = true

[contributors]
# Tag used for files outside every mapped folder
default = "denis"

[contributors.paths]
# tag = "top-level folder under media_root"
masha = "masha"
denis = "denis"

[scan]
# Metadata extraction threads (0 = number of CPUs)
workers = 0
# Maximum files waiting for a worker
queue_depth = 64

[resample]
enabled = true
# Browsers refuse to play anything above this rate
playback_threshold_hz = 88200
# Concurrent ffmpeg jobs
workers = 2
queue_depth = 8
ffmpeg_path = "ffmpeg"
timeout_seconds = 600

[resample.target_rates]
flac = 88200
wav = 88200
mp3 = 44100

[database]
# path = "~/.local/share/music-mirror/catalog.db"

[logging]
# Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL
level = "INFO"

# Custom log file path (default: ~/.local/share/music-mirror/music-mirror.log)
# log_file = "/path/to/custom.log"

rotation = "10 MB"
retention = 5

# Also output logs to stderr
console_output = false
"""


def _parse_config(toml_data: dict) -> Config:
    """Build a Config from parsed TOML, falling back to defaults per key."""
    config = Config()

    if "music" in toml_data:
        music_data = toml_data["music"]
        config.music = MusicConfig(
            media_root=str(
                Path(music_data.get("media_root", config.music.media_root)).expanduser()
            ),
            supported_formats=[
                ext.lower() if ext.startswith(".") else f".{ext.lower()}"
                for ext in music_data.get(
                    "supported_formats", config.music.supported_formats
                )
            ],
            skip_hidden=music_data.get("skip_hidden", config.music.skip_hidden),
        )

    if "contributors" in toml_data:
        contributor_data = toml_data["contributors"]
        config.contributors = ContributorConfig(
            default=contributor_data.get("default", config.contributors.default),
            paths=dict(contributor_data.get("paths", config.contributors.paths)),
        )

    if "scan" in toml_data:
        scan_data = toml_data["scan"]
        config.scan = ScanConfig(
            workers=scan_data.get("workers", config.scan.workers),
            queue_depth=scan_data.get("queue_depth", config.scan.queue_depth),
        )

    if "resample" in toml_data:
        resample_data = toml_data["resample"]
        target_rates = dict(config.resample.target_rates)
        target_rates.update(
            {k.lower(): v for k, v in resample_data.get("target_rates", {}).items()}
        )
        config.resample = ResampleConfig(
            enabled=resample_data.get("enabled", config.resample.enabled),
            playback_threshold_hz=resample_data.get(
                "playback_threshold_hz", config.resample.playback_threshold_hz
            ),
            workers=resample_data.get("workers", config.resample.workers),
            queue_depth=resample_data.get(
                "queue_depth", config.resample.queue_depth
            ),
            ffmpeg_path=resample_data.get(
                "ffmpeg_path", config.resample.ffmpeg_path
            ),
            timeout_seconds=resample_data.get(
                "timeout_seconds", config.resample.timeout_seconds
            ),
            target_rates=target_rates,
        )

    if "database" in toml_data:
        db_path = toml_data["database"].get("path")
        config.database = DatabaseConfig(
            path=str(Path(db_path).expanduser()) if db_path else None
        )

    if "logging" in toml_data:
        logging_data = toml_data["logging"]
        config.logging = LoggingConfig(
            level=logging_data.get("level", config.logging.level),
            log_file=logging_data.get("log_file", config.logging.log_file),
            rotation=logging_data.get("rotation", config.logging.rotation),
            retention=logging_data.get("retention", config.logging.retention),
            console_output=logging_data.get(
                "console_output", config.logging.console_output
            ),
        )

    return config


def _apply_env_overrides(config: Config) -> None:
    """Environment variables win over config.toml."""
    media_root = os.environ.get("MUSIC_MIRROR_MEDIA_ROOT")
    if media_root:
        config.music.media_root = str(Path(media_root).expanduser())

    db_path = os.environ.get("MUSIC_MIRROR_DB_PATH")
    if db_path:
        config.database.path = str(Path(db_path).expanduser())

    ffmpeg_path = os.environ.get("MUSIC_MIRROR_FFMPEG")
    if ffmpeg_path:
        config.resample.ffmpeg_path = ffmpeg_path

    threshold = os.environ.get("MUSIC_MIRROR_THRESHOLD_HZ")
    if threshold:
        try:
            config.resample.playback_threshold_hz = int(threshold)
        except ValueError as e:
            raise ConfigError(
                f"MUSIC_MIRROR_THRESHOLD_HZ must be an integer, got {threshold!r}"
            ) from e


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file or create default.

    Environment variables override TOML values:
    - MUSIC_MIRROR_MEDIA_ROOT
    - MUSIC_MIRROR_DB_PATH
    - MUSIC_MIRROR_FFMPEG
    - MUSIC_MIRROR_THRESHOLD_HZ

    Raises:
        ConfigError: If the file cannot be parsed or holds invalid values
    """
    # Load .env file from config directory if it exists
    from dotenv import load_dotenv

    env_path = get_config_dir() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config_path = config_path or get_config_path()

    if not config_path.exists():
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_default_config())
        logger.info(f"Created default configuration at: {config_path}")
        config = Config()
    else:
        try:
            with open(config_path, "rb") as f:
                toml_data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(
                f"Error loading configuration from {config_path}: {e}"
            ) from e
        config = _parse_config(toml_data)

    _apply_env_overrides(config)
    config.validate()
    return config


def ensure_directories() -> None:
    """Ensure all necessary directories exist."""
    get_config_dir().mkdir(parents=True, exist_ok=True)
    get_data_dir().mkdir(parents=True, exist_ok=True)
