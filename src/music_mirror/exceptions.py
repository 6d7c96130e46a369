"""Exceptions raised by music-mirror.

Per-file problems (unreadable tags, a failed resample) are recorded and the
batch keeps going. Anything raised from here ends the run it happened in.
"""


class MusicMirrorError(Exception):
    """Base exception for music-mirror operations."""

    pass


class ConfigError(MusicMirrorError):
    """Raised when config.toml holds an invalid value."""

    pass


class ScanRootError(MusicMirrorError):
    """Raised when the media root is missing or cannot be listed."""

    pass


class ScanCancelledError(MusicMirrorError):
    """Raised when a sync is asked to reconcile a cancelled scan."""

    pass


class CatalogStoreError(MusicMirrorError):
    """Raised when the catalog file cannot be opened or read."""

    pass


class CatalogApplyError(MusicMirrorError):
    """Raised when a mutation plan fails to commit. Nothing from the plan is kept."""

    pass


class ResampleToolError(MusicMirrorError):
    """Raised by a resampling tool when it cannot produce output for a file."""

    pass


class InvariantViolation(MusicMirrorError):
    """Raised when a catalog invariant breaks. Indicates a bug, not bad input."""

    pass


class IdentityCollisionError(InvariantViolation):
    """Raised when two different keys map to the same derived identifier."""

    pass


class PlanOrderingError(InvariantViolation):
    """Raised when a mutation plan would leave a dangling foreign key."""

    pass
