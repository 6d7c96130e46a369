"""Music Mirror - keeps a music catalog in step with the media folder it describes."""

__version__ = "0.1.0"
