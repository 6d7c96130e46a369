"""Domain layer - library scanning, catalog sync and resampling."""
