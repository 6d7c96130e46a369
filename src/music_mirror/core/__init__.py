"""Core infrastructure layer - no business logic dependencies.

This module provides foundation-level services:
- Configuration management (TOML)
- Catalog database (SQLite)
- Bounded worker pool
- Logging and console output (Loguru, Rich)
"""
