"""
Unified output system using Loguru.
Everything user-facing goes to the log file and, unless silenced, the console.
"""

import sys
import threading
from pathlib import Path
from typing import Optional

from loguru import logger

from .console import get_console

_LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}"

_quiet_mode = False
_quiet_lock = threading.Lock()


def setup_loguru(
    log_file: Path,
    level: str = "INFO",
    rotation: str = "10 MB",
    retention: int = 5,
    console_output: bool = False,
) -> None:
    """
    Configure loguru for file logging, optionally mirrored to stderr.

    Args:
        log_file: Path to log file
        level: Minimum level for file logging (DEBUG, INFO, WARNING, ERROR)
        rotation: Size or age at which the log file rotates
        retention: Number of rotated files to keep
        console_output: Also emit log records on stderr
    """
    # Remove default handler
    logger.remove()

    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_file,
        rotation=rotation,
        retention=retention,
        level=level,
        format=_LOG_FORMAT,
        enqueue=False,  # Synchronous writes (thread-safe but blocking)
    )

    if console_output:
        logger.add(sys.stderr, level=level, format=_LOG_FORMAT)

    logger.info(f"Loguru initialized: {log_file} (level={level})")


def set_quiet_mode(quiet: bool) -> None:
    """Suppress console echo from log() (file logging continues)."""
    global _quiet_mode
    with _quiet_lock:
        _quiet_mode = quiet


def log(message: str, level: str = "info", style: Optional[str] = None) -> None:
    """
    Unified logging: writes to file AND prints to the console.

    Use this instead of print() for user-facing messages that should also be logged.

    Args:
        message: User-facing message
        level: Log level (debug, info, warning, error)
        style: Optional Rich style for the console echo
    """
    log_func = getattr(logger, level)
    log_func(message)

    with _quiet_lock:
        if _quiet_mode:
            return

    if style is None:
        style = {"warning": "yellow", "error": "red", "debug": "cyan"}.get(level)
    get_console().print(message, style=style, markup=False, highlight=False)
