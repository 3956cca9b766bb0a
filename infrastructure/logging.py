"""Logging initialization utilities using loguru."""

from __future__ import annotations

import os
from pathlib import Path
import sys

from loguru import logger

APP_DIR_NAME = "MemoryFetcher"
LOG_FILE_PATTERN = "app_*.log"


def get_log_directory() -> str:
    """Per-user log directory: %LOCALAPPDATA% on Windows, XDG state dir elsewhere."""
    if os.name == "nt":
        base = os.environ.get("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
    else:
        base = os.environ.get("XDG_STATE_HOME") or str(Path.home() / ".local" / "state")
    return str(Path(base) / APP_DIR_NAME / "logs")


def init_logging(
    log_dir: str | None = None, level: str = "INFO", console_level: str | None = None
) -> Path:
    """Initialize rotating file logging under the given directory.

    Args:
        log_dir: Target directory; defaults to `get_log_directory()`.
        level: Minimum level written to the file sink.
        console_level: When set, also echo records at this level to stderr.

    Returns:
        The directory the log files are written to.
    """
    log_path = Path(log_dir or get_log_directory()).expanduser()
    log_path.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(
        str(log_path / "app_{time:YYYYMMDD}.log"),
        rotation="10 MB",
        retention="10 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        level=level,
    )
    if console_level:
        logger.add(sys.stderr, level=console_level, format="{level}: {message}")
    logger.debug("Logging to {} at level {}", log_path, level)
    return log_path


def find_latest_log_file(log_dir: str | None = None) -> Path | None:
    """Newest `app_*.log` in `log_dir`, or None when there is none."""
    log_path = Path(log_dir or get_log_directory()).expanduser()
    try:
        candidates = [p for p in log_path.glob(LOG_FILE_PATTERN) if p.is_file()]
        return max(candidates, key=lambda p: p.stat().st_mtime, default=None)
    except OSError:
        return None
