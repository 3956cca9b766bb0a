"""Filesystem helpers for download targets.

Covers the destination access check and timestamp preservation. Timestamp
updates are best-effort: callers get a boolean and decide how loudly to
report a failure.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import ctypes
from datetime import datetime
import os
from pathlib import Path

from loguru import logger

from core.errors import DownloadPermissionError

# Seconds between 1601-01-01 (FILETIME epoch) and 1970-01-01
_FILETIME_EPOCH_OFFSET = 11644473600


@contextmanager
def destination_access(dest_dir: str | Path) -> Iterator[Path]:
    """Hold write access to `dest_dir` for the duration of a batch.

    Raises `DownloadPermissionError` before yielding when the directory is
    missing, not a directory, or not writable.
    """
    path = Path(dest_dir)
    if not path.exists():
        raise DownloadPermissionError(str(path), "directory does not exist")
    if not path.is_dir():
        raise DownloadPermissionError(str(path), "not a directory")
    if not os.access(path, os.W_OK | os.X_OK):
        raise DownloadPermissionError(str(path), "directory is not writable")

    logger.debug("Acquired destination {}", path)
    try:
        yield path
    finally:
        logger.debug("Released destination {}", path)


def _set_windows_creation_time(path: str, when: datetime) -> None:
    """Set NTFS creation time via `SetFileTime`; raises OSError on failure."""
    from ctypes import wintypes  # pylint: disable=import-outside-toplevel

    kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
    ticks = int((when.timestamp() + _FILETIME_EPOCH_OFFSET) * 10_000_000)
    ft = wintypes.FILETIME(ticks & 0xFFFFFFFF, ticks >> 32)

    generic_write = 0x40000000
    open_existing = 3
    file_attribute_normal = 0x80
    handle = kernel32.CreateFileW(
        str(path), generic_write, 0, None, open_existing, file_attribute_normal, None
    )
    if handle in (-1, 0, None):
        raise ctypes.WinError()  # type: ignore[attr-defined]
    try:
        if not kernel32.SetFileTime(handle, ctypes.byref(ft), None, None):
            raise ctypes.WinError()  # type: ignore[attr-defined]
    finally:
        kernel32.CloseHandle(handle)


def set_file_times(path: str | Path, when: datetime) -> bool:
    """Stamp `path` with `when` as access, modification and (Windows) creation time.

    On macOS, moving the modification time before the birth time also moves
    the birth time. Returns False if any step failed.
    """
    ts = when.timestamp()
    try:
        os.utime(path, (ts, ts))
        if os.name == "nt":
            _set_windows_creation_time(str(path), when)
        return True
    except (OSError, ValueError, OverflowError) as ex:
        logger.warning("Setting timestamps failed for {}: {}", path, ex)
        return False
