"""Exception types shared by the importer, downloader and thumbnail layers."""

from __future__ import annotations


class MemoryFetcherError(Exception):
    """Base class for errors surfaced to the command layer."""


class ParseError(MemoryFetcherError):
    """The export document is malformed or misses a required field."""


class DownloadPermissionError(MemoryFetcherError):
    """The destination directory cannot be accessed for writing.

    Raised before any worker starts, so a batch either runs or does nothing.
    """

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class ThumbnailError(MemoryFetcherError):
    """A thumbnail could not be produced for a record."""
