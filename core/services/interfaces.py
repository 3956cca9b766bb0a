"""Core service interfaces and shared data structures.

This module defines the per-record fetch outcome and the aggregate batch
report used across the infrastructure and command layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from core.models import MemoryRecord

ProgressCallback = Callable[[int, int], None]


class FetchStatus(str, Enum):
    SAVED = "saved"
    SKIPPED = "skipped"
    FAILED = "failed"


class FailureReason(str, Enum):
    INVALID_URL = "invalid_url"
    TRANSFER = "transfer"
    WRITE = "write"


@dataclass(frozen=True)
class FetchOutcome:
    """Terminal result of fetching one record.

    Attributes:
        record: The record that was fetched.
        status: Saved, skipped (target already present) or failed.
        path: Target path the record maps to.
        reason: Failure category, set only when `status` is FAILED.
        detail: Human-readable failure detail.
    """

    record: MemoryRecord
    status: FetchStatus
    path: str
    reason: FailureReason | None = None
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is not FetchStatus.FAILED


@dataclass
class DownloadReport:
    """Outcome of a batch download.

    Attributes:
        total: Number of records submitted.
        outcomes: One outcome per resolved record, in completion order.
        cancelled: True when admission stopped before every record ran.
    """

    total: int = 0
    outcomes: list[FetchOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def completed(self) -> int:
        return len(self.outcomes)

    def _with_status(self, status: FetchStatus) -> list[FetchOutcome]:
        return [o for o in self.outcomes if o.status is status]

    @property
    def saved(self) -> list[FetchOutcome]:
        return self._with_status(FetchStatus.SAVED)

    @property
    def skipped(self) -> list[FetchOutcome]:
        return self._with_status(FetchStatus.SKIPPED)

    @property
    def failed(self) -> list[FetchOutcome]:
        return self._with_status(FetchStatus.FAILED)

    @property
    def succeeded(self) -> int:
        """Saved and skipped together, as counted for progress messages."""
        return self.completed - len(self.failed)
