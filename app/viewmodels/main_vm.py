"""ViewModel for orchestrating JSON import, grouping and batch downloads."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path
import threading

from loguru import logger

from core.errors import DownloadPermissionError, ParseError
from core.models import MemoryRecord, YearGroup
from core.services.grouping_service import GroupingService
from core.services.interfaces import DownloadReport, ProgressCallback
from core.services.sort_service import SortService


@dataclass(frozen=True)
class AppState:
    """Snapshot of everything a view needs to render.

    A new instance replaces the previous one on every change; instances are
    never mutated.
    """

    records: tuple[MemoryRecord, ...] = ()
    groups: tuple[YearGroup, ...] = ()
    status_message: str = "Import JSON to start"
    is_downloading: bool = False
    progress: float = 0.0
    last_error: str | None = None
    last_report: DownloadReport | None = field(default=None, compare=False)


StateListener = Callable[[AppState], None]


class MainVM:
    """Main application view-model.

    Mediates between the importer, the grouping/sorting services and the
    download service. Views read `state` and subscribe for replacements.
    """

    def __init__(
        self,
        repo,
        downloader,
        thumbnails=None,
        grouper: GroupingService | None = None,
        sorter: SortService | None = None,
        default_sort: list[tuple[str, bool]] | None = None,
    ) -> None:
        """Create a MainVM.

        Args:
            repo: Repository with a `load(path)` method returning records.
            downloader: Service with `download_all(records, dest_dir, ...)`.
            thumbnails: Optional service with `get_thumbnail(record, side)`.
            grouper: Grouping service (defaults to `GroupingService`).
            sorter: Sorting service (defaults to `SortService`).
            default_sort: List of (field_name, ascending) applied after load.
        """
        self._repo = repo
        self._downloader = downloader
        self._thumbnails = thumbnails
        self._grouper = grouper or GroupingService()
        self._sorter = sorter or SortService()
        self._default_sort = default_sort or []
        self._listeners: list[StateListener] = []
        self._state = AppState()

    @property
    def state(self) -> AppState:
        return self._state

    def subscribe(self, listener: StateListener) -> None:
        """Register `listener` to receive every new state."""
        self._listeners.append(listener)

    def _set_state(self, **changes) -> AppState:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            listener(self._state)
        return self._state

    def load_json(self, path: str | Path) -> AppState:
        """Load the export at `path`, sort and group it.

        On a parse failure the previous records stay in place and only the
        status message changes.
        """
        try:
            records = self._repo.load(path)
        except ParseError as ex:
            logger.error("Error parsing JSON {}: {}", path, ex)
            return self._set_state(
                status_message=f"Error parsing JSON: {ex}", last_error=str(ex)
            )

        if self._default_sort:
            records = self._sorter.sort(records, self._default_sort)
        groups = self._grouper.group(records)
        return self._set_state(
            records=tuple(records),
            groups=tuple(groups),
            status_message=f"Loaded {len(records)} memories.",
            last_error=None,
        )

    def download_selected(
        self,
        records: Iterable[MemoryRecord],
        dest_dir: str | Path,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> DownloadReport | None:
        """Download `records` into `dest_dir`.

        Returns the batch report, or None when nothing was selected or the
        destination could not be accessed.
        """
        items = list(records)
        if not items:
            return None

        def progress(done: int, total: int) -> None:
            self._set_state(progress=done / total, status_message=f"Saving {done} of {total}...")
            if on_progress is not None:
                on_progress(done, total)

        self._set_state(is_downloading=True, progress=0.0, last_error=None)
        try:
            report = self._downloader.download_all(
                items, dest_dir, on_progress=progress, cancel_event=cancel_event
            )
        except DownloadPermissionError as ex:
            logger.error("Permission error for {}: {}", dest_dir, ex)
            self._set_state(
                is_downloading=False,
                status_message=f"Permission error: {ex.reason}",
                last_error=str(ex),
            )
            return None

        if report.cancelled:
            message = f"Cancelled after {report.completed} of {report.total}"
        else:
            message = f"Saved to {Path(dest_dir).name}"
        if report.failed:
            message += f" ({len(report.failed)} failed)"
        self._set_state(is_downloading=False, status_message=message, last_report=report)
        return report

    def thumbnail(self, record: MemoryRecord, side: int | None = None) -> bytes:
        """Return thumbnail bytes for `record`; raises `ThumbnailError` on failure."""
        if self._thumbnails is None:
            raise RuntimeError("No thumbnail service configured")
        return self._thumbnails.get_thumbnail(record, side)

    @property
    def record_count(self) -> int:
        """Number of records currently loaded."""
        return len(self._state.records)
