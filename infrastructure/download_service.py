"""Batch download of media records to a local directory.

Provides the single-record fetch (skip when present, fetch, write, restamp)
and a coordinator that runs fetches on a fixed-size thread pool as a sliding
window, reporting progress from the coordinating thread only.
"""

from __future__ import annotations

from collections.abc import Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
import os
from pathlib import Path
import tempfile
import threading
from typing import Any

from loguru import logger
import requests
from requests.adapters import HTTPAdapter

from core.models import MemoryRecord
from core.services.interfaces import (
    DownloadReport,
    FailureReason,
    FetchOutcome,
    FetchStatus,
    ProgressCallback,
)
from infrastructure.utils import destination_access, set_file_times

DEFAULT_CONCURRENCY = 5
DEFAULT_TIMEOUT_SECONDS = 60


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


# Read once; os.umask can only be queried by setting it, which is not thread-safe.
_UMASK = _current_umask()


def _build_session(pool_size: int) -> requests.Session:
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class DownloadService:
    """Coordinates record fetches and aggregates their outcomes."""

    def __init__(
        self,
        session: Any | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Create a DownloadService.

        Args:
            session: Object with a requests-compatible `get(url, timeout=...)`;
                defaults to a pooled `requests.Session`.
            concurrency: Default number of fetches in flight per batch.
            timeout: Per-request timeout in seconds.
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._concurrency = concurrency
        self._timeout = timeout
        self._session = session if session is not None else _build_session(concurrency)

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def fetch(self, record: MemoryRecord, dest_dir: str | Path) -> FetchOutcome:
        """Download one record into `dest_dir`; never raises."""
        target = Path(dest_dir) / record.target_filename
        if target.parent != Path(dest_dir) or record.target_filename.startswith("."):
            logger.error(
                "Refusing unsafe filename {!r} (id={})", record.target_filename, record.id
            )
            return self._failed(record, target, FailureReason.WRITE, "Unsafe target filename")

        if target.exists():
            logger.debug("Skipping existing file {}", target)
            return FetchOutcome(record=record, status=FetchStatus.SKIPPED, path=str(target))

        url = record.effective_url
        if url is None:
            logger.error("No valid URL for {} (id={})", record.target_filename, record.id)
            return self._failed(record, target, FailureReason.INVALID_URL, "No valid source URL")

        try:
            response = self._session.get(url, timeout=self._timeout)
            response.raise_for_status()
            data = response.content
        except requests.RequestException as ex:
            logger.error("Download error for {}: {}", record.target_filename, ex)
            return self._failed(record, target, FailureReason.TRANSFER, str(ex))

        try:
            self._write_replace(target, data)
        except OSError as ex:
            logger.error("Write error for {}: {}", target, ex)
            return self._failed(record, target, FailureReason.WRITE, str(ex))

        taken_at = record.taken_at
        if taken_at is not None:
            set_file_times(target, taken_at)
        logger.info("Saved {} ({} bytes)", target, len(data))
        return FetchOutcome(record=record, status=FetchStatus.SAVED, path=str(target))

    def download_all(
        self,
        records: Iterable[MemoryRecord],
        dest_dir: str | Path,
        concurrency: int | None = None,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> DownloadReport:
        """Fetch `records` into `dest_dir` with at most `concurrency` in flight.

        Args:
            records: Records to download. An empty collection is a no-op.
            dest_dir: Existing, writable directory.
            concurrency: Pool size; defaults to the service's setting.
            on_progress: Called as (completed, total) after each record resolves.
            cancel_event: When set, no further records are admitted; in-flight
                records still finish and the report is marked cancelled.

        Raises:
            DownloadPermissionError: If `dest_dir` cannot be written. No fetch
                is attempted in that case.
            ValueError: If `concurrency` is less than 1.
        """
        workers = self._concurrency if concurrency is None else concurrency
        if workers < 1:
            raise ValueError(f"concurrency must be >= 1, got {workers}")
        items = list(records)
        report = DownloadReport(total=len(items))
        if not items:
            return report

        workers = min(workers, len(items))
        with destination_access(dest_dir) as dest:
            logger.info(
                "Downloading {} records to {} with {} workers", len(items), dest, workers
            )
            items_iter = iter(items)
            futures: dict[Future[FetchOutcome], MemoryRecord] = {}

            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as executor:

                def submit_next() -> bool:
                    if cancel_event is not None and cancel_event.is_set():
                        return False
                    try:
                        record = next(items_iter)
                    except StopIteration:
                        return False
                    futures[executor.submit(self.fetch, record, dest)] = record
                    return True

                while len(futures) < workers and submit_next():
                    pass

                while futures:
                    done, _ = wait(futures, return_when=FIRST_COMPLETED)
                    for future in done:
                        record = futures.pop(future)
                        report.outcomes.append(self._resolve(future, record, dest))
                        if on_progress is not None:
                            on_progress(report.completed, report.total)

                    while len(futures) < workers and submit_next():
                        pass

        report.cancelled = report.completed < report.total
        logger.info(
            "Batch finished: {} saved, {} skipped, {} failed of {}{}",
            len(report.saved),
            len(report.skipped),
            len(report.failed),
            report.total,
            " (cancelled)" if report.cancelled else "",
        )
        return report

    def _resolve(
        self, future: Future[FetchOutcome], record: MemoryRecord, dest: Path
    ) -> FetchOutcome:
        try:
            return future.result()
        except Exception as ex:  # pylint: disable=broad-exception-caught
            logger.exception("Unexpected error fetching {}: {}", record.target_filename, ex)
            return self._failed(
                record, dest / record.target_filename, FailureReason.TRANSFER, str(ex)
            )

    @staticmethod
    def _write_replace(target: Path, data: bytes) -> None:
        """Write `data` beside `target` and move it into place in one step."""
        fd, tmp_name = tempfile.mkstemp(
            dir=target.parent, prefix=f".{target.name}.", suffix=".part"
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            if os.name != "nt":
                os.chmod(tmp_name, 0o666 & ~_UMASK)
            os.replace(tmp_name, target)
        except OSError:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    @staticmethod
    def _failed(
        record: MemoryRecord, target: Path, reason: FailureReason, detail: str
    ) -> FetchOutcome:
        return FetchOutcome(
            record=record,
            status=FetchStatus.FAILED,
            path=str(target),
            reason=reason,
            detail=detail,
        )
