from __future__ import annotations

import json
from pathlib import Path
import threading
import time

import pytest
import requests

from core.models import MemoryRecord


class FakeResponse:
    def __init__(self, content: bytes = b"", status_code: int = 200) -> None:
        self.content = content
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")


class FakeSession:
    """Stands in for `requests.Session` and records concurrency.

    `payloads` maps URL -> bytes, HTTP status int, or an exception to raise.
    """

    def __init__(
        self,
        payloads: dict[str, object] | None = None,
        default: bytes = b"media-bytes",
        delay: float = 0.0,
    ) -> None:
        self.payloads = payloads or {}
        self.default = default
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def get(self, url: str, timeout: float | None = None) -> FakeResponse:
        with self._lock:
            self.calls.append(url)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            payload = self.payloads.get(url, self.default)
            if isinstance(payload, BaseException):
                raise payload
            if isinstance(payload, int):
                return FakeResponse(status_code=payload)
            return FakeResponse(payload)
        finally:
            with self._lock:
                self.active -= 1


def make_entry(
    date: str = "2024-03-05 10:15:30 UTC",
    media_type: str = "Image",
    link: str = "https://example.com/dl?id=1",
    media_url: str | None = None,
    **extra,
) -> dict:
    entry = {"Date": date, "Media Type": media_type, "Download Link": link}
    if media_url is not None:
        entry["Media Download Url"] = media_url
    entry.update(extra)
    return entry


def make_export(entries: list[dict]) -> bytes:
    return json.dumps({"Saved Media": entries}).encode("utf-8")


def make_record(
    record_id: str = "r1",
    date: str = "2024-03-05 10:15:30 UTC",
    media_type: str = "Image",
    link: str = "https://example.com/dl?id=1",
    media_url: str | None = None,
) -> MemoryRecord:
    return MemoryRecord(
        id=record_id,
        timestamp_text=date,
        media_type=media_type,
        primary_link=link,
        secondary_link=media_url,
    )


@pytest.fixture()
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture()
def export_file(tmp_path: Path) -> Path:
    """Export with three records over two years."""
    path = tmp_path / "memories_history.json"
    path.write_bytes(
        make_export(
            [
                make_entry("2023-06-01 08:00:00 UTC", "Image", "https://example.com/a"),
                make_entry("2024-06-02 09:30:00 UTC", "Video", "https://example.com/b"),
                make_entry(
                    "2023-06-20 21:45:10 UTC",
                    "Image",
                    "https://example.com/c",
                    "https://cdn.example.com/c.jpg",
                ),
            ]
        )
    )
    return path
