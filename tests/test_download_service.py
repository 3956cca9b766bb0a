"""Unit tests for DownloadService fetch and batch behavior."""

from datetime import datetime, timezone
import os
from pathlib import Path
import stat
import threading

import pytest
import requests

from core.errors import DownloadPermissionError
from core.services.interfaces import FailureReason, FetchStatus
from infrastructure import download_service
from infrastructure.download_service import DownloadService
from tests.conftest import FakeSession, make_record


def _batch(n: int, kind: str = "Image"):
    return [
        make_record(
            f"r{i}",
            date=f"2024-01-{i % 28 + 1:02d} {i % 24:02d}:00:00 UTC",
            media_type=kind,
            link=f"https://example.com/{i}",
        )
        for i in range(n)
    ]


class TestFetch:
    def test_saves_file_and_sets_timestamp(self, tmp_path: Path, fake_session: FakeSession):
        rec = make_record(date="2021-07-04 12:30:00 UTC", media_type="video")
        outcome = DownloadService(session=fake_session).fetch(rec, tmp_path)

        target = tmp_path / "2021-07-04_12-30-00.mp4"
        assert outcome.status is FetchStatus.SAVED
        assert outcome.path == str(target)
        assert target.read_bytes() == b"media-bytes"
        expected = datetime(2021, 7, 4, 12, 30, tzinfo=timezone.utc).timestamp()
        assert os.stat(target).st_mtime == pytest.approx(expected)

    def test_no_temp_files_left(self, tmp_path: Path, fake_session: FakeSession):
        DownloadService(session=fake_session).fetch(make_record(), tmp_path)
        assert [p.name for p in tmp_path.iterdir()] == ["2024-03-05_10-15-30.jpg"]

    def test_uses_secondary_url(self, tmp_path: Path, fake_session: FakeSession):
        rec = make_record(link="https://example.com/a", media_url="https://cdn.example.com/a.jpg")
        DownloadService(session=fake_session).fetch(rec, tmp_path)
        assert fake_session.calls == ["https://cdn.example.com/a.jpg"]

    def test_existing_file_skipped_without_network(self, tmp_path: Path, fake_session):
        rec = make_record()
        target = tmp_path / rec.target_filename
        target.write_bytes(b"original")
        outcome = DownloadService(session=fake_session).fetch(rec, tmp_path)
        assert outcome.status is FetchStatus.SKIPPED
        assert outcome.succeeded
        assert target.read_bytes() == b"original"
        assert fake_session.calls == []

    def test_invalid_url(self, tmp_path: Path, fake_session: FakeSession):
        rec = make_record(link="not-a-url")
        outcome = DownloadService(session=fake_session).fetch(rec, tmp_path)
        assert outcome.status is FetchStatus.FAILED
        assert outcome.reason is FailureReason.INVALID_URL
        assert fake_session.calls == []

    @pytest.mark.parametrize("payload", [404, requests.ConnectionError("boom"), requests.Timeout()])
    def test_transfer_error(self, tmp_path: Path, payload):
        rec = make_record(link="https://example.com/x")
        session = FakeSession({"https://example.com/x": payload})
        outcome = DownloadService(session=session).fetch(rec, tmp_path)
        assert outcome.status is FetchStatus.FAILED
        assert outcome.reason is FailureReason.TRANSFER
        assert not (tmp_path / rec.target_filename).exists()

    def test_write_error_cleans_up(self, tmp_path: Path, fake_session, monkeypatch):
        def _fail(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", _fail)
        outcome = DownloadService(session=fake_session).fetch(make_record(), tmp_path)
        assert outcome.status is FetchStatus.FAILED
        assert outcome.reason is FailureReason.WRITE
        assert "disk full" in outcome.detail
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.parametrize("date", ["../../etc/evil", "sub/dir 00:00:00 UTC", ".hidden"])
    def test_unsafe_filename_refused(self, tmp_path: Path, fake_session, date: str):
        outcome = DownloadService(session=fake_session).fetch(make_record(date=date), tmp_path)
        assert outcome.status is FetchStatus.FAILED
        assert outcome.reason is FailureReason.WRITE
        assert fake_session.calls == []

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
    def test_saved_file_mode_follows_umask(self, tmp_path: Path, fake_session, monkeypatch):
        monkeypatch.setattr(download_service, "_UMASK", 0o022)
        rec = make_record()
        DownloadService(session=fake_session).fetch(rec, tmp_path)
        mode = stat.S_IMODE((tmp_path / rec.target_filename).stat().st_mode)
        assert mode == 0o644

    def test_malformed_date_saved_without_restamp(self, tmp_path: Path, fake_session):
        rec = make_record(date="sometime")
        outcome = DownloadService(session=fake_session).fetch(rec, tmp_path)
        assert outcome.status is FetchStatus.SAVED
        assert (tmp_path / "sometime.jpg").exists()


class TestDownloadAll:
    def test_empty_is_noop(self, tmp_path: Path, fake_session: FakeSession):
        calls = []
        report = DownloadService(session=fake_session).download_all(
            [], tmp_path / "missing", on_progress=lambda d, t: calls.append((d, t))
        )
        assert report.total == 0 and report.outcomes == []
        assert calls == []

    def test_progress_is_monotonic_and_complete(self, tmp_path: Path):
        session = FakeSession(delay=0.005)
        records = _batch(12)
        progress: list[tuple[int, int]] = []
        report = DownloadService(session=session, concurrency=4).download_all(
            records, tmp_path, on_progress=lambda d, t: progress.append((d, t))
        )
        assert progress == [(i, 12) for i in range(1, 13)]
        assert report.completed == 12
        assert len(report.saved) == 12
        assert not report.cancelled

    def test_progress_reported_on_coordinating_thread(self, tmp_path: Path, fake_session):
        threads = set()
        DownloadService(session=fake_session, concurrency=3).download_all(
            _batch(6), tmp_path, on_progress=lambda d, t: threads.add(threading.get_ident())
        )
        assert threads == {threading.get_ident()}

    def test_concurrency_bound(self, tmp_path: Path):
        session = FakeSession(delay=0.02)
        DownloadService(session=session).download_all(_batch(20), tmp_path, concurrency=3)
        assert len(session.calls) == 20
        assert 2 <= session.max_active <= 3

    def test_default_concurrency_bound(self, tmp_path: Path):
        session = FakeSession(delay=0.01)
        service = DownloadService(session=session)
        service.download_all(_batch(15), tmp_path)
        assert service.concurrency == 5
        assert session.max_active <= 5

    def test_idempotent_second_run(self, tmp_path: Path, fake_session: FakeSession):
        service = DownloadService(session=fake_session)
        records = _batch(5)
        first = service.download_all(records, tmp_path)
        files = sorted(p.name for p in tmp_path.iterdir())
        calls_after_first = len(fake_session.calls)

        second = service.download_all(records, tmp_path)
        assert len(first.saved) == 5
        assert len(second.skipped) == 5
        assert second.succeeded == 5
        assert len(fake_session.calls) == calls_after_first
        assert sorted(p.name for p in tmp_path.iterdir()) == files

    def test_failures_do_not_abort_batch(self, tmp_path: Path):
        records = _batch(6)
        session = FakeSession(
            {
                "https://example.com/1": requests.ConnectionError("reset"),
                "https://example.com/4": 500,
            }
        )
        records.append(make_record("bad", date="2024-02-01 00:00:00 UTC", link="nope"))
        report = DownloadService(session=session, concurrency=2).download_all(records, tmp_path)
        assert report.completed == 7
        assert len(report.saved) == 4
        reasons = sorted(o.reason.value for o in report.failed)
        assert reasons == ["invalid_url", "transfer", "transfer"]

    def test_unexpected_worker_error_contained(self, tmp_path: Path):
        records = _batch(3)
        session = FakeSession({"https://example.com/0": RuntimeError("surprise")})
        report = DownloadService(session=session).download_all(records, tmp_path)
        assert report.completed == 3
        assert [o.record.id for o in report.failed] == ["r0"]

    def test_missing_destination_fails_before_any_fetch(self, tmp_path: Path, fake_session):
        with pytest.raises(DownloadPermissionError):
            DownloadService(session=fake_session).download_all(_batch(3), tmp_path / "nope")
        assert fake_session.calls == []

    def test_destination_is_file(self, tmp_path: Path, fake_session: FakeSession):
        not_dir = tmp_path / "file.txt"
        not_dir.write_text("x")
        with pytest.raises(DownloadPermissionError, match="not a directory"):
            DownloadService(session=fake_session).download_all(_batch(1), not_dir)

    def test_cancel_stops_admission(self, tmp_path: Path, fake_session: FakeSession):
        cancel = threading.Event()
        progress = []

        def on_progress(done, total):
            progress.append(done)
            cancel.set()

        report = DownloadService(session=fake_session, concurrency=1).download_all(
            _batch(5), tmp_path, on_progress=on_progress, cancel_event=cancel
        )
        assert report.cancelled
        assert report.completed == 1
        assert progress == [1]
        assert len(fake_session.calls) == 1

    def test_cancel_before_start(self, tmp_path: Path, fake_session: FakeSession):
        cancel = threading.Event()
        cancel.set()
        report = DownloadService(session=fake_session).download_all(
            _batch(3), tmp_path, cancel_event=cancel
        )
        assert report.cancelled
        assert report.completed == 0
        assert fake_session.calls == []

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            DownloadService(session=FakeSession(), concurrency=0)

    @pytest.mark.parametrize("concurrency", [0, -2])
    def test_invalid_batch_concurrency(self, tmp_path: Path, fake_session, concurrency: int):
        with pytest.raises(ValueError, match="concurrency"):
            DownloadService(session=fake_session).download_all(
                _batch(2), tmp_path, concurrency=concurrency
            )
        assert fake_session.calls == []
