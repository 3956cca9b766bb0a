"""Core domain models for media records and their year/month groups."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from urllib.parse import urlsplit

UTC_MARKER = " UTC"
EXPORT_DT_FMT = "%Y-%m-%d %H:%M:%S" + UTC_MARKER

# Stand-in instant for unparseable dates; sorts last when newest comes first.
FAR_PAST = datetime(1, 1, 1, tzinfo=timezone.utc)


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


def parse_export_timestamp(value: str | None) -> datetime | None:
    """Parse an export date such as ``2024-03-05 10:15:30 UTC`` as UTC.

    Returns None if the value is empty or does not match `EXPORT_DT_FMT`.
    """
    if not value:
        return None
    try:
        return datetime.strptime(value, EXPORT_DT_FMT).replace(tzinfo=timezone.utc)
    except (ValueError, TypeError):
        return None


def parse_media_url(value: str | None) -> str | None:
    """Return `value` if it is an absolute http(s) URL with a host, else None."""
    if not value:
        return None
    try:
        parts = urlsplit(value.strip())
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        return None
    return value.strip()


@dataclass(frozen=True)
class MemoryRecord:
    """A single media entry from the export.

    Identity is the `id` alone: two records with the same id compare and hash
    equal, whatever their other fields hold.
    """

    id: str
    timestamp_text: str = field(compare=False)
    media_type: str = field(compare=False)
    primary_link: str = field(compare=False)
    secondary_link: str | None = field(default=None, compare=False)

    @property
    def kind(self) -> MediaKind:
        """Video when the raw type is "video" in any case, otherwise image."""
        if self.media_type.lower() == "video":
            return MediaKind.VIDEO
        return MediaKind.IMAGE

    @property
    def is_video(self) -> bool:
        return self.kind is MediaKind.VIDEO

    @property
    def effective_url(self) -> str | None:
        """Secondary link when parseable, else the primary link, else None."""
        return parse_media_url(self.secondary_link) or parse_media_url(self.primary_link)

    @property
    def taken_at(self) -> datetime | None:
        return parse_export_timestamp(self.timestamp_text)

    @property
    def sort_instant(self) -> datetime:
        """`taken_at`, falling back to `FAR_PAST` for malformed dates."""
        return self.taken_at or FAR_PAST

    @property
    def period_key(self) -> str:
        """Four-digit year of the record."""
        return f"{self.sort_instant.year:04d}"

    @property
    def sub_period_key(self) -> str:
        """Month name of the record, e.g. "March"."""
        return calendar.month_name[self.sort_instant.month]

    @property
    def target_filename(self) -> str:
        """Filesystem-safe date without the UTC marker, e.g. `2024-03-05_10-15-30.jpg`."""
        text = self.timestamp_text
        if text.endswith(UTC_MARKER):
            text = text[: -len(UTC_MARKER)]
        safe = text.replace(":", "-").replace(" ", "_")
        ext = "mp4" if self.is_video else "jpg"
        return f"{safe}.{ext}"


@dataclass(frozen=True)
class MonthGroup:
    """Records of a single month, in their original relative order."""

    month: str
    records: tuple[MemoryRecord, ...] = ()

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class YearGroup:
    """Month groups of a single year, newest month first."""

    year: str
    months: tuple[MonthGroup, ...] = ()

    @property
    def record_count(self) -> int:
        return sum(len(m) for m in self.months)

    def iter_records(self):
        for month in self.months:
            yield from month.records
