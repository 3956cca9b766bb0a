"""Identity-keyed selection of records, decoupled from any UI toolkit.

Selections hold record ids only, so they survive a re-grouping of the same
records and never keep stale record objects alive.
"""

from __future__ import annotations

from collections.abc import Iterable
import re

from core.models import MemoryRecord

SELECTABLE_FIELDS = ("year", "month", "filename", "kind", "date")


def _field_text(record: MemoryRecord, field_name: str) -> str:
    if field_name == "year":
        return record.period_key
    if field_name == "month":
        return record.sub_period_key
    if field_name == "filename":
        return record.target_filename
    if field_name == "kind":
        return record.kind.value
    if field_name == "date":
        return record.timestamp_text
    raise ValueError(f"Unknown selection field: {field_name!r}")


class SelectionService:
    """Track which records are selected for the next batch."""

    def __init__(self) -> None:
        self._ids: set[str] = set()

    def is_selected(self, record: MemoryRecord) -> bool:
        return record.id in self._ids

    def select(self, record: MemoryRecord) -> None:
        self._ids.add(record.id)

    def deselect(self, record: MemoryRecord) -> None:
        self._ids.discard(record.id)

    def toggle(self, record: MemoryRecord) -> None:
        if record.id in self._ids:
            self._ids.remove(record.id)
        else:
            self._ids.add(record.id)

    def select_all(self, records: Iterable[MemoryRecord]) -> None:
        self._ids.update(r.id for r in records)

    def clear(self) -> None:
        self._ids.clear()

    @property
    def count(self) -> int:
        return len(self._ids)

    def selected(self, records: Iterable[MemoryRecord]) -> list[MemoryRecord]:
        """Return the selected members of `records`, in the given order."""
        return [r for r in records if r.id in self._ids]

    def apply(
        self, records: Iterable[MemoryRecord], field_name: str, regex: str, select: bool
    ) -> int:
        """Apply selection for records whose target field matches `regex`.

        Args:
            records: Records to inspect.
            field_name: One of `SELECTABLE_FIELDS`.
            regex: Regular expression searched in the field text.
            select: If True, add matches to the selection; otherwise remove them.

        Returns:
            Number of matching records.
        """
        rx = re.compile(regex)
        matched = 0
        for record in records:
            if not rx.search(_field_text(record, field_name)):
                continue
            matched += 1
            if select:
                self._ids.add(record.id)
            else:
                self._ids.discard(record.id)
        return matched
