"""Sorting service for `MemoryRecord` collections.

The service performs stable multi-key sorting across records, handling None
values and per-key ascending/descending ordering without mutating the input.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from core.models import MemoryRecord

# Fields whose raw value is replaced by a sortable substitute
_SORT_ALIASES = {"taken_at": "sort_instant"}


class SortService:
    """Provides sorting utilities for record lists."""

    def sort(
        self, records: Iterable[MemoryRecord], sort_keys: list[tuple[str, bool]]
    ) -> list[MemoryRecord]:
        """Return records sorted by the provided keys.

        Args:
            records: Records to sort.
            sort_keys: List of tuples (field_name, ascending), most significant first.
        """
        items = list(records)
        if not sort_keys:
            return items

        # Stable sort from the least significant key up
        for field_name, ascending in reversed(sort_keys):
            attr = _SORT_ALIASES.get(field_name, field_name)
            present = [r for r in items if self._value(r, attr) is not None]
            missing = [r for r in items if self._value(r, attr) is None]
            present.sort(key=lambda r, a=attr: self._value(r, a), reverse=not ascending)
            items = present + missing
        return items

    @staticmethod
    def _value(record: MemoryRecord, attr: str) -> Any:
        value = getattr(record, attr, None)
        if isinstance(value, str):
            return value.lower()
        return value
