"""Grouping of records into a year -> month navigation hierarchy.

The hierarchy is rebuilt from scratch on every call; there is no incremental
update. Years are ordered newest first by comparing their four-digit keys as
strings. Months inside a year are ordered newest first by the instant of a
representative record:

- ``"first"``: the first record of the month in input order. This matches
  the reference behavior and is only exact when the input is already sorted.
- ``"latest"``: the chronologically latest record of the month.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from core.models import MemoryRecord, MonthGroup, YearGroup

MONTH_ORDERS = ("first", "latest")


class GroupingService:
    """Builds `YearGroup` lists from flat record collections."""

    def __init__(self, month_order: str = "first") -> None:
        if month_order not in MONTH_ORDERS:
            raise ValueError(f"Unknown month order: {month_order!r} (expected one of {MONTH_ORDERS})")
        self._month_order = month_order

    @property
    def month_order(self) -> str:
        return self._month_order

    def group(self, records: Iterable[MemoryRecord]) -> list[YearGroup]:
        """Partition `records` by year and month.

        Every record lands in exactly one month leaf and keeps its relative
        order there. Empty partitions are never produced.
        """
        by_year: dict[str, list[MemoryRecord]] = {}
        for record in records:
            by_year.setdefault(record.period_key, []).append(record)

        years: list[YearGroup] = []
        for year in sorted(by_year, reverse=True):
            years.append(YearGroup(year=year, months=tuple(self._group_months(by_year[year]))))
        return years

    def _group_months(self, records: list[MemoryRecord]) -> list[MonthGroup]:
        by_month: dict[str, list[MemoryRecord]] = {}
        for record in records:
            by_month.setdefault(record.sub_period_key, []).append(record)

        # sorted() is stable, so equal representatives keep first-seen order
        ordered = sorted(
            by_month.items(),
            key=lambda kv: self._representative_instant(kv[1]),
            reverse=True,
        )
        return [MonthGroup(month=name, records=tuple(items)) for name, items in ordered]

    def _representative_instant(self, members: list[MemoryRecord]) -> datetime:
        if self._month_order == "latest":
            return max(r.sort_instant for r in members)
        return members[0].sort_instant
