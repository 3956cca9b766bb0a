"""Lightweight view model wrapper around `MemoryRecord`."""

from __future__ import annotations

from dataclasses import dataclass

from core.models import MemoryRecord


@dataclass
class MemoryVM:
    """Expose convenient properties for bindings/templates."""

    record: MemoryRecord

    @property
    def file_name(self) -> str:
        """Name the record is saved under."""
        return self.record.target_filename

    @property
    def kind_label(self) -> str:
        """Capitalized kind, either Video or Image."""
        return self.record.kind.value.capitalize()

    @property
    def date_label(self) -> str:
        """Original timestamp text as shown in the export."""
        return self.record.timestamp_text

    @property
    def has_source(self) -> bool:
        """True if the record resolves to a downloadable URL."""
        return self.record.effective_url is not None

    def describe(self) -> str:
        label = f"{self.date_label}  {self.kind_label}  {self.file_name}"
        return label if self.has_source else f"{label}  (no URL)"
