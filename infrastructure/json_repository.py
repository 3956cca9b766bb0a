"""JSON import of media export documents.

The export is a single object whose ``"Saved Media"`` array holds one entry
per media item, keyed with the export's own field names. Entries are
returned in array order; no sorting is applied here.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
import uuid

from loguru import logger

from core.errors import ParseError
from core.models import MemoryRecord

MEDIA_ARRAY_KEY = "Saved Media"

# Export key -> internal field
REQUIRED_FIELDS = {
    "Date": "timestamp_text",
    "Media Type": "media_type",
    "Download Link": "primary_link",
}
OPTIONAL_FIELDS = {
    "Media Download Url": "secondary_link",
}
ID_KEY = "id"


def _new_id() -> str:
    return str(uuid.uuid4())


def _parse_entry(index: int, entry: Any) -> MemoryRecord:
    """Map one export entry to a `MemoryRecord`, raising `ParseError` on bad input."""
    if not isinstance(entry, dict):
        raise ParseError(f"Entry {index} is not an object")

    values: dict[str, Any] = {}
    for key, attr in REQUIRED_FIELDS.items():
        if key not in entry or entry[key] is None:
            raise ParseError(f"Entry {index} is missing required field {key!r}")
        if not isinstance(entry[key], str):
            raise ParseError(f"Entry {index} field {key!r} must be a string")
        values[attr] = entry[key]

    for key, attr in OPTIONAL_FIELDS.items():
        raw = entry.get(key)
        if raw is not None and not isinstance(raw, str):
            raise ParseError(f"Entry {index} field {key!r} must be a string")
        values[attr] = raw

    raw_id = entry.get(ID_KEY)
    record_id = str(raw_id) if raw_id not in (None, "") else _new_id()
    return MemoryRecord(id=record_id, **values)


class JsonMemoryRepository:
    """Load media records from an export document."""

    def parse(self, data: bytes | str) -> list[MemoryRecord]:
        """Parse raw export bytes into records.

        Raises:
            ParseError: If the payload is not well-formed JSON, lacks the media
                array, or any entry lacks a required field.
        """
        try:
            doc = json.loads(data)
        except (ValueError, TypeError) as ex:
            raise ParseError(f"Invalid JSON: {ex}") from ex

        if not isinstance(doc, dict):
            raise ParseError("Top-level JSON value must be an object")
        if MEDIA_ARRAY_KEY not in doc:
            raise ParseError(f"Missing required field {MEDIA_ARRAY_KEY!r}")
        entries = doc[MEDIA_ARRAY_KEY]
        if not isinstance(entries, list):
            raise ParseError(f"Field {MEDIA_ARRAY_KEY!r} must be an array")

        return [_parse_entry(i, entry) for i, entry in enumerate(entries)]

    def load(self, json_path: str | Path) -> list[MemoryRecord]:
        """Read and parse the export at `json_path`."""
        path = Path(json_path)
        try:
            data = path.read_bytes()
        except OSError as ex:
            raise ParseError(f"Cannot read {path}: {ex}") from ex

        records = self.parse(data)
        logger.info("Loaded {} records from {}", len(records), path)
        return records
