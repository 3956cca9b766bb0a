"""Settings access helpers for JSON-based configuration."""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULT_SETTINGS: dict[str, Any] = {
    "download": {"concurrency": 5, "timeout_seconds": 60},
    "grouping": {"month_order": "first"},
    "sorting": {"defaults": [{"field": "taken_at", "asc": False}]},
    "thumbnail_mem_cache": 256,
    "thumbnail_side": 256,
    "logging": {"dir": None, "level": "INFO"},
}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge `override` into a copy of `base`."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class JsonSettings:
    """Lightweight JSON settings reader with dotted-key access.

    Values from the file are layered over `defaults`; a missing file leaves
    the defaults in effect.
    """

    def __init__(
        self, settings_path: str | Path | None = None, defaults: dict[str, Any] | None = None
    ) -> None:
        self._path = Path(settings_path) if settings_path is not None else None
        data: dict[str, Any] = {}
        if self._path is not None:
            if self._path.exists():
                try:
                    with self._path.open("r", encoding="utf-8") as f:
                        data = json.load(f)
                except json.JSONDecodeError as ex:
                    raise ValueError(f"Invalid settings file {self._path}: {ex}") from ex
                if not isinstance(data, dict):
                    raise ValueError(f"Settings file {self._path} must hold a JSON object")
            else:
                logger.info("settings.json not found at {}, using defaults", self._path)
        self._data = _merge(DEFAULT_SETTINGS if defaults is None else defaults, data)

    @property
    def path(self) -> Path | None:
        return self._path

    def get(self, key: str, default: Any | None = None) -> Any:
        """Return value for dotted `key`, or `default` if not present."""
        parts = key.split(".")
        node: Any = self._data
        for part in parts:
            if isinstance(node, dict) and part in node:
                node = node[part]
            else:
                return default
        return node

    def get_int(self, key: str, default: int) -> int:
        """Return `key` coerced to int, or `default` when absent or invalid."""
        try:
            return int(self.get(key, default))
        except (ValueError, TypeError):
            logger.warning("Invalid integer setting {}={!r}", key, self.get(key))
            return default

    def sort_keys(self) -> list[tuple[str, bool]]:
        """Parse `sorting.defaults` into (field_name, ascending) tuples."""
        # Expect a list like: [{"field":"taken_at","asc":false}, ...]
        raw = self.get("sorting.defaults", [])
        result: list[tuple[str, bool]] = []
        if isinstance(raw, list):
            for item in raw:
                if isinstance(item, dict) and "field" in item:
                    result.append((str(item.get("field")), bool(item.get("asc", True))))
        return result
