"""Thumbnail generation for image records.

Thumbnails are fetched from the record's effective URL, decoded with Pillow
and re-encoded as JPEG bytes. Results are kept in a small in-memory LRU
cache. Video frames are not decoded; callers show a placeholder instead.
"""

from __future__ import annotations

from collections import OrderedDict
import io
from typing import Any

from loguru import logger
from PIL import Image, ImageOps, UnidentifiedImageError
import requests

from core.errors import ThumbnailError
from core.models import MemoryRecord

DEFAULT_SIDE = 256
DEFAULT_MEM_CACHE = 256


class _LRUCache:
    def __init__(self, capacity: int) -> None:
        self._cap = max(1, int(capacity or 1))
        self._data: OrderedDict[tuple[str, int], bytes] = OrderedDict()

    def get(self, key: tuple[str, int]) -> bytes | None:
        """Return cached bytes for key, moving it to the MRU position."""
        data = self._data.get(key)
        if data is None:
            return None
        self._data.move_to_end(key)
        return data

    def put(self, key: tuple[str, int], data: bytes) -> None:
        """Insert or update `key`, evicting LRU entries when over capacity."""
        self._data[key] = data
        self._data.move_to_end(key)
        while len(self._data) > self._cap:
            self._data.popitem(last=False)

    def __len__(self) -> int:
        return len(self._data)


def render_thumbnail(data: bytes, side: int) -> bytes:
    """Decode image `data` and return a JPEG no larger than `side` on either axis."""
    try:
        with Image.open(io.BytesIO(data)) as im:
            try:
                im = ImageOps.exif_transpose(im)
            except (OSError, ValueError, AttributeError):
                pass
            if side and side > 0:
                im.thumbnail((side, side), Image.Resampling.LANCZOS)
            if im.mode not in ("RGB", "L"):
                im = im.convert("RGB")
            out = io.BytesIO()
            im.save(out, format="JPEG", quality=85)
            return out.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as ex:
        raise ThumbnailError(f"Cannot decode image: {ex}") from ex


class ThumbnailService:
    """High-level thumbnail service with an in-memory cache."""

    def __init__(
        self,
        session: Any | None = None,
        settings: object | None = None,
        timeout: float = 30,
    ) -> None:
        """Initialize the cache and default side from settings."""
        mem_cap = DEFAULT_MEM_CACHE
        self._side = DEFAULT_SIDE
        if settings is not None:
            mem_cap = settings.get_int("thumbnail_mem_cache", DEFAULT_MEM_CACHE)
            self._side = settings.get_int("thumbnail_side", DEFAULT_SIDE)
        self._cache = _LRUCache(mem_cap)
        self._session = session if session is not None else requests.Session()
        self._timeout = timeout

    @property
    def cached_count(self) -> int:
        return len(self._cache)

    def get_thumbnail(self, record: MemoryRecord, side: int | None = None) -> bytes:
        """Return JPEG thumbnail bytes for `record`.

        Raises:
            ThumbnailError: For videos, records without a valid URL, transfer
                failures, or undecodable payloads.
        """
        side = side or self._side
        key = (record.id, side)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        if record.is_video:
            raise ThumbnailError(f"No thumbnail for video {record.target_filename}")
        url = record.effective_url
        if url is None:
            raise ThumbnailError(f"No valid URL for {record.target_filename}")

        try:
            response = self._session.get(url, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as ex:
            logger.debug("Thumbnail fetch failed for {}: {}", record.target_filename, ex)
            raise ThumbnailError(f"Fetch failed: {ex}") from ex

        thumb = render_thumbnail(response.content, side)
        self._cache.put(key, thumb)
        return thumb
