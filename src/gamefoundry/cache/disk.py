"""Durable on-disk tier: zlib-compressed JSON entries plus an LRU manifest."""

from __future__ import annotations

import asyncio
import json
import zlib
from typing import TYPE_CHECKING, Any

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from gamefoundry.cache.entry import CacheEntry
from gamefoundry.cache.errors import CacheIOFailure
from gamefoundry.observability.logging import get_logger

if TYPE_CHECKING:
    from pathlib import Path

log = get_logger(__name__)

DEFAULT_DISK_CAPACITY = 10_000
MANIFEST_NAME = "manifest.json"
_MANIFEST_VERSION = 1


class DiskTier:
    """Compressed entry files under ``{root}/entries/<ab>/<key>.json.z``.

    The manifest records LRU order and hit counts; it is loaded on first
    use and persisted by ``save_manifest``. Eviction removes the least
    recently used files once ``capacity`` entries are exceeded.
    """

    def __init__(self, root: Path, capacity: int = DEFAULT_DISK_CAPACITY) -> None:
        self.root = root
        self.capacity = capacity
        self._order: dict[str, None] = {}
        self._hits: dict[str, int] = {}
        self._loaded = False
        self._load_lock: asyncio.Lock | None = None

    def _entry_path(self, key: str) -> Path:
        return self.root / "entries" / key[:2] / f"{key}.json.z"

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_NAME

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if self._load_lock is None:
            self._load_lock = asyncio.Lock()
        async with self._load_lock:
            if self._loaded:
                return
            if await aiofiles.os.path.exists(self.manifest_path):
                try:
                    async with aiofiles.open(self.manifest_path, encoding="utf-8") as f:
                        data = json.loads(await f.read())
                    self._order = dict.fromkeys(data.get("order", []))
                    self._hits = {k: int(v) for k, v in data.get("hits", {}).items()}
                except (OSError, ValueError) as e:
                    # A corrupt manifest only loses LRU ordering, not entries
                    log.warning(
                        "cache_manifest_unreadable", path=str(self.manifest_path), error=str(e)
                    )
            self._loaded = True

    def _touch(self, key: str) -> None:
        self._order.pop(key, None)
        self._order[key] = None

    async def get(self, key: str) -> CacheEntry | None:
        """Read an entry, or None if absent.

        Raises:
            CacheIOFailure: If the file exists but cannot be read or decoded.
        """
        await self._ensure_loaded()
        path = self._entry_path(key)
        if not await aiofiles.os.path.exists(path):
            self._order.pop(key, None)
            return None
        try:
            async with aiofiles.open(path, "rb") as f:
                raw = await f.read()
            entry = CacheEntry.model_validate_json(zlib.decompress(raw))
        except (OSError, zlib.error, ValidationError) as e:
            raise CacheIOFailure(key, str(e)) from e
        self._touch(key)
        self._hits[key] = self._hits.get(key, 0) + 1
        return entry

    async def put(self, entry: CacheEntry) -> None:
        """Write an entry atomically and evict beyond capacity.

        Raises:
            CacheIOFailure: If the entry cannot be written.
        """
        await self._ensure_loaded()
        path = self._entry_path(entry.key)
        tmp_path = path.with_suffix(".tmp")
        payload = zlib.compress(entry.model_dump_json().encode("utf-8"))
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(payload)
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            raise CacheIOFailure(entry.key, str(e)) from e
        self._touch(entry.key)
        await self._evict()

    async def _evict(self) -> None:
        while len(self._order) > self.capacity:
            key = next(iter(self._order))
            del self._order[key]
            self._hits.pop(key, None)
            try:
                await aiofiles.os.remove(self._entry_path(key))
            except FileNotFoundError:
                pass
            except OSError as e:
                log.warning("cache_evict_failed", key=key[:12], error=str(e))

    def manifest(self) -> dict[str, Any]:
        return {
            "version": _MANIFEST_VERSION,
            "capacity": self.capacity,
            "order": list(self._order),
            "hits": dict(self._hits),
        }

    async def save_manifest(self) -> None:
        """Persist LRU order and hit counts.

        Raises:
            CacheIOFailure: If the manifest cannot be written.
        """
        await self._ensure_loaded()
        try:
            await aiofiles.os.makedirs(self.root, exist_ok=True)
            async with aiofiles.open(self.manifest_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(self.manifest()))
        except OSError as e:
            raise CacheIOFailure(MANIFEST_NAME, str(e)) from e

    def __len__(self) -> int:
        return len(self._order)
