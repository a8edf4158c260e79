"""Two-tier response cache.

Lookups hit the in-memory tier synchronously and fall back to the durable
disk tier (warming memory on a disk hit). Writes land in memory
immediately; the disk write runs as a background task, and failed disk
writes are logged and queued for retry on the next ``flush``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from gamefoundry.cache.entry import CacheEntry
from gamefoundry.cache.errors import CacheIOFailure
from gamefoundry.cache.memory import DEFAULT_MEMORY_BUDGET, MemoryTier
from gamefoundry.observability.logging import get_logger

if TYPE_CHECKING:
    from gamefoundry.cache.disk import DiskTier
    from gamefoundry.models.artifacts import GeneratedArtifact

log = get_logger(__name__)


@dataclass
class CacheStats:
    memory_hits: int = 0
    disk_hits: int = 0
    misses: int = 0
    disk_write_failures: int = 0

    @property
    def hits(self) -> int:
        return self.memory_hits + self.disk_hits


class ResponseCache:
    """Content-addressed cache of provider responses.

    Attributes:
        memory: The fast tier (always present).
        disk: The durable tier, or None for a memory-only cache.
    """

    def __init__(
        self,
        disk: DiskTier | None = None,
        memory_budget_bytes: int = DEFAULT_MEMORY_BUDGET,
    ) -> None:
        self.memory = MemoryTier(memory_budget_bytes)
        self.disk = disk
        self.stats = CacheStats()
        self._pending: set[asyncio.Task[None]] = set()
        self._retry_queue: dict[str, CacheEntry] = {}

    def get_memory(self, key: str) -> GeneratedArtifact | None:
        """Synchronous lookup in the memory tier only."""
        entry = self.memory.get(key)
        if entry is None:
            return None
        self.stats.memory_hits += 1
        return entry.artifact

    async def get(self, key: str) -> GeneratedArtifact | None:
        """Look up a key in memory, then on disk. Returns None on a miss."""
        artifact = self.get_memory(key)
        if artifact is not None:
            return artifact

        if self.disk is not None:
            try:
                entry = await self.disk.get(key)
            except CacheIOFailure as e:
                log.warning("cache_disk_read_failed", key=key[:12], error=e.reason)
                entry = None
            if entry is not None:
                self.memory.put(entry)
                self.stats.disk_hits += 1
                return entry.artifact

        self.stats.misses += 1
        return None

    def put(self, key: str, artifact: GeneratedArtifact, template_id: str = "") -> None:
        """Store an artifact. Lineage stamps are stripped before caching."""
        entry = CacheEntry(
            key=key,
            template_id=template_id,
            artifact=artifact.with_lineage(None, None),
        )
        self.memory.put(entry)
        if self.disk is not None:
            self._schedule_disk_write(self.disk, entry)

    def _schedule_disk_write(self, disk: DiskTier, entry: CacheEntry) -> None:
        task = asyncio.get_running_loop().create_task(self._write_disk(disk, entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write_disk(self, disk: DiskTier, entry: CacheEntry) -> None:
        try:
            await disk.put(entry)
        except CacheIOFailure as e:
            self.stats.disk_write_failures += 1
            self._retry_queue[entry.key] = entry
            log.warning("cache_disk_write_failed", key=entry.key[:12], error=e.reason)
        else:
            self._retry_queue.pop(entry.key, None)

    async def flush(self) -> None:
        """Wait for background writes, retry failed ones once, save the manifest."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
        if self.disk is None:
            return
        for entry in list(self._retry_queue.values()):
            await self._write_disk(self.disk, entry)
        try:
            await self.disk.save_manifest()
        except CacheIOFailure as e:
            log.warning("cache_manifest_write_failed", error=e.reason)

    @property
    def pending_retries(self) -> int:
        return len(self._retry_queue)

    def manifest(self) -> dict[str, Any]:
        """Tier manifests for checkpointing."""
        return {
            "memory": {"keys": self.memory.keys(), "bytes": self.memory.size_bytes},
            "disk": self.disk.manifest() if self.disk is not None else None,
        }
