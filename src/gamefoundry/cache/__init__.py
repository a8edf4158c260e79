"""Two-tier content-addressed response cache."""

from gamefoundry.cache.disk import DiskTier
from gamefoundry.cache.entry import CacheEntry
from gamefoundry.cache.errors import CacheIOFailure
from gamefoundry.cache.keys import cache_key
from gamefoundry.cache.memory import MemoryTier
from gamefoundry.cache.store import CacheStats, ResponseCache

__all__ = [
    "CacheEntry",
    "CacheIOFailure",
    "CacheStats",
    "DiskTier",
    "MemoryTier",
    "ResponseCache",
    "cache_key",
]
