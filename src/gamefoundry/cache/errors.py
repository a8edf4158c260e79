"""Cache error types."""

from __future__ import annotations


class CacheIOFailure(Exception):
    """Raised when the durable tier cannot be read or written.

    Never fatal to a generation: the cache is an optimization, so callers
    log this and carry on as if the entry were absent.
    """

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Cache I/O failure for {key[:12]}: {reason}")
