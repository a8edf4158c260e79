"""Cooperative cancellation."""

from __future__ import annotations

import asyncio


class CancellationToken:
    """Set once; checked before every new sub-generation is submitted.

    In-flight provider calls are never interrupted: they finish (the call is
    already billed) and only new submissions stop.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
