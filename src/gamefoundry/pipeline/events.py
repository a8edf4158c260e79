"""Progress event channel.

The orchestrator publishes events; any number of listeners (CLI, logger,
tests) subscribe and consume them asynchronously. Publishing never blocks
and never depends on a listener being present.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import TYPE_CHECKING, Literal

from gamefoundry.models.pipeline import (
    PhaseStateEvent,
    PhaseStatus,
    ProgressEvent,
    TerminalEvent,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from gamefoundry.models.pipeline import FailureReport, PipelineEvent


class EventBus:
    """Fan-out of pipeline events to per-subscriber queues."""

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[PipelineEvent]] = []
        self._seq = itertools.count(1)
        self.history: list[PipelineEvent] = []

    def subscribe(self) -> asyncio.Queue[PipelineEvent]:
        """Register a new listener queue (receives events published from now on)."""
        queue: asyncio.Queue[PipelineEvent] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[PipelineEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: PipelineEvent) -> None:
        self.history.append(event)
        for queue in self._subscribers:
            queue.put_nowait(event)

    def _next(self) -> int:
        return next(self._seq)

    def progress(self, phase: str, fraction: float, label: str) -> None:
        self.publish(
            ProgressEvent(
                seq=self._next(),
                phase=phase,
                fraction_complete=min(1.0, max(0.0, fraction)),
                current_task_label=label,
            )
        )

    def phase_state(self, phase: str, state: PhaseStatus, detail: str | None = None) -> None:
        self.publish(PhaseStateEvent(seq=self._next(), phase=phase, state=state, detail=detail))

    def terminal(
        self,
        status: Literal["complete", "failed", "cancelled"],
        failures: list[FailureReport],
    ) -> None:
        self.publish(TerminalEvent(seq=self._next(), status=status, failures=list(failures)))


async def iter_events(queue: asyncio.Queue[PipelineEvent]) -> AsyncIterator[PipelineEvent]:
    """Yield events until (and including) the terminal event."""
    while True:
        event = await queue.get()
        yield event
        if isinstance(event, TerminalEvent):
            return
