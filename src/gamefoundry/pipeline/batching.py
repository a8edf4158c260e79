"""Bounded-concurrency fan-out for sub-generations.

Wraps asyncio.Semaphore to limit concurrent provider calls. Preserves
input order in results, reports completions in submission order, and
stops submitting new items once cancellation is requested.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from gamefoundry.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from gamefoundry.pipeline.cancellation import CancellationToken

log = get_logger(__name__)

T = TypeVar("T")
Item = TypeVar("Item")


@dataclass
class BatchResult(Generic[T]):
    """Outcome of a batch.

    Attributes:
        results: Input-ordered results (None for failed or skipped items).
        errors: (index, exception) for failed items.
        skipped: Indices never started because of cancellation.
    """

    results: list[T | None]
    errors: list[tuple[int, Exception]] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.results) - len(self.errors) - len(self.skipped)


async def run_bounded(
    items: list[Item],
    call_fn: Callable[[Item], Awaitable[T]],
    max_concurrency: int = 4,
    *,
    cancel: CancellationToken | None = None,
    on_complete: Callable[[int, Item, BaseException | None], None] | None = None,
) -> BatchResult[T]:
    """Run ``call_fn`` over items with bounded parallelism.

    Args:
        items: Input items to process.
        call_fn: Async function taking one item.
        max_concurrency: Maximum concurrent calls.
        cancel: Checked before each item starts; items not yet started when
            it fires are skipped, items already running finish.
        on_complete: Called once per item in submission order with the
            item's error (None on success; skipped items get CancelledError).

    Returns:
        BatchResult with input-ordered results.
    """
    if not items:
        return BatchResult(results=[])

    semaphore = asyncio.Semaphore(max(1, max_concurrency))
    result: BatchResult[T] = BatchResult(results=[None] * len(items))
    finished: dict[int, BaseException | None] = {}
    next_report = 0

    def _report(idx: int, error: BaseException | None) -> None:
        nonlocal next_report
        finished[idx] = error
        while next_report in finished:
            if on_complete is not None:
                on_complete(next_report, items[next_report], finished[next_report])
            next_report += 1

    async def _run_one(idx: int, item: Item) -> None:
        async with semaphore:
            if cancel is not None and cancel.cancelled:
                result.skipped.append(idx)
                _report(idx, asyncio.CancelledError())
                return
            try:
                result.results[idx] = await call_fn(item)
            except Exception as e:
                result.errors.append((idx, e))
                log.warning("batch_item_failed", index=idx, error=str(e))
                _report(idx, e)
                return
            _report(idx, None)

    tasks = [asyncio.create_task(_run_one(i, item)) for i, item in enumerate(items)]
    await asyncio.gather(*tasks)

    result.errors.sort(key=lambda pair: pair[0])
    result.skipped.sort()
    log.debug(
        "batch_complete",
        total_items=len(items),
        succeeded=result.succeeded,
        failed=len(result.errors),
        skipped=len(result.skipped),
    )
    return result
