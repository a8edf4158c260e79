"""Tests for pipeline.batching module."""

from __future__ import annotations

import asyncio

import pytest

from gamefoundry.pipeline.batching import run_bounded
from gamefoundry.pipeline.cancellation import CancellationToken


@pytest.mark.asyncio
async def test_batch_empty_list() -> None:
    """Empty input returns empty results."""

    async def _noop(item: str) -> str:
        return item  # pragma: no cover

    result = await run_bounded([], _noop)
    assert result.results == []
    assert result.succeeded == 0


@pytest.mark.asyncio
async def test_batch_preserves_order() -> None:
    """Results are in input order regardless of completion order."""
    completion_order: list[int] = []

    async def _delayed(item: tuple[int, float]) -> int:
        idx, delay = item
        await asyncio.sleep(delay)
        completion_order.append(idx)
        return idx * 10

    items = [(0, 0.03), (1, 0.02), (2, 0.01)]
    result = await run_bounded(items, _delayed, max_concurrency=3)

    assert result.results == [0, 10, 20]
    assert completion_order == [2, 1, 0]


@pytest.mark.asyncio
async def test_batch_respects_concurrency_limit() -> None:
    """Never more than max_concurrency calls in flight."""
    in_flight = 0
    peak = 0

    async def _tracked(item: int) -> int:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return item

    result = await run_bounded(list(range(10)), _tracked, max_concurrency=3)

    assert result.succeeded == 10
    assert peak == 3


@pytest.mark.asyncio
async def test_batch_isolates_failures() -> None:
    """One failing item does not affect its siblings."""

    async def _maybe_fail(item: int) -> int:
        if item == 1:
            raise ValueError("bad item")
        return item

    result = await run_bounded([0, 1, 2], _maybe_fail)

    assert result.results == [0, None, 2]
    assert len(result.errors) == 1
    assert result.errors[0][0] == 1
    assert isinstance(result.errors[0][1], ValueError)
    assert result.succeeded == 2


@pytest.mark.asyncio
async def test_batch_reports_in_submission_order() -> None:
    """on_complete fires in input order even when items finish out of order."""
    reported: list[tuple[int, bool]] = []

    async def _delayed(item: float) -> float:
        await asyncio.sleep(item)
        if item == 0.02:
            raise RuntimeError("boom")
        return item

    await run_bounded(
        [0.03, 0.02, 0.01],
        _delayed,
        max_concurrency=3,
        on_complete=lambda idx, _item, error: reported.append((idx, error is None)),
    )

    assert reported == [(0, True), (1, False), (2, True)]


@pytest.mark.asyncio
async def test_batch_cancellation_skips_unstarted_items() -> None:
    """Items not yet started when the token fires are skipped; running ones finish."""
    token = CancellationToken()
    started: list[int] = []

    async def _work(item: int) -> int:
        started.append(item)
        if item == 0:
            token.cancel("stop")
        await asyncio.sleep(0)
        return item

    result = await run_bounded([0, 1, 2, 3], _work, max_concurrency=1, cancel=token)

    assert started == [0]
    assert result.results == [0, None, None, None]
    assert result.skipped == [1, 2, 3]
    assert result.succeeded == 1
    assert token.reason == "stop"


@pytest.mark.asyncio
async def test_cancellation_token_is_set_once() -> None:
    token = CancellationToken()
    token.cancel("first")
    token.cancel("second")

    await asyncio.wait_for(token.wait(), timeout=1)

    assert token.cancelled
    assert token.reason == "first"
