"""Centralised retry policy for provider calls.

One policy object, parameterised by error class, replaces per-call-site
retry loops. Fatal errors are never retried; each transient error class
has its own backoff schedule (rate limits back off slower than timeouts).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from gamefoundry.observability.logging import get_logger
from gamefoundry.providers.errors import (
    ProviderConnectionError,
    ProviderTimeout,
    ProviderTransient,
    RateLimited,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

log = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Backoff:
    """Exponential backoff schedule: ``base * multiplier**(attempt-1)``, capped."""

    base_delay: float
    multiplier: float = 2.0
    max_delay: float = 30.0

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


def _default_rules() -> dict[type[ProviderTransient], Backoff]:
    return {
        RateLimited: Backoff(base_delay=1.0),
        ProviderTimeout: Backoff(base_delay=0.25, max_delay=4.0),
        ProviderConnectionError: Backoff(base_delay=0.5, max_delay=8.0),
    }


@dataclass
class RetryPolicy:
    """Retry schedule keyed by transient error class.

    Attributes:
        max_attempts: Total attempts including the first call.
        rules: Backoff per error class; the most specific match wins.
        sleep: Awaitable sleep, injectable for tests.
    """

    max_attempts: int = 5
    rules: dict[type[ProviderTransient], Backoff] = field(default_factory=_default_rules)
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def backoff_for(self, exc: ProviderTransient) -> Backoff:
        for cls in type(exc).__mro__:
            rule = self.rules.get(cls)  # type: ignore[call-overload]
            if rule is not None:
                return rule
        return Backoff(base_delay=1.0)

    def delay_for(self, exc: ProviderTransient, attempt: int) -> float:
        delay = self.backoff_for(exc).delay(attempt)
        if isinstance(exc, RateLimited) and exc.retry_after is not None:
            delay = max(delay, exc.retry_after)
        return delay

    async def run(self, call: Callable[[], Awaitable[T]], *, label: str = "") -> tuple[T, int]:
        """Run ``call`` until it succeeds or the policy gives up.

        Returns:
            Tuple of (result, attempts used).

        Raises:
            ProviderTransient: The last transient error once attempts run out.
            ProviderError: Any non-transient error, immediately.
        """
        attempt = 1
        while True:
            try:
                return await call(), attempt
            except ProviderTransient as e:
                if attempt >= self.max_attempts:
                    log.warning(
                        "provider_retries_exhausted",
                        label=label,
                        attempts=attempt,
                        error=str(e),
                    )
                    raise
                delay = self.delay_for(e, attempt)
                log.info(
                    "provider_retry",
                    label=label,
                    attempt=attempt,
                    error_type=type(e).__name__,
                    delay=round(delay, 3),
                )
                await self.sleep(delay)
                attempt += 1
