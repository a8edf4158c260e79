"""Running cost and token accounting across providers."""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass

# USD prices. Text is per 1K tokens (input, output); image per image;
# audio per 1K characters. Unknown models are priced at zero.
TEXT_PRICES: dict[str, tuple[float, float]] = {
    "gpt-4o": (0.0025, 0.01),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-5-mini": (0.00025, 0.002),
    "claude-sonnet-4-20250514": (0.003, 0.015),
    "gemini-2.5-flash": (0.0003, 0.0025),
}

IMAGE_PRICES: dict[str, float] = {
    "gpt-image-1": 0.04,
    "dall-e-3": 0.04,
}

AUDIO_PRICES: dict[str, float] = {
    "eleven_multilingual_v2": 0.30,
    "eleven_turbo_v2_5": 0.15,
}


def estimate_cost(
    capability: str,
    model: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    units: int = 0,
) -> float:
    """Price one call from the static tables."""
    if capability == "text":
        in_price, out_price = TEXT_PRICES.get(model, (0.0, 0.0))
        return input_tokens / 1000 * in_price + output_tokens / 1000 * out_price
    if capability == "image":
        return units * IMAGE_PRICES.get(model, 0.0)
    if capability == "audio":
        return units / 1000 * AUDIO_PRICES.get(model, 0.0)
    return 0.0


@dataclass
class UsageRecord:
    """Accumulated usage for one provider."""

    calls: int = 0
    failed_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    units: int = 0
    cost_usd: float = 0.0

    @property
    def tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class CostTracker:
    """Thread-safe running totals of provider spend.

    Exposed to the orchestrator for progress and final reporting.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._usage: dict[str, UsageRecord] = {}

    def record(
        self,
        provider: str,
        *,
        input_tokens: int = 0,
        output_tokens: int = 0,
        units: int = 0,
        cost_usd: float = 0.0,
    ) -> None:
        with self._lock:
            usage = self._usage.setdefault(provider, UsageRecord())
            usage.calls += 1
            usage.input_tokens += input_tokens
            usage.output_tokens += output_tokens
            usage.units += units
            usage.cost_usd += cost_usd

    def record_failure(self, provider: str) -> None:
        with self._lock:
            self._usage.setdefault(provider, UsageRecord()).failed_calls += 1

    @property
    def total_cost_usd(self) -> float:
        with self._lock:
            return sum(u.cost_usd for u in self._usage.values())

    @property
    def total_tokens(self) -> int:
        with self._lock:
            return sum(u.tokens for u in self._usage.values())

    @property
    def total_calls(self) -> int:
        with self._lock:
            return sum(u.calls for u in self._usage.values())

    def by_provider(self) -> dict[str, UsageRecord]:
        with self._lock:
            return {name: UsageRecord(**asdict(u)) for name, u in self._usage.items()}

    def to_dict(self) -> dict[str, dict[str, float | int]]:
        return {name: asdict(u) for name, u in self.by_provider().items()}

    @classmethod
    def from_dict(cls, data: dict[str, dict[str, float | int]]) -> CostTracker:
        tracker = cls()
        for name, values in data.items():
            tracker._usage[name] = UsageRecord(**values)  # type: ignore[arg-type]
        return tracker
