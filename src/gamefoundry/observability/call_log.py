"""JSONL log of provider invocations.

Writes one entry per provider call (successful or not) to
logs/provider_calls.jsonl. Prompts are never truncated so a run can be
audited call by call. Only active when --log is passed to the CLI.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path


@dataclass
class ProviderCallEntry:
    """Entry for provider call logging."""

    timestamp: str
    provider: str
    capability: str
    model: str
    prompt: str
    temperature: float
    duration_seconds: float
    attempts: int = 1

    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    # Short description of the produced artifact ("text 812 chars", "image 32x32")
    summary: str = ""
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class ProviderCallLogger:
    """Append-only JSONL logger for provider calls.

    Attributes:
        log_path: Path to the JSONL log file.
        enabled: Whether logging is enabled.
    """

    def __init__(self, project_path: Path, enabled: bool = True) -> None:
        self.enabled = enabled
        self.log_path = project_path / "logs" / "provider_calls.jsonl"
        if enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: ProviderCallEntry) -> None:
        """Append an entry to the JSONL log."""
        if not self.enabled:
            return

        with self.log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(entry)) + "\n")

    @staticmethod
    def create_entry(
        provider: str,
        capability: str,
        model: str,
        prompt: str,
        temperature: float,
        duration_seconds: float,
        **fields: Any,
    ) -> ProviderCallEntry:
        """Create a log entry stamped with the current time."""
        return ProviderCallEntry(
            timestamp=datetime.now(UTC).isoformat(),
            provider=provider,
            capability=capability,
            model=model,
            prompt=prompt,
            temperature=temperature,
            duration_seconds=duration_seconds,
            **fields,
        )

    def read_entries(self) -> list[ProviderCallEntry]:
        """Read all entries from the log file."""
        if not self.log_path.exists():
            return []

        entries = []
        with self.log_path.open(encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    entries.append(ProviderCallEntry(**json.loads(line)))
        return entries
