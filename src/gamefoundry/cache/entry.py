"""Cache entry model."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from gamefoundry.models.artifacts import GeneratedArtifact  # noqa: TC001 - pydantic field


class CacheEntry(BaseModel):
    """An immutable cached provider response.

    Hit counts live in the tier that served the entry, never on the entry.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    template_id: str
    artifact: GeneratedArtifact
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def size_bytes(self) -> int:
        return self.artifact.size_bytes
