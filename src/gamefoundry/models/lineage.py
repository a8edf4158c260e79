"""Prompt lineage records."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from gamefoundry.models.artifacts import GeneratedArtifact  # noqa: TC001 - pydantic field


class NodeLevel(StrEnum):
    """Position of a prompt in the cascade."""

    METAPROMPT = "metaprompt"
    DERIVED_PROMPT = "derived-prompt"
    GENERATION = "generation"


class NodeStatus(StrEnum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    STALE = "stale"


class NodeError(BaseModel):
    """Error recorded on a failed node."""

    kind: str
    message: str


class PromptNode(BaseModel):
    """One rendered prompt (and its outcome) in the lineage forest.

    Nodes are owned by the LineageTracker and only mutated through it.
    """

    id: str
    parent_id: str | None = None
    level: NodeLevel
    phase: str | None = None
    label: str = ""
    template_id: str | None = None
    prompt_text: str
    status: NodeStatus = NodeStatus.PENDING
    cached: bool = False
    provider_call: bool = False
    artifact: GeneratedArtifact | None = None
    error: NodeError | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    children: list[str] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in (NodeStatus.SUCCEEDED, NodeStatus.FAILED)


class LineageSnapshot(BaseModel):
    """Serializable state of a LineageTracker (checkpoint payload)."""

    next_id: int = 1
    nodes: list[PromptNode] = Field(default_factory=list)
