"""Per-project checkpoint: context, lineage, cache manifests and phase states.

Absence of a checkpoint means a fresh run. Writes are atomic (temp file
then rename) so an interrupted save never leaves a truncated checkpoint.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

from gamefoundry.models.concept import GenerationConcept  # noqa: TC001 - pydantic field
from gamefoundry.models.lineage import LineageSnapshot
from gamefoundry.models.pipeline import (
    FailureReport,
    OrchestratorState,
    PhaseStatus,
)
from gamefoundry.observability.logging import get_logger
from gamefoundry.pipeline.context import PhaseContext, PhaseOutput  # noqa: TC001 - pydantic field
from gamefoundry.pipeline.errors import CheckpointError

if TYPE_CHECKING:
    from pathlib import Path

log = get_logger(__name__)

CHECKPOINT_NAME = "checkpoint.json"
CHECKPOINT_VERSION = 1


class Checkpoint(BaseModel):
    """Serialized orchestrator state for one project."""

    version: int = CHECKPOINT_VERSION
    project_id: str
    concept: GenerationConcept
    context: PhaseContext
    partial: dict[str, PhaseOutput] = Field(default_factory=dict)
    phase_status: dict[str, PhaseStatus] = Field(default_factory=dict)
    state: OrchestratorState = OrchestratorState.IDLE
    lineage: LineageSnapshot = Field(default_factory=LineageSnapshot)
    cache_manifest: dict[str, Any] = Field(default_factory=dict)
    costs: dict[str, dict[str, float | int]] = Field(default_factory=dict)
    failures: list[FailureReport] = Field(default_factory=list)
    saved_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


def checkpoint_path(projects_dir: Path, project_id: str) -> Path:
    return projects_dir / project_id / CHECKPOINT_NAME


def save_checkpoint(path: Path, checkpoint: Checkpoint) -> None:
    """Write a checkpoint atomically.

    Raises:
        CheckpointError: If the file cannot be written.
    """
    tmp_path = path.with_suffix(".json.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(checkpoint.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as e:
        raise CheckpointError(path, str(e)) from e
    log.debug("checkpoint_saved", path=str(path), nodes=len(checkpoint.lineage.nodes))


def load_checkpoint(path: Path) -> Checkpoint | None:
    """Load a checkpoint, or None if none exists.

    Raises:
        CheckpointError: If the file exists but is unreadable or invalid.
    """
    if not path.exists():
        return None
    try:
        checkpoint = Checkpoint.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        raise CheckpointError(path, str(e)) from e
    if checkpoint.version != CHECKPOINT_VERSION:
        raise CheckpointError(path, f"unsupported checkpoint version {checkpoint.version}")
    return checkpoint
