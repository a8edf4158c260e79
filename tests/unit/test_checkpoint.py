"""Tests for checkpoint persistence and resume."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest

from gamefoundry.lineage import LineageTracker
from gamefoundry.models import OrchestratorState, PhaseStatus, TextArtifact
from gamefoundry.pipeline import (
    Checkpoint,
    CheckpointError,
    PhaseContext,
    PhaseOrchestrator,
    PhaseOutput,
    create_default_config,
    load_checkpoint,
    save_checkpoint,
)
from gamefoundry.pipeline.checkpoint import CHECKPOINT_NAME
from gamefoundry.providers import Capability, CostTracker
from tests.conftest import CancelOnPrompt, FakeBackend

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from gamefoundry.models import GenerationConcept


def _checkpoint(concept: GenerationConcept, **kwargs: Any) -> Checkpoint:
    return Checkpoint(
        project_id=concept.project_id,
        concept=concept,
        context=PhaseContext(concept=concept),
        **kwargs,
    )


def test_save_and_load_round_trip(tmp_path: Path, concept: GenerationConcept) -> None:
    path = tmp_path / "proj" / CHECKPOINT_NAME
    original = _checkpoint(
        concept,
        partial={"narrative": PhaseOutput(artifacts={"premise": TextArtifact(text="Once")})},
        phase_status={"narrative": PhaseStatus.PENDING},
        state=OrchestratorState.CANCELLED,
    )

    save_checkpoint(path, original)
    loaded = load_checkpoint(path)

    assert loaded == original
    assert not path.with_suffix(".json.tmp").exists()


def test_load_missing_checkpoint(tmp_path: Path) -> None:
    assert load_checkpoint(tmp_path / CHECKPOINT_NAME) is None


def test_load_corrupt_checkpoint(tmp_path: Path) -> None:
    path = tmp_path / CHECKPOINT_NAME
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(CheckpointError) as exc_info:
        load_checkpoint(path)
    assert exc_info.value.path == path


def test_load_unsupported_version(tmp_path: Path, concept: GenerationConcept) -> None:
    path = tmp_path / CHECKPOINT_NAME
    data = json.loads(_checkpoint(concept).model_dump_json())
    data["version"] = 99
    path.write_text(json.dumps(data), encoding="utf-8")

    with pytest.raises(CheckpointError, match="unsupported checkpoint version 99"):
        load_checkpoint(path)


def test_save_to_unwritable_location(tmp_path: Path, concept: GenerationConcept) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")

    with pytest.raises(CheckpointError):
        save_checkpoint(blocker / CHECKPOINT_NAME, _checkpoint(concept))


def test_interrupted_run_restores_as_cancelled(
    build_runtime: Callable[..., Any], concept: GenerationConcept
) -> None:
    checkpoint = _checkpoint(
        concept,
        phase_status={"style_guide": PhaseStatus.COMPLETE, "narrative": PhaseStatus.RUNNING},
        state=OrchestratorState.RUNNING,
    )

    orchestrator = PhaseOrchestrator.from_checkpoint(checkpoint, build_runtime(FakeBackend()))

    assert orchestrator.state is OrchestratorState.CANCELLED
    assert orchestrator.phase_status["style_guide"] is PhaseStatus.COMPLETE
    assert orchestrator.phase_status["narrative"] is PhaseStatus.PENDING


@pytest.mark.asyncio
async def test_resume_after_cancel_skips_finished_work(
    tmp_path: Path,
    build_orchestrator: Callable[..., Any],
    build_runtime: Callable[..., Any],
) -> None:
    project_dir = tmp_path / "proj"
    config = create_default_config("Test Quest")
    config.max_parallel = 1
    backend = CancelOnPrompt("game sprite: hero")
    first = build_orchestrator(backend, project_dir=project_dir, config=config)
    backend.orchestrator = first
    result = await first.run()
    assert result.status is OrchestratorState.CANCELLED
    hero = first.partial["sprites"].artifacts["hero"]

    checkpoint = load_checkpoint(project_dir / CHECKPOINT_NAME)
    assert checkpoint is not None
    assert checkpoint.state is OrchestratorState.CANCELLED
    assert checkpoint.cache_manifest["disk"]["order"]

    resumed_backend = FakeBackend()
    runtime = build_runtime(
        resumed_backend,
        tracker=LineageTracker.from_snapshot(checkpoint.lineage),
        costs=CostTracker.from_dict(checkpoint.costs),
    )
    resumed = PhaseOrchestrator.from_checkpoint(
        checkpoint, runtime, config=config, project_dir=project_dir
    )
    assert resumed.phase_status["style_guide"] is PhaseStatus.COMPLETE
    assert resumed.phase_status["sprites"] is PhaseStatus.PENDING

    final = await resumed.run()

    assert final.status is OrchestratorState.ALL_COMPLETE
    # Only slime was never generated before the cancel
    assert resumed_backend.count(Capability.IMAGE) == 1
    assert final.bundle["sprites/hero"].node_id == hero.node_id
    assert final.bundle["sprites/hero"].digest() == hero.digest()
    saved = load_checkpoint(project_dir / CHECKPOINT_NAME)
    assert saved is not None
    assert saved.state is OrchestratorState.ALL_COMPLETE
