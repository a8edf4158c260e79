"""Phase orchestrator: dependency-ordered, cancellable, resumable phase execution.

Phases run as soon as every declared dependency is complete; independent
phases run concurrently. Phase outputs are merged into the PhaseContext
only by the coordinating task, after the phase has fully drained.
"""

from __future__ import annotations

import asyncio
import json
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from gamefoundry.lineage.tracker import LineageTracker
from gamefoundry.models.lineage import NodeLevel, NodeStatus
from gamefoundry.models.pipeline import (
    ErrorKind,
    FailureReport,
    OrchestratorState,
    PhaseStatus,
)
from gamefoundry.observability.logging import get_logger, log_context
from gamefoundry.pipeline.cancellation import CancellationToken
from gamefoundry.pipeline.checkpoint import (
    CHECKPOINT_NAME,
    Checkpoint,
    load_checkpoint,
    save_checkpoint,
)
from gamefoundry.pipeline.config import create_default_config
from gamefoundry.pipeline.context import ArtifactBundle, PhaseContext, PhaseDelta, PhaseOutput
from gamefoundry.pipeline.errors import (
    CheckpointError,
    DependencyCycleError,
    PhaseNotFoundError,
    PipelineError,
    error_kind_for,
)
from gamefoundry.pipeline.events import EventBus
from gamefoundry.pipeline.gates import AutoApproveGate
from gamefoundry.pipeline.generation import Generator
from gamefoundry.pipeline.phases import get_phase, list_phases
from gamefoundry.pipeline.phases.base import PhaseRunContext
from gamefoundry.pipeline.phases.style_guide import guide_artifact
from gamefoundry.pipeline.runtime import PipelineRuntime, create_runtime
from gamefoundry.providers.cost import CostTracker
from gamefoundry.variation.engine import VariationEngine

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from pathlib import Path

    from gamefoundry.models.artifacts import JsonArtifact
    from gamefoundry.models.concept import GenerationConcept
    from gamefoundry.pipeline.config import ProjectConfig
    from gamefoundry.pipeline.gates import PhaseGate
    from gamefoundry.pipeline.phases.base import Phase
    from gamefoundry.providers.adapter import CapabilityRouter
    from gamefoundry.style.guide import StyleGuide

log = get_logger(__name__)

_EXIT_CODES = {
    OrchestratorState.ALL_COMPLETE: 0,
    OrchestratorState.FAILED: 2,
    OrchestratorState.CANCELLED: 130,
}

_TERMINAL_STATUS = {
    OrchestratorState.ALL_COMPLETE: "complete",
    OrchestratorState.FAILED: "failed",
    OrchestratorState.CANCELLED: "cancelled",
}


@dataclass
class RunResult:
    """Outcome of one ``run``.

    Attributes:
        status: Terminal orchestrator state.
        failures: Every failed sub-generation (required or not).
        bundle: Committed artifacts keyed ``phase/label`` plus the StyleGuide.
        phase_status: State of each phase.
        costs: Per-provider usage totals.
        provider_calls: Provider calls made during this run.
        cache_hits: Sub-generations served from the cache during this run.
    """

    status: OrchestratorState
    failures: list[FailureReport]
    bundle: ArtifactBundle
    phase_status: dict[str, PhaseStatus]
    costs: dict[str, dict[str, Any]] = field(default_factory=dict)
    provider_calls: int = 0
    cache_hits: int = 0
    produced: dict[str, int] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES.get(self.status, 2)

    @property
    def total_cost_usd(self) -> float:
        return sum(float(u.get("cost_usd", 0.0)) for u in self.costs.values())

    def summary_lines(self) -> list[str]:
        """Per-phase partial-success lines, e.g. "7 of 8 sprites generated; 1 failed: ..."."""
        lines: list[str] = []
        by_phase: dict[str, list[FailureReport]] = {}
        for failure in self.failures:
            by_phase.setdefault(failure.phase, []).append(failure)
        for phase, failures in by_phase.items():
            produced = self.produced.get(phase, 0)
            total = produced + len(failures)
            reasons = "; ".join(f"{f.label}: {f.cause}" for f in failures[:3])
            lines.append(
                f"{produced} of {total} {phase} generated; {len(failures)} failed: {reasons}"
            )
        return lines


def topological_order(phases: Mapping[str, Phase]) -> list[str]:
    """Phase names ordered so that dependencies come first.

    Raises:
        PhaseNotFoundError: If a dependency is not among ``phases``.
        DependencyCycleError: If dependencies contain a cycle.
    """
    for phase in phases.values():
        for dep in phase.depends_on:
            if dep not in phases:
                raise PhaseNotFoundError(dep)

    remaining = {name: set(phase.depends_on) for name, phase in phases.items()}
    order: list[str] = []
    while remaining:
        ready = [name for name, deps in remaining.items() if not deps]
        if not ready:
            raise DependencyCycleError(sorted(remaining))
        for name in ready:
            order.append(name)
            del remaining[name]
        for deps in remaining.values():
            deps.difference_update(ready)
    return order


class PhaseOrchestrator:
    """Sequence named phases over a shared PhaseContext.

    The orchestrator manages:
    - Launching phases once their dependencies are complete
    - Merging phase outputs (the only writer of the PhaseContext)
    - Partial-failure tolerance and structured failure reports
    - Cancellation, checkpoints and resume-from-phase
    - Cascade invalidation after upstream edits

    Attributes:
        concept: The immutable input concept.
        runtime: Shared services (renderer, router, cache, tracker, costs).
        events: Progress channel.
        context: Committed phase outputs and the active StyleGuide.
        phase_status: State of each phase.
        state: Overall state machine position.
    """

    def __init__(
        self,
        concept: GenerationConcept,
        runtime: PipelineRuntime,
        *,
        phases: Sequence[Phase] | None = None,
        config: ProjectConfig | None = None,
        project_dir: Path | None = None,
        events: EventBus | None = None,
        gate: PhaseGate | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            concept: Concept to generate from.
            runtime: Shared services.
            phases: Phases to run; defaults to every registered phase.
            config: Project configuration (concurrency and style settings).
            project_dir: Directory for ``checkpoint.json``; None disables
                checkpointing.
            events: Event bus; a private one is created if omitted.
            gate: Phase acceptance hook. Defaults to AutoApproveGate.

        Raises:
            PhaseNotFoundError: If a phase depends on an unknown phase.
            DependencyCycleError: If phase dependencies form a cycle.
        """
        if phases is None:
            phases = [p for name in list_phases() if (p := get_phase(name)) is not None]
        self.concept = concept
        self.runtime = runtime
        self.config = config or create_default_config(concept.name)
        self.project_dir = project_dir
        self.events = events or EventBus()
        self._gate = gate or AutoApproveGate()
        self.phases: dict[str, Phase] = {p.name: p for p in phases}
        self._order = topological_order(self.phases)

        self.context = PhaseContext(concept=concept)
        self.partial: dict[str, PhaseOutput] = {}
        self.phase_status: dict[str, PhaseStatus] = dict.fromkeys(self._order, PhaseStatus.PENDING)
        self.state = OrchestratorState.IDLE
        self.failures: list[FailureReport] = []
        self._cancel = CancellationToken()

        self.generator = Generator(runtime.renderer, runtime.router, runtime.cache, runtime.tracker)
        self.variations = VariationEngine(runtime.tracker)

    @property
    def project_id(self) -> str:
        return self.concept.project_id

    @property
    def tracker(self) -> LineageTracker:
        return self.runtime.tracker

    @property
    def costs(self) -> CostTracker:
        return self.runtime.costs

    @property
    def order(self) -> list[str]:
        return list(self._order)

    # -- run loop -----------------------------------------------------------

    async def run(self) -> RunResult:
        """Run every phase that is not yet complete.

        Returns:
            RunResult; never raises for sub-generation or phase failures.

        Raises:
            PipelineError: If the orchestrator is already running.
        """
        if self.state is OrchestratorState.RUNNING:
            raise PipelineError("orchestrator", "Orchestrator is already running")
        with log_context(project_id=self.project_id):
            return await self._run()

    async def _run(self) -> RunResult:
        self._cancel = CancellationToken()
        self.state = OrchestratorState.RUNNING
        calls_before = self.generator.provider_calls
        hits_before = self.generator.cache_hits
        for name, status in self.phase_status.items():
            if status is not PhaseStatus.COMPLETE:
                self.phase_status[name] = PhaseStatus.PENDING
        self.failures = [
            f for f in self.failures if self.phase_status.get(f.phase) is PhaseStatus.COMPLETE
        ]

        log.info(
            "pipeline_start",
            project=self.project_id,
            phases=[n for n in self._order if self.phase_status[n] is PhaseStatus.PENDING],
        )

        running: dict[asyncio.Task[PhaseDelta], str] = {}
        failed = False
        while True:
            if not failed and not self._cancel.cancelled:
                for name in self._ready(running.values()):
                    running[self._launch(name)] = name
            if not running:
                break
            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            for task in sorted(done, key=lambda t: self._order.index(running[t])):
                name = running.pop(task)
                if not await self._finish(name, task):
                    failed = True
                self._save_checkpoint()

        if failed:
            self.state = OrchestratorState.FAILED
        elif all(s is PhaseStatus.COMPLETE for s in self.phase_status.values()):
            self.state = OrchestratorState.ALL_COMPLETE
        else:
            self.state = OrchestratorState.CANCELLED

        await self.runtime.cache.flush()
        self._save_checkpoint()
        self.events.terminal(_TERMINAL_STATUS[self.state], self.failures)

        result = self.result()
        result.provider_calls = self.generator.provider_calls - calls_before
        result.cache_hits = self.generator.cache_hits - hits_before
        log.info(
            "pipeline_complete",
            project=self.project_id,
            status=self.state.value,
            failures=len(self.failures),
            provider_calls=result.provider_calls,
            cache_hits=result.cache_hits,
            cost_usd=round(result.total_cost_usd, 4),
        )
        return result

    def _ready(self, running: Iterable[str]) -> list[str]:
        busy = set(running)
        return [
            name
            for name in self._order
            if name not in busy
            and self.phase_status[name] is PhaseStatus.PENDING
            and all(
                self.phase_status[dep] is PhaseStatus.COMPLETE
                for dep in self.phases[name].depends_on
            )
        ]

    def _launch(self, name: str) -> asyncio.Task[PhaseDelta]:
        self.phase_status[name] = PhaseStatus.RUNNING
        self.events.phase_state(name, PhaseStatus.RUNNING)
        log.info("phase_start", phase=name)
        ctx = PhaseRunContext(
            phase=name,
            view=self.context.view(),
            generator=self.generator,
            variations=self.variations,
            tracker=self.tracker,
            cancel=self._cancel,
            events=self.events,
            style=self.config.style,
            max_parallel=self.config.max_parallel,
            previous=self.partial.get(name),
        )
        # the task copies the current context, so its events carry the phase name
        with log_context(phase=name):
            return asyncio.create_task(self.phases[name].run(ctx), name=f"phase:{name}")

    async def _finish(self, name: str, task: asyncio.Task[PhaseDelta]) -> bool:
        """Merge or reject a drained phase. Returns False if the run must fail."""
        phase = self.phases[name]
        try:
            delta = task.result()
        except Exception as e:
            log.error("phase_crashed", phase=name, error=str(e), error_type=type(e).__name__)
            delta = PhaseDelta(
                failures=[
                    FailureReport(
                        phase=name,
                        label=name,
                        error_kind=error_kind_for(e),
                        cause=str(e),
                        required=phase.required,
                    )
                ]
            )

        if not phase.required:
            delta.failures = [f.model_copy(update={"required": False}) for f in delta.failures]
        self.failures.extend(delta.failures)

        if delta.required_failures:
            self.partial[name] = delta.to_output()
            self.phase_status[name] = PhaseStatus.FAILED
            detail = "; ".join(str(f) for f in delta.required_failures)
            self.events.phase_state(name, PhaseStatus.FAILED, detail)
            log.warning("phase_failed", phase=name, failures=len(delta.required_failures))
            return False

        if delta.cancelled:
            self.partial[name] = delta.to_output()
            self.phase_status[name] = PhaseStatus.PENDING
            self.events.phase_state(name, PhaseStatus.PENDING, "cancelled")
            log.info("phase_cancelled", phase=name, kept=len(delta.artifacts))
            return True

        if await self._gate.on_phase_complete(name, delta) == "reject":
            self.partial[name] = delta.to_output()
            self.phase_status[name] = PhaseStatus.FAILED
            self.failures.append(
                FailureReport(
                    phase=name,
                    label=name,
                    error_kind=ErrorKind.VALIDATION_FAILURE,
                    cause="Rejected by phase gate",
                )
            )
            self.events.phase_state(name, PhaseStatus.FAILED, "rejected by gate")
            log.warning("phase_rejected", phase=name)
            return False

        self.context.merge(name, delta)
        self.partial.pop(name, None)
        self.phase_status[name] = PhaseStatus.COMPLETE
        detail = None
        if delta.failures:
            detail = f"completed with {len(delta.failures)} warning(s)"
        self.events.phase_state(name, PhaseStatus.COMPLETE, detail)
        log.info(
            "phase_complete",
            phase=name,
            artifacts=len(delta.artifacts),
            warnings=len(delta.failures),
        )
        return True

    def cancel(self, reason: str = "cancelled by user") -> None:
        """Stop submitting new work; in-flight provider calls finish first."""
        if self.state is OrchestratorState.RUNNING:
            log.info("pipeline_cancel_requested", reason=reason)
        self._cancel.cancel(reason)

    def result(self) -> RunResult:
        produced: dict[str, int] = {}
        for name in self._order:
            output = self.context.outputs.get(name) or self.partial.get(name)
            produced[name] = len(output.artifacts) if output else 0
        return RunResult(
            status=self.state,
            failures=list(self.failures),
            bundle=self.context.bundle(),
            phase_status=dict(self.phase_status),
            costs=self.costs.to_dict(),
            produced=produced,
        )

    # -- cascade invalidation -----------------------------------------------

    def impact(self, node_id: str) -> set[str]:
        """Phases that would regenerate if ``node_id`` changed (nothing is marked)."""
        affected = {node_id} | self.tracker.descendants(node_id)
        return self.tracker.phases_owning(affected) & set(self.phases)

    def invalidate(self, node_id: str, keep_phases: Iterable[str] = ()) -> set[str]:
        """Mark ``node_id`` and its subtree stale and reopen the owning phases.

        Artifacts outside the subtree are untouched; a reopened phase reuses
        every artifact whose node is still ``succeeded``.

        Returns:
            Names of the reopened phases.

        Raises:
            PipelineError: While the orchestrator is running.
        """
        self._require_idle("invalidate")
        affected = self.tracker.invalidate(node_id)
        phases = (self.tracker.phases_owning(affected) & set(self.phases)) - set(keep_phases)
        for name in phases:
            self._reopen(name)
        log.info(
            "cascade_invalidation",
            node_id=node_id,
            stale_nodes=len(affected),
            phases=sorted(phases),
        )
        self._save_checkpoint()
        return phases

    def retry(self, node_id: str) -> str:
        """Reopen the phase that owns a failed node so the next run retries it.

        Raises:
            PipelineError: If the node has no owning phase.
        """
        self._require_idle("retry")
        node = self.tracker.get(node_id)
        if node.phase is None or node.phase not in self.phases:
            raise PipelineError("orchestrator", f"Node {node_id} belongs to no known phase")
        if node.status is NodeStatus.SUCCEEDED:
            log.info("retry_succeeded_node", node_id=node_id, phase=node.phase)
        self._reopen(node.phase)
        self._save_checkpoint()
        return node.phase

    def revise_style_guide(self, **changes: Any) -> set[str]:
        """Publish a new StyleGuide version and invalidate everything built on the old one.

        Returns:
            Names of the reopened phases.

        Raises:
            PipelineError: If no style guide exists yet or while running.
            ValidationFailure: If the revised guide is invalid.
        """
        self._require_idle("revise_style_guide")
        old = self.context.style_guide
        if old is None:
            raise PipelineError("style_guide", "No style guide to revise")
        revised = old.revise(**changes)

        reopened: set[str] = set()
        if old.source_node_id is not None and old.source_node_id in self.tracker:
            reopened = self.invalidate(old.source_node_id, keep_phases={"style_guide"})

        node_id = self.tracker.record(
            None,
            NodeLevel.METAPROMPT,
            f"revise style guide v{old.version} -> v{revised.version}: "
            + json.dumps(changes, sort_keys=True, default=str),
            phase="style_guide",
            label="style_guide",
        )
        revised = revised.model_copy(update={"source_node_id": node_id})
        artifact = guide_artifact(revised)
        self.tracker.complete(node_id, artifact)
        self._publish_guide(revised, artifact)

        log.info(
            "style_guide_revised",
            version=revised.version,
            hash=revised.short_hash,
            reopened=sorted(reopened),
        )
        self._save_checkpoint()
        return reopened

    def _publish_guide(self, guide: StyleGuide, artifact: JsonArtifact) -> None:
        output = self.context.outputs.get("style_guide") or PhaseOutput()
        artifacts = {**output.artifacts, "style_guide": artifact}
        self.context.outputs["style_guide"] = output.model_copy(update={"artifacts": artifacts})
        self.context.style_guide = guide

    def _reopen(self, name: str) -> None:
        output = self.context.outputs.pop(name, None)
        if output is not None:
            self.partial[name] = output
        self.phase_status[name] = PhaseStatus.PENDING
        self.failures = [f for f in self.failures if f.phase != name]
        if self.state is OrchestratorState.ALL_COMPLETE:
            self.state = OrchestratorState.IDLE

    def _require_idle(self, operation: str) -> None:
        if self.state is OrchestratorState.RUNNING:
            raise PipelineError("orchestrator", f"Cannot {operation} while running")

    # -- checkpoints --------------------------------------------------------

    def checkpoint(self) -> Checkpoint:
        return Checkpoint(
            project_id=self.project_id,
            concept=self.concept,
            context=self.context,
            partial=dict(self.partial),
            phase_status=dict(self.phase_status),
            state=self.state,
            lineage=self.tracker.snapshot(),
            cache_manifest=self.runtime.cache.manifest(),
            costs=self.costs.to_dict(),
            failures=list(self.failures),
        )

    def _save_checkpoint(self) -> None:
        if self.project_dir is None:
            return
        try:
            save_checkpoint(self.project_dir / CHECKPOINT_NAME, self.checkpoint())
        except CheckpointError as e:
            log.error("checkpoint_save_failed", path=str(e.path), error=e.reason)

    @classmethod
    def from_checkpoint(
        cls,
        checkpoint: Checkpoint,
        runtime: PipelineRuntime,
        **kwargs: Any,
    ) -> PhaseOrchestrator:
        """Rebuild an orchestrator; the next ``run`` re-enters at the first incomplete phase.

        ``runtime`` must already carry the restored tracker and cost totals.
        """
        orchestrator = cls(checkpoint.concept, runtime, **kwargs)
        orchestrator.context = checkpoint.context
        orchestrator.partial = dict(checkpoint.partial)
        for name, status in checkpoint.phase_status.items():
            if name in orchestrator.phase_status:
                if status is PhaseStatus.RUNNING:
                    status = PhaseStatus.PENDING
                orchestrator.phase_status[name] = status
        orchestrator.failures = list(checkpoint.failures)
        orchestrator.state = (
            checkpoint.state
            if checkpoint.state is not OrchestratorState.RUNNING
            else OrchestratorState.CANCELLED
        )
        counts = Counter(s.value for s in orchestrator.phase_status.values())
        log.info("checkpoint_restored", project=checkpoint.project_id, phases=dict(counts))
        return orchestrator


def create_orchestrator(
    concept: GenerationConcept,
    config: ProjectConfig,
    *,
    project_dir: Path | None = None,
    cache_dir: Path | None = None,
    resume: bool = False,
    log_calls: bool = False,
    events: EventBus | None = None,
    phases: Sequence[Phase] | None = None,
    router: CapabilityRouter | None = None,
    gate: PhaseGate | None = None,
) -> PhaseOrchestrator:
    """Build an orchestrator, restoring from ``project_dir/checkpoint.json`` when resuming.

    Raises:
        CheckpointError: If resuming and the checkpoint is corrupt.
    """
    checkpoint = None
    if resume and project_dir is not None:
        checkpoint = load_checkpoint(project_dir / CHECKPOINT_NAME)
        if checkpoint is None:
            log.info("checkpoint_missing", project_dir=str(project_dir))
        elif checkpoint.concept != concept:
            log.warning("checkpoint_concept_differs", project=checkpoint.project_id)

    runtime = create_runtime(
        config,
        tracker=None if checkpoint is None else LineageTracker.from_snapshot(checkpoint.lineage),
        costs=None if checkpoint is None else CostTracker.from_dict(checkpoint.costs),
        cache_dir=cache_dir,
        project_path=project_dir,
        log_calls=log_calls,
        router=router,
    )
    kwargs: dict[str, Any] = {
        "phases": phases,
        "config": config,
        "project_dir": project_dir,
        "events": events,
        "gate": gate,
    }
    if checkpoint is not None:
        return PhaseOrchestrator.from_checkpoint(checkpoint, runtime, **kwargs)
    return PhaseOrchestrator(concept, runtime, **kwargs)

