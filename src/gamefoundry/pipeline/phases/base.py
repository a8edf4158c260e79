"""Phase protocol, runtime services and the phase registry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from gamefoundry.models.lineage import NodeStatus
from gamefoundry.models.pipeline import FailureReport
from gamefoundry.pipeline.batching import BatchResult, run_bounded
from gamefoundry.pipeline.errors import GenerationError, PipelineError, error_kind_for
from gamefoundry.style.compliance import StyleValidator

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from gamefoundry.lineage.tracker import LineageTracker
    from gamefoundry.models.artifacts import GeneratedArtifact
    from gamefoundry.pipeline.cancellation import CancellationToken
    from gamefoundry.pipeline.config import StyleConfig
    from gamefoundry.pipeline.context import ContextView, PhaseDelta, PhaseOutput
    from gamefoundry.pipeline.events import EventBus
    from gamefoundry.pipeline.generation import Generator
    from gamefoundry.style.guide import StyleGuide
    from gamefoundry.variation.engine import VariationEngine

T = TypeVar("T")
Item = TypeVar("Item")


class Phase(Protocol):
    """A named pipeline phase.

    Attributes:
        name: Phase identifier.
        depends_on: Phases that must be complete before this one starts.
        required: If False, a failure completes the phase with warnings
            instead of failing the run.
    """

    name: str
    depends_on: tuple[str, ...]
    required: bool

    async def run(self, ctx: PhaseRunContext) -> PhaseDelta:
        """Execute the phase against a read-only context view."""
        ...


@dataclass
class PhaseRunContext:
    """Services and inputs handed to a running phase.

    Attributes:
        phase: Name of the running phase.
        view: Read-only accumulated context.
        generator: Render/cache/provider/lineage pipeline.
        variations: Local variation engine.
        tracker: Lineage tracker (for status lookups).
        cancel: Cancellation token; checked before every new submission.
        events: Progress channel.
        style: Style validation settings.
        max_parallel: Concurrency bound for fan-out.
        previous: Output of an earlier (partial or invalidated) run of this
            phase; succeeded artifacts in it can be reused.
    """

    phase: str
    view: ContextView
    generator: Generator
    variations: VariationEngine
    tracker: LineageTracker
    cancel: CancellationToken
    events: EventBus
    style: StyleConfig
    max_parallel: int = 4
    previous: PhaseOutput | None = None

    @property
    def style_guide(self) -> StyleGuide:
        """The active guide. Raises PipelineError before the style phase has run."""
        guide = self.view.style_guide
        if guide is None:
            raise PipelineError(self.phase, "No style guide in context")
        return guide

    def validator(self) -> StyleValidator:
        return StyleValidator(
            self.style_guide,
            tolerance=self.style.palette_tolerance,
            stride=self.style.sample_stride,
        )

    def reusable(self, label: str) -> GeneratedArtifact | None:
        """Previous artifact for ``label`` if its node is still ``succeeded``."""
        if self.previous is None:
            return None
        artifact = self.previous.artifacts.get(label)
        if artifact is None or artifact.node_id is None or artifact.node_id not in self.tracker:
            return None
        if self.tracker.get(artifact.node_id).status is not NodeStatus.SUCCEEDED:
            return None
        return artifact

    def reusable_data(self, key: str) -> Any:
        return self.previous.data.get(key) if self.previous is not None else None

    def progress(self, fraction: float, label: str) -> None:
        self.events.progress(self.phase, fraction, label)

    def failure(self, label: str, exc: BaseException, *, required: bool) -> FailureReport:
        node_id = exc.node_id if isinstance(exc, GenerationError) else None
        cause = exc.cause if isinstance(exc, GenerationError) else exc
        return FailureReport(
            phase=self.phase,
            label=label,
            node_id=node_id,
            error_kind=error_kind_for(exc),
            cause=str(cause),
            required=required,
        )

    async def fan_out(
        self,
        items: list[Item],
        call_fn: Callable[[Item], Awaitable[T]],
        label_fn: Callable[[Item], str],
    ) -> BatchResult[T]:
        """Run sub-generations in parallel, reporting progress in submission order."""
        total = len(items)

        def _on_complete(index: int, item: Item, _error: BaseException | None) -> None:
            self.progress((index + 1) / total, label_fn(item))

        return await run_bounded(
            items,
            call_fn,
            self.max_parallel,
            cancel=self.cancel,
            on_complete=_on_complete,
        )


# Phase registry - populated by phase modules
_PHASE_REGISTRY: dict[str, Phase] = {}


def register_phase(phase: Phase) -> None:
    """Register a phase implementation (replacing any with the same name)."""
    _PHASE_REGISTRY[phase.name] = phase


def get_phase(name: str) -> Phase | None:
    return _PHASE_REGISTRY.get(name)


def list_phases() -> list[str]:
    """Registered phase names in registration order."""
    return list(_PHASE_REGISTRY.keys())
