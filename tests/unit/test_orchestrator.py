"""Tests for pipeline orchestrator."""

from __future__ import annotations

import asyncio
import io
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import pytest
from PIL import Image

from gamefoundry.models import (
    ErrorKind,
    ImageArtifact,
    NodeLevel,
    NodeStatus,
    OrchestratorState,
    PhaseStateEvent,
    PhaseStatus,
    ProgressEvent,
    TerminalEvent,
    TextArtifact,
)
from gamefoundry.pipeline import (
    DependencyCycleError,
    PhaseDelta,
    PhaseNotFoundError,
    PipelineError,
    RequireSuccessGate,
    create_default_config,
    iter_events,
)
from gamefoundry.pipeline.orchestrator import topological_order
from gamefoundry.providers import BackendResult, Capability, ContentPolicyError, GenerationParams
from gamefoundry.style import StyleValidator
from tests.conftest import CancelOnPrompt, FakeBackend

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from gamefoundry.pipeline.phases import PhaseRunContext

HERO = "game sprite: hero"
SLIME = "game sprite: slime"
STYLE_GUIDE = "art director for a small 2D"


@dataclass
class StubPhase:
    """Minimal phase producing one text artifact named after itself."""

    name: str
    depends_on: tuple[str, ...] = ()
    required: bool = True
    action: Callable[[PhaseRunContext], Awaitable[PhaseDelta]] | None = None

    async def run(self, ctx: PhaseRunContext) -> PhaseDelta:
        if self.action is not None:
            return await self.action(ctx)
        return PhaseDelta(artifacts={self.name: TextArtifact(text=self.name)})


def _serial_config() -> Any:
    config = create_default_config("Test Quest")
    config.max_parallel = 1
    return config


# --- Dependency ordering ---


def test_topological_order() -> None:
    phases = {
        "c": StubPhase("c", ("a", "b")),
        "b": StubPhase("b", ("a",)),
        "a": StubPhase("a"),
    }
    assert topological_order(phases) == ["a", "b", "c"]


def test_unknown_dependency() -> None:
    with pytest.raises(PhaseNotFoundError, match="'ghost'"):
        topological_order({"a": StubPhase("a", ("ghost",))})


def test_dependency_cycle() -> None:
    with pytest.raises(DependencyCycleError) as exc_info:
        topological_order({"a": StubPhase("a", ("b",)), "b": StubPhase("b", ("a",))})
    assert exc_info.value.phases == ["a", "b"]


def test_default_phases_are_registered(build_orchestrator: Callable[..., Any]) -> None:
    orchestrator = build_orchestrator(FakeBackend())

    order = orchestrator.order
    assert set(order) == {"style_guide", "narrative", "asset_plan", "sprites", "audio"}
    assert order.index("style_guide") < order.index("asset_plan") < order.index("sprites")
    assert order.index("narrative") < order.index("audio")


# --- Run loop with stub phases ---


@pytest.mark.asyncio
async def test_dependent_phase_sees_committed_output(
    build_orchestrator: Callable[..., Any],
) -> None:
    seen: dict[str, Any] = {}

    async def _read(ctx: PhaseRunContext) -> PhaseDelta:
        seen.update(ctx.view.artifacts("a"))
        return PhaseDelta()

    orchestrator = build_orchestrator(
        FakeBackend(), phases=[StubPhase("b", ("a",), action=_read), StubPhase("a")]
    )

    result = await orchestrator.run()

    assert result.status is OrchestratorState.ALL_COMPLETE
    assert seen == {"a": TextArtifact(text="a")}
    assert result.bundle["a/a"] == TextArtifact(text="a")


@pytest.mark.asyncio
async def test_independent_phases_run_concurrently(
    build_orchestrator: Callable[..., Any],
) -> None:
    """Each phase waits for the other to start; sequential execution would time out."""
    started = {"a": asyncio.Event(), "b": asyncio.Event()}

    def _meet(me: str, other: str) -> Callable[[PhaseRunContext], Awaitable[PhaseDelta]]:
        async def _action(ctx: PhaseRunContext) -> PhaseDelta:
            started[me].set()
            await asyncio.wait_for(started[other].wait(), timeout=2)
            return PhaseDelta()

        return _action

    orchestrator = build_orchestrator(
        FakeBackend(),
        phases=[StubPhase("a", action=_meet("a", "b")), StubPhase("b", action=_meet("b", "a"))],
    )

    result = await orchestrator.run()

    assert result.status is OrchestratorState.ALL_COMPLETE


@pytest.mark.asyncio
async def test_crashing_phase_fails_run(build_orchestrator: Callable[..., Any]) -> None:
    async def _crash(ctx: PhaseRunContext) -> PhaseDelta:
        raise RuntimeError("unexpected")

    orchestrator = build_orchestrator(
        FakeBackend(), phases=[StubPhase("a", action=_crash), StubPhase("b", ("a",))]
    )

    result = await orchestrator.run()

    assert result.status is OrchestratorState.FAILED
    assert result.exit_code == 2
    assert result.phase_status == {"a": PhaseStatus.FAILED, "b": PhaseStatus.PENDING}
    assert result.failures[0].error_kind is ErrorKind.INTERNAL
    assert result.failures[0].cause == "unexpected"


@pytest.mark.asyncio
async def test_run_rejects_reentry(build_orchestrator: Callable[..., Any]) -> None:
    release = asyncio.Event()

    async def _wait(ctx: PhaseRunContext) -> PhaseDelta:
        await release.wait()
        return PhaseDelta()

    orchestrator = build_orchestrator(FakeBackend(), phases=[StubPhase("a", action=_wait)])
    task = asyncio.create_task(orchestrator.run())
    await asyncio.sleep(0)

    with pytest.raises(PipelineError, match="already running"):
        await orchestrator.run()
    with pytest.raises(PipelineError, match="while running"):
        orchestrator.invalidate("n-000001")

    release.set()
    assert (await task).status is OrchestratorState.ALL_COMPLETE


@pytest.mark.asyncio
async def test_gate_rejection_fails_phase(build_orchestrator: Callable[..., Any]) -> None:
    async def _with_warning(ctx: PhaseRunContext) -> PhaseDelta:
        return PhaseDelta(failures=[ctx.failure("extra", ValueError("meh"), required=False)])

    orchestrator = build_orchestrator(
        FakeBackend(), phases=[StubPhase("a", action=_with_warning)], gate=RequireSuccessGate()
    )

    result = await orchestrator.run()

    assert result.status is OrchestratorState.FAILED
    assert result.failures[-1].cause == "Rejected by phase gate"
    assert result.failures[-1].error_kind is ErrorKind.VALIDATION_FAILURE


# --- Full pipeline ---


@pytest.mark.asyncio
async def test_full_run_generates_cascade(build_orchestrator: Callable[..., Any]) -> None:
    backend = FakeBackend()
    orchestrator = build_orchestrator(backend)

    result = await orchestrator.run()

    assert result.status is OrchestratorState.ALL_COMPLETE
    assert result.exit_code == 0
    assert result.failures == []
    sprites = result.bundle.by_phase("sprites")
    assert sorted(sprites) == [
        "hero",
        "hero-palette_swap-1",
        "hero-palette_swap-2",
        "hero-palette_swap-3",
        "hero-palette_swap-4",
        "slime",
        "slime-frame_offset-2",
        "slime-frame_offset-3",
        "slime-mirror-1",
    ]
    assert sorted(result.bundle.by_phase("narrative")) == [
        "feature-crafting",
        "feature-turn-based-combat",
        "premise",
    ]
    assert len(result.bundle.by_phase("audio")) == 3
    # style guide, premise, 2 features, asset plan, 2 sprites, 3 narrations
    assert backend.count() == 10
    assert backend.count(Capability.IMAGE) == 2
    assert result.provider_calls == 10
    assert result.costs["fake"]["calls"] == 10
    narrative = orchestrator.tracker.nodes(phase="narrative")
    premise = next(n for n in narrative if n.label == "premise")
    assert premise.level is NodeLevel.GENERATION
    assert sorted(n.label for n in narrative if n.parent_id == premise.id) == [
        "feature-crafting",
        "feature-turn-based-combat",
    ]


@pytest.mark.asyncio
async def test_variations_are_local_children_of_base(
    build_orchestrator: Callable[..., Any],
) -> None:
    orchestrator = build_orchestrator(FakeBackend())
    result = await orchestrator.run()

    generated = [
        n
        for n in orchestrator.tracker.nodes(phase="sprites", level=NodeLevel.GENERATION)
        if n.provider_call
    ]
    hero = next(n for n in generated if n.label == "hero")
    swaps = [n for n in orchestrator.tracker.nodes() if n.label.startswith("hero-palette_swap")]

    assert len([n for n in generated if n.label == "hero"]) == 1
    assert len(swaps) == 4
    assert all(n.parent_id == hero.id for n in swaps)
    assert all(not n.provider_call and n.status is NodeStatus.SUCCEEDED for n in swaps)

    guide = result.bundle.style_guide
    assert guide is not None
    validator = StyleValidator(guide)
    for artifact in result.bundle.by_phase("sprites").values():
        assert validator.violations(artifact) == []
        assert artifact.style_guide_hash == guide.content_hash


@pytest.mark.asyncio
async def test_rerun_with_warm_cache_makes_no_provider_calls(
    build_orchestrator: Callable[..., Any],
) -> None:
    first = await build_orchestrator(FakeBackend()).run()

    backend = FakeBackend()
    second = await build_orchestrator(backend).run()

    assert second.status is OrchestratorState.ALL_COMPLETE
    assert backend.count() == 0
    assert second.provider_calls == 0
    assert second.cache_hits == 10
    assert first.bundle.style_guide is not None
    assert second.bundle.style_guide is not None
    assert second.bundle.style_guide.content_hash == first.bundle.style_guide.content_hash
    for name in first.bundle:
        if name == "style_guide/style_guide":
            continue
        assert second.bundle[name].digest() == first.bundle[name].digest(), name


@pytest.mark.asyncio
async def test_style_guide_revision_regenerates_only_dependents(
    build_orchestrator: Callable[..., Any],
) -> None:
    backend = FakeBackend()
    orchestrator = build_orchestrator(backend)
    first = await orchestrator.run()
    old_guide = first.bundle.style_guide
    assert old_guide is not None
    premise_node = first.bundle["narrative/premise"].node_id
    narration_node = first.bundle["audio/narration-premise"].node_id

    assert orchestrator.impact(old_guide.source_node_id) == {
        "style_guide",
        "asset_plan",
        "sprites",
    }

    reopened = orchestrator.revise_style_guide(tone="Gloomy and muted")

    assert reopened == {"asset_plan", "sprites"}
    assert orchestrator.phase_status["narrative"] is PhaseStatus.COMPLETE
    assert orchestrator.tracker.get(old_guide.source_node_id).status is NodeStatus.STALE

    text_before = backend.count(Capability.TEXT)
    images_before = backend.count(Capability.IMAGE)
    audio_before = backend.count(Capability.AUDIO)
    second = await orchestrator.run()

    assert second.status is OrchestratorState.ALL_COMPLETE
    new_guide = second.bundle.style_guide
    assert new_guide is not None
    assert new_guide.version == 2
    assert new_guide.tone == "Gloomy and muted"
    # Only the asset plan and the two base sprites are regenerated
    assert backend.count(Capability.TEXT) - text_before == 1
    assert backend.count(Capability.IMAGE) - images_before == 2
    assert backend.count(Capability.AUDIO) == audio_before
    assert second.bundle["narrative/premise"].node_id == premise_node
    assert second.bundle["audio/narration-premise"].node_id == narration_node
    for artifact in second.bundle.by_phase("sprites").values():
        assert artifact.style_guide_hash == new_guide.content_hash


@pytest.mark.asyncio
async def test_invalidate_sprite_reuses_untouched_siblings(
    build_orchestrator: Callable[..., Any],
) -> None:
    orchestrator = build_orchestrator(FakeBackend())
    first = await orchestrator.run()
    hero_node = first.bundle["sprites/hero"].node_id
    slime_node = first.bundle["sprites/slime"].node_id

    reopened = orchestrator.invalidate(hero_node)

    assert reopened == {"sprites"}
    assert orchestrator.state is OrchestratorState.IDLE
    second = await orchestrator.run()

    assert second.status is OrchestratorState.ALL_COMPLETE
    assert second.bundle["sprites/hero"].node_id != hero_node
    assert second.bundle["sprites/slime"].node_id == slime_node
    # Same prompt, so the regenerated hero comes from the cache
    assert second.provider_calls == 0
    assert second.cache_hits == 1


# --- Failure isolation ---


@pytest.mark.asyncio
async def test_optional_sprite_failure_is_a_warning(
    build_orchestrator: Callable[..., Any],
) -> None:
    backend = FakeBackend(failures={SLIME: ContentPolicyError("fake", "content rejected")})
    orchestrator = build_orchestrator(backend)

    result = await orchestrator.run()

    assert result.status is OrchestratorState.ALL_COMPLETE
    assert result.exit_code == 0
    assert "sprites/hero" in result.bundle
    assert "sprites/slime" not in result.bundle
    [failure] = result.failures
    assert failure.phase == "sprites"
    assert failure.label == "slime"
    assert failure.required is False
    assert failure.error_kind is ErrorKind.PROVIDER_FATAL
    assert failure.node_id is not None
    assert result.summary_lines() == [
        "5 of 6 sprites generated; 1 failed: slime: [fake] content rejected"
    ]
    complete = [
        e
        for e in orchestrator.events.history
        if isinstance(e, PhaseStateEvent) and e.phase == "sprites"
    ][-1]
    assert complete.state is PhaseStatus.COMPLETE
    assert complete.detail == "completed with 1 warning(s)"


@pytest.mark.asyncio
async def test_required_sprite_failure_fails_run_then_retry(
    build_orchestrator: Callable[..., Any],
) -> None:
    backend = FakeBackend(failures={HERO: ContentPolicyError("fake", "content rejected")})
    orchestrator = build_orchestrator(backend)

    result = await orchestrator.run()

    assert result.status is OrchestratorState.FAILED
    assert result.exit_code == 2
    assert result.phase_status["sprites"] is PhaseStatus.FAILED
    assert result.phase_status["narrative"] is PhaseStatus.COMPLETE
    hero_failure = next(f for f in result.failures if f.label == "hero")
    assert hero_failure.required is True
    assert "4 of 5 sprites generated; 1 failed: hero: [fake] content rejected" in (
        result.summary_lines()
    )
    assert "slime" in orchestrator.partial["sprites"].artifacts

    assert orchestrator.retry(hero_failure.node_id) == "sprites"
    backend.failures.clear()
    images_before = backend.count(Capability.IMAGE)
    second = await orchestrator.run()

    assert second.status is OrchestratorState.ALL_COMPLETE
    assert second.failures == []
    # slime is reused from the failed attempt; only hero is generated again
    assert backend.count(Capability.IMAGE) - images_before == 1


class DriftingBackend(FakeBackend):
    """Answers style guide prompts with a two-color palette and hero prompts with flat gray."""

    def __init__(self, *, bad_guide: bool = False, gray_hero: bool = False) -> None:
        super().__init__()
        self.bad_guide = bad_guide
        self.gray_hero = gray_hero

    async def generate(
        self, capability: Capability, prompt: str, params: GenerationParams
    ) -> BackendResult:
        result = await super().generate(capability, prompt, params)
        if self.bad_guide and STYLE_GUIDE in prompt:
            guide = {"palette": ["#000000", "#ffffff"], "sprite_width": 16, "sprite_height": 16}
            return BackendResult(artifact=TextArtifact(text=json.dumps(guide)))
        if self.gray_hero and HERO in prompt:
            buf = io.BytesIO()
            Image.new("RGBA", (16, 16), (128, 128, 128, 255)).save(buf, format="PNG")
            return BackendResult(artifact=ImageArtifact(data=buf.getvalue(), width=16, height=16))
        return result

    def prompts_with(self, marker: str) -> int:
        return sum(1 for _, prompt, _ in self.calls if marker in prompt)


@pytest.mark.asyncio
async def test_invalid_style_guide_reprompts_then_fails(
    build_orchestrator: Callable[..., Any],
) -> None:
    """Each corrective re-prompt reaches the provider; rejected guides are never cached."""
    backend = DriftingBackend(bad_guide=True)
    orchestrator = build_orchestrator(backend)

    result = await orchestrator.run()

    assert result.status is OrchestratorState.FAILED
    assert result.exit_code == 2
    assert result.phase_status["style_guide"] is PhaseStatus.FAILED
    assert backend.prompts_with(STYLE_GUIDE) == 4
    guide_nodes = orchestrator.tracker.nodes(phase="style_guide")
    assert len(guide_nodes) == 4
    assert all(n.status is NodeStatus.FAILED and n.provider_call for n in guide_nodes)
    failure = next(f for f in result.failures if f.phase == "style_guide")
    assert failure.error_kind is ErrorKind.VALIDATION_FAILURE

    assert orchestrator.retry(failure.node_id) == "style_guide"
    backend.bad_guide = False
    second = await orchestrator.run()

    assert second.status is OrchestratorState.ALL_COMPLETE
    assert backend.prompts_with(STYLE_GUIDE) == 5


@pytest.mark.asyncio
async def test_off_palette_sprite_reprompts_then_retry_succeeds(
    build_orchestrator: Callable[..., Any],
) -> None:
    backend = DriftingBackend(gray_hero=True)
    config = create_default_config("Test Quest")
    config.style.max_artifact_retries = 2
    orchestrator = build_orchestrator(backend, config=config)

    result = await orchestrator.run()

    assert result.status is OrchestratorState.FAILED
    assert result.phase_status["sprites"] is PhaseStatus.FAILED
    assert backend.prompts_with(HERO) == 3
    hero_failure = next(f for f in result.failures if f.label == "hero")
    assert hero_failure.error_kind is ErrorKind.VALIDATION_FAILURE

    orchestrator.retry(hero_failure.node_id)
    backend.gray_hero = False
    second = await orchestrator.run()

    assert second.status is OrchestratorState.ALL_COMPLETE
    assert backend.prompts_with(HERO) == 4


def test_retry_unknown_phase(build_orchestrator: Callable[..., Any]) -> None:
    orchestrator = build_orchestrator(FakeBackend(), phases=[StubPhase("a")])
    node_id = orchestrator.tracker.record(None, NodeLevel.METAPROMPT, "loose")

    with pytest.raises(PipelineError, match="no known phase"):
        orchestrator.retry(node_id)


def test_revise_without_guide(build_orchestrator: Callable[..., Any]) -> None:
    with pytest.raises(PipelineError, match="No style guide"):
        build_orchestrator(FakeBackend()).revise_style_guide(tone="x")


# --- Cancellation ---


@pytest.mark.asyncio
async def test_cancel_keeps_partial_output_and_resumes(
    build_orchestrator: Callable[..., Any],
) -> None:
    backend = CancelOnPrompt(HERO)
    orchestrator = build_orchestrator(backend, config=_serial_config())
    backend.orchestrator = orchestrator

    result = await orchestrator.run()

    assert result.status is OrchestratorState.CANCELLED
    assert result.exit_code == 130
    assert result.phase_status["sprites"] is PhaseStatus.PENDING
    partial = orchestrator.partial["sprites"].artifacts
    assert "hero" in partial
    assert "hero-palette_swap-1" in partial
    assert "slime" not in partial
    terminal = orchestrator.events.history[-1]
    assert isinstance(terminal, TerminalEvent)
    assert terminal.status == "cancelled"

    backend.orchestrator = None
    images_before = backend.count(Capability.IMAGE)
    resumed = await orchestrator.run()

    assert resumed.status is OrchestratorState.ALL_COMPLETE
    assert backend.count(Capability.IMAGE) - images_before == 1
    assert resumed.bundle["sprites/hero"].node_id == partial["hero"].node_id


# --- Events ---


@pytest.mark.asyncio
async def test_events_stream(build_orchestrator: Callable[..., Any]) -> None:
    orchestrator = build_orchestrator(FakeBackend())
    queue = orchestrator.events.subscribe()

    await orchestrator.run()
    events = [event async for event in iter_events(queue)]

    assert isinstance(events[-1], TerminalEvent)
    assert events[-1].status == "complete"
    seqs = [e.seq for e in events]
    assert seqs == sorted(seqs)
    assert len(set(seqs)) == len(seqs)
    completed = {
        e.phase
        for e in events
        if isinstance(e, PhaseStateEvent) and e.state is PhaseStatus.COMPLETE
    }
    assert completed == set(orchestrator.order)
    sprite_progress = [e for e in events if isinstance(e, ProgressEvent) and e.phase == "sprites"]
    assert [e.current_task_label for e in sprite_progress] == ["hero", "slime"]
    assert sprite_progress[-1].fraction_complete == 1.0
