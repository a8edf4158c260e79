"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from gamefoundry.cache.disk import DiskTier
from gamefoundry.cache.store import ResponseCache
from gamefoundry.lineage.tracker import LineageTracker
from gamefoundry.models.concept import GenerationConcept
from gamefoundry.pipeline.config import create_default_config
from gamefoundry.pipeline.orchestrator import PhaseOrchestrator
from gamefoundry.pipeline.runtime import PipelineRuntime
from gamefoundry.prompts.renderer import PromptRenderer
from gamefoundry.providers.adapter import CapabilityRouter, FallbackChain, ProviderAdapter
from gamefoundry.providers.base import BackendResult, Capability, GenerationParams
from gamefoundry.providers.cost import CostTracker
from gamefoundry.providers.placeholder import PlaceholderBackend
from gamefoundry.providers.retry import RetryPolicy
from gamefoundry.style.guide import StyleGuide

if TYPE_CHECKING:
    from collections.abc import Callable

PALETTE_16 = (
    "#000000",
    "#1d2b53",
    "#7e2553",
    "#008751",
    "#ab5236",
    "#5f574f",
    "#c2c3c7",
    "#fff1e8",
    "#ff004d",
    "#ffa300",
    "#ffec27",
    "#00e436",
    "#29adff",
    "#83769c",
    "#ff77a8",
    "#ffccaa",
)


async def no_sleep(_delay: float) -> None:
    return None


class FakeBackend:
    """Placeholder-backed backend that records every call.

    ``failures`` maps a prompt substring to an exception (or a zero-arg
    callable returning one) raised instead of generating.
    """

    def __init__(
        self,
        name: str = "fake",
        capabilities: frozenset[Capability] | None = None,
        failures: dict[str, Exception | Callable[[], Exception]] | None = None,
    ) -> None:
        self.name = name
        self.capabilities = capabilities or frozenset(Capability)
        self.default_model = f"{name}-model"
        self.failures = dict(failures or {})
        self.calls: list[tuple[Capability, str, GenerationParams]] = []
        self._delegate = PlaceholderBackend()

    async def generate(
        self, capability: Capability, prompt: str, params: GenerationParams
    ) -> BackendResult:
        self.calls.append((capability, prompt, params))
        for marker, failure in self.failures.items():
            if marker in prompt:
                raise failure() if callable(failure) else failure
        return await self._delegate.generate(capability, prompt, params)

    def count(self, capability: Capability | None = None) -> int:
        return sum(1 for c in self.calls if capability is None or c[0] is capability)


class CancelOnPrompt(FakeBackend):
    """Cancels the attached orchestrator after answering a matching prompt."""

    def __init__(self, marker: str) -> None:
        super().__init__()
        self.marker = marker
        self.orchestrator: PhaseOrchestrator | None = None

    async def generate(
        self, capability: Capability, prompt: str, params: GenerationParams
    ) -> BackendResult:
        result = await super().generate(capability, prompt, params)
        if self.marker in prompt and self.orchestrator is not None:
            self.orchestrator.cancel("test stop")
        return result


def make_router(
    *backends: Any,
    costs: CostTracker | None = None,
    max_attempts: int = 3,
) -> CapabilityRouter:
    """Router with one fallback chain of ``backends`` for every capability."""
    policy = RetryPolicy(max_attempts=max_attempts, sleep=no_sleep)
    adapters = [ProviderAdapter(b, retry_policy=policy, cost_tracker=costs) for b in backends]
    return CapabilityRouter(dict.fromkeys(Capability, FallbackChain(adapters)))


@pytest.fixture(autouse=True, scope="session")
def isolate_environment() -> None:
    """Keep provider/cache overrides from the developer's shell out of tests."""
    for var in (
        "GF_PROVIDER_TEXT",
        "GF_PROVIDER_IMAGE",
        "GF_PROVIDER_AUDIO",
        "GF_CACHE_DIR",
        "GF_PROJECTS_DIR",
    ):
        os.environ.pop(var, None)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def prompts_path(project_root: Path) -> Path:
    return project_root / "prompts"


@pytest.fixture
def renderer(prompts_path: Path) -> PromptRenderer:
    return PromptRenderer(prompts_path=prompts_path)


@pytest.fixture
def concept() -> GenerationConcept:
    return GenerationConcept(
        name="Test Quest",
        genre="RPG",
        description="A tiny hero explores a slime-infested meadow.",
        features=("Turn-based combat", "Crafting"),
    )


@pytest.fixture
def guide() -> StyleGuide:
    return StyleGuide(
        palette=PALETTE_16,
        sprite_width=16,
        sprite_height=16,
        tone="Bright pixel art",
        constraints=("No gradients",),
        source_node_id=None,
    )


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def build_runtime(tmp_path: Path, renderer: PromptRenderer) -> Callable[..., PipelineRuntime]:
    """Factory for runtimes wired to a fake backend and a disk cache under tmp_path."""

    def _build(
        backend: FakeBackend,
        *,
        cache_dir: Path | None = None,
        tracker: LineageTracker | None = None,
        costs: CostTracker | None = None,
    ) -> PipelineRuntime:
        costs = costs or CostTracker()
        return PipelineRuntime(
            renderer=renderer,
            router=make_router(backend, costs=costs),
            cache=ResponseCache(DiskTier(cache_dir or tmp_path / "cache")),
            tracker=tracker or LineageTracker(),
            costs=costs,
        )

    return _build


@pytest.fixture
def build_orchestrator(
    build_runtime: Callable[..., PipelineRuntime],
    concept: GenerationConcept,
) -> Callable[..., PhaseOrchestrator]:
    """Factory for orchestrators over ``build_runtime``; extra kwargs go to the orchestrator."""

    def _build(
        backend: FakeBackend,
        *,
        cache_dir: Path | None = None,
        project_dir: Path | None = None,
        tracker: LineageTracker | None = None,
        **kwargs: Any,
    ) -> PhaseOrchestrator:
        runtime = build_runtime(backend, cache_dir=cache_dir, tracker=tracker)
        kwargs.setdefault("config", create_default_config(concept.name))
        return PhaseOrchestrator(concept, runtime, project_dir=project_dir, **kwargs)

    return _build
