"""Phase context: the accumulator passed from phase to phase.

Only the orchestrator's coordinating task mutates a PhaseContext. Phases
see a read-only ``ContextView`` and hand back a ``PhaseDelta`` that the
orchestrator merges once the phase has fully completed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from gamefoundry.models.artifacts import GeneratedArtifact  # noqa: TC001 - pydantic field
from gamefoundry.models.concept import GenerationConcept  # noqa: TC001 - pydantic field
from gamefoundry.models.pipeline import FailureReport  # noqa: TC001 - pydantic field
from gamefoundry.style.guide import StyleGuide  # noqa: TC001 - pydantic field

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping


class PhaseOutput(BaseModel):
    """Committed output of one completed phase.

    Attributes:
        artifacts: Logical asset name -> artifact.
        data: Structured, schema-validated phase data (e.g. the asset plan).
        failures: Sub-generations that failed but did not fail the phase.
        warnings: Human-readable notes (accepted-with-warning items).
    """

    artifacts: dict[str, GeneratedArtifact] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)
    failures: list[FailureReport] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


@dataclass
class PhaseDelta:
    """What a phase hands back to the orchestrator."""

    artifacts: dict[str, GeneratedArtifact] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    failures: list[FailureReport] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    style_guide: StyleGuide | None = None
    cancelled: bool = False

    @property
    def required_failures(self) -> list[FailureReport]:
        return [f for f in self.failures if f.required]

    def to_output(self) -> PhaseOutput:
        return PhaseOutput(
            artifacts=dict(self.artifacts),
            data=dict(self.data),
            failures=list(self.failures),
            warnings=list(self.warnings),
        )


@dataclass(frozen=True)
class ContextView:
    """Read-only view handed to a running phase."""

    concept: GenerationConcept
    style_guide: StyleGuide | None
    outputs: Mapping[str, PhaseOutput]

    def artifacts(self, phase: str) -> Mapping[str, GeneratedArtifact]:
        output = self.outputs.get(phase)
        return MappingProxyType(output.artifacts if output else {})

    def data(self, phase: str) -> Mapping[str, Any]:
        output = self.outputs.get(phase)
        return MappingProxyType(output.data if output else {})


class PhaseContext(BaseModel):
    """Accumulated state: the StyleGuide plus committed phase outputs."""

    concept: GenerationConcept
    style_guide: StyleGuide | None = None
    outputs: dict[str, PhaseOutput] = Field(default_factory=dict)

    def view(self) -> ContextView:
        return ContextView(
            concept=self.concept,
            style_guide=self.style_guide,
            outputs=MappingProxyType(dict(self.outputs)),
        )

    def merge(self, phase: str, delta: PhaseDelta) -> None:
        """Commit a phase's delta, replacing any earlier output of that phase."""
        self.outputs[phase] = delta.to_output()
        if delta.style_guide is not None:
            self.style_guide = delta.style_guide

    def bundle(self) -> ArtifactBundle:
        artifacts = {
            f"{phase}/{label}": artifact
            for phase, output in self.outputs.items()
            for label, artifact in output.artifacts.items()
        }
        return ArtifactBundle(artifacts=MappingProxyType(artifacts), style_guide=self.style_guide)


@dataclass(frozen=True)
class ArtifactBundle:
    """Final hand-off to code/asset emitters: ``phase/label`` -> artifact."""

    artifacts: Mapping[str, GeneratedArtifact]
    style_guide: StyleGuide | None

    def __getitem__(self, name: str) -> GeneratedArtifact:
        return self.artifacts[name]

    def __contains__(self, name: object) -> bool:
        return name in self.artifacts

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.artifacts))

    def __len__(self) -> int:
        return len(self.artifacts)

    def by_phase(self, phase: str) -> dict[str, GeneratedArtifact]:
        prefix = f"{phase}/"
        return {
            name[len(prefix) :]: artifact
            for name, artifact in self.artifacts.items()
            if name.startswith(prefix)
        }
