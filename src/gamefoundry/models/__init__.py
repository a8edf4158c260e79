"""Pydantic models shared across the pipeline."""

from gamefoundry.models.artifacts import (
    ARTIFACT_ADAPTER,
    AudioArtifact,
    GeneratedArtifact,
    ImageArtifact,
    JsonArtifact,
    TextArtifact,
    describe_artifact,
)
from gamefoundry.models.concept import ConceptError, GenerationConcept, load_concept
from gamefoundry.models.lineage import (
    LineageSnapshot,
    NodeError,
    NodeLevel,
    NodeStatus,
    PromptNode,
)
from gamefoundry.models.pipeline import (
    ErrorKind,
    FailureReport,
    OrchestratorState,
    PhaseStateEvent,
    PhaseStatus,
    PipelineEvent,
    ProgressEvent,
    TerminalEvent,
)

__all__ = [
    "ARTIFACT_ADAPTER",
    "AudioArtifact",
    "ConceptError",
    "ErrorKind",
    "FailureReport",
    "GeneratedArtifact",
    "GenerationConcept",
    "ImageArtifact",
    "JsonArtifact",
    "LineageSnapshot",
    "NodeError",
    "NodeLevel",
    "NodeStatus",
    "OrchestratorState",
    "PhaseStateEvent",
    "PhaseStatus",
    "PipelineEvent",
    "ProgressEvent",
    "PromptNode",
    "TerminalEvent",
    "TextArtifact",
    "describe_artifact",
    "load_concept",
]
