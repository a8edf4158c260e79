"""Pipeline orchestration and phase execution."""

from gamefoundry.pipeline.cancellation import CancellationToken
from gamefoundry.pipeline.checkpoint import Checkpoint, load_checkpoint, save_checkpoint
from gamefoundry.pipeline.config import (
    ProjectConfig,
    ProjectConfigError,
    ProvidersConfig,
    create_default_config,
    load_project_config,
)
from gamefoundry.pipeline.context import ArtifactBundle, PhaseContext, PhaseDelta, PhaseOutput
from gamefoundry.pipeline.errors import (
    CheckpointError,
    DependencyCycleError,
    GenerationError,
    PhaseNotFoundError,
    PipelineError,
)
from gamefoundry.pipeline.events import EventBus, iter_events
from gamefoundry.pipeline.gates import AutoApproveGate, PhaseGate, RequireSuccessGate
from gamefoundry.pipeline.orchestrator import (
    PhaseOrchestrator,
    RunResult,
    create_orchestrator,
    topological_order,
)
from gamefoundry.pipeline.runtime import PipelineRuntime, create_runtime

__all__ = [
    "ArtifactBundle",
    "AutoApproveGate",
    "CancellationToken",
    "Checkpoint",
    "CheckpointError",
    "DependencyCycleError",
    "EventBus",
    "GenerationError",
    "PhaseContext",
    "PhaseDelta",
    "PhaseGate",
    "PhaseNotFoundError",
    "PhaseOrchestrator",
    "PhaseOutput",
    "PipelineError",
    "PipelineRuntime",
    "ProjectConfig",
    "ProjectConfigError",
    "ProvidersConfig",
    "RequireSuccessGate",
    "RunResult",
    "create_default_config",
    "create_orchestrator",
    "create_runtime",
    "iter_events",
    "load_checkpoint",
    "load_project_config",
    "save_checkpoint",
]
