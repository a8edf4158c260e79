"""Pipeline errors and error-kind classification."""

from __future__ import annotations

from typing import TYPE_CHECKING

from gamefoundry.models.pipeline import ErrorKind
from gamefoundry.prompts.errors import TemplateError
from gamefoundry.providers.errors import ProviderError, ProviderFatal, ProviderTransient
from gamefoundry.style.errors import ValidationFailure

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path


class PipelineError(Exception):
    """Raised when pipeline execution cannot proceed."""

    def __init__(self, phase: str, message: str) -> None:
        self.phase = phase
        super().__init__(f"Pipeline error in phase '{phase}': {message}")


class PhaseNotFoundError(PipelineError):
    """Raised when a phase (or a declared dependency) is not registered."""

    def __init__(self, phase: str) -> None:
        super().__init__(phase, f"Phase '{phase}' not found")


class DependencyCycleError(PipelineError):
    """Raised when phase dependencies do not form a DAG."""

    def __init__(self, phases: Sequence[str]) -> None:
        self.phases = list(phases)
        first = self.phases[0] if self.phases else "?"
        super().__init__(first, f"Dependency cycle among {self.phases}")


class CheckpointError(Exception):
    """Raised when a checkpoint cannot be read or written."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Checkpoint error at {path}: {reason}")


class GenerationError(Exception):
    """One sub-generation failed after retries and corrections.

    Attributes:
        label: Logical artifact name.
        node_id: Lineage node of the last attempt.
        cause: The underlying taxonomy error.
    """

    def __init__(self, label: str, node_id: str | None, cause: BaseException) -> None:
        self.label = label
        self.node_id = node_id
        self.cause = cause
        super().__init__(f"{label}: {cause}")

    @property
    def kind(self) -> ErrorKind:
        return error_kind_for(self.cause)


def error_kind_for(exc: BaseException) -> ErrorKind:
    """Map an exception to the reported error kind."""
    if isinstance(exc, GenerationError):
        return exc.kind
    if isinstance(exc, TemplateError):
        return ErrorKind.TEMPLATE_ERROR
    if isinstance(exc, ProviderTransient):
        return ErrorKind.PROVIDER_TRANSIENT
    if isinstance(exc, ProviderFatal):
        return ErrorKind.PROVIDER_FATAL
    if isinstance(exc, ProviderError):
        return ErrorKind.PROVIDER_ERROR
    if isinstance(exc, ValidationFailure):
        return ErrorKind.VALIDATION_FAILURE
    return ErrorKind.INTERNAL
