"""Orchestrator state, progress events and failure reports."""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field


class OrchestratorState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    ALL_COMPLETE = "all_complete"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PhaseStatus(StrEnum):
    """Per-phase state (RunningPhase/PhaseComplete in the run state machine)."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class ErrorKind(StrEnum):
    TEMPLATE_ERROR = "template_error"
    PROVIDER_TRANSIENT = "provider_transient"
    PROVIDER_FATAL = "provider_fatal"
    VALIDATION_FAILURE = "validation_failure"
    PROVIDER_ERROR = "provider_error"
    INTERNAL = "internal"


class FailureReport(BaseModel):
    """Structured description of a failed artifact, suitable for "retry this artifact"."""

    phase: str
    label: str
    node_id: str | None = None
    error_kind: ErrorKind
    cause: str
    required: bool = True

    def __str__(self) -> str:
        where = f"{self.phase}/{self.label}"
        return f"{where} failed ({self.error_kind.value}): {self.cause}"


class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    seq: int
    phase: str
    fraction_complete: float = Field(ge=0.0, le=1.0)
    current_task_label: str


class PhaseStateEvent(BaseModel):
    type: Literal["phase_state"] = "phase_state"
    seq: int
    phase: str
    state: PhaseStatus
    detail: str | None = None


class TerminalEvent(BaseModel):
    type: Literal["terminal"] = "terminal"
    seq: int
    status: Literal["complete", "failed", "cancelled"]
    failures: list[FailureReport] = Field(default_factory=list)


PipelineEvent = ProgressEvent | PhaseStateEvent | TerminalEvent
