"""Gate hooks deciding whether a finished phase is accepted."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol

if TYPE_CHECKING:
    from gamefoundry.pipeline.context import PhaseDelta


class PhaseGate(Protocol):
    """Approves or rejects a phase once all its sub-generations are terminal."""

    async def on_phase_complete(
        self,
        phase: str,
        delta: PhaseDelta,
    ) -> Literal["approve", "reject"]:
        """Called when a phase's work has drained.

        Args:
            phase: Name of the completed phase.
            delta: The phase's output, including optional failures.

        Returns:
            "approve" to commit the output or "reject" to fail the phase.
        """
        ...


class AutoApproveGate:
    """Accepts every phase; optional failures become warnings."""

    async def on_phase_complete(
        self,
        _phase: str,
        _delta: PhaseDelta,
    ) -> Literal["approve", "reject"]:
        return "approve"


class RequireSuccessGate:
    """Rejects any phase with a failed sub-generation, even an optional one."""

    async def on_phase_complete(
        self,
        _phase: str,
        delta: PhaseDelta,
    ) -> Literal["approve", "reject"]:
        if delta.failures:
            return "reject"
        return "approve"
