"""Style validation errors."""

from __future__ import annotations

from typing import TYPE_CHECKING

from gamefoundry.style.feedback import ValidationFeedback

if TYPE_CHECKING:
    from collections.abc import Sequence


class ValidationFailure(Exception):
    """A response violated the style guide or its own schema.

    Triggers a bounded re-prompt loop; fatal only once the retry budget
    is exhausted.

    Attributes:
        subject: What was validated (e.g. ``style_guide``, ``hero``).
        violations: Individual constraint violations.
        feedback: Structured feedback used to build the corrective prompt.
    """

    def __init__(
        self,
        subject: str,
        violations: Sequence[str],
        feedback: ValidationFeedback | None = None,
    ) -> None:
        self.subject = subject
        self.violations = list(violations)
        self.feedback = feedback or ValidationFeedback.from_violations(self.violations)
        summary = "; ".join(self.violations[:3])
        if len(self.violations) > 3:
            summary += f" (+{len(self.violations) - 3} more)"
        super().__init__(f"{subject} failed validation: {summary}")

    def corrective_text(self) -> str:
        return self.feedback.to_prompt()
