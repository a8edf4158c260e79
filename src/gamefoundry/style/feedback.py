"""Action-first validation feedback for corrective re-prompts.

The recovery directive comes first, then the individual violations, so
the model reads what to do before it reads what went wrong.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

# Names models commonly use instead of the expected style guide fields
FIELD_SYNONYMS: dict[str, list[str]] = {
    "palette": ["colors", "colours", "color_palette", "palette_colors"],
    "sprite_width": ["width", "sprite_w"],
    "sprite_height": ["height", "sprite_h"],
    "tile_size": ["tile", "tile_dimensions", "grid_size"],
    "tone": ["mood", "atmosphere", "style"],
    "constraints": ["rules", "guidelines", "restrictions"],
}


def _similarity_ratio(a: str, b: str) -> float:
    return SequenceMatcher(None, a.lower(), b.lower()).ratio()


def find_field_correction(
    provided_field: str,
    expected_fields: set[str],
    threshold: float = 0.75,
) -> str | None:
    """Suggest the expected field a misnamed one probably meant.

    Checks synonyms first, then fuzzy similarity.
    """
    provided_lower = provided_field.lower()
    if provided_lower in {e.lower() for e in expected_fields}:
        return None

    for expected, synonyms in FIELD_SYNONYMS.items():
        if expected in expected_fields and provided_lower in synonyms:
            return expected

    best_match = None
    best_ratio = threshold
    for expected in sorted(expected_fields):
        ratio = _similarity_ratio(provided_field, expected)
        if ratio > best_ratio:
            best_ratio = ratio
            best_match = expected
    return best_match


@dataclass
class ValidationFeedback:
    """Structured feedback for a rejected response.

    Attributes:
        recovery_action: Directive for the next attempt.
        field_corrections: Map of provided field -> "rename to 'expected'".
        missing_required: Required fields that were absent.
        violations: Human-readable constraint violations.
    """

    recovery_action: str
    field_corrections: dict[str, str] = field(default_factory=dict)
    missing_required: list[str] = field(default_factory=list)
    violations: list[str] = field(default_factory=list)

    @classmethod
    def from_pydantic_errors(
        cls,
        errors: Sequence[Mapping[str, Any]],
        provided_fields: set[str],
        required_fields: set[str],
    ) -> ValidationFeedback:
        """Build feedback from ``ValidationError.errors()``."""
        missing: list[str] = []
        violations: list[str] = []
        for error in errors:
            loc = ".".join(str(part) for part in error.get("loc", ()))
            msg = error.get("msg", "")
            if error.get("type") == "missing":
                missing.append(loc)
            else:
                violations.append(f"{loc}: {msg}" if loc else msg)

        corrections: dict[str, str] = {}
        for provided in sorted(provided_fields - required_fields):
            correction = find_field_correction(provided, required_fields)
            if correction:
                corrections[provided] = f"rename to '{correction}'"

        return cls(
            recovery_action=_recovery_action(corrections, missing, violations),
            field_corrections=corrections,
            missing_required=missing,
            violations=violations,
        )

    @classmethod
    def from_violations(
        cls, violations: Sequence[str], action: str | None = None
    ) -> ValidationFeedback:
        return cls(
            recovery_action=action or _recovery_action({}, [], list(violations)),
            violations=list(violations),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"recovery_action": self.recovery_action}
        if self.field_corrections:
            result["field_corrections"] = self.field_corrections
        if self.missing_required:
            result["missing_required"] = self.missing_required
        if self.violations:
            result["violations"] = self.violations
        return result

    def to_prompt(self) -> str:
        """Text appended to a prompt when re-prompting after a rejection."""
        return (
            "\n\nYOUR PREVIOUS RESPONSE WAS REJECTED. "
            f"{self.recovery_action}\n{json.dumps(self.to_dict(), indent=2, sort_keys=True)}"
        )


def _recovery_action(
    corrections: Mapping[str, str], missing: Sequence[str], violations: Sequence[str]
) -> str:
    actions: list[str] = []
    if corrections:
        actions.append(f"Rename {len(corrections)} field(s)")
    if missing:
        actions.append(f"add {len(missing)} missing field(s)")
    if violations:
        actions.append(f"fix {len(violations)} violation(s)")
    if not actions:
        return "Review the errors and retry."
    return ", then ".join(actions) + ", then retry."
