"""The StyleGuide entity and its structural validator."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, computed_field, field_validator

from gamefoundry.style.errors import ValidationFailure
from gamefoundry.style.feedback import ValidationFeedback

MIN_PALETTE_SIZE = 8
MAX_PALETTE_SIZE = 32

_HEX_PATTERN = re.compile(r"^#?([0-9a-fA-F]{6}|[0-9a-fA-F]{3})$")


def normalize_hex(value: str) -> str:
    """Normalize a color to lowercase ``#rrggbb``.

    Raises:
        ValueError: If the value is not a 3- or 6-digit hex color.
    """
    match = _HEX_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"not a hex color: {value!r}")
    digits = match.group(1).lower()
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    return f"#{digits}"


def hex_to_rgb(value: str) -> tuple[int, int, int]:
    digits = normalize_hex(value)[1:]
    return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)


def rgb_to_hex(rgb: tuple[int, ...]) -> str:
    return "#{:02x}{:02x}{:02x}".format(*rgb[:3])


class StyleGuideDraft(BaseModel):
    """Lenient parse of a provider's style guide response.

    Unknown keys are kept in ``model_extra`` and carried into
    ``StyleGuide.extras``.
    """

    model_config = ConfigDict(extra="allow")

    palette: list[str]
    sprite_width: int
    sprite_height: int
    tile_size: int = 16
    tone: str = ""
    constraints: list[str] = Field(default_factory=list)


class StyleGuide(BaseModel):
    """Validated, immutable style guide for one project.

    Edits never mutate a guide: ``revise`` returns a new version with a new
    content hash.

    Attributes:
        version: Monotonic version number within a project.
        palette: Ordered ``#rrggbb`` colors (8-32 distinct entries).
        sprite_width: Sprite width in pixels.
        sprite_height: Sprite height in pixels.
        tile_size: Tile edge in pixels.
        tone: Textual tone block.
        constraints: Additional rules every prompt must respect.
        extras: Provider-supplied fields outside the fixed schema.
        source_node_id: Lineage node that produced this version.
    """

    model_config = ConfigDict(frozen=True)

    version: int = Field(default=1, ge=1)
    palette: tuple[str, ...]
    sprite_width: int = Field(gt=0)
    sprite_height: int = Field(gt=0)
    tile_size: int = Field(default=16, gt=0)
    tone: str = ""
    constraints: tuple[str, ...] = ()
    extras: dict[str, Any] = Field(default_factory=dict)
    source_node_id: str | None = None

    @field_validator("palette", mode="before")
    @classmethod
    def _normalize_palette(cls, value: Any) -> tuple[str, ...]:
        colors: list[str] = []
        for entry in value:
            color = normalize_hex(entry)
            if color not in colors:
                colors.append(color)
        if not MIN_PALETTE_SIZE <= len(colors) <= MAX_PALETTE_SIZE:
            raise ValueError(
                f"palette must have {MIN_PALETTE_SIZE}-{MAX_PALETTE_SIZE} distinct colors, "
                f"got {len(colors)}"
            )
        return tuple(colors)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def content_hash(self) -> str:
        """SHA-256 over every field except ``source_node_id``."""
        material = {
            "version": self.version,
            "palette": list(self.palette),
            "sprite": [self.sprite_width, self.sprite_height],
            "tile_size": self.tile_size,
            "tone": self.tone,
            "constraints": list(self.constraints),
            "extras": self.extras,
        }
        encoded = json.dumps(material, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    @property
    def short_hash(self) -> str:
        return self.content_hash[:12]

    @property
    def rgb_palette(self) -> list[tuple[int, int, int]]:
        return [hex_to_rgb(c) for c in self.palette]

    def revise(self, **changes: Any) -> StyleGuide:
        """Return the next version with ``changes`` applied.

        Raises:
            ValidationFailure: If the revised guide is invalid.
        """
        data = self.model_dump(exclude={"content_hash"})
        data.update(changes)
        data["version"] = self.version + 1
        data["source_node_id"] = changes.get("source_node_id")
        try:
            return StyleGuide.model_validate(data)
        except ValidationError as e:
            raise ValidationFailure(
                "style_guide", [_format_error(err) for err in e.errors()]
            ) from e

    def prompt_context(self) -> dict[str, Any]:
        """Fields exposed to prompt templates."""
        return {
            "palette": list(self.palette),
            "palette_csv": ", ".join(self.palette),
            "sprite_width": self.sprite_width,
            "sprite_height": self.sprite_height,
            "sprite_size": f"{self.sprite_width}x{self.sprite_height}",
            "tile_size": self.tile_size,
            "tone": self.tone,
            "constraints": list(self.constraints),
            "version": self.version,
        }


def _format_error(error: Any) -> str:
    loc = ".".join(str(part) for part in error.get("loc", ()))
    return f"{loc}: {error.get('msg', '')}" if loc else str(error.get("msg", ""))


def parse_style_guide(raw: str | dict[str, Any], source_node_id: str | None = None) -> StyleGuide:
    """Parse and validate a provider response into a StyleGuide.

    Raises:
        ValidationFailure: With action-first feedback describing every
            violated constraint.
    """
    if isinstance(raw, str):
        try:
            data = json.loads(_strip_code_fence(raw))
        except ValueError as e:
            raise ValidationFailure(
                "style_guide",
                [f"response is not valid JSON: {e}"],
                ValidationFeedback.from_violations(
                    [f"response is not valid JSON: {e}"],
                    action="Respond with a single JSON object and nothing else.",
                ),
            ) from e
    else:
        data = raw
    if not isinstance(data, dict):
        raise ValidationFailure("style_guide", ["response must be a JSON object"])

    required = {name for name, f in StyleGuideDraft.model_fields.items() if f.is_required()}
    try:
        draft = StyleGuideDraft.model_validate(data)
    except ValidationError as e:
        feedback = ValidationFeedback.from_pydantic_errors(
            e.errors(), provided_fields=set(data), required_fields=required
        )
        raise ValidationFailure(
            "style_guide",
            [*(f"{m}: field required" for m in feedback.missing_required), *feedback.violations],
            feedback,
        ) from e

    violations = validate_draft(draft)
    if violations:
        raise ValidationFailure("style_guide", violations)

    return StyleGuide(
        palette=tuple(draft.palette),
        sprite_width=draft.sprite_width,
        sprite_height=draft.sprite_height,
        tile_size=draft.tile_size,
        tone=draft.tone,
        constraints=tuple(draft.constraints),
        extras=dict(draft.model_extra or {}),
        source_node_id=source_node_id,
    )


def validate_draft(draft: StyleGuideDraft) -> list[str]:
    """Constraint violations in a parsed draft (empty when valid)."""
    violations: list[str] = []
    distinct: list[str] = []
    for entry in draft.palette:
        try:
            color = normalize_hex(entry)
        except ValueError:
            violations.append(f"palette: {entry!r} is not a #rrggbb hex color")
            continue
        if color not in distinct:
            distinct.append(color)
    if not MIN_PALETTE_SIZE <= len(distinct) <= MAX_PALETTE_SIZE:
        violations.append(
            f"palette: must contain between {MIN_PALETTE_SIZE} and {MAX_PALETTE_SIZE} "
            f"distinct colors, got {len(distinct)}"
        )
    for name in ("sprite_width", "sprite_height", "tile_size"):
        if getattr(draft, name) <= 0:
            violations.append(f"{name}: must be a positive integer")
    return violations


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped
