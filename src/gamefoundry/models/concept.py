"""The user-supplied game concept that seeds a generation run."""

from __future__ import annotations

import json
import re
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError
from ruamel.yaml import YAML

_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


class ConceptError(Exception):
    """Raised when a concept file cannot be read or validated."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid concept file {path}: {reason}")


class GenerationConcept(BaseModel):
    """Immutable description of the game to generate."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1, description="Working title of the game")
    genre: str = Field(min_length=1, description="Target genre (e.g. RPG, platformer)")
    description: str = Field(default="", description="Free-form pitch")
    features: tuple[Annotated[str, StringConstraints(min_length=1)], ...] = Field(
        default=(), description="Feature list from the wizard"
    )
    hints: dict[str, str] = Field(
        default_factory=dict, description="Optional structured hints (art era, camera...)"
    )

    @property
    def project_id(self) -> str:
        """Filesystem-safe identifier derived from the name."""
        slug = _SLUG_PATTERN.sub("-", self.name.lower()).strip("-")
        return slug or "untitled"


def load_concept(path: Path) -> GenerationConcept:
    """Load a concept from a YAML or JSON file.

    Raises:
        ConceptError: If the file is missing, unparsable or fails validation.
    """
    if not path.exists():
        raise ConceptError(path, "file not found")

    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = YAML(typ="safe").load(text)
    except Exception as e:
        raise ConceptError(path, str(e)) from e

    if not isinstance(data, dict):
        raise ConceptError(path, "expected a mapping at the top level")

    try:
        return GenerationConcept.model_validate(data)
    except ValidationError as e:
        raise ConceptError(path, str(e)) from e
