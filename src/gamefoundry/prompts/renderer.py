"""Deterministic prompt rendering.

Templates use two forms of placeholder:

- ``{{ path.to.field }}`` substitutes a value from the context. Strings
  are inserted verbatim; lists, mappings and pydantic models are rendered
  as sorted, indented JSON so field order never varies between runs.
- ``{{> fragment }}`` includes a named fragment from the template or any
  template it ``extends`` (the nearest definition wins).

Rendering is pure: no clock, no randomness, no dependence on dict order.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from gamefoundry.prompts.errors import (
    MissingContextField,
    TemplateCycleError,
    TemplateParseError,
)
from gamefoundry.prompts.loader import PromptLoader

if TYPE_CHECKING:
    from pathlib import Path

    from gamefoundry.prompts.loader import PromptTemplate

_VAR_PATTERN = re.compile(r"\{\{\s*(\w+(?:\.\w+)*)\s*\}\}")
_INCLUDE_PATTERN = re.compile(r"\{\{>\s*(\w+)\s*\}\}")

# Includes nested deeper than this are treated as a cycle.
_MAX_INCLUDE_DEPTH = 16


def format_value(value: Any) -> str:
    """Render a context value as stable text."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(_jsonable(value), sort_keys=True, indent=2, ensure_ascii=False)


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(_jsonable(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


class PromptRenderer:
    """Render named templates against a context mapping.

    Attributes:
        loader: Source of templates.
    """

    def __init__(self, loader: PromptLoader | None = None, prompts_path: Path | None = None):
        self.loader = loader or PromptLoader(prompts_path)

    def template(self, template_id: str) -> PromptTemplate:
        """Return the loaded template (raises TemplateNotFound)."""
        return self.loader.load(template_id)

    def chain(self, template_id: str) -> list[PromptTemplate]:
        """Template followed by its ``extends`` ancestors, nearest first.

        Raises:
            TemplateCycleError: If inheritance loops back on itself.
        """
        chain: list[PromptTemplate] = []
        seen: list[str] = []
        current: str | None = template_id
        while current is not None:
            if current in seen:
                raise TemplateCycleError(template_id, [*seen, current])
            seen.append(current)
            template = self.loader.load(current)
            chain.append(template)
            current = template.extends
        return chain

    def params(self, template_id: str) -> dict[str, Any]:
        """Default generation params merged along the chain (child wins)."""
        merged: dict[str, Any] = {}
        for template in reversed(self.chain(template_id)):
            merged.update(template.params)
        return merged

    def render(self, template_id: str, context: Mapping[str, Any]) -> str:
        """Render a template into a concrete prompt string.

        Raises:
            TemplateNotFound: If the template or an ancestor is missing.
            MissingContextField: If a referenced context field is absent.
            TemplateCycleError: If inheritance or includes loop.
        """
        chain = self.chain(template_id)
        fragments: dict[str, str] = {}
        for template in reversed(chain):
            fragments.update(template.fragments)
        body = next((t.template for t in chain if t.template), "")

        expanded = self._expand_includes(template_id, body, fragments, [])
        return self._substitute(template_id, expanded, context).strip()

    def _expand_includes(
        self, template_id: str, text: str, fragments: dict[str, str], stack: list[str]
    ) -> str:
        if len(stack) > _MAX_INCLUDE_DEPTH:
            raise TemplateCycleError(template_id, stack)

        def replace(match: re.Match[str]) -> str:
            name = match.group(1)
            if name in stack:
                raise TemplateCycleError(template_id, [*stack, name])
            if name not in fragments:
                raise TemplateParseError(template_id, f"unknown fragment '{name}'")
            return self._expand_includes(template_id, fragments[name], fragments, [*stack, name])

        return _INCLUDE_PATTERN.sub(replace, text)

    def _substitute(self, template_id: str, text: str, context: Mapping[str, Any]) -> str:
        def replace(match: re.Match[str]) -> str:
            return format_value(_resolve(template_id, match.group(1), context))

        return _VAR_PATTERN.sub(replace, text)


def _resolve(template_id: str, path: str, context: Mapping[str, Any]) -> Any:
    value: Any = context
    for part in path.split("."):
        if isinstance(value, Mapping):
            if part not in value:
                raise MissingContextField(template_id, path)
            value = value[part]
        elif isinstance(value, BaseModel) and part in type(value).model_fields:
            value = getattr(value, part)
        elif isinstance(value, (list, tuple)) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            raise MissingContextField(template_id, path)
    return value
