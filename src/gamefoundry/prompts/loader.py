"""Template loading for the prompt renderer."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

from gamefoundry.prompts.errors import TemplateError, TemplateNotFound, TemplateParseError

_VALID_CAPABILITIES = ("text", "image", "audio")


@dataclass
class PromptTemplate:
    """A loaded prompt template.

    Attributes:
        name: Template id (usually the file stem).
        description: Human description.
        extends: Parent template id whose fragments this template may include.
        capability: Provider capability the rendered prompt targets.
        params: Default generation parameters (temperature, response_format...).
        template: The prompt body.
        fragments: Named reusable snippets, included with ``{{> name }}``.
    """

    name: str
    description: str = ""
    extends: str | None = None
    capability: str = "text"
    params: dict[str, Any] = field(default_factory=dict)
    template: str = ""
    fragments: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any], name: str) -> PromptTemplate:
        """Create a template from dictionary data.

        Args:
            data: Dictionary containing template fields.
            name: Template name (usually from filename).

        Returns:
            PromptTemplate instance.

        Raises:
            TemplateParseError: If a field has the wrong shape.
        """
        capability = str(data.get("capability", "text"))
        if capability not in _VALID_CAPABILITIES:
            raise TemplateParseError(name, f"unknown capability '{capability}'")
        fragments = data.get("fragments") or {}
        params = data.get("params") or {}
        if not isinstance(fragments, dict) or not isinstance(params, dict):
            raise TemplateParseError(name, "'fragments' and 'params' must be mappings")
        return cls(
            name=str(data.get("name", name)),
            description=str(data.get("description", "")),
            extends=data.get("extends"),
            capability=capability,
            params=_plain(params),
            template=str(data.get("template", "")),
            fragments={str(k): str(v) for k, v in fragments.items()},
        )


def _plain(value: Any) -> Any:
    """Convert ruamel containers into plain dicts/lists."""
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def default_prompts_path() -> Path:
    """Locate the bundled ``prompts`` directory.

    Looks beside the source tree first (development and editable installs),
    then in the current working directory.
    """
    pkg_path = Path(__file__).parent.parent.parent.parent / "prompts"
    if pkg_path.exists():
        return pkg_path
    return Path.cwd() / "prompts"


class PromptLoader:
    """Load prompt templates from disk.

    Templates are YAML files in the templates/ subdirectory.

    Attributes:
        prompts_path: Path to the prompts directory.
    """

    def __init__(self, prompts_path: Path | None = None) -> None:
        self.prompts_path = prompts_path or default_prompts_path()
        self.templates_path = self.prompts_path / "templates"
        self._yaml = YAML(typ="safe")
        self._cache: dict[str, PromptTemplate] = {}
        self._registered: dict[str, PromptTemplate] = {}

    def _get_template_path(self, template_name: str) -> Path:
        return self.templates_path / f"{template_name}.yaml"

    def load(self, template_name: str) -> PromptTemplate:
        """Load a template by name.

        Args:
            template_name: Name of the template (without .yaml extension).

        Returns:
            Loaded PromptTemplate.

        Raises:
            TemplateNotFound: If the template file doesn't exist.
            TemplateParseError: If the template cannot be parsed.
        """
        if template_name in self._registered:
            return self._registered[template_name]
        if template_name in self._cache:
            return self._cache[template_name]

        path = self._get_template_path(template_name)
        if not path.exists():
            raise TemplateNotFound(template_name, path)

        try:
            with path.open("r", encoding="utf-8") as f:
                data = self._yaml.load(f)

            if data is None:
                raise TemplateParseError(template_name, "Empty file")
            if not isinstance(data, dict):
                raise TemplateParseError(template_name, "Top level must be a mapping")

            template = PromptTemplate.from_dict(dict(data), template_name)
            self._cache[template_name] = template
            return template

        except Exception as e:
            if isinstance(e, TemplateError):
                raise
            raise TemplateParseError(template_name, str(e)) from e

    def register(self, template: PromptTemplate) -> None:
        """Add an in-memory template (takes precedence over files)."""
        self._registered[template.name] = template

    def exists(self, template_name: str) -> bool:
        if template_name in self._registered:
            return True
        return self._get_template_path(template_name).exists()

    def list_templates(self) -> list[str]:
        """List available template names (files and registered)."""
        names = set(self._registered)
        if self.templates_path.exists():
            names.update(p.stem for p in self.templates_path.glob("*.yaml") if p.is_file())
        return sorted(names)

    def clear_cache(self) -> None:
        self._cache.clear()
