"""Template errors. All are caller mistakes and are never retried."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class TemplateError(Exception):
    """Base class for template loading and rendering errors."""

    def __init__(self, template_id: str, message: str) -> None:
        self.template_id = template_id
        super().__init__(message)


class TemplateNotFound(TemplateError):
    """Raised when a template file cannot be found."""

    def __init__(self, template_id: str, path: Path) -> None:
        self.path = path
        super().__init__(template_id, f"Template not found: {template_id} at {path}")


class TemplateParseError(TemplateError):
    """Raised when a template file cannot be parsed."""

    def __init__(self, template_id: str, reason: str) -> None:
        self.reason = reason
        super().__init__(template_id, f"Failed to parse template '{template_id}': {reason}")


class MissingContextField(TemplateError):
    """Raised when a template references a field absent from the context."""

    def __init__(self, template_id: str, field: str) -> None:
        self.field = field
        super().__init__(
            template_id, f"Template '{template_id}' requires context field '{field}'"
        )


class TemplateCycleError(TemplateError):
    """Raised when ``extends`` or fragment includes form a cycle."""

    def __init__(self, template_id: str, chain: list[str]) -> None:
        self.chain = chain
        super().__init__(
            template_id, f"Template inheritance cycle: {' -> '.join(chain)}"
        )
