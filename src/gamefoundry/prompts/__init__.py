"""Prompt templates and deterministic rendering."""

from gamefoundry.prompts.errors import (
    MissingContextField,
    TemplateCycleError,
    TemplateError,
    TemplateNotFound,
    TemplateParseError,
)
from gamefoundry.prompts.loader import PromptLoader, PromptTemplate, default_prompts_path
from gamefoundry.prompts.renderer import PromptRenderer, format_value

__all__ = [
    "MissingContextField",
    "PromptLoader",
    "PromptRenderer",
    "PromptTemplate",
    "TemplateCycleError",
    "TemplateError",
    "TemplateNotFound",
    "TemplateParseError",
    "default_prompts_path",
    "format_value",
]
