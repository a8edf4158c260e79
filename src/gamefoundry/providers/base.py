"""Provider capability interface and generation parameters."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gamefoundry.providers.errors import InvalidParams

if TYPE_CHECKING:
    from collections.abc import Mapping

    from gamefoundry.models.artifacts import GeneratedArtifact


class Capability(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"


class GenerationParams(BaseModel):
    """Parameters for one provider invocation.

    Every field takes part in the cache key, so two calls that differ in
    any parameter (even temperature) never share a cached response.

    Attributes:
        model: Target model identifier.
        temperature: Creativity setting, bounded to 0.0-1.0.
        max_tokens: Output cap for text generation.
        response_format: ``json`` asks text providers for a JSON document.
        schema_name: Name of the JSON schema the response must satisfy.
        size: Image size as ``WIDTHxHEIGHT``.
        extra: Provider-specific settings (e.g. voice configuration).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    model: str = Field(min_length=1)
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    max_tokens: int | None = Field(default=None, ge=1)
    response_format: Literal["text", "json"] = "text"
    schema_name: str | None = None
    size: str | None = Field(default=None, pattern=r"^\d+x\d+$")
    extra: dict[str, Any] = Field(default_factory=dict)

    @property
    def dimensions(self) -> tuple[int, int] | None:
        if self.size is None:
            return None
        width, height = self.size.split("x", 1)
        return int(width), int(height)


def coerce_params(
    provider: str, params: GenerationParams | Mapping[str, Any]
) -> GenerationParams:
    """Validate raw parameters, raising ``InvalidParams`` on failure."""
    if isinstance(params, GenerationParams):
        return params
    try:
        return GenerationParams.model_validate(dict(params))
    except ValidationError as e:
        raise InvalidParams(provider, f"Invalid generation parameters: {e}") from e


@dataclass(frozen=True)
class BackendResult:
    """Raw outcome of one backend call, before cost accounting.

    Attributes:
        artifact: The produced artifact.
        input_tokens: Prompt tokens reported by the provider (0 if unknown).
        output_tokens: Completion tokens reported by the provider.
        units: Billable non-token units (images, characters of speech).
        cost_usd: Exact cost if the provider reports one; otherwise priced
            from the static table in ``providers.cost``.
    """

    artifact: GeneratedArtifact
    input_tokens: int = 0
    output_tokens: int = 0
    units: int = 0
    cost_usd: float | None = None


@runtime_checkable
class ProviderBackend(Protocol):
    """A single vendor integration.

    Backends make exactly one attempt per call and raise errors from the
    taxonomy in ``providers.errors``. Retries, deadlines and cost accounting
    are applied uniformly by ``ProviderAdapter``.
    """

    name: str
    capabilities: frozenset[Capability]
    default_model: str

    async def generate(
        self, capability: Capability, prompt: str, params: GenerationParams
    ) -> BackendResult:
        """Perform one generation call."""
        ...


class Invoker(Protocol):
    """Anything exposing the uniform ``invoke`` contract."""

    async def invoke(
        self,
        capability: Capability,
        prompt: str,
        params: GenerationParams | Mapping[str, Any],
    ) -> GeneratedArtifact:
        """Generate an artifact for a rendered prompt."""
        ...


def estimate_tokens(text: str) -> int:
    """Character heuristic (4 chars per token) for providers that report no usage."""
    return max(1, len(text) // 4) if text else 0
