"""Factory for provider backends and capability routers.

Text backends go through LangChain's ``init_chat_model`` for unified
provider instantiation; image and audio backends are lazily imported so
optional vendor SDKs are only required when configured.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from gamefoundry.observability.logging import get_logger
from gamefoundry.providers.adapter import (
    DEFAULT_DEADLINE_SECONDS,
    CapabilityRouter,
    FallbackChain,
    ProviderAdapter,
)
from gamefoundry.providers.base import Capability
from gamefoundry.providers.errors import AuthenticationError, ProviderModelError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from langchain_core.language_models import BaseChatModel

    from gamefoundry.observability.call_log import ProviderCallLogger
    from gamefoundry.providers.base import ProviderBackend
    from gamefoundry.providers.cost import CostTracker
    from gamefoundry.providers.retry import RetryPolicy

log = get_logger(__name__)

# Default model per (capability, provider). None means the model must be explicit.
PROVIDER_DEFAULTS: dict[Capability, dict[str, str | None]] = {
    Capability.TEXT: {
        "placeholder": "placeholder",
        "ollama": None,
        "openai": "gpt-4o-mini",
        "anthropic": "claude-sonnet-4-20250514",
        "google": "gemini-2.5-flash",
    },
    Capability.IMAGE: {
        "placeholder": "placeholder",
        "openai": "gpt-image-1",
    },
    Capability.AUDIO: {
        "placeholder": "placeholder",
        "elevenlabs": "eleven_multilingual_v2",
    },
}

_CHAT_PROVIDERS = frozenset({"ollama", "openai", "anthropic", "google"})

_API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}


def get_default_model(capability: Capability, provider_name: str) -> str | None:
    """Default model for a provider, or None if it must be specified."""
    return PROVIDER_DEFAULTS.get(capability, {}).get(provider_name.lower())


def parse_provider_spec(capability: Capability, spec: str) -> tuple[str, str]:
    """Split ``provider/model`` into its parts, filling in the default model.

    Raises:
        ProviderModelError: If the provider is unknown or needs an explicit model.
    """
    if "/" in spec:
        provider, model = spec.split("/", 1)
        provider = provider.lower()
    else:
        provider = spec.lower()
        default = get_default_model(capability, provider)
        if default is None:
            raise ProviderModelError(
                provider,
                f"Provider '{provider}' requires explicit model. Use {provider}/<model-name>",
            )
        model = default

    if provider not in PROVIDER_DEFAULTS.get(capability, {}):
        raise ProviderModelError(
            provider, f"Unknown {capability.value} provider: {provider}"
        )
    return provider, model


def create_chat_model(provider_name: str, model: str, **kwargs: Any) -> BaseChatModel:
    """Create a LangChain chat model for a text provider.

    Raises:
        AuthenticationError: If a required API key or host is missing.
        ProviderModelError: If the LangChain integration package is missing.
    """
    provider = provider_name.lower()
    if provider not in _CHAT_PROVIDERS:
        raise ProviderModelError(provider, f"Unknown chat provider: {provider}")

    kwargs = _preprocess_provider_kwargs(provider, kwargs)
    provider_for_init = "google_genai" if provider == "google" else provider

    try:
        from langchain.chat_models import init_chat_model

        chat_model: BaseChatModel = init_chat_model(
            model=model, model_provider=provider_for_init, **kwargs
        )
    except ImportError as e:
        package = _get_package_for_provider(provider)
        log.error("provider_import_error", provider=provider, package=package)
        raise ProviderModelError(provider, f"{package} not installed. Run: pip install {package}") from e

    log.info("chat_model_created", provider=provider, model=model)
    return chat_model


def _preprocess_provider_kwargs(provider: str, kwargs: dict[str, Any]) -> dict[str, Any]:
    """Resolve credentials and hosts from kwargs or environment."""
    kwargs = dict(kwargs)

    if provider == "ollama":
        host = kwargs.pop("host", None) or os.getenv("OLLAMA_HOST")
        if not host:
            log.error("provider_config_error", provider="ollama", missing="OLLAMA_HOST")
            raise AuthenticationError(
                "ollama", "OLLAMA_HOST not configured. Set OLLAMA_HOST environment variable."
            )
        kwargs["base_url"] = host
        return kwargs

    env_var = _API_KEY_ENV[provider]
    api_key = kwargs.get("api_key") or os.getenv(env_var)
    if not api_key:
        log.error("provider_config_error", provider=provider, missing=env_var)
        raise AuthenticationError(provider, f"API key required. Set {env_var} environment variable.")
    kwargs["api_key"] = api_key
    return kwargs


def _get_package_for_provider(provider: str) -> str:
    packages = {
        "ollama": "langchain-ollama",
        "openai": "langchain-openai",
        "anthropic": "langchain-anthropic",
        "google": "langchain-google-genai",
    }
    return packages.get(provider, f"langchain-{provider}")


def create_backend(capability: Capability, spec: str) -> ProviderBackend:
    """Create a backend for one capability from a ``provider/model`` spec."""
    provider, model = parse_provider_spec(capability, spec)

    if provider == "placeholder":
        from gamefoundry.providers.placeholder import PlaceholderBackend

        return PlaceholderBackend(model)

    if capability is Capability.TEXT:
        from gamefoundry.providers.langchain_text import LangChainTextBackend

        # Chat models are built lazily; check credentials now so a missing key
        # drops the provider from its chain instead of failing mid-run.
        _preprocess_provider_kwargs(provider, {})
        return LangChainTextBackend(provider, model)

    if capability is Capability.IMAGE:
        from gamefoundry.providers.image_openai import OpenAIImageBackend

        return OpenAIImageBackend(model=model)

    from gamefoundry.providers.audio_elevenlabs import ElevenLabsBackend

    return ElevenLabsBackend(model=model)


def build_router(
    chains: Mapping[Capability, Sequence[str]],
    *,
    retry_policy: RetryPolicy | None = None,
    cost_tracker: CostTracker | None = None,
    deadline_seconds: float = DEFAULT_DEADLINE_SECONDS,
    call_logger: ProviderCallLogger | None = None,
) -> CapabilityRouter:
    """Build a router with one fallback chain per configured capability.

    Backends that cannot be created (e.g. a missing API key for a fallback
    provider) are skipped with a warning as long as one provider remains.
    """
    routed: dict[Capability, FallbackChain] = {}
    for capability, specs in chains.items():
        adapters: list[ProviderAdapter] = []
        errors: list[str] = []
        for spec in specs:
            try:
                backend = create_backend(Capability(capability), spec)
            except (AuthenticationError, ProviderModelError) as e:
                log.warning(
                    "provider_unavailable", capability=str(capability), spec=spec, error=str(e)
                )
                errors.append(str(e))
                continue
            adapters.append(
                ProviderAdapter(
                    backend,
                    retry_policy=retry_policy,
                    cost_tracker=cost_tracker,
                    deadline_seconds=deadline_seconds,
                    call_logger=call_logger,
                )
            )
        if not adapters:
            raise ProviderModelError(
                "router",
                f"No usable {Capability(capability).value} provider: " + "; ".join(errors),
            )
        routed[Capability(capability)] = FallbackChain(adapters)
    return CapabilityRouter(routed)
