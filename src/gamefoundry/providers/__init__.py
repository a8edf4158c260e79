"""Provider adapters for text, image and audio generation."""

from gamefoundry.providers.adapter import CapabilityRouter, FallbackChain, ProviderAdapter
from gamefoundry.providers.base import (
    BackendResult,
    Capability,
    GenerationParams,
    Invoker,
    ProviderBackend,
)
from gamefoundry.providers.cost import CostTracker, UsageRecord
from gamefoundry.providers.errors import (
    AuthenticationError,
    ContentPolicyError,
    InvalidParams,
    ProviderConnectionError,
    ProviderError,
    ProviderFatal,
    ProviderModelError,
    ProviderTimeout,
    ProviderTransient,
    QuotaExhausted,
    RateLimited,
    classify_exception,
)
from gamefoundry.providers.factory import build_router, create_backend, create_chat_model
from gamefoundry.providers.retry import Backoff, RetryPolicy

__all__ = [
    "AuthenticationError",
    "BackendResult",
    "Backoff",
    "Capability",
    "CapabilityRouter",
    "ContentPolicyError",
    "CostTracker",
    "FallbackChain",
    "GenerationParams",
    "InvalidParams",
    "Invoker",
    "ProviderAdapter",
    "ProviderBackend",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderFatal",
    "ProviderModelError",
    "ProviderTimeout",
    "ProviderTransient",
    "QuotaExhausted",
    "RateLimited",
    "RetryPolicy",
    "UsageRecord",
    "build_router",
    "classify_exception",
    "create_backend",
    "create_chat_model",
]
