"""Uniform provider adapter, fallback chain and capability routing.

``ProviderAdapter`` wraps one backend and applies, in order: parameter
validation, a hard per-call deadline, the shared retry policy, error
classification and cost accounting. ``FallbackChain`` composes adapters by
priority; ``CapabilityRouter`` picks the chain for a capability.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from gamefoundry.models.artifacts import describe_artifact
from gamefoundry.observability.logging import get_logger
from gamefoundry.providers.base import Capability, GenerationParams, coerce_params
from gamefoundry.providers.cost import CostTracker, estimate_cost
from gamefoundry.providers.errors import (
    ProviderError,
    ProviderFatal,
    ProviderModelError,
    ProviderTimeout,
    ProviderTransient,
    classify_exception,
)
from gamefoundry.providers.retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from gamefoundry.models.artifacts import GeneratedArtifact
    from gamefoundry.observability.call_log import ProviderCallLogger
    from gamefoundry.providers.base import BackendResult, ProviderBackend

log = get_logger(__name__)

DEFAULT_DEADLINE_SECONDS = 120.0


class ProviderAdapter:
    """Applies retries, deadlines and cost accounting around one backend.

    Attributes:
        backend: The wrapped vendor backend.
        deadline_seconds: Hard deadline for each individual attempt.
    """

    def __init__(
        self,
        backend: ProviderBackend,
        *,
        retry_policy: RetryPolicy | None = None,
        cost_tracker: CostTracker | None = None,
        deadline_seconds: float = DEFAULT_DEADLINE_SECONDS,
        call_logger: ProviderCallLogger | None = None,
    ) -> None:
        self.backend = backend
        self.deadline_seconds = deadline_seconds
        self._retry = retry_policy or RetryPolicy()
        self._costs = cost_tracker or CostTracker()
        self._call_logger = call_logger

    @property
    def name(self) -> str:
        return self.backend.name

    @property
    def default_model(self) -> str:
        return self.backend.default_model

    @property
    def costs(self) -> CostTracker:
        return self._costs

    async def close(self) -> None:
        """Release the backend's client, if it holds one."""
        close_method = getattr(self.backend, "close", None)
        if callable(close_method):
            result = close_method()
            if hasattr(result, "__await__"):
                await result

    async def invoke(
        self,
        capability: Capability,
        prompt: str,
        params: GenerationParams | Mapping[str, Any],
    ) -> GeneratedArtifact:
        """Generate an artifact, retrying transient failures.

        Raises:
            ProviderFatal: Auth/quota/invalid-params errors (never retried).
            ProviderTransient: Once the retry policy is exhausted.
            ProviderError: Unclassified vendor failures.
        """
        params = coerce_params(self.name, params)
        capability = Capability(capability)
        if capability not in self.backend.capabilities:
            raise ProviderModelError(
                self.name, f"Provider does not support capability '{capability.value}'"
            )

        async def _attempt() -> BackendResult:
            try:
                return await asyncio.wait_for(
                    self.backend.generate(capability, prompt, params),
                    timeout=self.deadline_seconds,
                )
            except TimeoutError as e:
                raise ProviderTimeout(
                    self.name, f"No response within {self.deadline_seconds:g}s"
                ) from e
            except ProviderError:
                raise
            except Exception as e:
                raise classify_exception(self.name, e) from e

        start = time.perf_counter()
        try:
            result, attempts = await self._retry.run(
                _attempt, label=f"{self.name}:{capability.value}"
            )
        except ProviderError as e:
            self._costs.record_failure(self.name)
            self._log_call(capability, prompt, params, start, error=e)
            log.warning(
                "provider_call_failed",
                provider=self.name,
                capability=capability.value,
                error_type=type(e).__name__,
                fatal=isinstance(e, ProviderFatal),
            )
            raise

        cost = result.cost_usd
        if cost is None:
            cost = estimate_cost(
                capability.value,
                params.model,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
                units=result.units,
            )
        self._costs.record(
            self.name,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            units=result.units,
            cost_usd=cost,
        )
        self._log_call(
            capability, prompt, params, start, result=result, cost=cost, attempts=attempts
        )
        log.debug(
            "provider_call_complete",
            provider=self.name,
            capability=capability.value,
            model=params.model,
            attempts=attempts,
            artifact=describe_artifact(result.artifact),
        )
        usage = {
            "cost_usd": cost,
            "input_tokens": result.input_tokens,
            "output_tokens": result.output_tokens,
        }
        return result.artifact.model_copy(
            update={"model": params.model, "metadata": {**result.artifact.metadata, **usage}}
        )

    def _log_call(
        self,
        capability: Capability,
        prompt: str,
        params: GenerationParams,
        start: float,
        *,
        result: BackendResult | None = None,
        error: ProviderError | None = None,
        cost: float = 0.0,
        attempts: int = 1,
    ) -> None:
        if self._call_logger is None:
            return
        self._call_logger.log(
            self._call_logger.create_entry(
                provider=self.name,
                capability=capability.value,
                model=params.model,
                prompt=prompt,
                temperature=params.temperature,
                duration_seconds=time.perf_counter() - start,
                attempts=attempts,
                input_tokens=result.input_tokens if result else 0,
                output_tokens=result.output_tokens if result else 0,
                cost_usd=cost,
                summary=describe_artifact(result.artifact) if result else "",
                error=str(error) if error else None,
            )
        )


class FallbackChain:
    """Adapters tried in priority order.

    Only retryable (transient) failures fall through to the next adapter;
    fatal errors stop the chain immediately. Each fallback adapter receives
    the same rendered prompt with the model swapped for its own default.
    """

    def __init__(self, adapters: Sequence[ProviderAdapter]) -> None:
        if not adapters:
            raise ValueError("FallbackChain requires at least one adapter")
        self.adapters = list(adapters)

    @property
    def default_model(self) -> str:
        return self.adapters[0].default_model

    async def invoke(
        self,
        capability: Capability,
        prompt: str,
        params: GenerationParams | Mapping[str, Any],
    ) -> GeneratedArtifact:
        params = coerce_params(self.adapters[0].name, params)
        *fallbacks, last = self.adapters

        for index, adapter in enumerate(fallbacks):
            call_params = params
            if index > 0:
                call_params = params.model_copy(update={"model": adapter.default_model})
            try:
                return await adapter.invoke(capability, prompt, call_params)
            except ProviderTransient as e:
                log.warning(
                    "provider_fallback",
                    failed=adapter.name,
                    next=self.adapters[index + 1].name,
                    error=str(e),
                )

        if fallbacks:
            params = params.model_copy(update={"model": last.default_model})
        return await last.invoke(capability, prompt, params)


class CapabilityRouter:
    """Dispatches ``invoke`` to the fallback chain configured per capability."""

    def __init__(self, chains: Mapping[Capability, FallbackChain]) -> None:
        self._chains = dict(chains)

    def chain(self, capability: Capability) -> FallbackChain:
        chain = self._chains.get(Capability(capability))
        if chain is None:
            raise ProviderModelError(
                "router", f"No provider configured for capability '{Capability(capability).value}'"
            )
        return chain

    def default_model(self, capability: Capability) -> str:
        return self.chain(capability).default_model

    @property
    def capabilities(self) -> frozenset[Capability]:
        return frozenset(self._chains)

    async def invoke(
        self,
        capability: Capability,
        prompt: str,
        params: GenerationParams | Mapping[str, Any],
    ) -> GeneratedArtifact:
        return await self.chain(capability).invoke(capability, prompt, params)

    async def close(self) -> None:
        """Close every distinct backend once; chains may share backends."""
        closed: set[int] = set()
        for chain in self._chains.values():
            for adapter in chain.adapters:
                if id(adapter.backend) in closed:
                    continue
                closed.add(id(adapter.backend))
                await adapter.close()
