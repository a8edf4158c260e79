"""Single sub-generation: render, cache lookup, provider call, lineage, validation.

Every attempt (including cache hits and corrective re-prompts) gets its own
PromptNode. A rejected attempt stays in the tree as ``failed``; the next
attempt is a sibling whose prompt carries action-first correction text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from gamefoundry.cache.keys import cache_key
from gamefoundry.models.artifacts import TextArtifact
from gamefoundry.models.lineage import NodeLevel
from gamefoundry.models.pipeline import ErrorKind
from gamefoundry.observability.logging import get_logger
from gamefoundry.pipeline.errors import GenerationError, error_kind_for
from gamefoundry.prompts.errors import TemplateError
from gamefoundry.providers.base import Capability, GenerationParams
from gamefoundry.providers.errors import InvalidParams, ProviderError
from gamefoundry.style.errors import ValidationFailure

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from gamefoundry.cache.store import ResponseCache
    from gamefoundry.lineage.tracker import LineageTracker
    from gamefoundry.models.artifacts import GeneratedArtifact
    from gamefoundry.prompts.renderer import PromptRenderer
    from gamefoundry.providers.adapter import CapabilityRouter

log = get_logger(__name__)


@dataclass
class GenerationRequest:
    """One logical artifact to generate.

    Attributes:
        label: Logical asset name, unique within the phase.
        template_id: Prompt template to render.
        context: Render context.
        phase: Owning phase.
        parent_id: Lineage parent (None for a phase entry node).
        level: Lineage level of the produced node(s).
        params: Overrides merged over the template's default params.
        validate: Called with the artifact; raises ValidationFailure to
            trigger a corrective re-prompt. Its return value is passed
            through as ``GenerationOutcome.parsed``.
        max_corrections: Re-prompts allowed after the first attempt.
        style_guide_hash: Stamped on the artifact.
    """

    label: str
    template_id: str
    context: Mapping[str, Any]
    phase: str
    parent_id: str | None = None
    level: NodeLevel = NodeLevel.GENERATION
    params: dict[str, Any] = field(default_factory=dict)
    validate: Callable[[GeneratedArtifact], Any] | None = None
    max_corrections: int = 0
    style_guide_hash: str | None = None


@dataclass
class GenerationOutcome:
    artifact: GeneratedArtifact
    node_id: str
    cached: bool
    attempts: int
    parsed: Any = None


class Generator:
    """Runs sub-generations against the shared cache, router and tracker."""

    def __init__(
        self,
        renderer: PromptRenderer,
        router: CapabilityRouter,
        cache: ResponseCache,
        tracker: LineageTracker,
    ) -> None:
        self.renderer = renderer
        self.router = router
        self.cache = cache
        self.tracker = tracker
        self.provider_calls = 0
        self.cache_hits = 0

    def _params(self, request: GenerationRequest, capability: Capability) -> GenerationParams:
        raw: dict[str, Any] = {"model": self.router.default_model(capability)}
        raw.update(self.renderer.params(request.template_id))
        raw.update(request.params)
        try:
            return GenerationParams.model_validate(raw)
        except ValidationError as e:
            raise InvalidParams("generator", f"Invalid params for {request.label}: {e}") from e

    async def generate(self, request: GenerationRequest) -> GenerationOutcome:
        """Produce one artifact, re-prompting on validation failures.

        Raises:
            GenerationError: Wrapping the template, provider or validation
                error that ended the attempt loop.
        """
        try:
            template = self.renderer.template(request.template_id)
            capability = Capability(template.capability)
            base_prompt = self.renderer.render(request.template_id, request.context)
            params = self._params(request, capability)
        except (TemplateError, ProviderError) as e:
            node_id = self.tracker.record(
                request.parent_id,
                request.level,
                f"<unrendered {request.template_id}>",
                phase=request.phase,
                label=request.label,
                template_id=request.template_id,
            )
            self.tracker.complete(node_id, e, error_kind=error_kind_for(e).value)
            raise GenerationError(request.label, node_id, e) from e

        prompt = base_prompt
        attempt = 0
        while True:
            attempt += 1
            node_id = self.tracker.record(
                request.parent_id,
                request.level,
                prompt,
                phase=request.phase,
                label=request.label,
                template_id=request.template_id,
            )
            key = cache_key(request.template_id, prompt, params, capability)
            artifact, cached = await self._fetch(request, capability, prompt, params, node_id, key)

            parsed = None
            if request.validate is not None:
                try:
                    parsed = request.validate(artifact)
                except ValidationFailure as e:
                    self.tracker.reject(node_id, ErrorKind.VALIDATION_FAILURE.value, str(e))
                    log.info(
                        "generation_rejected",
                        phase=request.phase,
                        label=request.label,
                        attempt=attempt,
                        violations=len(e.violations),
                    )
                    if attempt > request.max_corrections:
                        log.warning(
                            "generation_validation_exhausted",
                            phase=request.phase,
                            label=request.label,
                            attempts=attempt,
                        )
                        raise GenerationError(request.label, node_id, e) from e
                    prompt = base_prompt + e.corrective_text()
                    continue

            # Only responses that pass validation are cached.
            if not cached:
                self.cache.put(key, artifact, request.template_id)
            return GenerationOutcome(artifact, node_id, cached, attempt, parsed)

    async def _fetch(
        self,
        request: GenerationRequest,
        capability: Capability,
        prompt: str,
        params: GenerationParams,
        node_id: str,
        key: str,
    ) -> tuple[GeneratedArtifact, bool]:
        artifact = await self.cache.get(key)
        if artifact is not None:
            self.cache_hits += 1
            stamped = artifact.with_lineage(node_id, request.style_guide_hash)
            self.tracker.complete(node_id, stamped, cached=True, provider_call=False)
            log.debug("generation_cache_hit", label=request.label, node_id=node_id)
            return stamped, True

        self.provider_calls += 1
        try:
            artifact = await self.router.invoke(capability, prompt, params)
        except ProviderError as e:
            self.tracker.complete(
                node_id, e, provider_call=True, error_kind=error_kind_for(e).value
            )
            raise GenerationError(request.label, node_id, e) from e

        stamped = artifact.with_lineage(node_id, request.style_guide_hash)
        self.tracker.complete(
            node_id,
            stamped,
            cached=False,
            provider_call=True,
            input_tokens=int(artifact.metadata.get("input_tokens", 0)),
            output_tokens=int(artifact.metadata.get("output_tokens", 0)),
            cost_usd=float(artifact.metadata.get("cost_usd", 0.0)),
        )
        return stamped, False

    def record_prompt(
        self,
        parent_id: str | None,
        prompt_text: str,
        *,
        phase: str,
        label: str,
    ) -> str:
        """Record a derived prompt produced by a metaprompt response.

        The node completes immediately; its artifact is the prompt text.
        """
        node_id = self.tracker.record(
            parent_id, NodeLevel.DERIVED_PROMPT, prompt_text, phase=phase, label=label
        )
        self.tracker.complete(node_id, TextArtifact(text=prompt_text, node_id=node_id))
        return node_id
