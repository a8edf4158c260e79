"""STYLE_GUIDE phase: establish the palette, dimensions and tone.

Runs at low temperature so the guide is reproducible, and re-prompts with
explicit corrections until the response validates. A malformed guide never
leaves this phase.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from gamefoundry.models.artifacts import JsonArtifact, TextArtifact
from gamefoundry.models.lineage import NodeLevel
from gamefoundry.observability.logging import get_logger
from gamefoundry.pipeline.context import PhaseDelta
from gamefoundry.pipeline.errors import GenerationError
from gamefoundry.pipeline.generation import GenerationRequest
from gamefoundry.style.errors import ValidationFailure
from gamefoundry.style.guide import StyleGuide, parse_style_guide

if TYPE_CHECKING:
    from gamefoundry.models.artifacts import GeneratedArtifact
    from gamefoundry.pipeline.phases.base import PhaseRunContext

log = get_logger(__name__)

STYLE_GUIDE_TEMPERATURE = 0.1


def _parse(artifact: GeneratedArtifact) -> StyleGuide:
    if not isinstance(artifact, TextArtifact):
        raise ValidationFailure("style_guide", [f"expected a text response, got {artifact.kind}"])
    return parse_style_guide(artifact.text, source_node_id=artifact.node_id)


def guide_artifact(guide: StyleGuide) -> JsonArtifact:
    """The published guide as a bundle artifact."""
    return JsonArtifact(
        payload=guide.model_dump(mode="json"),
        node_id=guide.source_node_id,
        style_guide_hash=guide.content_hash,
        model="style_guide",
    )


class StyleGuidePhase:
    name = "style_guide"
    depends_on: tuple[str, ...] = ()
    required = True

    async def run(self, ctx: PhaseRunContext) -> PhaseDelta:
        ctx.progress(0.0, "style guide")
        request = GenerationRequest(
            label="style_guide",
            template_id="style_guide",
            context={"concept": ctx.view.concept},
            phase=self.name,
            level=NodeLevel.METAPROMPT,
            params={"temperature": STYLE_GUIDE_TEMPERATURE},
            validate=_parse,
            max_corrections=ctx.style.max_style_retries,
        )
        try:
            outcome = await ctx.generator.generate(request)
        except GenerationError as e:
            return PhaseDelta(failures=[ctx.failure("style_guide", e, required=True)])

        guide: StyleGuide = outcome.parsed
        log.info(
            "style_guide_published",
            version=guide.version,
            colors=len(guide.palette),
            hash=guide.short_hash,
            attempts=outcome.attempts,
        )
        ctx.progress(1.0, "style guide")
        return PhaseDelta(
            artifacts={"style_guide": guide_artifact(guide)},
            style_guide=guide,
        )


style_guide_phase = StyleGuidePhase()
