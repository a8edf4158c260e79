"""ASSET_PLAN phase: a metaprompt whose response is the list of sprite prompts.

Each planned sprite becomes a derived-prompt node under the plan's node,
so a style guide revision invalidates the plan and every sprite below it.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gamefoundry.models.artifacts import TextArtifact
from gamefoundry.models.lineage import NodeLevel
from gamefoundry.pipeline.context import PhaseDelta
from gamefoundry.pipeline.errors import GenerationError
from gamefoundry.pipeline.generation import GenerationRequest
from gamefoundry.style.errors import ValidationFailure
from gamefoundry.style.feedback import ValidationFeedback
from gamefoundry.variation.specs import VariationSpec  # noqa: TC001 - pydantic field

if TYPE_CHECKING:
    from gamefoundry.models.artifacts import GeneratedArtifact
    from gamefoundry.pipeline.phases.base import PhaseRunContext


class SpritePlan(BaseModel):
    """One sprite to generate, plus variations derived from it locally."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(pattern=r"^[a-z0-9][a-z0-9_-]*$")
    description: str = Field(min_length=1)
    required: bool = False
    variations: list[VariationSpec] = Field(default_factory=list)


class AssetPlan(BaseModel):
    sprites: list[SpritePlan] = Field(min_length=1)


def parse_asset_plan(artifact: GeneratedArtifact) -> AssetPlan:
    """Validate a plan response.

    Raises:
        ValidationFailure: On malformed JSON, schema errors or duplicate names.
    """
    if not isinstance(artifact, TextArtifact):
        raise ValidationFailure("asset_plan", [f"expected a text response, got {artifact.kind}"])
    try:
        data: Any = json.loads(artifact.text)
    except ValueError as e:
        raise ValidationFailure(
            "asset_plan",
            [f"response is not valid JSON: {e}"],
            ValidationFeedback.from_violations(
                [f"response is not valid JSON: {e}"],
                action="Respond with a single JSON object and nothing else.",
            ),
        ) from e
    try:
        plan = AssetPlan.model_validate(data)
    except ValidationError as e:
        provided = set(data) if isinstance(data, dict) else set()
        feedback = ValidationFeedback.from_pydantic_errors(
            e.errors(), provided_fields=provided, required_fields={"sprites"}
        )
        violations = [f"{m}: field required" for m in feedback.missing_required]
        raise ValidationFailure("asset_plan", [*violations, *feedback.violations], feedback) from e

    names = [s.name for s in plan.sprites]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValidationFailure("asset_plan", [f"sprites: duplicate names {duplicates}"])
    return plan


class AssetPlanPhase:
    name = "asset_plan"
    depends_on: tuple[str, ...] = ("style_guide",)
    required = True

    async def run(self, ctx: PhaseRunContext) -> PhaseDelta:
        guide = ctx.style_guide
        reused = ctx.reusable("asset_plan")
        if reused is not None and ctx.reusable_data("plan") is not None:
            return PhaseDelta(
                artifacts={"asset_plan": reused},
                data={
                    "plan": ctx.reusable_data("plan"),
                    "prompt_nodes": ctx.reusable_data("prompt_nodes"),
                },
            )

        ctx.progress(0.0, "asset plan")
        try:
            outcome = await ctx.generator.generate(
                GenerationRequest(
                    label="asset_plan",
                    template_id="asset_plan",
                    context={"concept": ctx.view.concept, "style": guide.prompt_context()},
                    phase=self.name,
                    parent_id=guide.source_node_id,
                    level=NodeLevel.METAPROMPT,
                    validate=parse_asset_plan,
                    max_corrections=ctx.style.max_style_retries,
                    style_guide_hash=guide.content_hash,
                )
            )
        except GenerationError as e:
            return PhaseDelta(failures=[ctx.failure("asset_plan", e, required=True)])

        plan: AssetPlan = outcome.parsed
        prompt_nodes = {
            sprite.name: ctx.generator.record_prompt(
                outcome.node_id,
                f"{sprite.name}: {sprite.description}",
                phase=self.name,
                label=f"prompt-{sprite.name}",
            )
            for sprite in plan.sprites
        }
        ctx.progress(1.0, "asset plan")
        return PhaseDelta(
            artifacts={"asset_plan": outcome.artifact},
            data={"plan": plan.model_dump(mode="json"), "prompt_nodes": prompt_nodes},
        )


asset_plan_phase = AssetPlanPhase()
