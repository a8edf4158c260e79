"""SPRITES phase: one generated image per planned sprite, plus local variations.

Every generated sprite is checked against the style guide palette and
re-prompted with a stricter instruction when it drifts. Variations are
derived locally and never call a provider.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from gamefoundry.pipeline.context import PhaseDelta
from gamefoundry.pipeline.generation import GenerationRequest
from gamefoundry.pipeline.phases.asset_plan import AssetPlan, SpritePlan
from gamefoundry.variation.engine import VariationError

if TYPE_CHECKING:
    from gamefoundry.models.artifacts import GeneratedArtifact
    from gamefoundry.pipeline.phases.base import PhaseRunContext
    from gamefoundry.variation.specs import VariationSpec


def variation_label(sprite: str, spec: VariationSpec, index: int) -> str:
    return f"{sprite}-{spec.kind}-{index + 1}"


@dataclass
class _SpriteResult:
    base: GeneratedArtifact
    variations: dict[str, GeneratedArtifact]
    failures: list[tuple[str, Exception]]


class SpritesPhase:
    name = "sprites"
    depends_on: tuple[str, ...] = ("style_guide", "asset_plan")
    required = True

    async def run(self, ctx: PhaseRunContext) -> PhaseDelta:
        guide = ctx.style_guide
        plan_data = ctx.view.data("asset_plan")
        plan = AssetPlan.model_validate(plan_data["plan"])
        prompt_nodes: dict[str, str] = dict(plan_data.get("prompt_nodes") or {})
        validator = ctx.validator()

        async def _generate(sprite: SpritePlan) -> _SpriteResult:
            base = ctx.reusable(sprite.name)
            if base is None:
                outcome = await ctx.generator.generate(
                    GenerationRequest(
                        label=sprite.name,
                        template_id="sprite",
                        context={"style": guide.prompt_context(), "sprite": sprite},
                        phase=self.name,
                        parent_id=prompt_nodes.get(sprite.name),
                        params={"size": f"{guide.sprite_width}x{guide.sprite_height}"},
                        validate=lambda a, name=sprite.name: validator.validate(a, name),
                        max_corrections=ctx.style.max_artifact_retries,
                        style_guide_hash=guide.content_hash,
                    )
                )
                base = outcome.artifact

            variations: dict[str, GeneratedArtifact] = {}
            failures: list[tuple[str, Exception]] = []
            for index, spec in enumerate(sprite.variations):
                label = variation_label(sprite.name, spec, index)
                derived = ctx.reusable(label)
                if derived is None:
                    try:
                        derived = ctx.variations.derive(
                            base, spec, guide, phase=self.name, label=label
                        )
                    except VariationError as e:
                        failures.append((label, e))
                        continue
                variations[label] = derived
            return _SpriteResult(base, variations, failures)

        batch = await ctx.fan_out(plan.sprites, _generate, lambda s: s.name)

        delta = PhaseDelta(cancelled=bool(batch.skipped))
        for sprite, result in zip(plan.sprites, batch.results, strict=True):
            if result is None:
                continue
            delta.artifacts[sprite.name] = result.base
            delta.artifacts.update(result.variations)
            for label, error in result.failures:
                delta.failures.append(ctx.failure(label, error, required=False))
        for index, error in batch.errors:
            sprite = plan.sprites[index]
            delta.failures.append(ctx.failure(sprite.name, error, required=sprite.required))
        return delta


sprites_phase = SpritesPhase()
