"""NARRATIVE phase: story premise plus one short document per feature.

Depends only on the concept, so style guide revisions never touch it.
The premise is required; feature documents are optional.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from gamefoundry.models.artifacts import TextArtifact
from gamefoundry.pipeline.context import PhaseDelta
from gamefoundry.pipeline.errors import GenerationError
from gamefoundry.pipeline.generation import GenerationRequest
from gamefoundry.style.errors import ValidationFailure

if TYPE_CHECKING:
    from gamefoundry.models.artifacts import GeneratedArtifact
    from gamefoundry.pipeline.phases.base import PhaseRunContext

_SLUG = re.compile(r"[^a-z0-9]+")


def feature_label(feature: str) -> str:
    return "feature-" + (_SLUG.sub("-", feature.lower()).strip("-") or "untitled")


def _require_text(artifact: GeneratedArtifact) -> str:
    if not isinstance(artifact, TextArtifact) or not artifact.text.strip():
        raise ValidationFailure("narrative", ["text: response is empty"])
    return artifact.text


class NarrativePhase:
    name = "narrative"
    depends_on: tuple[str, ...] = ()
    required = True

    async def run(self, ctx: PhaseRunContext) -> PhaseDelta:
        concept = ctx.view.concept
        delta = PhaseDelta()

        premise = ctx.reusable("premise")
        if isinstance(premise, TextArtifact):
            premise_text, premise_node = premise.text, premise.node_id
        else:
            try:
                outcome = await ctx.generator.generate(
                    GenerationRequest(
                        label="premise",
                        template_id="narrative_premise",
                        context={"concept": concept},
                        phase=self.name,
                        validate=_require_text,
                        max_corrections=1,
                    )
                )
            except GenerationError as e:
                delta.failures.append(ctx.failure("premise", e, required=True))
                return delta
            premise = outcome.artifact
            premise_text, premise_node = outcome.parsed, outcome.node_id
        delta.artifacts["premise"] = premise
        ctx.progress(1 / (len(concept.features) + 1), "premise")

        features = [f for f in concept.features if ctx.reusable(feature_label(f)) is None]
        for feature in concept.features:
            reused = ctx.reusable(feature_label(feature))
            if reused is not None:
                delta.artifacts[feature_label(feature)] = reused

        async def _write(feature: str) -> GeneratedArtifact:
            outcome = await ctx.generator.generate(
                GenerationRequest(
                    label=feature_label(feature),
                    template_id="narrative_feature",
                    context={"concept": concept, "premise": premise_text, "feature": feature},
                    phase=self.name,
                    parent_id=premise_node,
                    validate=_require_text,
                    max_corrections=1,
                )
            )
            return outcome.artifact

        batch = await ctx.fan_out(features, _write, feature_label)
        for feature, artifact in zip(features, batch.results, strict=True):
            if artifact is not None:
                delta.artifacts[feature_label(feature)] = artifact
        for index, error in batch.errors:
            label = feature_label(features[index])
            delta.failures.append(ctx.failure(label, error, required=False))
        delta.cancelled = bool(batch.skipped)
        return delta


narrative_phase = NarrativePhase()
