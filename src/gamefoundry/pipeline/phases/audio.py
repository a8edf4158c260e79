"""AUDIO phase: narration clips for the narrative documents (optional)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from gamefoundry.models.artifacts import TextArtifact
from gamefoundry.pipeline.context import PhaseDelta
from gamefoundry.pipeline.generation import GenerationRequest

if TYPE_CHECKING:
    from gamefoundry.models.artifacts import GeneratedArtifact
    from gamefoundry.pipeline.phases.base import PhaseRunContext


class AudioPhase:
    name = "audio"
    depends_on: tuple[str, ...] = ("narrative",)
    required = False

    async def run(self, ctx: PhaseRunContext) -> PhaseDelta:
        sources = [
            (label, artifact)
            for label, artifact in sorted(ctx.view.artifacts("narrative").items())
            if isinstance(artifact, TextArtifact)
        ]
        delta = PhaseDelta()
        pending: list[tuple[str, TextArtifact]] = []
        for label, text in sources:
            reused = ctx.reusable(f"narration-{label}")
            if reused is not None:
                delta.artifacts[f"narration-{label}"] = reused
            else:
                pending.append((label, text))

        async def _narrate(item: tuple[str, TextArtifact]) -> GeneratedArtifact:
            label, text = item
            outcome = await ctx.generator.generate(
                GenerationRequest(
                    label=f"narration-{label}",
                    template_id="narration",
                    context={"text": text.text},
                    phase=self.name,
                    parent_id=text.node_id,
                )
            )
            return outcome.artifact

        batch = await ctx.fan_out(pending, _narrate, lambda item: f"narration-{item[0]}")
        for (label, _), artifact in zip(pending, batch.results, strict=True):
            if artifact is not None:
                delta.artifacts[f"narration-{label}"] = artifact
        for index, error in batch.errors:
            delta.failures.append(
                ctx.failure(f"narration-{pending[index][0]}", error, required=False)
            )
        delta.cancelled = bool(batch.skipped)
        return delta


audio_phase = AudioPhase()
