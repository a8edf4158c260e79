"""Built-in pipeline phases."""

from __future__ import annotations

from gamefoundry.pipeline.phases.asset_plan import (
    AssetPlan,
    AssetPlanPhase,
    SpritePlan,
    asset_plan_phase,
    parse_asset_plan,
)
from gamefoundry.pipeline.phases.audio import AudioPhase, audio_phase
from gamefoundry.pipeline.phases.base import (
    Phase,
    PhaseRunContext,
    get_phase,
    list_phases,
    register_phase,
)
from gamefoundry.pipeline.phases.narrative import NarrativePhase, feature_label, narrative_phase
from gamefoundry.pipeline.phases.sprites import SpritesPhase, sprites_phase, variation_label
from gamefoundry.pipeline.phases.style_guide import (
    StyleGuidePhase,
    guide_artifact,
    style_guide_phase,
)

# Register built-in phases
register_phase(style_guide_phase)
register_phase(narrative_phase)
register_phase(asset_plan_phase)
register_phase(sprites_phase)
register_phase(audio_phase)

__all__ = [
    "AssetPlan",
    "AssetPlanPhase",
    "AudioPhase",
    "NarrativePhase",
    "Phase",
    "PhaseRunContext",
    "SpritePlan",
    "SpritesPhase",
    "StyleGuidePhase",
    "asset_plan_phase",
    "audio_phase",
    "feature_label",
    "get_phase",
    "guide_artifact",
    "list_phases",
    "narrative_phase",
    "parse_asset_plan",
    "register_phase",
    "sprites_phase",
    "style_guide_phase",
    "variation_label",
]
