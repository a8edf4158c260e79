"""Deterministic asset variations derived from generated images."""

from gamefoundry.variation.engine import VariationEngine, VariationError, apply_variation
from gamefoundry.variation.specs import (
    VARIATION_ADAPTER,
    FrameOffset,
    Mirror,
    PaletteSwap,
    VariationSpec,
    describe_variation,
)

__all__ = [
    "VARIATION_ADAPTER",
    "FrameOffset",
    "Mirror",
    "PaletteSwap",
    "VariationEngine",
    "VariationError",
    "VariationSpec",
    "apply_variation",
    "describe_variation",
]
