"""Style guide entity, validation and per-modality compliance."""

from gamefoundry.style.compliance import (
    AudioPresenceStrategy,
    ComplianceStrategy,
    PaletteStrategy,
    StyleValidator,
    TextToneStrategy,
    get_strategy,
    register_strategy,
)
from gamefoundry.style.errors import ValidationFailure
from gamefoundry.style.feedback import ValidationFeedback
from gamefoundry.style.guide import (
    MAX_PALETTE_SIZE,
    MIN_PALETTE_SIZE,
    StyleGuide,
    StyleGuideDraft,
    hex_to_rgb,
    normalize_hex,
    parse_style_guide,
    rgb_to_hex,
)
from gamefoundry.style.palette import color_distance, nearest_index, palette_violations

__all__ = [
    "MAX_PALETTE_SIZE",
    "MIN_PALETTE_SIZE",
    "AudioPresenceStrategy",
    "ComplianceStrategy",
    "PaletteStrategy",
    "StyleGuide",
    "StyleGuideDraft",
    "StyleValidator",
    "TextToneStrategy",
    "ValidationFailure",
    "ValidationFeedback",
    "color_distance",
    "get_strategy",
    "hex_to_rgb",
    "nearest_index",
    "normalize_hex",
    "palette_violations",
    "parse_style_guide",
    "register_strategy",
]
