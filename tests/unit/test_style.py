"""Tests for the style guide, palette checks and compliance validator."""

from __future__ import annotations

import io
import json

import pytest
from PIL import Image

from gamefoundry.models.artifacts import AudioArtifact, ImageArtifact, TextArtifact
from gamefoundry.style import (
    StyleGuide,
    StyleValidator,
    ValidationFailure,
    color_distance,
    hex_to_rgb,
    nearest_index,
    normalize_hex,
    palette_violations,
    parse_style_guide,
)
from tests.conftest import PALETTE_16


def _png(pixels: dict[tuple[int, int], tuple[int, int, int, int]], size: int = 4) -> bytes:
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    for (x, y), color in pixels.items():
        img.putpixel((x, y), color)
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def _guide_json(**overrides: object) -> str:
    data: dict[str, object] = {
        "palette": list(PALETTE_16),
        "sprite_width": 16,
        "sprite_height": 16,
        "tile_size": 8,
        "tone": "Cheerful",
        "constraints": ["No gradients"],
    }
    data.update(overrides)
    return json.dumps(data)


# --- Hex helpers ---


@pytest.mark.parametrize(
    ("value", "expected"),
    [("#FF00aa", "#ff00aa"), ("ff00aa", "#ff00aa"), ("#abc", "#aabbcc"), (" #000000 ", "#000000")],
)
def test_normalize_hex(value: str, expected: str) -> None:
    assert normalize_hex(value) == expected


@pytest.mark.parametrize("value", ["red", "#12345", "#gggggg", ""])
def test_normalize_hex_rejects(value: str) -> None:
    with pytest.raises(ValueError, match="not a hex color"):
        normalize_hex(value)


# --- parse_style_guide ---


def test_parse_valid_guide() -> None:
    guide = parse_style_guide(_guide_json(mood_board="sunny"), source_node_id="n-000001")

    assert guide.version == 1
    assert guide.palette == PALETTE_16
    assert guide.tile_size == 8
    assert guide.extras == {"mood_board": "sunny"}
    assert guide.source_node_id == "n-000001"


def test_parse_strips_code_fence() -> None:
    guide = parse_style_guide(f"```json\n{_guide_json()}\n```")
    assert len(guide.palette) == 16


def test_parse_rejects_non_json() -> None:
    with pytest.raises(ValidationFailure) as exc_info:
        parse_style_guide("Here is your style guide: lots of blue")

    assert "not valid JSON" in exc_info.value.violations[0]
    assert "single JSON object" in exc_info.value.corrective_text()


def test_parse_rejects_small_palette() -> None:
    with pytest.raises(ValidationFailure) as exc_info:
        parse_style_guide(_guide_json(palette=["#000000", "#ffffff"]))
    assert "got 2" in exc_info.value.violations[0]


def test_parse_counts_distinct_colors() -> None:
    """Duplicates are dropped before the size check."""
    palette = list(PALETTE_16[:7]) * 3
    with pytest.raises(ValidationFailure, match="got 7"):
        parse_style_guide(_guide_json(palette=palette))

    guide = parse_style_guide(_guide_json(palette=[*PALETTE_16[:8], PALETTE_16[0]]))
    assert len(guide.palette) == 8


def test_parse_reports_bad_colors_and_dimensions() -> None:
    with pytest.raises(ValidationFailure) as exc_info:
        parse_style_guide(_guide_json(palette=[*PALETTE_16, "blue"], sprite_width=0))

    violations = exc_info.value.violations
    assert any("'blue'" in v for v in violations)
    assert "sprite_width: must be a positive integer" in violations


def test_parse_missing_field_suggests_rename() -> None:
    data = json.loads(_guide_json())
    data["colors"] = data.pop("palette")

    with pytest.raises(ValidationFailure) as exc_info:
        parse_style_guide(data)

    feedback = exc_info.value.feedback
    assert feedback.missing_required == ["palette"]
    assert feedback.field_corrections == {"colors": "rename to 'palette'"}


# --- StyleGuide ---


def test_revise_creates_new_version(guide: StyleGuide) -> None:
    revised = guide.revise(tone="Gloomy", source_node_id="n-000009")

    assert revised.version == 2
    assert revised.tone == "Gloomy"
    assert revised.source_node_id == "n-000009"
    assert revised.content_hash != guide.content_hash
    assert guide.tone == "Bright pixel art"


def test_revise_validates(guide: StyleGuide) -> None:
    with pytest.raises(ValidationFailure):
        guide.revise(palette=["#000000"])


def test_content_hash_ignores_source_node(guide: StyleGuide) -> None:
    relinked = guide.model_copy(update={"source_node_id": "n-000123"})
    assert relinked.content_hash == guide.content_hash


def test_guide_json_round_trip(guide: StyleGuide) -> None:
    restored = StyleGuide.model_validate_json(guide.model_dump_json())
    assert restored == guide


def test_prompt_context(guide: StyleGuide) -> None:
    context = guide.prompt_context()
    assert context["sprite_size"] == "16x16"
    assert context["palette_csv"].startswith("#000000, #1d2b53")


# --- Palette checks ---


def test_color_helpers() -> None:
    assert color_distance((0, 0, 0), (3, 4, 0)) == 5.0
    assert nearest_index((250, 250, 250), [(0, 0, 0), (255, 255, 255)]) == 1
    assert hex_to_rgb("#ff8000") == (255, 128, 0)


def test_palette_compliant_image(guide: StyleGuide) -> None:
    data = _png({(0, 0): (0, 0, 0, 255), (1, 1): (*hex_to_rgb("#ff004d"), 255)})
    assert palette_violations(data, guide.rgb_palette) == []


def test_palette_tolerance(guide: StyleGuide) -> None:
    near = _png({(0, 0): (10, 10, 10, 255)})
    assert palette_violations(near, guide.rgb_palette, tolerance=24) == []
    assert palette_violations(near, guide.rgb_palette, tolerance=5) != []


def test_palette_ignores_transparent_pixels(guide: StyleGuide) -> None:
    data = _png({(0, 0): (1, 200, 90, 0)})
    assert palette_violations(data, guide.rgb_palette) == []


def test_palette_reports_offenders(guide: StyleGuide) -> None:
    data = _png({(2, 3): (128, 255, 0, 255)})

    violations = palette_violations(data, guide.rgb_palette)

    assert violations[0].startswith("1 of 1 sampled pixels")
    assert "#80ff00 at (2, 3)" in violations[1]


def test_palette_undecodable_image(guide: StyleGuide) -> None:
    assert palette_violations(b"not a png", guide.rgb_palette)[0].startswith("undecodable")


# --- StyleValidator ---


def test_validator_rejects_off_palette_image(guide: StyleGuide) -> None:
    artifact = ImageArtifact(data=_png({(0, 0): (128, 255, 0, 255)}), width=4, height=4)

    with pytest.raises(ValidationFailure) as exc_info:
        StyleValidator(guide).validate(artifact, subject="hero")

    assert exc_info.value.subject == "hero"
    corrective = exc_info.value.corrective_text()
    assert "ONLY these exact palette colors" in corrective
    assert "#ff004d" in corrective


def test_validator_passes_compliant_image(guide: StyleGuide) -> None:
    artifact = ImageArtifact(data=_png({(0, 0): (0, 0, 0, 255)}), width=4, height=4)
    StyleValidator(guide).validate(artifact)


def test_validator_text_forbidden_terms(guide: StyleGuide) -> None:
    strict = guide.model_copy(update={"extras": {"forbidden_terms": ["gore"]}})
    validator = StyleValidator(strict)

    assert validator.violations(TextArtifact(text="Mild adventure.")) == []
    assert validator.violations(TextArtifact(text="Lots of GORE")) == [
        "text: contains forbidden term 'gore'"
    ]
    assert validator.violations(TextArtifact(text="   ")) == ["text: response is empty"]


def test_validator_empty_audio(guide: StyleGuide) -> None:
    assert StyleValidator(guide).violations(AudioArtifact(data=b"")) == ["audio: clip is empty"]


def test_validator_strategy_override(guide: StyleGuide) -> None:
    class RejectAll:
        kind = "text"

        def check(self, artifact: object, guide: StyleGuide) -> list[str]:
            return ["nope"]

    validator = StyleValidator(guide, strategies={"text": RejectAll()})
    assert validator.violations(TextArtifact(text="fine")) == ["nope"]
