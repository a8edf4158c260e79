"""Tests for the asset variation engine."""

from __future__ import annotations

import io

import pytest
from PIL import Image

from gamefoundry.lineage import LineageTracker
from gamefoundry.models import NodeLevel, NodeStatus, TextArtifact
from gamefoundry.models.artifacts import ImageArtifact
from gamefoundry.style import StyleGuide, StyleValidator, hex_to_rgb
from gamefoundry.variation import (
    VARIATION_ADAPTER,
    FrameOffset,
    Mirror,
    PaletteSwap,
    VariationEngine,
    VariationError,
    apply_variation,
    describe_variation,
)

BLACK = (0, 0, 0, 255)
RED = (*hex_to_rgb("#ff004d"), 255)


def _image(pixels: dict[tuple[int, int], tuple[int, int, int, int]], node_id: str | None = None):
    img = Image.new("RGBA", (4, 4), (0, 0, 0, 0))
    for (x, y), color in pixels.items():
        img.putpixel((x, y), color)
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return ImageArtifact(data=buffer.getvalue(), width=4, height=4, node_id=node_id)


def _pixels(artifact: ImageArtifact) -> Image.Image:
    return Image.open(io.BytesIO(artifact.data)).convert("RGBA")


def test_variation_specs_parse_from_json() -> None:
    spec = VARIATION_ADAPTER.validate_python({"kind": "frame_offset", "dy": -1})
    assert spec == FrameOffset(dy=-1)
    assert describe_variation(spec) == "frame_offset dx=0 dy=-1"
    assert describe_variation(PaletteSwap(shift=2)) == "palette_swap shift=2"


def test_variation_spec_rejects_unknown_fields() -> None:
    with pytest.raises(ValueError):
        VARIATION_ADAPTER.validate_python({"kind": "mirror", "angle": 90})


def test_palette_swap_rotates_palette_index(guide: StyleGuide) -> None:
    base = _image({(0, 0): BLACK, (1, 0): RED})

    swapped = apply_variation(base, PaletteSwap(shift=1), guide)

    img = _pixels(swapped)
    # black is palette[0] -> palette[1]; #ff004d is palette[8] -> palette[9]
    assert img.getpixel((0, 0)) == (*hex_to_rgb(guide.palette[1]), 255)
    assert img.getpixel((1, 0)) == (*hex_to_rgb(guide.palette[9]), 255)
    assert img.getpixel((3, 3))[3] == 0


def test_palette_swap_wraps_around(guide: StyleGuide) -> None:
    last = (*hex_to_rgb(guide.palette[-1]), 255)
    swapped = apply_variation(_image({(0, 0): last}), PaletteSwap(shift=1), guide)
    assert _pixels(swapped).getpixel((0, 0)) == BLACK


def test_palette_swap_output_is_compliant(guide: StyleGuide) -> None:
    base = _image({(0, 0): (10, 10, 10, 255), (2, 2): RED})
    swapped = apply_variation(base, PaletteSwap(shift=5), guide)
    assert StyleValidator(guide).violations(swapped) == []


def test_mirror_horizontal_and_vertical(guide: StyleGuide) -> None:
    base = _image({(0, 1): RED})

    horizontal = _pixels(apply_variation(base, Mirror(), guide))
    vertical = _pixels(apply_variation(base, Mirror(axis="vertical"), guide))

    assert horizontal.getpixel((3, 1)) == RED
    assert vertical.getpixel((0, 2)) == RED


def test_frame_offset_drops_or_wraps(guide: StyleGuide) -> None:
    base = _image({(0, 0): RED, (0, 3): BLACK})

    dropped = _pixels(apply_variation(base, FrameOffset(dy=1), guide))
    wrapped = _pixels(apply_variation(base, FrameOffset(dy=1, wrap=True), guide))

    assert dropped.getpixel((0, 1)) == RED
    assert dropped.getpixel((0, 0))[3] == 0
    assert wrapped.getpixel((0, 0)) == BLACK


def test_apply_variation_is_deterministic(guide: StyleGuide) -> None:
    base = _image({(1, 1): RED, (2, 1): BLACK})
    first = apply_variation(base, PaletteSwap(shift=3), guide)
    second = apply_variation(base, PaletteSwap(shift=3), guide)
    assert first.data == second.data


def test_apply_variation_undecodable(guide: StyleGuide) -> None:
    broken = ImageArtifact(data=b"nope", width=1, height=1)
    with pytest.raises(VariationError, match="undecodable"):
        apply_variation(broken, Mirror(), guide)


def test_engine_records_local_lineage_node(guide: StyleGuide) -> None:
    tracker = LineageTracker()
    base_node = tracker.record(None, NodeLevel.GENERATION, "hero", phase="sprites")
    base = _image({(0, 0): RED}, node_id=base_node)
    tracker.complete(base_node, base, provider_call=True)

    derived = VariationEngine(tracker).derive(
        base, Mirror(), guide, phase="sprites", label="hero-mirror"
    )

    assert derived.node_id is not None
    assert derived.style_guide_hash == guide.content_hash
    node = tracker.get(derived.node_id)
    assert node.parent_id == base_node
    assert node.status is NodeStatus.SUCCEEDED
    assert node.provider_call is False
    assert node.label == "hero-mirror"
    assert derived.metadata["base_node_id"] == base_node


def test_engine_requires_image_base(guide: StyleGuide) -> None:
    engine = VariationEngine(LineageTracker())
    with pytest.raises(VariationError, match="not image"):
        engine.derive(TextArtifact(text="hi", node_id="n-000001"), Mirror(), guide)


def test_engine_requires_lineage(guide: StyleGuide) -> None:
    engine = VariationEngine(LineageTracker())
    with pytest.raises(VariationError, match="no lineage node"):
        engine.derive(_image({}), Mirror(), guide)


def test_engine_records_failure(guide: StyleGuide) -> None:
    tracker = LineageTracker()
    base_node = tracker.record(None, NodeLevel.GENERATION, "hero")
    broken = ImageArtifact(data=b"nope", width=1, height=1, node_id=base_node)

    with pytest.raises(VariationError):
        VariationEngine(tracker).derive(broken, Mirror(), guide)

    failed = tracker.nodes(status=NodeStatus.FAILED)
    assert len(failed) == 1
    assert failed[0].error is not None
    assert failed[0].error.kind == "variation_error"
