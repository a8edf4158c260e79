"""Asset Variation Engine.

Derives extra assets from one AI-generated base image with purely local,
deterministic transforms. No provider is ever called; each derived asset
still gets its own lineage node (parent = the base artifact's node).
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

from PIL import Image, ImageChops, ImageOps

from gamefoundry.models.artifacts import ImageArtifact
from gamefoundry.models.lineage import NodeLevel
from gamefoundry.observability.logging import get_logger
from gamefoundry.style.palette import nearest_index, open_rgba
from gamefoundry.variation.specs import FrameOffset, Mirror, PaletteSwap, describe_variation

if TYPE_CHECKING:
    from gamefoundry.lineage.tracker import LineageTracker
    from gamefoundry.models.artifacts import GeneratedArtifact
    from gamefoundry.style.guide import StyleGuide
    from gamefoundry.variation.specs import VariationSpec

log = get_logger(__name__)


class VariationError(Exception):
    """Raised when a variation cannot be derived from the given base."""

    def __init__(self, spec: str, message: str) -> None:
        self.spec = spec
        super().__init__(f"Cannot derive {spec}: {message}")


def _encode_png(img: Image.Image) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def _palette_swap(img: Image.Image, spec: PaletteSwap, guide: StyleGuide) -> Image.Image:
    palette = guide.rgb_palette
    mapping: dict[tuple[int, int, int], tuple[int, int, int]] = {}
    out = img.copy()
    pixels = out.load()
    for y in range(out.height):
        for x in range(out.width):
            r, g, b, a = pixels[x, y]
            if a == 0:
                continue
            rgb = (r, g, b)
            target = mapping.get(rgb)
            if target is None:
                index = (nearest_index(rgb, palette) + spec.shift) % len(palette)
                target = palette[index]
                mapping[rgb] = target
            pixels[x, y] = (*target, a)
    return out


def _frame_offset(img: Image.Image, spec: FrameOffset) -> Image.Image:
    if spec.wrap:
        return ImageChops.offset(img, spec.dx, spec.dy)
    canvas = Image.new("RGBA", img.size, (0, 0, 0, 0))
    canvas.paste(img, (spec.dx, spec.dy))
    return canvas


def apply_variation(base: ImageArtifact, spec: VariationSpec, guide: StyleGuide) -> ImageArtifact:
    """Pure transform of ``base`` (no lineage stamps on the result).

    Raises:
        VariationError: If the base image cannot be decoded.
    """
    try:
        img = open_rgba(base.data)
    except ValueError as e:
        raise VariationError(describe_variation(spec), str(e)) from e

    if isinstance(spec, PaletteSwap):
        out = _palette_swap(img, spec, guide)
    elif isinstance(spec, Mirror):
        out = ImageOps.mirror(img) if spec.axis == "horizontal" else ImageOps.flip(img)
    else:
        out = _frame_offset(img, spec)

    return ImageArtifact(
        data=_encode_png(out),
        width=out.width,
        height=out.height,
        model="variation",
        metadata={"variation": spec.model_dump(mode="json"), "base_node_id": base.node_id},
    )


class VariationEngine:
    """Derives variations and records them in the lineage tracker."""

    def __init__(self, tracker: LineageTracker) -> None:
        self._tracker = tracker

    def derive(
        self,
        base: GeneratedArtifact,
        spec: VariationSpec,
        guide: StyleGuide,
        *,
        phase: str | None = None,
        label: str = "",
    ) -> ImageArtifact:
        """Derive one variation of ``base``.

        The result carries its own node id and the guide's content hash.

        Raises:
            VariationError: If the base is not an image, has no lineage node,
                or cannot be decoded.
        """
        description = describe_variation(spec)
        if not isinstance(base, ImageArtifact):
            raise VariationError(description, f"base artifact is {base.kind}, not image")
        if base.node_id is None:
            raise VariationError(description, "base artifact has no lineage node")

        node_id = self._tracker.record(
            base.node_id,
            NodeLevel.GENERATION,
            f"derive {description} from {base.node_id}",
            phase=phase,
            label=label,
        )
        try:
            derived = apply_variation(base, spec, guide)
        except VariationError as e:
            self._tracker.complete(node_id, e, error_kind="variation_error")
            raise

        stamped = derived.with_lineage(node_id, guide.content_hash)
        self._tracker.complete(node_id, stamped, cached=False, provider_call=False)
        log.debug("variation_derived", node_id=node_id, base=base.node_id, variation=description)
        return stamped  # type: ignore[return-value]
