"""Variation specifications."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Spec(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class PaletteSwap(_Spec):
    """Snap every opaque pixel to the palette, then rotate its palette index."""

    kind: Literal["palette_swap"] = "palette_swap"
    shift: int = 1


class Mirror(_Spec):
    kind: Literal["mirror"] = "mirror"
    axis: Literal["horizontal", "vertical"] = "horizontal"


class FrameOffset(_Spec):
    """Shift the sprite by (dx, dy) pixels, e.g. for a walk-cycle bob.

    Pixels shifted off the edge are dropped unless ``wrap`` is set.
    """

    kind: Literal["frame_offset"] = "frame_offset"
    dx: int = 0
    dy: int = 0
    wrap: bool = False


VariationSpec = Annotated[PaletteSwap | Mirror | FrameOffset, Field(discriminator="kind")]

VARIATION_ADAPTER: TypeAdapter[VariationSpec] = TypeAdapter(VariationSpec)


def describe_variation(spec: VariationSpec) -> str:
    if isinstance(spec, PaletteSwap):
        return f"palette_swap shift={spec.shift}"
    if isinstance(spec, Mirror):
        return f"mirror {spec.axis}"
    return f"frame_offset dx={spec.dx} dy={spec.dy}" + (" wrap" if spec.wrap else "")
