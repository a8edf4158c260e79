"""Pixel-level palette compliance for image artifacts."""

from __future__ import annotations

import io
import math
from typing import TYPE_CHECKING

from PIL import Image, UnidentifiedImageError

from gamefoundry.style.guide import rgb_to_hex

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

RGB = tuple[int, int, int]

DEFAULT_TOLERANCE = 24.0
DEFAULT_SAMPLE_STRIDE = 1


def color_distance(a: RGB, b: RGB) -> float:
    """Euclidean distance in RGB space."""
    return math.sqrt((a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2)


def nearest_index(color: RGB, palette: Sequence[RGB]) -> int:
    """Index of the closest palette entry (first wins on ties)."""
    best_index = 0
    best_distance = math.inf
    for index, entry in enumerate(palette):
        distance = color_distance(color, entry)
        if distance < best_distance:
            best_index, best_distance = index, distance
    return best_index


def open_rgba(data: bytes) -> Image.Image:
    """Decode image bytes to RGBA.

    Raises:
        ValueError: If the bytes are not a decodable image.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.convert("RGBA")
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"undecodable image: {e}") from e


def sample_pixels(
    img: Image.Image, stride: int = DEFAULT_SAMPLE_STRIDE
) -> Iterator[tuple[int, int, tuple[int, ...]]]:
    """Yield ``(x, y, (r, g, b, a))`` on a ``stride`` grid."""
    stride = max(1, stride)
    pixels = img.load()
    for y in range(0, img.height, stride):
        for x in range(0, img.width, stride):
            yield x, y, pixels[x, y]


def palette_violations(
    data: bytes,
    palette: Sequence[RGB],
    *,
    tolerance: float = DEFAULT_TOLERANCE,
    stride: int = DEFAULT_SAMPLE_STRIDE,
    max_reported: int = 5,
) -> list[str]:
    """Describe sampled opaque pixels farther than ``tolerance`` from every palette color.

    Fully transparent pixels are ignored. Returns an empty list for a
    compliant image.
    """
    try:
        img = open_rgba(data)
    except ValueError as e:
        return [str(e)]

    distances: dict[RGB, float] = {}
    offenders: dict[RGB, tuple[int, int]] = {}
    sampled = off_palette = 0
    for x, y, (r, g, b, a) in sample_pixels(img, stride):
        if a == 0:
            continue
        sampled += 1
        rgb = (r, g, b)
        distance = distances.get(rgb)
        if distance is None:
            distance = min(color_distance(rgb, entry) for entry in palette)
            distances[rgb] = distance
        if distance > tolerance:
            off_palette += 1
            offenders.setdefault(rgb, (x, y))

    if not off_palette:
        return []

    violations = [
        f"{off_palette} of {sampled} sampled pixels are outside the palette "
        f"(tolerance {tolerance:g})"
    ]
    for rgb, (x, y) in list(offenders.items())[:max_reported]:
        violations.append(
            f"color {rgb_to_hex(rgb)} at ({x}, {y}) is {distances[rgb]:.1f} "
            "from the nearest palette color"
        )
    return violations
