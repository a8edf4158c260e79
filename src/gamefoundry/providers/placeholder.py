"""Zero-cost placeholder backend for development, tests and CI.

Produces deterministic output for all three capabilities from the prompt
hash alone, so identical prompts always yield identical bytes:

- text: canned JSON for the built-in phase schemas, prose otherwise
- image: a mirrored pixel sprite painted only with ``#rrggbb`` colors named
  in the prompt (so sprites rendered from a style guide are palette-compliant)
- audio: a short mono WAV tone
"""

from __future__ import annotations

import colorsys
import hashlib
import io
import json
import math
import re
import struct
import wave
from collections.abc import Callable
from typing import Any

from PIL import Image

from gamefoundry.models.artifacts import AudioArtifact, ImageArtifact, TextArtifact
from gamefoundry.providers.base import (
    BackendResult,
    Capability,
    GenerationParams,
    estimate_tokens,
)

_HEX_COLOR = re.compile(r"#[0-9a-fA-F]{6}\b")

# Used when a prompt names no colors.
_FALLBACK_COLORS: list[tuple[int, int, int]] = [
    (88, 101, 130),
    (130, 88, 101),
    (101, 130, 88),
    (130, 118, 88),
    (88, 130, 125),
    (118, 88, 130),
]

_DEFAULT_SPRITE_SIZE = (32, 32)
_AUDIO_SAMPLE_RATE = 22_050
_AUDIO_SECONDS = 0.25


def _digest(prompt: str) -> bytes:
    return hashlib.sha256(prompt.encode("utf-8")).digest()


def _hex_to_rgb(value: str) -> tuple[int, int, int]:
    value = value.lstrip("#")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)


def _style_guide_response(prompt: str) -> dict[str, Any]:
    seed = _digest(prompt)
    offset = seed[0] / 255
    palette = []
    for i in range(16):
        hue = (offset + i / 16) % 1.0
        lightness = 0.35 if i % 2 else 0.6
        r, g, b = colorsys.hls_to_rgb(hue, lightness, 0.65)
        palette.append(f"#{round(r * 255):02x}{round(g * 255):02x}{round(b * 255):02x}")
    return {
        "palette": palette,
        "sprite_width": 32,
        "sprite_height": 32,
        "tile_size": 16,
        "tone": "Bright, readable pixel art with chunky one-pixel outlines.",
        "constraints": [
            "Use only palette colors",
            "No anti-aliasing or gradients",
            "Characters face right by default",
        ],
    }


def _asset_plan_response(prompt: str) -> dict[str, Any]:  # noqa: ARG001
    return {
        "sprites": [
            {
                "name": "hero",
                "description": "The player character in a neutral idle pose",
                "required": True,
                "variations": [{"kind": "palette_swap", "shift": n} for n in range(1, 5)],
            },
            {
                "name": "slime",
                "description": "A small bouncing slime enemy",
                "required": False,
                "variations": [
                    {"kind": "mirror"},
                    {"kind": "frame_offset", "dx": 0, "dy": -1},
                    {"kind": "frame_offset", "dx": 0, "dy": 1},
                ],
            },
        ]
    }


_JSON_RESPONDERS: dict[str, Callable[[str], dict[str, Any]]] = {
    "style_guide": _style_guide_response,
    "asset_plan": _asset_plan_response,
}


def _prose_response(prompt: str) -> str:
    seed = _digest(prompt).hex()[:8]
    subject = next((line.strip() for line in prompt.splitlines() if line.strip()), "the game")
    return (
        f"Placeholder draft {seed}. "
        f"This passage stands in for generated text about: {subject[:80]}. "
        "A real provider would write the final copy here."
    )


def _paint_sprite(prompt: str, width: int, height: int) -> bytes:
    colors = [_hex_to_rgb(c) for c in _HEX_COLOR.findall(prompt)] or _FALLBACK_COLORS
    seed = _digest(prompt)
    image = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    pixels = image.load()
    half = (width + 1) // 2
    for y in range(height):
        for x in range(half):
            bit = seed[(y * half + x) % len(seed)] >> ((x + y) % 8) & 1
            # Keep a margin so the sprite reads as a silhouette
            if not bit or x == 0 or y == 0 or y == height - 1:
                continue
            r, g, b = colors[(seed[(x * 7 + y) % len(seed)] + y) % len(colors)]
            pixels[x, y] = (r, g, b, 255)
            pixels[width - 1 - x, y] = (r, g, b, 255)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def _tone_wav(prompt: str) -> bytes:
    frequency = 220 + _digest(prompt)[0] * 2
    frames = int(_AUDIO_SAMPLE_RATE * _AUDIO_SECONDS)
    samples = b"".join(
        struct.pack("<h", int(12_000 * math.sin(2 * math.pi * frequency * i / _AUDIO_SAMPLE_RATE)))
        for i in range(frames)
    )
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(_AUDIO_SAMPLE_RATE)
        wav.writeframes(samples)
    return buffer.getvalue()


class PlaceholderBackend:
    """Offline backend supporting text, image and audio at zero cost."""

    name = "placeholder"
    capabilities = frozenset({Capability.TEXT, Capability.IMAGE, Capability.AUDIO})
    default_model = "placeholder"

    def __init__(self, model: str | None = None) -> None:
        if model:
            self.default_model = model

    async def generate(
        self, capability: Capability, prompt: str, params: GenerationParams
    ) -> BackendResult:
        if capability is Capability.IMAGE:
            width, height = params.dimensions or _DEFAULT_SPRITE_SIZE
            artifact = ImageArtifact(
                data=_paint_sprite(prompt, width, height),
                width=width,
                height=height,
                metadata={"quality": "placeholder"},
            )
            return BackendResult(artifact=artifact, units=1, cost_usd=0.0)

        if capability is Capability.AUDIO:
            artifact_audio = AudioArtifact(
                data=_tone_wav(prompt),
                duration_seconds=_AUDIO_SECONDS,
                metadata={"quality": "placeholder"},
            )
            return BackendResult(artifact=artifact_audio, units=len(prompt), cost_usd=0.0)

        responder = _JSON_RESPONDERS.get(params.schema_name or "")
        if params.response_format == "json" and responder is not None:
            text = json.dumps(responder(prompt), indent=2)
        else:
            text = _prose_response(prompt)
        return BackendResult(
            artifact=TextArtifact(text=text),
            input_tokens=estimate_tokens(prompt),
            output_tokens=estimate_tokens(text),
            cost_usd=0.0,
        )
