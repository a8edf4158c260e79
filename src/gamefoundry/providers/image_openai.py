"""OpenAI image generation backend.

Supports gpt-image-1 (and legacy dall-e-3) via the OpenAI Images API.
The API only produces large canvases, so the result is downscaled with a
nearest-neighbour filter to the sprite size requested in params; that keeps
hard pixel edges and avoids introducing off-palette blend colors.
"""

from __future__ import annotations

import base64
import io
import os
from typing import TYPE_CHECKING, Any

from PIL import Image

from gamefoundry.models.artifacts import ImageArtifact
from gamefoundry.observability.logging import get_logger
from gamefoundry.providers.base import BackendResult, Capability, GenerationParams
from gamefoundry.providers.errors import (
    AuthenticationError,
    ContentPolicyError,
    ProviderError,
    ProviderModelError,
    classify_exception,
)

if TYPE_CHECKING:
    from openai import AsyncOpenAI

log = get_logger(__name__)

_GPT_IMAGE_SIZE = "1024x1024"


def _is_gpt_image_model(model: str) -> bool:
    return model.startswith("gpt-image")


class OpenAIImageBackend:
    """Image generation via OpenAI's Images API.

    Args:
        model: Default model name (``gpt-image-1`` or ``dall-e-3``).
        api_key: OpenAI API key. Falls back to ``OPENAI_API_KEY``.
    """

    name = "openai"
    capabilities = frozenset({Capability.IMAGE})

    def __init__(self, model: str = "gpt-image-1", api_key: str | None = None) -> None:
        self.default_model = model
        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self._api_key:
            raise AuthenticationError(
                "openai", "API key required. Set OPENAI_API_KEY environment variable."
            )
        self._client: AsyncOpenAI = self._create_client()

    def _create_client(self) -> AsyncOpenAI:
        """Create the AsyncOpenAI client (deferred import keeps openai optional)."""
        try:
            from openai import AsyncOpenAI as _AsyncOpenAI
        except ImportError as e:
            raise ProviderModelError(
                "openai", "openai package not installed. Run: pip install gamefoundry[openai]"
            ) from e
        return _AsyncOpenAI(api_key=self._api_key)

    async def generate(
        self, capability: Capability, prompt: str, params: GenerationParams
    ) -> BackendResult:
        if capability is not Capability.IMAGE:
            raise ProviderError(self.name, f"Unsupported capability: {capability.value}")

        api_kwargs: dict[str, Any] = {
            "model": params.model,
            "prompt": prompt,
            "n": 1,
            "size": _GPT_IMAGE_SIZE,
        }
        if _is_gpt_image_model(params.model):
            api_kwargs["output_format"] = "png"
            api_kwargs["background"] = "transparent"
        else:
            api_kwargs["response_format"] = "b64_json"

        log.debug("image_generate_start", model=params.model, prompt_length=len(prompt))
        try:
            response = await self._client.images.generate(**api_kwargs)
        except Exception as e:
            if "content_policy" in str(e).lower():
                raise ContentPolicyError(self.name, f"Content policy rejection: {e}") from e
            raise classify_exception(self.name, e) from e

        if not response.data or not response.data[0].b64_json:
            raise ProviderError(self.name, "No image data in response")

        raw = base64.b64decode(response.data[0].b64_json)
        image = Image.open(io.BytesIO(raw)).convert("RGBA")
        target = params.dimensions
        if target is not None and image.size != target:
            image = image.resize(target, Image.Resampling.NEAREST)

        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        metadata: dict[str, Any] = {}
        revised_prompt = getattr(response.data[0], "revised_prompt", None)
        if revised_prompt:
            metadata["revised_prompt"] = revised_prompt

        return BackendResult(
            artifact=ImageArtifact(
                data=buffer.getvalue(),
                width=image.width,
                height=image.height,
                metadata=metadata,
            ),
            units=1,
        )

    async def close(self) -> None:
        await self._client.close()
