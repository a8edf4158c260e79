"""Voice synthesis backend using the ElevenLabs text-to-speech API."""

from __future__ import annotations

import os

import httpx
from pydantic import BaseModel, Field

from gamefoundry.models.artifacts import AudioArtifact
from gamefoundry.observability.logging import get_logger
from gamefoundry.providers.base import BackendResult, Capability, GenerationParams
from gamefoundry.providers.errors import AuthenticationError, ProviderError, classify_exception

log = get_logger(__name__)

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1/text-to-speech"

_FORMAT_TO_CONTENT_TYPE = {
    "mp3": ("mp3_44100_128", "audio/mpeg"),
    "pcm": ("pcm_22050", "audio/pcm"),
}


class VoiceConfig(BaseModel):
    """Voice settings, read from ``params.extra["voice"]``.

    Being part of the params, every field also takes part in the cache key.
    """

    voice_id: str = "21m00Tcm4TlvDq8ikWAM"  # Rachel
    stability: float = Field(default=0.5, ge=0.0, le=1.0)
    similarity_boost: float = Field(default=0.75, ge=0.0, le=1.0)
    style: float = Field(default=0.0, ge=0.0, le=1.0)
    use_speaker_boost: bool = True
    format: str = Field(default="mp3", pattern="^(mp3|pcm)$")


class ElevenLabsBackend:
    """Text-to-speech over the ElevenLabs REST API."""

    name = "elevenlabs"
    capabilities = frozenset({Capability.AUDIO})

    def __init__(
        self,
        model: str = "eleven_multilingual_v2",
        api_key: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.default_model = model
        self._api_key = api_key or os.getenv("ELEVENLABS_API_KEY")
        if not self._api_key:
            raise AuthenticationError(
                "elevenlabs", "ELEVENLABS_API_KEY environment variable is not set"
            )
        self._client = client or httpx.AsyncClient(timeout=None)

    async def generate(
        self, capability: Capability, prompt: str, params: GenerationParams
    ) -> BackendResult:
        if capability is not Capability.AUDIO:
            raise ProviderError(self.name, f"Unsupported capability: {capability.value}")

        voice = VoiceConfig.model_validate(params.extra.get("voice", {}))
        output_format, content_type = _FORMAT_TO_CONTENT_TYPE[voice.format]
        body = {
            "text": prompt,
            "model_id": params.model,
            "voice_settings": {
                "stability": voice.stability,
                "similarity_boost": voice.similarity_boost,
                "style": voice.style,
                "use_speaker_boost": voice.use_speaker_boost,
            },
        }

        try:
            response = await self._client.post(
                f"{ELEVENLABS_API_URL}/{voice.voice_id}",
                params={"output_format": output_format},
                headers={"xi-api-key": self._api_key or "", "accept": content_type},
                json=body,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise classify_exception(self.name, e) from e

        log.debug("voice_generate_complete", voice=voice.voice_id, chars=len(prompt))
        return BackendResult(
            artifact=AudioArtifact(
                data=response.content,
                content_type=content_type,
                metadata={"voice_id": voice.voice_id},
            ),
            units=len(prompt),
        )

    async def close(self) -> None:
        await self._client.aclose()
