"""Artifacts produced by providers or derived locally.

Every artifact is a tagged union member discriminated by ``kind`` and
carries a back-reference to the PromptNode that produced it and the
StyleGuide version it was validated against.
"""

from __future__ import annotations

import hashlib
import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _ArtifactBase(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_bytes="base64", val_json_bytes="base64")

    node_id: str | None = Field(default=None, description="PromptNode that produced this")
    style_guide_hash: str | None = Field(
        default=None, description="StyleGuide version this was validated against"
    )
    model: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    def with_lineage(
        self, node_id: str | None, style_guide_hash: str | None = None
    ) -> GeneratedArtifact:
        """Return a copy stamped with its producing node and style version."""
        return self.model_copy(  # type: ignore[return-value]
            update={"node_id": node_id, "style_guide_hash": style_guide_hash}
        )

    @property
    def size_bytes(self) -> int:
        raise NotImplementedError

    def digest(self) -> str:
        """Content hash over the payload only (lineage stamps excluded)."""
        raise NotImplementedError


class ImageArtifact(_ArtifactBase):
    kind: Literal["image"] = "image"
    data: bytes
    content_type: str = "image/png"
    width: int = Field(ge=1)
    height: int = Field(ge=1)

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def digest(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


class TextArtifact(_ArtifactBase):
    kind: Literal["text"] = "text"
    text: str

    @property
    def size_bytes(self) -> int:
        return len(self.text.encode("utf-8"))

    def digest(self) -> str:
        return hashlib.sha256(self.text.encode("utf-8")).hexdigest()


class AudioArtifact(_ArtifactBase):
    kind: Literal["audio"] = "audio"
    data: bytes
    content_type: str = "audio/wav"
    duration_seconds: float | None = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def digest(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


class JsonArtifact(_ArtifactBase):
    kind: Literal["json"] = "json"
    payload: dict[str, Any]

    @property
    def size_bytes(self) -> int:
        return len(self._canonical())

    def digest(self) -> str:
        return hashlib.sha256(self._canonical()).hexdigest()

    def _canonical(self) -> bytes:
        return json.dumps(self.payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


GeneratedArtifact = Annotated[
    ImageArtifact | TextArtifact | AudioArtifact | JsonArtifact,
    Field(discriminator="kind"),
]

ARTIFACT_ADAPTER: TypeAdapter[GeneratedArtifact] = TypeAdapter(GeneratedArtifact)


def describe_artifact(artifact: GeneratedArtifact) -> str:
    """One-line human description used in logs and reports."""
    if isinstance(artifact, ImageArtifact):
        return f"image {artifact.width}x{artifact.height}"
    if isinstance(artifact, TextArtifact):
        return f"text {len(artifact.text)} chars"
    if isinstance(artifact, AudioArtifact):
        return f"audio {artifact.size_bytes} bytes"
    return f"json {len(artifact.payload)} keys"
