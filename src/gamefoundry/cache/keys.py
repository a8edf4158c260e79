"""Deterministic cache key derivation."""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gamefoundry.providers.base import Capability, GenerationParams

# Bump when the key layout changes so old disk entries are never reused.
KEY_VERSION = 1


def cache_key(
    template_id: str,
    prompt: str,
    params: GenerationParams,
    capability: Capability,
) -> str:
    """Stable SHA-256 over template id, rendered prompt and model parameters.

    Uses canonical JSON (sorted keys, fixed separators) so the key is
    identical across processes and restarts.
    """
    material = {
        "v": KEY_VERSION,
        "template": template_id,
        "capability": str(capability),
        "prompt": prompt,
        "params": params.model_dump(mode="json"),
    }
    encoded = json.dumps(material, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
