"""Per-modality compliance strategies.

Each artifact kind has one strategy that returns violations against the
active StyleGuide. Images get a palette check; the other modalities have
lightweight defaults and can be replaced with ``register_strategy``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from gamefoundry.models.artifacts import AudioArtifact, ImageArtifact, TextArtifact
from gamefoundry.observability.logging import get_logger
from gamefoundry.style.errors import ValidationFailure
from gamefoundry.style.feedback import ValidationFeedback
from gamefoundry.style.palette import DEFAULT_SAMPLE_STRIDE, DEFAULT_TOLERANCE, palette_violations

if TYPE_CHECKING:
    from gamefoundry.models.artifacts import GeneratedArtifact
    from gamefoundry.style.guide import StyleGuide

log = get_logger(__name__)


class ComplianceStrategy(Protocol):
    """Checks one artifact kind against a style guide."""

    kind: str

    def check(self, artifact: GeneratedArtifact, guide: StyleGuide) -> list[str]:
        """Return violations (empty when compliant)."""
        ...


class PaletteStrategy:
    kind = "image"

    def __init__(
        self, tolerance: float = DEFAULT_TOLERANCE, stride: int = DEFAULT_SAMPLE_STRIDE
    ) -> None:
        self.tolerance = tolerance
        self.stride = stride

    def check(self, artifact: GeneratedArtifact, guide: StyleGuide) -> list[str]:
        if not isinstance(artifact, ImageArtifact):
            return []
        return palette_violations(
            artifact.data, guide.rgb_palette, tolerance=self.tolerance, stride=self.stride
        )


class TextToneStrategy:
    """Rejects empty text and any term listed in ``extras["forbidden_terms"]``."""

    kind = "text"

    def check(self, artifact: GeneratedArtifact, guide: StyleGuide) -> list[str]:
        if not isinstance(artifact, TextArtifact):
            return []
        if not artifact.text.strip():
            return ["text: response is empty"]
        lowered = artifact.text.lower()
        forbidden = guide.extras.get("forbidden_terms") or []
        return [
            f"text: contains forbidden term '{term}'"
            for term in forbidden
            if isinstance(term, str) and term.lower() in lowered
        ]


class AudioPresenceStrategy:
    kind = "audio"

    def check(self, artifact: GeneratedArtifact, guide: StyleGuide) -> list[str]:  # noqa: ARG002
        if isinstance(artifact, AudioArtifact) and not artifact.data:
            return ["audio: clip is empty"]
        return []


_STRATEGIES: dict[str, ComplianceStrategy] = {}


def register_strategy(strategy: ComplianceStrategy) -> None:
    """Register (or replace) the strategy for ``strategy.kind``."""
    _STRATEGIES[strategy.kind] = strategy


def get_strategy(kind: str) -> ComplianceStrategy | None:
    return _STRATEGIES.get(kind)


register_strategy(PaletteStrategy())
register_strategy(TextToneStrategy())
register_strategy(AudioPresenceStrategy())


class StyleValidator:
    """Checks artifacts against one StyleGuide version.

    Args:
        guide: The active style guide.
        tolerance: Palette distance tolerance for images.
        stride: Pixel sampling stride for images.
        strategies: Overrides keyed by artifact kind; registered strategies
            fill in the rest.
    """

    def __init__(
        self,
        guide: StyleGuide,
        *,
        tolerance: float = DEFAULT_TOLERANCE,
        stride: int = DEFAULT_SAMPLE_STRIDE,
        strategies: dict[str, ComplianceStrategy] | None = None,
    ) -> None:
        self.guide = guide
        self._strategies: dict[str, ComplianceStrategy] = dict(_STRATEGIES)
        self._strategies["image"] = PaletteStrategy(tolerance, stride)
        self._strategies.update(strategies or {})

    def violations(self, artifact: GeneratedArtifact) -> list[str]:
        strategy = self._strategies.get(artifact.kind)
        if strategy is None:
            return []
        return strategy.check(artifact, self.guide)

    def validate(self, artifact: GeneratedArtifact, subject: str = "artifact") -> None:
        """Raise ValidationFailure with a stricter instruction if non-compliant."""
        violations = self.violations(artifact)
        if not violations:
            return
        log.debug("style_violation", subject=subject, kind=artifact.kind, count=len(violations))
        action = "Regenerate it following the style guide exactly."
        if artifact.kind == "image":
            action = (
                "Regenerate the image using ONLY these exact palette colors, no gradients, "
                f"no anti-aliasing: {', '.join(self.guide.palette)}."
            )
        raise ValidationFailure(
            subject, violations, ValidationFeedback.from_violations(violations, action=action)
        )
