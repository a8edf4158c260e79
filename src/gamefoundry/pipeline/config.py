"""Project configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

from gamefoundry.providers.base import Capability

# Offline defaults so a fresh checkout runs without API keys
DEFAULT_PROVIDER = "placeholder"
DEFAULT_CACHE_DIR = ".gamefoundry/cache"
DEFAULT_PROJECTS_DIR = "projects"

_PROVIDER_ENV = {
    Capability.TEXT: "GF_PROVIDER_TEXT",
    Capability.IMAGE: "GF_PROVIDER_IMAGE",
    Capability.AUDIO: "GF_PROVIDER_AUDIO",
}


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


@dataclass
class ProvidersConfig:
    """Ordered fallback chain of ``provider/model`` strings per capability.

    Resolution order for each capability:
    1. Environment variable (e.g. GF_PROVIDER_TEXT, comma-separated)
    2. Project config (e.g. providers.text)
    3. The placeholder provider
    """

    text: list[str] = field(default_factory=lambda: [DEFAULT_PROVIDER])
    image: list[str] = field(default_factory=lambda: [DEFAULT_PROVIDER])
    audio: list[str] = field(default_factory=lambda: [DEFAULT_PROVIDER])

    def chain(self, capability: Capability) -> list[str]:
        env = os.getenv(_PROVIDER_ENV[capability])
        if env:
            return [spec.strip() for spec in env.split(",") if spec.strip()]
        return list(getattr(self, capability.value)) or [DEFAULT_PROVIDER]

    def chains(self) -> dict[Capability, list[str]]:
        return {capability: self.chain(capability) for capability in Capability}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvidersConfig:
        return cls(
            text=_as_list(data.get("text")) or [DEFAULT_PROVIDER],
            image=_as_list(data.get("image")) or [DEFAULT_PROVIDER],
            audio=_as_list(data.get("audio")) or [DEFAULT_PROVIDER],
        )


@dataclass
class CacheConfig:
    """Response cache tiers.

    Attributes:
        memory_budget_bytes: Soft byte budget of the in-memory tier.
        disk_capacity_entries: Max entries kept on disk before LRU eviction.
        dir: Disk tier location (GF_CACHE_DIR overrides).
    """

    memory_budget_bytes: int = 64 * 1024 * 1024
    disk_capacity_entries: int = 10_000
    dir: str = DEFAULT_CACHE_DIR

    @property
    def path(self) -> Path:
        return Path(os.getenv("GF_CACHE_DIR") or self.dir)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheConfig:
        return cls(
            memory_budget_bytes=int(data.get("memory_budget_bytes", 64 * 1024 * 1024)),
            disk_capacity_entries=int(data.get("disk_capacity_entries", 10_000)),
            dir=str(data.get("dir", DEFAULT_CACHE_DIR)),
        )


@dataclass
class RetryConfig:
    max_attempts: int = 5
    base_delay: float = 1.0
    timeout_base_delay: float = 0.25
    max_delay: float = 30.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryConfig:
        return cls(
            max_attempts=int(data.get("max_attempts", 5)),
            base_delay=float(data.get("base_delay", 1.0)),
            timeout_base_delay=float(data.get("timeout_base_delay", 0.25)),
            max_delay=float(data.get("max_delay", 30.0)),
        )


@dataclass
class StyleConfig:
    """Style validation knobs.

    Attributes:
        palette_tolerance: Max Euclidean RGB distance from a palette color.
        sample_stride: Pixel sampling stride for palette checks.
        max_style_retries: Corrective re-prompts for the style guide.
        max_artifact_retries: Stricter re-prompts for non-compliant artifacts.
    """

    palette_tolerance: float = 24.0
    sample_stride: int = 1
    max_style_retries: int = 3
    max_artifact_retries: int = 2

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StyleConfig:
        return cls(
            palette_tolerance=float(data.get("palette_tolerance", 24.0)),
            sample_stride=int(data.get("sample_stride", 1)),
            max_style_retries=int(data.get("max_style_retries", 3)),
            max_artifact_retries=int(data.get("max_artifact_retries", 2)),
        )


@dataclass
class ProjectConfig:
    """Configuration for a GameFoundry project."""

    name: str
    version: int = 1
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    max_parallel: int = 4
    retry: RetryConfig = field(default_factory=RetryConfig)
    call_deadline_seconds: float = 120.0
    style: StyleConfig = field(default_factory=StyleConfig)
    projects_dir: str = DEFAULT_PROJECTS_DIR

    @property
    def projects_path(self) -> Path:
        return Path(os.getenv("GF_PROJECTS_DIR") or self.projects_dir)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectConfig:
        """Create config from dictionary.

        Args:
            data: Dictionary containing config fields.

        Returns:
            ProjectConfig instance.
        """
        return cls(
            name=data.get("name", "unnamed"),
            version=data.get("version", 1),
            providers=ProvidersConfig.from_dict(data.get("providers") or {}),
            cache=CacheConfig.from_dict(data.get("cache") or {}),
            max_parallel=int((data.get("concurrency") or {}).get("max_parallel", 4)),
            retry=RetryConfig.from_dict(data.get("retry") or {}),
            call_deadline_seconds=float(
                (data.get("timeouts") or {}).get("call_deadline_seconds", 120.0)
            ),
            style=StyleConfig.from_dict(data.get("style") or {}),
            projects_dir=str(data.get("projects_dir", DEFAULT_PROJECTS_DIR)),
        )


class ProjectConfigError(Exception):
    """Raised when project configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load project config at {path}: {reason}")


def load_project_config(project_path: Path) -> ProjectConfig:
    """Load project configuration from project.yaml.

    Raises:
        ProjectConfigError: If config cannot be loaded.
    """
    config_path = project_path / "project.yaml"

    if not config_path.exists():
        raise ProjectConfigError(config_path, "File not found")

    yaml = YAML(typ="safe")
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            raise ProjectConfigError(config_path, "Empty file")

        return ProjectConfig.from_dict(dict(data))
    except Exception as e:
        if isinstance(e, ProjectConfigError):
            raise
        raise ProjectConfigError(config_path, str(e)) from e


def create_default_config(name: str, text_provider: str | None = None) -> ProjectConfig:
    """Default configuration: placeholder providers for every capability."""
    providers = ProvidersConfig()
    if text_provider:
        providers.text = [text_provider]
    return ProjectConfig(name=name, providers=providers)
