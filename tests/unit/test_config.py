"""Tests for pipeline configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from gamefoundry.models import TextArtifact
from gamefoundry.pipeline.config import (
    DEFAULT_PROVIDER,
    ProjectConfig,
    ProjectConfigError,
    ProvidersConfig,
    create_default_config,
    load_project_config,
)
from gamefoundry.pipeline.runtime import build_retry_policy, create_runtime
from gamefoundry.providers import Capability, ProviderTimeout, RateLimited

if TYPE_CHECKING:
    from pathlib import Path

# --- Tests for ProvidersConfig ---


class TestProvidersConfig:
    """Tests for ProvidersConfig class."""

    def test_defaults_to_placeholder(self) -> None:
        config = ProvidersConfig()
        assert config.chains() == {c: [DEFAULT_PROVIDER] for c in Capability}

    def test_from_dict_accepts_string_or_list(self) -> None:
        """A single spec and a fallback list are both valid."""
        config = ProvidersConfig.from_dict(
            {"text": "openai/gpt-4o-mini", "image": ["openai/dall-e-3", "placeholder"]}
        )

        assert config.text == ["openai/gpt-4o-mini"]
        assert config.image == ["openai/dall-e-3", "placeholder"]
        assert config.audio == [DEFAULT_PROVIDER]

    def test_env_overrides_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """GF_PROVIDER_* wins over the project file."""
        monkeypatch.setenv("GF_PROVIDER_TEXT", "anthropic/claude-3-5-haiku, ollama/qwen3:8b")
        config = ProvidersConfig(text=["openai/gpt-4o-mini"])

        assert config.chain(Capability.TEXT) == ["anthropic/claude-3-5-haiku", "ollama/qwen3:8b"]
        assert config.chain(Capability.IMAGE) == [DEFAULT_PROVIDER]

    def test_empty_chain_falls_back(self) -> None:
        assert ProvidersConfig(audio=[]).chain(Capability.AUDIO) == [DEFAULT_PROVIDER]


# --- Tests for ProjectConfig ---


class TestProjectConfig:
    """Tests for ProjectConfig class."""

    def test_from_dict_minimal(self) -> None:
        config = ProjectConfig.from_dict({"name": "demo"})

        assert config.name == "demo"
        assert config.max_parallel == 4
        assert config.call_deadline_seconds == 120.0
        assert config.style.palette_tolerance == 24.0
        assert config.retry.max_attempts == 5

    def test_from_dict_nested_sections(self) -> None:
        config = ProjectConfig.from_dict(
            {
                "name": "demo",
                "concurrency": {"max_parallel": 2},
                "timeouts": {"call_deadline_seconds": 30},
                "style": {"palette_tolerance": 10, "max_artifact_retries": 0},
                "cache": {"memory_budget_bytes": 1024, "disk_capacity_entries": 5},
                "retry": {"max_attempts": 2, "base_delay": 0.5},
            }
        )

        assert config.max_parallel == 2
        assert config.call_deadline_seconds == 30.0
        assert config.style.palette_tolerance == 10.0
        assert config.style.max_artifact_retries == 0
        assert config.cache.memory_budget_bytes == 1024
        assert config.cache.disk_capacity_entries == 5
        assert config.retry.max_attempts == 2
        assert config.retry.base_delay == 0.5

    def test_cache_and_projects_dir_env(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        config = ProjectConfig(name="demo")
        monkeypatch.setenv("GF_CACHE_DIR", str(tmp_path / "c"))
        monkeypatch.setenv("GF_PROJECTS_DIR", str(tmp_path / "p"))

        assert config.cache.path == tmp_path / "c"
        assert config.projects_path == tmp_path / "p"

    def test_create_default_config(self) -> None:
        config = create_default_config("demo", text_provider="openai/gpt-4o-mini")

        assert config.name == "demo"
        assert config.providers.text == ["openai/gpt-4o-mini"]
        assert config.providers.image == [DEFAULT_PROVIDER]


# --- Tests for load_project_config ---


def test_load_project_config(tmp_path: Path) -> None:
    (tmp_path / "project.yaml").write_text(
        "name: demo\n"
        "providers:\n"
        "  text: [openai/gpt-4o-mini, placeholder]\n"
        "concurrency:\n"
        "  max_parallel: 8\n"
    )

    config = load_project_config(tmp_path)

    assert config.name == "demo"
    assert config.providers.text == ["openai/gpt-4o-mini", "placeholder"]
    assert config.max_parallel == 8


def test_load_project_config_missing(tmp_path: Path) -> None:
    with pytest.raises(ProjectConfigError, match="File not found"):
        load_project_config(tmp_path)


def test_load_project_config_empty(tmp_path: Path) -> None:
    (tmp_path / "project.yaml").write_text("")

    with pytest.raises(ProjectConfigError, match="Empty file"):
        load_project_config(tmp_path)


def test_load_project_config_invalid(tmp_path: Path) -> None:
    (tmp_path / "project.yaml").write_text("name: demo\nconcurrency:\n  max_parallel: lots\n")

    with pytest.raises(ProjectConfigError) as exc_info:
        load_project_config(tmp_path)
    assert exc_info.value.path == tmp_path / "project.yaml"


# --- Runtime wiring ---


def test_build_retry_policy_uses_config() -> None:
    config = ProjectConfig.from_dict(
        {"name": "demo", "retry": {"max_attempts": 3, "base_delay": 2.0, "max_delay": 10.0}}
    )

    policy = build_retry_policy(config.retry)

    assert policy.max_attempts == 3
    assert policy.rules[RateLimited].base_delay == 2.0
    assert policy.rules[ProviderTimeout].max_delay == 4.0


def test_create_runtime_from_default_config(tmp_path: Path) -> None:
    runtime = create_runtime(create_default_config("demo"), cache_dir=tmp_path / "cache")

    assert runtime.router.capabilities == frozenset(Capability)
    assert runtime.router.default_model(Capability.TEXT) == "placeholder"
    assert runtime.call_logger is None


@pytest.mark.asyncio
async def test_runtime_aclose_flushes_cache(tmp_path: Path) -> None:
    runtime = create_runtime(create_default_config("demo"), cache_dir=tmp_path / "cache")
    runtime.cache.put("ab" * 32, TextArtifact(text="kept"))

    await runtime.aclose()

    assert (tmp_path / "cache" / "manifest.json").exists()
    assert runtime.cache.pending_retries == 0
