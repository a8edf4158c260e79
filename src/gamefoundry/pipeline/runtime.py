"""Wiring of the shared services one project run needs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from gamefoundry.cache.disk import DiskTier
from gamefoundry.cache.store import ResponseCache
from gamefoundry.lineage.tracker import LineageTracker
from gamefoundry.observability.call_log import ProviderCallLogger
from gamefoundry.prompts.renderer import PromptRenderer
from gamefoundry.providers.cost import CostTracker
from gamefoundry.providers.errors import ProviderConnectionError, ProviderTimeout, RateLimited
from gamefoundry.providers.factory import build_router
from gamefoundry.providers.retry import Backoff, RetryPolicy

if TYPE_CHECKING:
    from pathlib import Path

    from gamefoundry.pipeline.config import ProjectConfig, RetryConfig
    from gamefoundry.providers.adapter import CapabilityRouter


@dataclass
class PipelineRuntime:
    """Services shared by every phase of one run."""

    renderer: PromptRenderer
    router: CapabilityRouter
    cache: ResponseCache
    tracker: LineageTracker
    costs: CostTracker
    call_logger: ProviderCallLogger | None = None

    async def aclose(self) -> None:
        """Flush pending cache writes and close provider clients."""
        await self.cache.flush()
        await self.router.close()


def build_retry_policy(config: RetryConfig) -> RetryPolicy:
    """Rate limits back off from ``base_delay``; timeouts and network errors retry sooner."""
    return RetryPolicy(
        max_attempts=config.max_attempts,
        rules={
            RateLimited: Backoff(config.base_delay, max_delay=config.max_delay),
            ProviderTimeout: Backoff(
                config.timeout_base_delay, max_delay=min(4.0, config.max_delay)
            ),
            ProviderConnectionError: Backoff(
                config.timeout_base_delay * 2, max_delay=min(8.0, config.max_delay)
            ),
        },
    )


def create_runtime(
    config: ProjectConfig,
    *,
    tracker: LineageTracker | None = None,
    costs: CostTracker | None = None,
    cache_dir: Path | None = None,
    project_path: Path | None = None,
    log_calls: bool = False,
    router: CapabilityRouter | None = None,
    renderer: PromptRenderer | None = None,
) -> PipelineRuntime:
    """Build the runtime from project configuration.

    Args:
        config: Project configuration.
        tracker: Restored lineage (resume); a fresh tracker otherwise.
        costs: Restored cost totals (resume).
        cache_dir: Overrides the configured disk cache directory.
        project_path: Project directory for provider call logs.
        log_calls: Write ``logs/provider_calls.jsonl`` under ``project_path``.
        router: Pre-built router (tests); built from config otherwise.
        renderer: Pre-built renderer; defaults to the bundled templates.
    """
    costs = costs or CostTracker()
    call_logger = None
    if log_calls and project_path is not None:
        call_logger = ProviderCallLogger(project_path, enabled=True)
    if router is None:
        router = build_router(
            config.providers.chains(),
            retry_policy=build_retry_policy(config.retry),
            cost_tracker=costs,
            deadline_seconds=config.call_deadline_seconds,
            call_logger=call_logger,
        )
    disk = DiskTier(cache_dir or config.cache.path, capacity=config.cache.disk_capacity_entries)
    return PipelineRuntime(
        renderer=renderer or PromptRenderer(),
        router=router,
        cache=ResponseCache(disk, memory_budget_bytes=config.cache.memory_budget_bytes),
        tracker=tracker or LineageTracker(),
        costs=costs,
        call_logger=call_logger,
    )
