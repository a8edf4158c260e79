"""Observability module for GameFoundry.

Provides structured logging and the provider call log.
"""

from gamefoundry.observability.call_log import ProviderCallEntry, ProviderCallLogger
from gamefoundry.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
    log_context,
)

__all__ = [
    "ProviderCallEntry",
    "ProviderCallLogger",
    "close_file_logging",
    "configure_logging",
    "get_logger",
    "get_logs_dir",
    "log_context",
]
