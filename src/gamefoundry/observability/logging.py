"""Logging setup for pipeline runs.

Events are structlog event dicts. Both handlers hang off the stdlib root
logger and render through ``structlog.stdlib.ProcessorFormatter``:

- console: rich on stderr, level chosen by the ``-v`` count
- file (``--log``): every event at DEBUG as JSON lines in
  ``{project}/logs/debug.jsonl``, keyed exactly as logged

While a run is active the orchestrator binds ``project_id``, and each phase
task binds ``phase``, so both show up on every event without being passed.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path  # noqa: TC003 - Used at runtime for path operations
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from collections.abc import Iterator, MutableMapping

    from structlog.typing import Processor

DEBUG_LOG_NAME = "debug.jsonl"

# -v count -> console level
_CONSOLE_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)

# Provider SDKs and image decoding log per request at DEBUG
_QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "openai",
    "langchain",
    "langchain_core",
    "PIL",
    "asyncio",
)

_configured = False
_file_handler: logging.FileHandler | None = None
_logs_dir: Path | None = None


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _drop_rich_fields(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    # rich prints its own time and level columns
    for key in ("timestamp", "level", "logger"):
        event_dict.pop(key, None)
    return event_dict


def _console_handler(verbosity: int) -> RichHandler:
    handler = RichHandler(
        console=Console(stderr=True),
        level=_CONSOLE_LEVELS[min(verbosity, len(_CONSOLE_LEVELS) - 1)],
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        markup=False,
    )
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _drop_rich_fields,
                structlog.dev.ConsoleRenderer(colors=False),
            ],
        )
    )
    return handler


def _jsonl_handler(path: Path) -> logging.FileHandler:
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.dict_tracebacks,
                structlog.processors.JSONRenderer(default=str),
            ],
        )
    )
    return handler


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    project_path: Path | None = None,
) -> None:
    """(Re)configure console and file logging.

    Calling this again replaces both handlers; a previous JSONL file is closed.

    Args:
        verbosity: 0=WARNING (default), 1=INFO, 2+=DEBUG on the console.
        log_to_file: Also write every event to ``{project_path}/logs/debug.jsonl``.
        project_path: Project directory. Required if log_to_file=True.

    Raises:
        ValueError: If log_to_file=True but project_path is not provided.
    """
    global _configured, _file_handler, _logs_dir

    if log_to_file and project_path is None:
        raise ValueError("project_path is required when log_to_file=True")

    close_file_logging()
    _logs_dir = None
    handlers: list[logging.Handler] = [_console_handler(verbosity)]
    if log_to_file and project_path is not None:
        _logs_dir = project_path / "logs"
        _logs_dir.mkdir(parents=True, exist_ok=True)
        _file_handler = _jsonl_handler(_logs_dir / DEBUG_LOG_NAME)
        handlers.append(_file_handler)

    # The root must pass DEBUG whenever any handler wants it
    root_level = logging.DEBUG if (verbosity > 0 or log_to_file) else logging.WARNING
    logging.basicConfig(level=root_level, handlers=handlers, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Structured logger for ``name``; configures WARNING console output on first use."""
    if not _configured:
        configure_logging()
    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind ``fields`` to every event logged in this block, including from tasks it creates.

    None values are not bound.
    """
    bound = {k: v for k, v in fields.items() if v is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def get_logs_dir() -> Path | None:
    """The logs directory while file logging is enabled."""
    return _logs_dir


def close_file_logging() -> None:
    """Detach and close the JSONL handler, if any."""
    global _file_handler
    if _file_handler is not None:
        logging.getLogger().removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
