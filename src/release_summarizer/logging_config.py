"""Structured logging configuration.

Every component logs snake_case events with key/value context, e.g.:

    {"event": "release_check_started", "repository": "octo/demo"}

In development the output is pretty-printed; in production it is JSON so
that log sinks can filter on the repository or the release id.

Usage:
    from release_summarizer.logging_config import setup_logging, get_logger

    setup_logging(environment="production")
    logger = get_logger(__name__)
    logger.info("release_summarized", repository="octo/demo", release_id=42)
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

# Per-request lines from these would drown the per-check events
NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def setup_logging(
    environment: str | None = None,
    log_level: str | None = None,
) -> None:
    """Configure structlog and the standard library root logger.

    Args:
        environment: "development" or "production". Reads from
                     ENVIRONMENT env var if not provided.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Reads from LOG_LEVEL env var if not provided.
    """
    env = environment or os.environ.get("ENVIRONMENT", "development")
    level = getattr(logging, (log_level or os.environ.get("LOG_LEVEL", "INFO")).upper())

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if env == "production":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> Any:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        A structlog bound logger
    """
    return structlog.get_logger(name)


@contextmanager
def repository_context(repository: object, **extra: Any) -> Iterator[None]:
    """Bind the repository (and any extra keys) to every log line in the block.

    Checks for different repositories run as concurrent asyncio tasks; the
    binding lives in a contextvar, so each task only sees its own.
    """
    with structlog.contextvars.bound_contextvars(repository=str(repository), **extra):
        yield
