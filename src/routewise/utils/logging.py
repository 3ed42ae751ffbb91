"""
Structured logging for Routewise.

structlog renders JSON in production and coloured console output in
development. Prompts are user data: any `prompt` field on an event is
shortened before rendering so logs never carry whole conversations.
"""

from __future__ import annotations

import logging
import sys
import time
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from routewise.core.config import get_settings

PROMPT_PREVIEW_CHARS = 80

# Libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def shorten_prompts(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Truncate `prompt` fields to a short preview."""
    prompt = event_dict.get("prompt")
    if isinstance(prompt, str) and len(prompt) > PROMPT_PREVIEW_CHARS:
        event_dict["prompt"] = prompt[:PROMPT_PREVIEW_CHARS] + f"... ({len(prompt)} chars)"
    return event_dict


def setup_logging(
    level: str | None = None,
    json_format: bool | None = None,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Log level name; defaults to the configured router log level
        json_format: Render JSON; defaults to the configured log format
    """
    settings = get_settings().router
    level_name = (level or settings.log_level).upper()
    if json_format is None:
        json_format = settings.log_format == "json"
    numeric_level = getattr(logging, level_name)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        shorten_prompts,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


class RequestLogger:
    """
    Binds per-request context for the duration of one routing operation.

    Everything logged inside the block, from any module, carries the bound
    fields (typically request_id). The block's own start, failure and
    completion are logged with the elapsed time.
    """

    def __init__(self, logger: Any, operation: str, **context: Any):
        self.logger = logger.bind(operation=operation)
        self.operation = operation
        self._context = context
        self._tokens: dict[str, Any] = {}
        self._started = 0.0

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000

    def __enter__(self) -> "RequestLogger":
        self._tokens = structlog.contextvars.bind_contextvars(**self._context)
        self._started = time.perf_counter()
        self.logger.debug(f"{self.operation} started")
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        elapsed = round(self.elapsed_ms, 3)
        if exc_type is None:
            self.logger.debug(f"{self.operation} finished", elapsed_ms=elapsed)
        else:
            self.logger.debug(
                f"{self.operation} failed",
                elapsed_ms=elapsed,
                error_type=exc_type.__name__,
            )
        structlog.contextvars.reset_contextvars(**self._tokens)
