"""Structured logging configuration."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

SERVICE_NAME = "pulse-insights"

# Event keys whose values are credentials for the LLM provider or the log sink.
SECRET_KEYS = frozenset({"api_key", "service_key", "apikey", "authorization"})

NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "litellm", "LiteLLM", "aiosqlite")


def redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in event_dict:
        if key.lower() in SECRET_KEYS and event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def _add_service(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure structlog for Pulse Insights.

    ``fmt="console"`` renders colored lines for the CLI; anything else emits one
    JSON object per event on stdout.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if fmt == "console":
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    else:
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Provider and HTTP client chatter only at WARNING and above
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
