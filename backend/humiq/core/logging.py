"""
HumIQ Work Sessions - Structured Logging
=========================================

structlog configuration shared by the API and the engine.

Request-scoped fields (request_id, path) are bound through structlog's
contextvars and merged into every event, including the engine's
`session_id`-bound loggers. Secrets never reach the output.
"""

import logging
import sys
from typing import Any

import structlog

from humiq.core.config import settings

_REDACTED = "[REDACTED]"
_SECRET_KEY_MARKERS = ("token", "secret", "password", "api_key", "authorization")


def redact_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    """structlog processor masking values whose key looks like a credential."""
    for key in list(event_dict):
        if any(marker in key.lower() for marker in _SECRET_KEY_MARKERS):
            event_dict[key] = _REDACTED
    return event_dict


def configure_logging() -> None:
    """Configure stdlib logging and structlog once per process."""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    json_output = settings.LOG_JSON if settings.LOG_JSON is not None else settings.is_production

    # stdlib loggers (stages, uvicorn, sqlalchemy) share the same stream
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
