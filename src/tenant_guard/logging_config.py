"""Structured logging for the API, the arq worker and the tenant CLI.

Deployed environments (production, staging) render one JSON object per
line; everything else gets the colored console renderer. The active
tenant is bound into structlog contextvars by ``tenant_scope``, so every
event emitted inside a scope carries ``tenant_id``.
"""

import logging
import sys
from collections.abc import Mapping
from typing import Any

import structlog

REDACTED = "***REDACTED***"

JSON_ENVIRONMENTS: frozenset[str] = frozenset({"production", "staging"})

# Matched after lowercasing and turning header dashes into underscores,
# so ``X-Internal-Token`` and ``internal_token`` are the same key.
SENSITIVE_KEYS: frozenset[str] = frozenset(
    {"authorization", "cookie", "password", "secret", "session", "token"}
)
SENSITIVE_SUFFIXES: tuple[str, ...] = ("_password", "_secret", "_token")

NOISY_LOGGERS: dict[str, int] = {
    "uvicorn.access": logging.WARNING,
    "pymongo": logging.WARNING,
    "pymongo.serverSelection": logging.WARNING,
    "pymongo.connection": logging.WARNING,
    "arq": logging.INFO,
}


def is_sensitive(key: str) -> bool:
    normalized = key.lower().replace("-", "_")
    return normalized in SENSITIVE_KEYS or normalized.endswith(SENSITIVE_SUFFIXES)


def _redact(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            k: REDACTED if isinstance(k, str) and is_sensitive(k) else _redact(v)
            for k, v in value.items()
        }
    return value


def redact_sensitive(
    logger: logging.Logger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Mask credentials, including ones nested in header or claim dicts."""
    for key, value in event_dict.items():
        if is_sensitive(key):
            event_dict[key] = REDACTED
        elif isinstance(value, Mapping):
            event_dict[key] = _redact(value)
    return event_dict


def build_shared_processors() -> list[structlog.types.Processor]:
    """Processors run for both structlog events and stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_sensitive,
    ]


def select_renderer(environment: str) -> structlog.types.Processor:
    if environment.lower() in JSON_ENVIRONMENTS:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def configure_logging(
    environment: str = "development",
    log_level: str = "INFO",
) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Call once per process: the FastAPI lifespan, the arq ``startup`` hook
    and the CLI entry point each do.

    Args:
        environment: ``production`` or ``staging`` for JSON lines,
            anything else for the console renderer.
        log_level: root level name (DEBUG, INFO, WARNING, ...).
    """
    shared_processors = build_shared_processors()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Stdlib records (pymongo, arq, uvicorn) run the same shared chain.
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            select_renderer(environment),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
