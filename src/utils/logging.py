"""Logging setup for the ROAM bridge.

Importing this module configures structlog. Output is pretty-printed when
ROAM_BRIDGE_ENVIRONMENT is 'local' and JSON everywhere else; LOG_RENDERER
('console' or 'json') overrides the choice.

```
from src.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

with LogContext(tenant_id="tenant-123", external_message_id="msg-1"):
    logger.info("Dispatching ROAM event", event_type="chat.message.dm")
```

Standard library loggers (uvicorn, httpx, asyncpg, botocore) are routed
through the same processor chain so that bound context shows up on them too.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import structlog
import structlog.contextvars

from src.utils.config import get_bridge_environment
from src.utils.newrelic_logging import newrelic_error_processor


def _use_console_renderer() -> bool:
    log_renderer = os.getenv("LOG_RENDERER", "").lower()
    if log_renderer == "console":
        return True
    if log_renderer == "json":
        return False
    return get_bridge_environment() == "local"


def _get_log_renderer() -> structlog.types.Processor:
    if _use_console_renderer():
        return structlog.dev.ConsoleRenderer(
            colors=True,
            pad_event=0,
            sort_keys=True,
            exception_formatter=structlog.dev.plain_traceback,
            event_key="message",
        )
    return structlog.processors.JSONRenderer()


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.contextvars.merge_contextvars,
        newrelic_error_processor,
        # New Relic expects the log text under "message"
        structlog.processors.EventRenamer("message"),
    ]


def configure_logging() -> None:
    """Configure structlog and the stdlib root logger to share one handler."""
    shared = _shared_processors()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_get_log_renderer(),
            foreign_pre_chain=shared,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    numeric_log_level = getattr(logging, log_level, logging.INFO)
    root_logger.setLevel(numeric_log_level)

    # httpx logs every request at INFO, which drowns out retry logging
    logging.getLogger("httpx").setLevel(max(numeric_log_level, logging.WARNING))


configure_logging()


def add_log_context(**kwargs: Any) -> None:
    """Bind values into the logging context of the current async context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_log_context() -> None:
    structlog.contextvars.clear_contextvars()


# Context manager binding values for the duration of a block
LogContext = structlog.contextvars.bound_contextvars


def get_logger(name: str, **kwargs: Any) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, optionally with initial bound values."""
    return structlog.get_logger(name, **kwargs)


def get_uvicorn_log_config() -> dict[str, Any]:
    """Uvicorn dictConfig that renders access/error logs like application logs."""
    handler_config = {
        "formatter": "default",
        "class": "logging.StreamHandler",
        "stream": "ext://sys.stdout",
    }
    logger_config = {"handlers": ["default"], "level": "INFO", "propagate": False}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processor": _get_log_renderer(),
                "foreign_pre_chain": [
                    structlog.stdlib.add_log_level,
                    structlog.stdlib.add_logger_name,
                    structlog.processors.TimeStamper(fmt="iso"),
                    structlog.processors.EventRenamer("message"),
                ],
            },
        },
        "handlers": {"default": handler_config},
        "loggers": {
            "": logger_config,
            "uvicorn": logger_config,
            "uvicorn.access": logger_config,
            "uvicorn.error": logger_config,
        },
    }
