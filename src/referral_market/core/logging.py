from __future__ import annotations

import logging
import logging.config
from contextvars import ContextVar
from threading import Lock
from typing import Any

import structlog
import structlog.contextvars
import structlog.stdlib
from structlog.typing import Processor

from referral_market.core.config import Environment, Settings
from referral_market.core.constants import REQUEST_ID_CTX_KEY, SERVICE_NAME

_LOGGING_INITIALISED = False
_LOGGING_LOCK = Lock()
_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar(REQUEST_ID_CTX_KEY, default=None)
_STATIC_CONTEXT: dict[str, str] = {"service": SERVICE_NAME}

# Chatty third-party loggers and the level they are held to.
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "schedule": logging.WARNING,
}


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(level.upper())
    if isinstance(resolved, str):
        return logging.INFO
    return int(resolved)


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _renderer(settings: Settings) -> Processor:
    if settings.environment is Environment.DEVELOPMENT:
        return structlog.dev.ConsoleRenderer(colors=False)
    return structlog.processors.JSONRenderer()


def configure_logging(settings: Settings) -> None:
    """Route structlog and stdlib records through one renderer, once per process.

    Development gets human readable lines, every other environment JSON.
    """

    global _LOGGING_INITIALISED
    if _LOGGING_INITIALISED:
        return

    with _LOGGING_LOCK:
        if _LOGGING_INITIALISED:
            return

        level = _resolve_level(settings.log_level)
        shared = _shared_processors()

        structlog.configure(
            processors=[
                *shared,
                structlog.processors.dict_tracebacks,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        loggers: dict[str, dict[str, Any]] = {
            "": {"handlers": ["default"], "level": level},
            "sqlalchemy.engine": {
                "handlers": ["default"],
                "level": logging.INFO if settings.database.echo else logging.WARNING,
                "propagate": False,
            },
        }
        for name, quiet_level in _QUIET_LOGGERS.items():
            loggers[name] = {
                "handlers": ["default"],
                "level": max(level, quiet_level),
                "propagate": False,
            }

        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "structlog": {
                        "()": structlog.stdlib.ProcessorFormatter,
                        "foreign_pre_chain": shared,
                        "processors": [
                            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                            _renderer(settings),
                        ],
                    }
                },
                "handlers": {
                    "default": {
                        "class": "logging.StreamHandler",
                        "formatter": "structlog",
                        "level": level,
                    }
                },
                "loggers": loggers,
            }
        )

        _STATIC_CONTEXT["environment"] = settings.environment.value
        structlog.contextvars.bind_contextvars(**_STATIC_CONTEXT)
        _LOGGING_INITIALISED = True


def bind_request_context(request_id: str, **kwargs: Any) -> None:
    """Attach the request id, plus any caller identity, to every log line of this request."""

    _REQUEST_ID_CTX.set(request_id)
    structlog.contextvars.bind_contextvars(**{REQUEST_ID_CTX_KEY: request_id, **kwargs})


def clear_request_context() -> None:
    _REQUEST_ID_CTX.set(None)
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**_STATIC_CONTEXT)


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()
