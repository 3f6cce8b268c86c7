"""
structlog setup for matchsync.

Events go through the stdlib logging bridge so library loggers (SQLAlchemy,
asyncio) and our own structured events share one handler. Dev gets the
console renderer; every other environment emits one JSON object per line.
Provider credentials travel as query parameters, so any rendered value that
looks like `secret=...` is scrubbed before it reaches the handler.
"""
from __future__ import annotations

import contextlib
import logging
import re
import sys
from typing import Any, Iterator

import structlog
from shared.config import Environment, Settings, get_settings

_CREDENTIAL_PARAM = re.compile(r"\b(secret|user)=[^&\s\"']+")

_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "sqlalchemy.engine")


def redact_credentials(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Replace provider auth query values in string fields (URLs, error messages)."""
    for key, value in event_dict.items():
        if isinstance(value, str) and "=" in value:
            event_dict[key] = _CREDENTIAL_PARAM.sub(r"\1=***", value)
    return event_dict


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        redact_credentials,
    ]


def _renderer(settings: Settings) -> structlog.types.Processor:
    if settings.environment == Environment.DEV:
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging(service_name: str, extra_context: dict[str, Any] | None = None) -> None:
    """
    Route structlog and stdlib logging to stdout for one service process.

    Args:
        service_name: Bound as `service` on every event (scheduler, worker).
        extra_context: Further static fields bound for the life of the process.
    """
    settings = get_settings()
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                _renderer(settings),
            ],
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service=service_name,
        instance_id=settings.instance_id or None,
        **(extra_context or {}),
    )


@contextlib.contextmanager
def job_context(job: str, **fields: Any) -> Iterator[None]:
    """Bind `job` (and any extra fields) to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(job=job, **fields):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
