"""
Structured logging for the render service.

Log lines emitted while a job runs carry its ``job_id`` through structlog
context variables, so service classes never need the id passed in.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog
from structlog.stdlib import LoggerFactory

from .config import Settings, get_settings

# Chatty third-party loggers capped at WARNING
QUIET_LOGGERS = ("urllib3", "aiohttp", "google", "multipart", "uvicorn.access")

_configured = False


def _processors(log_format: str) -> List:
    renderer = structlog.processors.JSONRenderer() if log_format == "json" else structlog.dev.ConsoleRenderer()
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]


def _file_handler(path: Path, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    return handler


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure structlog and the stdlib root logger once per process."""
    global _configured
    if _configured:
        return

    settings = settings or get_settings()
    settings.logs_dir.mkdir(parents=True, exist_ok=True)

    structlog.configure(
        processors=_processors(settings.log_format),
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )
    root_logger = logging.getLogger()
    root_logger.addHandler(_file_handler(settings.logs_dir / "render-service.log", logging.INFO))
    root_logger.addHandler(_file_handler(settings.logs_dir / "errors.log", logging.ERROR))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def job_context(job_id: str):
    """Bind ``job_id`` to every log line emitted inside the ``with`` block."""
    return structlog.contextvars.bound_contextvars(job_id=job_id)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LoggerMixin:
    """Gives service classes a ``logger`` named after the class."""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return get_logger(self.__class__.__name__)
