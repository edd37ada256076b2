"""Structured logging for the taskboard API.

structlog does the event rendering; stdlib logging owns the handlers so that
uvicorn, SQLAlchemy and our own events end up in the same stream or file.
"""

from __future__ import annotations

import contextvars
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog

from taskboard.config import Settings

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("correlation_id", default=None)


def add_correlation_id(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
  correlation_id = _correlation_id.get()
  if correlation_id is not None:
    event_dict["correlation_id"] = correlation_id
  return event_dict


def set_correlation_id(correlation_id: str | None) -> None:
  _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
  return _correlation_id.get()


def setup_logging(settings: Settings) -> None:
  level = getattr(logging, (settings.log_level or "INFO").upper(), logging.INFO)

  root_logger = logging.getLogger()
  root_logger.setLevel(level)
  root_logger.handlers.clear()

  if settings.log_file:
    path = Path(settings.log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler: logging.Handler = logging.handlers.RotatingFileHandler(
      filename=path,
      maxBytes=settings.log_rotation_size_mb * 1024 * 1024,
      backupCount=settings.log_retention_count,
      encoding="utf-8",
    )
  else:
    handler = logging.StreamHandler(sys.stdout)
  handler.setLevel(level)
  root_logger.addHandler(handler)

  if settings.log_format == "json":
    renderer: Any = structlog.processors.JSONRenderer()
  else:
    renderer = structlog.dev.ConsoleRenderer()

  structlog.configure(
    processors=[
      structlog.stdlib.add_log_level,
      structlog.stdlib.add_logger_name,
      structlog.processors.TimeStamper(fmt="iso"),
      structlog.contextvars.merge_contextvars,
      add_correlation_id,
      structlog.processors.StackInfoRenderer(),
      structlog.processors.format_exc_info,
      renderer,
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    context_class=dict,
    cache_logger_on_first_use=True,
  )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
  return structlog.get_logger(name)
