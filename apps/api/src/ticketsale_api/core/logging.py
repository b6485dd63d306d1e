"""Structured JSON logging for the settlement service.

Everything goes through Loguru; stdlib loggers (uvicorn, sqlalchemy, alembic)
are bridged in by :class:`InterceptHandler`. Bound extras are flattened into
the JSON line, with customer emails and secret material masked on the way out.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Mapping

from loguru import logger
from opentelemetry import trace

from ticketsale_api.utils.mask import mask_sensitive_value


_STDLIB_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "taskName"}
_REDACTED_SUFFIXES = ("email", "email_normalized", "email_display", "secret", "token", "signature")
_QUIET_LOGGERS = ("uvicorn.access", "aiosqlite", "sqlalchemy.engine")


def _should_redact(key: str) -> bool:
    return key.lower().endswith(_REDACTED_SUFFIXES)


def redact_extra(extra: Mapping[str, Any]) -> dict[str, Any]:
    """Mask string values bound under email/secret/token keys."""

    return {
        key: mask_sensitive_value(value) if isinstance(value, str) and _should_redact(key) else value
        for key, value in extra.items()
    }


class InterceptHandler(logging.Handler):
    """Route stdlib records through Loguru, keeping ``extra=`` fields."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {key: value for key, value in vars(record).items() if key not in _STDLIB_RECORD_ATTRS}
        bound = logger.bind(**extra) if extra else logger
        bound.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


def build_log_payload(record: Mapping[str, Any], metadata: Mapping[str, str]) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["name"],
        "service": metadata.get("service_name", "unknown"),
        "environment": metadata.get("environment", "unknown"),
        "version": metadata.get("version", "unknown"),
    }

    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    if record["extra"]:
        payload.update(redact_extra(record["extra"]))

    if record["exception"] is not None:
        payload["exception"] = repr(record["exception"].value)

    return payload


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str = "INFO",
) -> None:
    """Replace Loguru's default sink with a JSON-per-line stdout sink."""

    metadata = {"service_name": service_name, "environment": environment, "version": version}

    def _sink(message: "logger.Message") -> None:
        sys.stdout.write(json.dumps(build_log_payload(message.record, metadata), default=str) + "\n")

    logger.remove()
    logger.add(_sink, level=level.upper(), backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
