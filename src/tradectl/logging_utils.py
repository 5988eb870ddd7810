from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any, TextIO

from tradectl.logging_context import LOG_CONTEXT_FIELDS, get_logging_context


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = getattr(record, "extra", None)
        if isinstance(extras, dict):
            payload.update(extras)

        context = get_logging_context()
        for field in LOG_CONTEXT_FIELDS:
            payload[field] = context.get(field)

        if record.exc_info:
            _, exc_value, _ = record.exc_info
            payload.update(_exception_fields(exc_value))
            payload["traceback"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["traceback"] = record.exc_text

        return json.dumps(payload, default=str)


def _exception_fields(exc: BaseException | None) -> dict[str, str]:
    if exc is None:
        return {"error_type": "Exception", "error_message": ""}
    fields = {"error_type": type(exc).__name__, "error_message": str(exc)}
    # store errors are raised from the driver error; surface the driver type too
    cause = exc.__cause__
    if cause is not None:
        fields["error_cause"] = type(cause).__name__
    return fields


def _resolve_log_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level

    candidate = level if level is not None else os.getenv("LOG_LEVEL", "INFO")
    resolved = logging.getLevelName(str(candidate).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: str | int | None = None, *, stream: TextIO | None = None) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_resolve_log_level(level))
    return handler
