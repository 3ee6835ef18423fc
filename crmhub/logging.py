from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import IO, Any

from crmhub.context import get_correlation_id, get_operation


_STRUCTURED_FIELDS = (
    "operation",
    "entity_type",
    "entity_id",
    "status",
    "error",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "actor_user_id",
)
_MAX_ERROR_LENGTH = 500


class CorrelationIdFilter(logging.Filter):
    """Stamp records with the correlation id and operation of the current workspace action."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        if not getattr(record, "operation", None):
            record.operation = get_operation()
        return True


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {}
        for name in _STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                fields[name] = value

        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        return json.dumps(
            {
                "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "correlation_id": getattr(record, "correlation_id", None),
                "fields": fields,
            },
            default=str,
        )


def configure_logging(level: str | None = None, stream: IO[str] | None = None) -> None:
    """Install one JSON handler on the root logger; later calls are no-ops."""

    root_logger = logging.getLogger()
    if getattr(root_logger, "_crmhub_configured", False):
        return

    resolved = getattr(logging, (level or os.getenv("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    handler = logging.StreamHandler(stream=stream or sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.setLevel(resolved)
    root_logger.addHandler(handler)
    root_logger._crmhub_configured = True  # type: ignore[attr-defined]
