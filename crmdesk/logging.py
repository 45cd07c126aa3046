from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from crmdesk.context import get_correlation_id
from crmdesk.core.config import Settings


# structured attributes passed through ``extra=`` that end up in the output
CONTEXT_FIELDS = (
    "method",
    "path",
    "status_code",
    "duration_ms",
    "entity",
    "operation",
    "group_key",
    "record_id",
    "promoted_id",
    "primary_count",
    "row_number",
    "status",
    "error",
    "event_name",
)

_MAX_ERROR_LENGTH = 500
_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


def context_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {name: record.__dict__[name] for name in CONTEXT_FIELDS if name in record.__dict__}
    error = fields.get("error")
    if isinstance(error, str) and len(error) > _MAX_ERROR_LENGTH:
        fields["error"] = error[:_MAX_ERROR_LENGTH]
    return fields


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = context_fields(record)
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


class TextLogFormatter(logging.Formatter):
    """Single-line output for local development."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s [%(correlation_id)s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = None
        line = super().format(record)
        fields = context_fields(record)
        if fields:
            line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


def configure_logging(settings: Settings) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_crmdesk_configured", False):
        return

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter() if settings.log_format == "json" else TextLogFormatter())

    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    logging.setLogRecordFactory(_record_factory)
    root_logger._crmdesk_configured = True  # type: ignore[attr-defined]
