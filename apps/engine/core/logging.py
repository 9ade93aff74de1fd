"""
Structured logging for the analytics engine.

Stream alerts and session lifecycle events carry device/session context in
`extra={"extra_fields": {...}}`; the JSON formatter lifts those keys to the
top level so alert logs can be filtered per device or session.

Nothing here runs on import. The host process calls setup_logging() once.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import IO, Any, Dict, Optional
from core.config import settings

SERVICE_NAME = "mobility-engine"

# Reserved keys a record's extra_fields may not overwrite
_BASE_KEYS = frozenset({"timestamp", "level", "logger", "message", "service", "environment"})


class JSONFormatter(logging.Formatter):
    """One JSON object per record, tagged with service and environment."""

    def __init__(self, service: str = SERVICE_NAME, environment: Optional[str] = None):
        super().__init__()
        self.service = service
        self.environment = environment or settings.ENVIRONMENT

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service,
            "environment": self.environment,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_data.update({k: v for k, v in extra_fields.items() if k not in _BASE_KEYS})

        # datetimes and enums in extra_fields serialize as strings
        return json.dumps(log_data, default=str)


def setup_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
    stream: Optional[IO[str]] = None,
) -> logging.Logger:
    """
    Configure the root logger with a single console handler.

    Level and format default to settings.LOG_LEVEL / settings.LOG_FORMAT;
    production always logs JSON.
    """
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    fmt = log_format or settings.LOG_FORMAT

    if fmt == "json" or settings.ENVIRONMENT == "production":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    return root_logger
