"""
Structured Logging Configuration Module

JSON log records for loan lifecycle and payroll operations. Every record
carries the service name; loan actions add who did what to which resource.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

SERVICE_NAME = "staff_loans"

# Attributes log_action() attaches to a record
_ACTION_FIELDS = ("user_id", "action", "resource", "details")


class JSONFormatter(logging.Formatter):
    """One JSON object per log record"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _ACTION_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", log_format: str = "json",
                  logger_name: str = SERVICE_NAME) -> logging.Logger:
    """
    Attach a single stream handler to the package logger.

    Calling it again replaces the handler, so the level and format can be
    changed at runtime.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: "json" for structured output, anything else for plain text
        logger_name: Package logger to configure

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False
    return logger


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None) -> None:
    """
    Log a loan action with its actor and target.

    Args:
        logger: Module logger
        level: Level name (info, warning, ...)
        message: Human readable message
        user_id: Staff member performing the action
        action: Action name, e.g. "disburse"
        resource: Target, e.g. "loan:<id>"
        extra: Further structured details
    """
    fields = {"user_id": user_id, "action": action, "resource": resource, "details": extra}
    logger.log(logging.getLevelName(level.upper()),
               message, extra={k: v for k, v in fields.items() if v is not None})
