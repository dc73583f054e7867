"""
Structured logging for corebank

Every record written by the application logger is one JSON object per line;
``fmt="text"`` switches to plain lines for local development. Structured
fields attached by ``log_action`` are emitted next to the message.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional


STRUCTURED_FIELDS = ("correlation_id", "account_id", "action", "resource", "extra")


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "message": record.getMessage(),
        }
        entry.update({name: getattr(record, name, None) for name in STRUCTURED_FIELDS})
        entry = {key: value for key, value in entry.items() if value is not None}

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human readable formatter that appends structured fields as key=value pairs"""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-8s %(name)s: %(message)s")

    def format(self, record):
        line = super().format(record)
        pairs = [
            f"{name}={getattr(record, name)}"
            for name in STRUCTURED_FIELDS
            if getattr(record, name, None) is not None
        ]
        if pairs:
            line = f"{line} [{' '.join(pairs)}]"
        return line


def setup_logging(level: str = "INFO", logger_name: str = "corebank",
                  fmt: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the application logger.

    Safe to call more than once; earlier handlers are replaced.

    Args:
        level: Level name such as DEBUG or WARNING
        logger_name: Logger that receives the handler; children inherit it
        fmt: "json" or "text"
        log_file: Write to this file instead of stderr

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(TextFormatter() if fmt == "text" else JSONFormatter())
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    # Records stop here; the root logger would print them a second time
    logger.propagate = False

    return logger


def get_logger(name: str = "corebank") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               account_id: Optional[int] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None, exc_info=None):
    """
    Log a message together with structured fields.

    Args:
        logger: Target logger
        level: Level name, case-insensitive
        message: Human readable message
        account_id: Account the action concerns
        action: Short action name such as "login" or "apply_transfer"
        resource: Affected record, e.g. "transfer:12"
        correlation_id: Request identifier, when one is known
        extra: Any further JSON-serializable details
        exc_info: True or an exc_info tuple to attach a traceback
    """
    fields = {
        "account_id": account_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra,
    }
    logger.log(
        getattr(logging, level.upper()),
        message,
        extra={key: value for key, value in fields.items() if value is not None},
        exc_info=exc_info,
    )
