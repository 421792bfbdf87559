"""
Logging for the account service

Account operations and their retries are written as one JSON object per
line. Each line names the action and the account number it touched;
transfers add their transaction id as ``correlation_id``. Loggers hang off
the ``accounts`` namespace (``accounts.transactions``, ``accounts.manager``,
``accounts.retry``, ``accounts.api``), so configuring ``accounts`` covers
all of them.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional


ROOT_LOGGER_NAME = "accounts"

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record; fields that log_action did not set are left out"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, 'correlation_id', None),
            "action": getattr(record, 'action', None),
            "resource": getattr(record, 'resource', None),
            "extra": getattr(record, 'extra', None)
        }

        log_entry = {k: v for k, v in log_entry.items() if v is not None}

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = ROOT_LOGGER_NAME,
                  log_format: str = "json") -> logging.Logger:
    """
    Point the accounts logger hierarchy at stderr

    Called once at startup from the configured log_level and log_format.
    Calling it again replaces the handler instead of adding a second one.

    Args:
        level: Threshold name, e.g. INFO to hide per-attempt DEBUG lines
        logger_name: Namespace to configure; child loggers inherit it
        log_format: "json" for one object per line, "text" for local runs

    Returns:
        The configured namespace logger
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if log_format.lower() == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Logger for a component, e.g. get_logger("accounts.retry")"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               action: Optional[str] = None, resource: Optional[str] = None,
               correlation_id: Optional[str] = None, extra: Optional[dict] = None):
    """
    Emit one account-operation line

    Args:
        logger: Component logger
        level: Lower-case level name such as "info" or "warning"
        message: Human-readable summary
        action: Operation name (register, deposit, withdraw, transfer, delete)
        resource: Account number the operation targets
        correlation_id: Transfer transaction id shared by retried attempts
        extra: Balances, amounts, fees or attempt counters
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(
        logger.name, levelno, __name__, 0, message, (), None
    )

    if action:
        record.action = action
    if resource:
        record.resource = resource
    if correlation_id:
        record.correlation_id = correlation_id
    if extra:
        record.extra = extra

    logger.handle(record)
