# backend/portfolio_history/utils/logging.py
"""
Central logging setup.

One stdout handler on the root logger, with either a pipe-separated text
format or one JSON object per line. Every record carries the correlation id
from utils.context, so all lines of one calculation job share the job id.

Levels used across the service:
    DEBUG   - per-day progress, price tier decisions
    INFO    - job lifecycle, range summaries
    WARNING - skipped ledger records, over-sells, retries
    ERROR   - failed days, failed saves

Environment:
    LOG_LEVEL=DEBUG|INFO|WARNING|ERROR
    LOG_FORMAT=text|json
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from portfolio_history.config import settings
from portfolio_history.utils.context import get_correlation_id

# =============================================================================
# CONSTANTS
# =============================================================================

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(correlation_id)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NO_CORRELATION_ID = "-"

# yfinance pulls in several chatty HTTP and cache libraries
NOISY_LOGGERS = (
    "yfinance",
    "urllib3",
    "urllib3.connectionpool",
    "requests",
    "httpx",
    "httpcore",
    "peewee",
    "sqlalchemy.engine",
)

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# LogRecord attributes that are not user-supplied "extra" fields
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "correlation_id", "message", "taskName",
})


# =============================================================================
# FILTER & FORMATTER
# =============================================================================

class CorrelationIdFilter(logging.Filter):
    """Stamp each record with the current correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class JsonFormatter(logging.Formatter):
    """
    Render records as single-line JSON.

    Output keys: timestamp, level, logger, correlation_id, message, and
    optionally exception and extra (anything passed via ``extra=``).
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "message": record.getMessage(),
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {}
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            try:
                json.dumps(value)
                extra[key] = value
            except (TypeError, ValueError):
                extra[key] = str(value)

        if extra:
            entry["extra"] = extra

        return json.dumps(entry)


# =============================================================================
# SETUP
# =============================================================================

def setup_logging(
        level: str | None = None,
        log_format: str | None = None,
        suppress_noisy_loggers: bool = True,
) -> None:
    """
    Configure root logging once at startup.

    Args:
        level: Log level name. Defaults to settings.log_level.
        log_format: 'text' or 'json'. Defaults to settings.log_format.
        suppress_noisy_loggers: Lower third-party loggers to WARNING.

    Raises:
        ValueError: If level is not a known level name
    """
    level_name = (level or settings.log_level).upper().strip()
    if level_name not in _LEVELS:
        raise ValueError(
            f"Invalid log level: '{level_name}'. "
            f"Valid levels are: {', '.join(_LEVELS)}"
        )
    format_type = (log_format or settings.log_format).lower()

    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root = logging.getLogger()
    root.setLevel(_LEVELS[level_name])
    root.handlers.clear()
    root.addHandler(handler)

    if suppress_noisy_loggers:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured: level={level_name}, format={format_type}"
    )
