"""
Structured Logging Configuration Module

JSON (or plain text) log output for billbank services. Records carry the
acting user, the action, the affected resource and the correlation id of the
request that produced them.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional
import contextvars
import json
import logging


TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(correlation_id)s | %(message)s"

# Record attributes copied into JSON output when set
STRUCTURED_FIELDS = ("correlation_id", "user_id", "action", "resource", "extra")

_correlation_id = contextvars.ContextVar('correlation_id', default=None)


def get_correlation_id() -> Optional[str]:
    """Correlation id of the current request, if any"""
    return _correlation_id.get()


@contextmanager
def correlation_context(correlation_id: str) -> Iterator[None]:
    """Tag every record logged inside the block with ``correlation_id``"""
    token = _correlation_id.set(correlation_id)
    try:
        yield
    finally:
        _correlation_id.reset(token)


class CorrelationFilter(logging.Filter):
    """Copies the current correlation id onto records that lack one"""

    def filter(self, record):
        if getattr(record, 'correlation_id', None) is None:
            record.correlation_id = get_correlation_id() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "message": record.getMessage(),
        }
        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None and value != "-":
                log_entry[field] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def _build_handler(log_format: str, log_file: Optional[str]) -> logging.Handler:
    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    if log_format == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    elif log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        raise ValueError(f"Unknown log format: {log_format}")
    handler.addFilter(CorrelationFilter())
    return handler


def setup_logging(level: str = "INFO", logger_name: str = "billbank",
                  log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Setup structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the logger
        log_format: "json" for structured output, "text" for plain lines
        log_file: Optional file path; logs go to stderr when omitted

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Replace handlers from an earlier setup
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(_build_handler(log_format, log_file))
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "billbank") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None):
    """
    Log a service action with structured fields.

    Args:
        logger: Logger instance
        level: Log level name (info, warning, ...)
        message: Log message
        user_id: UUID of the acting user
        action: Service operation, e.g. ``confirm_transaction``
        resource: Affected record as ``kind:uuid``
        extra: Additional structured data
    """
    fields = {"user_id": user_id, "action": action, "resource": resource, "extra": extra or None}
    logger.log(
        getattr(logging, level.upper()),
        message,
        extra={key: value for key, value in fields.items() if value is not None}
    )
