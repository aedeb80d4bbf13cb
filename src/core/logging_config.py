"""
Logging Configuration.

Provides structured logging with:
- JSON formatting for production
- Human-readable formatting for development
- Actor context propagated through a context variable

Modules log through `logging.getLogger(__name__)` and attach structured
fields as `extra={"extra_data": {...}}`.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Dict, Iterator, Optional

# Acting user for the current call chain
actor_id_var: ContextVar[Optional[str]] = ContextVar('actor_id', default=None)


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Outputs logs as JSON objects for easy parsing by log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        actor_id = actor_id_var.get()
        if actor_id:
            log_data["actor_id"] = actor_id

        if hasattr(record, 'extra_data'):
            log_data.update(record.extra_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ReadableFormatter(logging.Formatter):
    """
    Human-readable log formatter for development.
    """

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m',
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for human readability."""
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']

        timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]
        level = f"{color}{record.levelname:8s}{reset}"

        message = f"{timestamp} {level} [{record.name}] {record.getMessage()}"

        if hasattr(record, 'extra_data') and record.extra_data:
            extras = ' | '.join(f"{k}={v}" for k, v in record.extra_data.items())
            message += f" | {extras}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that includes bound context in all log messages.
    """

    def process(self, msg: str, kwargs: Dict) -> tuple:
        """Add context to log message."""
        extra = kwargs.get('extra', {})

        if 'extra_data' not in extra:
            extra['extra_data'] = {}
        extra['extra_data'].update(self.extra)

        actor_id = actor_id_var.get()
        if actor_id:
            extra['extra_data'].setdefault('actor_id', actor_id)

        kwargs['extra'] = extra
        return msg, kwargs


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON formatted logs
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    root_logger.handlers.clear()

    formatter = JsonFormatter() if json_output else ReadableFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set levels for noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str, **extra) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (typically __name__)
        **extra: Additional context to include in all logs

    Returns:
        ContextLogger instance
    """
    return ContextLogger(logging.getLogger(name), extra)


@contextmanager
def actor_context(actor_id: Optional[str]) -> Iterator[None]:
    """Attach `actor_id` to every log record emitted inside the block."""
    token = actor_id_var.set(actor_id)
    try:
        yield
    finally:
        actor_id_var.reset(token)
