"""
Structured JSON Logging Configuration

Provides centralized logging configuration with:
- JSON formatted output for machine parsing
- Per-send trace ID tracking via contextvars
- Optional file rotation
- Configurable log levels via environment
"""
import logging
import logging.handlers
import os
import contextvars
import re
from datetime import datetime, timezone
from typing import Optional
from pythonjsonlogger import jsonlogger

from pushgate.core.config import get_settings

# Context variable for trace ID propagation across one send
trace_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'trace_id', default=None
)


class TraceIdFilter(logging.Filter):
    """
    Logging filter that adds trace_id to all log records.

    Uses contextvars to access the current send's trace ID, so every
    line logged while a message is in flight can be correlated, even
    across concurrent batch sends.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = trace_id_var.get() or "-"
        return True


_LINE_BREAKS = re.compile(r'\r\n|[\r\n]')


def _flatten(value):
    return _LINE_BREAKS.sub(' ', value) if isinstance(value, str) else value


class SanitizingFilter(logging.Filter):
    """
    Flattens CR/LF in messages and string args.

    Provider error bodies are echoed into log lines; a multi-line body
    must not be able to forge extra log entries.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = _flatten(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(_flatten(arg) for arg in record.args)
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter stamping every entry with level, origin and trace id.

    A send logged from a batch looks like:
    {"timestamp": "2025-11-23T10:30:00+00:00", "level": "INFO",
     "message": "FCM message accepted", "logger": "pushgate.services.push.fcm_sender",
     "trace_id": "a1b2c3d4", "target": "dGhpc2…ZXhhbX", "duration_ms": 84}
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        # Required fields from the format string arrive as None
        if not log_record.get('timestamp'):
            log_record['timestamp'] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        if log_record.get('message') is None:
            log_record['message'] = record.getMessage()
        log_record.update(
            level=record.levelname,
            module=record.module,
            logger=record.name,
            function=record.funcName,
            trace_id=getattr(record, 'trace_id', '-'),
        )


def _make_handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(TraceIdFilter())
    handler.addFilter(SanitizingFilter())
    return handler


def setup_logging(
    log_level: Optional[str] = None,
    log_dir: Optional[str] = None,
) -> logging.Logger:
    """
    Configure logging with JSON format and optional file rotation.

    Args:
        log_level: Override log level (default from LOG_LEVEL)
        log_dir: Directory for rotating log files (default LOG_DIR;
            console only when neither is set)

    Returns:
        Root logger configured for the application
    """
    if log_level is None or log_dir is None:
        settings = get_settings()
        log_level = log_level or settings.LOG_LEVEL
        log_dir = log_dir or settings.LOG_DIR
    level = getattr(logging, log_level.upper(), logging.INFO)

    json_formatter = CustomJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    root_logger.addHandler(_make_handler(logging.StreamHandler(), level, json_formatter))

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

        # Max 100MB per file, keep 7 backups
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, 'pushgate.log'),
            maxBytes=100 * 1024 * 1024,
            backupCount=7,
            encoding='utf-8'
        )
        root_logger.addHandler(_make_handler(file_handler, level, json_formatter))

        error_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, 'error.log'),
            maxBytes=50 * 1024 * 1024,
            backupCount=5,
            encoding='utf-8'
        )
        root_logger.addHandler(_make_handler(error_handler, logging.ERROR, json_formatter))

    # Suppress noisy transport loggers
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('hpack').setLevel(logging.WARNING)

    return root_logger


def set_trace_id(trace_id: Optional[str]) -> contextvars.Token:
    """
    Set the trace ID for the current context.

    Args:
        trace_id: Identifier of the message being sent

    Returns:
        Token that can be used to reset the context
    """
    return trace_id_var.set(trace_id)


def get_trace_id() -> Optional[str]:
    """Get the current trace ID from context, or None if not set."""
    return trace_id_var.get()


def clear_trace_id(token: contextvars.Token) -> None:
    """
    Clear the trace ID context using the token from set_trace_id.

    Args:
        token: Token returned from set_trace_id
    """
    trace_id_var.reset(token)
