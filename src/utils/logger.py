"""
Logging Module for the GalaSwap Arbitrage Bot

Provides structured logging with:
- Rotating file handlers for 24/7 operation
- JSON formatting for log aggregation
- Redaction of private keys, wallet addresses and filesystem paths
  from every record before it reaches a handler

Usage:
    logger = get_logger(__name__)
    logger.info("Quote fetched", extra={'endpoint': 'QUOTE', 'latency_ms': 42})
"""

import logging
import logging.handlers
import os
import sys
import json
from datetime import datetime, timezone
from typing import Optional

from config.constants import (
    LOG_LEVEL,
    LOG_FILE_PATH,
    MAX_LOG_FILE_SIZE,
    LOG_BACKUP_COUNT,
    STRUCTURED_LOGGING,
)
from utils.exceptions import classify_error
from utils.helpers import redact_sensitive, safe_error_message


_RESERVED_ATTRS = frozenset({
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'message', 'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'getMessage', 'taskName', 'asctime',
})


class SensitiveDataFilter(logging.Filter):
    """Redacts secrets from the message, its args and string extras"""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)
        record.msg = redact_sensitive(message)
        record.args = None

        for key, value in list(record.__dict__.items()):
            if key in _RESERVED_ATTRS:
                continue
            if isinstance(value, str):
                setattr(record, key, redact_sensitive(value))
        return True


class JSONFormatter(logging.Formatter):
    """Custom formatter that outputs structured JSON logs"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line_number': record.lineno,
            'process_id': record.process,
        }

        if record.exc_info and record.exc_info[1] is not None:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': safe_error_message(record.exc_info[1]),
            }

        # Extra fields passed via logger.info(..., extra={...})
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            if isinstance(value, (str, int, float, bool, type(None), dict, list)):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class PlainTextFormatter(logging.Formatter):
    """Simple text formatter for readable console output"""

    def format(self, record: logging.LogRecord) -> str:
        record.asctime = self.formatTime(record, self.datefmt)
        line = (
            f"{record.asctime} | {record.levelname:8} | "
            f"{record.name}:{record.funcName}:{record.lineno} | "
            f"{record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1] is not None:
            # Tracebacks carry absolute file paths; only the redacted summary is kept
            exc = record.exc_info[1]
            line += f"\n  {type(exc).__name__}: {safe_error_message(exc)}"
        return line


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    structured: Optional[bool] = None
) -> None:
    """
    Configure logging for the bot.

    Sets up:
    - Console handler: Plain text for operator visibility
    - File handler: Rotating files to prevent disk space issues
    - JSON formatting: Structured logs for log aggregation tools
    - SensitiveDataFilter on both handlers

    Args:
        log_level: Logging level override (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Log file path override
        structured: Use JSON formatting for the file handler

    Raises:
        ValueError: If invalid log level specified
    """
    level = log_level or LOG_LEVEL
    filepath = log_file or LOG_FILE_PATH
    use_json = structured if structured is not None else STRUCTURED_LOGGING

    valid_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
    if level.upper() not in valid_levels:
        raise ValueError(f"Invalid log level: {level}. Must be one of {valid_levels}")

    level = level.upper()

    log_dir = os.path.dirname(filepath)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level))

    # Clear any existing handlers to avoid duplicates
    root_logger.handlers.clear()

    redaction_filter = SensitiveDataFilter()

    # ========================================================================
    # CONSOLE HANDLER - for operator visibility
    # ========================================================================
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level))
    console_handler.setFormatter(PlainTextFormatter(datefmt='%Y-%m-%d %H:%M:%S'))
    console_handler.addFilter(redaction_filter)
    root_logger.addHandler(console_handler)

    # ========================================================================
    # FILE HANDLER - rotating files for 24/7 operation
    # ========================================================================
    file_handler = logging.handlers.RotatingFileHandler(
        filepath,
        maxBytes=MAX_LOG_FILE_SIZE,
        backupCount=LOG_BACKUP_COUNT
    )
    file_handler.setLevel(getattr(logging, level))

    if use_json:
        file_formatter = JSONFormatter()
    else:
        file_formatter = PlainTextFormatter(datefmt='%Y-%m-%d %H:%M:%S')

    file_handler.setFormatter(file_formatter)
    file_handler.addFilter(redaction_filter)
    root_logger.addHandler(file_handler)

    logger = get_logger(__name__)
    logger.info(
        "Logging initialized",
        extra={
            'log_level': level,
            'max_size_mb': MAX_LOG_FILE_SIZE // (1024 * 1024),
            'backup_count': LOG_BACKUP_COUNT,
            'structured_logging': use_json,
        }
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: Logger name (typically __name__ from calling module)

    Example:
        logger = get_logger(__name__)
        logger.warning("Pair blacklisted", extra={'pair': 'GALA$Unit$none$none→...'})
    """
    return logging.getLogger(name)


def log_trade_event(
    logger: logging.Logger,
    event_type: str,
    **details
) -> None:
    """
    Log a trading event with structured information.

    Example:
        log_trade_event(logger, 'SWAP_SUBMITTED', token_in='GALA$Unit$none$none', amount=100)
    """
    details['event_type'] = event_type
    logger.info(f"Trade event: {event_type}", extra=details)


def log_error_with_context(
    logger: logging.Logger,
    message: str,
    error: Exception,
    **context
) -> None:
    """
    Log an error with its category and a redacted description.

    Example:
        except CircuitOpenError as e:
            log_error_with_context(logger, "Quote skipped", e, endpoint='QUOTE')
    """
    context['error_type'] = type(error).__name__
    context['error_kind'] = classify_error(error).value
    context['error_message'] = safe_error_message(error)
    logger.error(message, extra=context)
