"""Logging configuration with structured logging support."""

import logging
import logging.handlers
import sys
import json
from datetime import datetime
from typing import Optional
from pathlib import Path

from ..config.settings import settings

# Attributes every LogRecord carries; anything else was passed via ``extra``.
_RESERVED_RECORD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'message', 'taskName'
}


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for file logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        if record.stack_info:
            log_entry['stack_trace'] = record.stack_info

        log_entry.update({
            k: v for k, v in record.__dict__.items()
            if k not in _RESERVED_RECORD_FIELDS
        })

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors."""
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']
        formatted = super().format(record)
        return f"{color}{formatted}{reset}"


class ActivityLogger:
    """Specialized logger for activity sync and enrichment events."""

    def __init__(self, logger: logging.Logger):
        """Initialize activity logger."""
        self.logger = logger

    def log_page_fetched(self, scope: str, count: int, limit: int,
                         attempts: int, incomplete: bool) -> None:
        """Log one fetched activity page with structured data."""
        extra = {
            'event_type': 'page_fetched',
            'scope': scope,
            'activity_count': count,
            'page_limit': limit,
            'attempts': attempts,
            'incomplete': incomplete
        }
        level = logging.WARNING if incomplete else logging.DEBUG
        self.logger.log(level, f"Page for {scope}: {count} activities (limit {limit}, {attempts} attempt(s))",
                        extra=extra)

    def log_sync_completed(self, scope: str, new_items: int, pages: int,
                           stop_reason: str, newest_timestamp_seen: Optional[int],
                           incomplete: bool) -> None:
        """Log the outcome of one incremental sync walk."""
        extra = {
            'event_type': 'sync_completed',
            'scope': scope,
            'new_items': new_items,
            'pages_fetched': pages,
            'stop_reason': stop_reason,
            'newest_timestamp_seen': newest_timestamp_seen,
            'incomplete': incomplete
        }
        self.logger.info(
            f"Sync {scope}: {new_items} new item(s) from {pages} page(s), stopped on {stop_reason}"
            f"{' (incomplete)' if incomplete else ''}",
            extra=extra
        )

    def log_context_built(self, event_kind: str, token_name: str,
                          incomplete_sources: list, elapsed: float) -> None:
        """Log an assembled reply context."""
        extra = {
            'event_type': 'context_built',
            'event_kind': event_kind,
            'token_name': token_name,
            'incomplete_sources': incomplete_sources,
            'elapsed_ms': elapsed * 1000
        }
        level = logging.WARNING if incomplete_sources else logging.INFO
        self.logger.log(
            level,
            f"Context for {event_kind} of {token_name} built in {elapsed:.2f}s"
            + (f" (incomplete: {', '.join(incomplete_sources)})" if incomplete_sources else ""),
            extra=extra
        )


def setup_logger(name: Optional[str] = None,
                 structured: bool = False,
                 file_logging: bool = True) -> logging.Logger:
    """Set up logging configuration.

    Args:
        name: Logger name
        structured: Whether to use structured JSON logging on the console
        file_logging: Whether to enable file logging

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name or __name__)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, settings.log_level.upper()))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)

    if structured:
        console_formatter = StructuredFormatter()
    else:
        console_formatter = ColoredFormatter(settings.log_format)

    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if file_logging:
        try:
            log_dir = Path('logs')
            log_dir.mkdir(exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                log_dir / 'ens-insights.log',
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5
            )
            file_handler.setLevel(logging.DEBUG)

            # Always use structured format for files
            file_formatter = StructuredFormatter()
            file_handler.setFormatter(file_formatter)
            logger.addHandler(file_handler)

            error_handler = logging.handlers.RotatingFileHandler(
                log_dir / 'errors.log',
                maxBytes=5 * 1024 * 1024,  # 5MB
                backupCount=3
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(file_formatter)
            logger.addHandler(error_handler)

        except OSError as e:
            logger.warning(f"Failed to setup file logging: {e}")

    return logger


def get_activity_logger(name: Optional[str] = None) -> ActivityLogger:
    """Get a specialized activity logger."""
    logger = setup_logger(name or 'activity_sync')
    return ActivityLogger(logger)
