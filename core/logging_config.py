"""
Structured Logging Configuration

Provides:
- JSON structured logging for services
- Colorized console output for development
- Performance logging decorator

Usage:
    from core.logging_config import setup_logging, get_logger

    # At application startup
    setup_logging(level='INFO', json_format=True)

    # In modules
    logger = get_logger(__name__)
    logger.info('Ingested batch', extra={'count': 42})
"""

import logging
import json
import sys
import time
import traceback
from datetime import datetime, timezone
from functools import wraps
from typing import Optional, TextIO

from core.errors import RetrievalError

ROOT_LOGGER_NAMES = ('ragsearch', 'search', 'core')

# Attributes present on every LogRecord; anything else came in via `extra`
_STANDARD_ATTRS = frozenset((
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName',
))


# =============================================================================
# Custom Formatters
# =============================================================================

class JSONFormatter(logging.Formatter):
    """JSON structured log formatter."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith('_'):
                continue
            log_entry[key] = value

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colorized console formatter for development."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        reset = self.RESET

        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')

        parts = [
            f'{color}[{timestamp}]{reset}',
            f'{color}{record.levelname:8}{reset}',
            f'{record.name}:',
            record.getMessage()
        ]

        if hasattr(record, 'duration_ms'):
            parts.append(f'({record.duration_ms}ms)')

        message = ' '.join(parts)

        if record.exc_info:
            message += '\n' + ''.join(traceback.format_exception(*record.exc_info))

        return message


# =============================================================================
# Logger Setup
# =============================================================================

def setup_logging(
    level: str = 'INFO',
    json_format: bool = False,
    stream: Optional[TextIO] = None
) -> logging.Logger:
    """
    Configure logging for the retrieval packages.

    Only the project's own logger hierarchies are touched; the host
    application's root logger is left alone.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format instead of colored console output
        stream: Output stream (default: stderr)

    Returns:
        The 'ragsearch' logger
    """
    log_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(JSONFormatter() if json_format else ColoredFormatter())

    for name in ROOT_LOGGER_NAMES:
        logger = logging.getLogger(name)
        for existing in logger.handlers[:]:
            logger.removeHandler(existing)
        logger.addHandler(handler)
        logger.setLevel(log_level)
        logger.propagate = False

    main_logger = logging.getLogger('ragsearch')
    main_logger.debug('Logging configured', extra={
        'format': 'json' if json_format else 'colored',
        'level': level
    })

    return main_logger


def get_logger(name):
    """Get a logger with the given name."""
    return logging.getLogger(name)


# =============================================================================
# Performance Logging Decorator
# =============================================================================

def log_performance(logger_name=None):
    """
    Decorator to log function performance at DEBUG.

    Unexpected exceptions are logged at ERROR. A RetrievalError is logged
    at DEBUG with its timing and left to the caller to report.

    Usage:
        @log_performance('search.hybrid')
        def hybrid_search(self, query):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(logger_name or func.__module__)
            start_time = time.time()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = int((time.time() - start_time) * 1000)
                log = logger.debug if isinstance(e, RetrievalError) else logger.error
                log(
                    f'{func.__name__} failed: {str(e)}',
                    extra={
                        'function': func.__name__,
                        'duration_ms': duration_ms,
                        'error_type': type(e).__name__,
                    }
                )
                raise

            duration_ms = int((time.time() - start_time) * 1000)
            logger.debug(
                f'{func.__name__} completed',
                extra={
                    'function': func.__name__,
                    'duration_ms': duration_ms,
                }
            )
            return result

        return wrapper
    return decorator
