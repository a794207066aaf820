"""
Logging configuration for Hookline.

Structured logging with correlation IDs and tenant context, plus JSON and
colored output formats for production and development.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Union
from uuid import uuid4
import traceback
from contextvars import ContextVar
from pathlib import Path

# Context variables for correlation tracking
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
tenant_id: ContextVar[Optional[str]] = ContextVar('tenant_id', default=None)

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_RECORD_ATTRS = frozenset(
    logging.LogRecord('', 0, '', 0, '', (), None).__dict__.keys()
) | {'message', 'asctime'}


class CorrelationFilter(logging.Filter):
    """Add correlation and tenant context to log records."""

    def filter(self, record):
        record.correlation_id = correlation_id.get() or 'unknown'
        record.tenant_id = tenant_id.get() or 'system'
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, include_extra=True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', 'unknown'),
            'tenant_id': getattr(record, 'tenant_id', 'system'),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key in log_entry or key in _RESERVED_RECORD_ATTRS or key.startswith('_'):
                    continue
                try:
                    json.dumps(value)
                    log_entry[key] = value
                except (TypeError, ValueError):
                    log_entry[key] = str(value)

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        formatted = super().format(record)

        correlation_info = f"[{getattr(record, 'correlation_id', 'unknown')[:8]}]"
        tenant_info = f"[{getattr(record, 'tenant_id', 'system')}]"

        return f"{color}{formatted}{self.RESET} {correlation_info} {tenant_info}"


class LoggingConfig:
    """Centralized logging configuration."""

    DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    @classmethod
    def setup_logging(
        cls,
        level: Union[str, int] = logging.INFO,
        format_type: str = 'json',
        log_file: Optional[str] = None,
        console_output: bool = True,
        correlation_tracking: bool = True
    ):
        """
        Setup logging configuration.

        Args:
            level: Logging level
            format_type: 'json', 'colored', or 'simple'
            log_file: Optional log file path
            console_output: Enable console output
            correlation_tracking: Enable correlation ID tracking
        """
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        correlation_filter = CorrelationFilter() if correlation_tracking else None

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)

            if format_type == 'json':
                console_handler.setFormatter(JSONFormatter())
            elif format_type == 'colored':
                console_handler.setFormatter(ColoredFormatter(cls.DEFAULT_FORMAT))
            else:
                console_handler.setFormatter(logging.Formatter(cls.DEFAULT_FORMAT))

            if correlation_filter:
                console_handler.addFilter(correlation_filter)

            root_logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(JSONFormatter())  # Always use JSON for files

            if correlation_filter:
                file_handler.addFilter(correlation_filter)

            root_logger.addHandler(file_handler)

        cls._configure_component_loggers()

        logging.getLogger(__name__).info(
            "Logging system initialized",
            extra={'format_type': format_type, 'log_file': log_file}
        )

    @classmethod
    def _configure_component_loggers(cls):
        """Quiet down chatty third-party loggers."""
        third_party_loggers = {
            'uvicorn.access': logging.WARNING,
            'aiohttp': logging.WARNING,
            'sqlalchemy': logging.WARNING,
            'asyncio': logging.WARNING,
        }

        for logger_name, level in third_party_loggers.items():
            logging.getLogger(logger_name).setLevel(level)


class CorrelationContext:
    """Context manager for correlation tracking."""

    def __init__(self, correlation_id_value: str = None, tenant_id_value: str = None):
        self.correlation_id_value = correlation_id_value or str(uuid4())
        self.tenant_id_value = tenant_id_value
        self.correlation_token = None
        self.tenant_token = None

    def __enter__(self):
        self.correlation_token = correlation_id.set(self.correlation_id_value)
        if self.tenant_id_value:
            self.tenant_token = tenant_id.set(self.tenant_id_value)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.correlation_token:
            correlation_id.reset(self.correlation_token)
        if self.tenant_token:
            tenant_id.reset(self.tenant_token)


def set_correlation_id(correlation_id_value: str):
    """Set correlation ID for current context."""
    correlation_id.set(correlation_id_value)


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID."""
    return correlation_id.get()


def get_tenant_id() -> Optional[str]:
    """Get current tenant ID."""
    return tenant_id.get()
