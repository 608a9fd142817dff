#!/usr/bin/env python3
"""
Revision Engine Configuration & Logging Module
==============================================
Centralized application configuration, structured logging, and the error
taxonomy shared by the diff engine, the change tracker and the HTTP layer.

Version: module v1.2
"""

import os
import sys
import json
import logging
import uuid
import time
import functools
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable
from pathlib import Path
from dataclasses import dataclass, field
from contextlib import contextmanager
import threading

# =============================================================================
# CONFIGURATION CONSTANTS
# =============================================================================
DEFAULT_MAX_DOCUMENT_CHARS = 2_000_000  # Largest snapshot accepted over HTTP
DEFAULT_MAX_SESSIONS = 100              # Concurrent tracking sessions
DEFAULT_SESSION_TTL = 3600              # Idle seconds before a session expires
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024    # 5MB max per log file
LOG_BACKUP_COUNT = 5                    # Number of log backup files to keep

# Attributes owned by logging.LogRecord; never passed through `extra`
_RESERVED_LOG_KEYS = frozenset((
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'thread', 'threadName', 'exc_info', 'exc_text',
    'message', 'taskName', 'asctime',
))

# =============================================================================
# VERSION
# =============================================================================
__version__ = '1.2.0'
VERSION = __version__
APP_NAME = "RevisionEngine"


def _env_bool(name: str, default: str = 'false') -> bool:
    return os.environ.get(name, default).lower() in ('true', '1', 'yes', 'on')


# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================

@dataclass
class AppConfig:
    """Application configuration with local-only defaults."""

    # Server settings
    host: str = "127.0.0.1"
    port: int = 5060
    debug: bool = False

    # Request limits
    max_document_chars: int = DEFAULT_MAX_DOCUMENT_CHARS

    # Tracking sessions
    max_sessions: int = DEFAULT_MAX_SESSIONS
    session_ttl: int = DEFAULT_SESSION_TTL

    # Paths
    log_dir: Path = field(default_factory=lambda: Path(__file__).parent / 'logs')

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # Options: json, text
    log_to_file: bool = False
    log_to_console: bool = True

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        if self.log_to_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        if os.environ.get('REV_ENV', 'development').lower() == 'production':
            self.debug = False

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Load configuration from environment variables."""
        kwargs = {}
        if os.environ.get('REV_LOG_DIR'):
            kwargs['log_dir'] = Path(os.environ['REV_LOG_DIR'])
        return cls(
            host=os.environ.get('REV_HOST', '127.0.0.1'),
            port=int(os.environ.get('REV_PORT', '5060')),
            debug=_env_bool('REV_DEBUG'),
            max_document_chars=int(os.environ.get('REV_MAX_DOCUMENT_CHARS',
                                                  str(DEFAULT_MAX_DOCUMENT_CHARS))),
            max_sessions=int(os.environ.get('REV_MAX_SESSIONS', str(DEFAULT_MAX_SESSIONS))),
            session_ttl=int(os.environ.get('REV_SESSION_TTL', str(DEFAULT_SESSION_TTL))),
            log_level=os.environ.get('REV_LOG_LEVEL', 'INFO'),
            log_format=os.environ.get('REV_LOG_FORMAT', 'text'),
            log_to_file=_env_bool('REV_LOG_TO_FILE'),
            log_to_console=_env_bool('REV_LOG_TO_CONSOLE', 'true'),
            **kwargs,
        )

    def validate(self) -> tuple:
        """Validate configuration and return (is_valid, errors)."""
        errors = []

        if self.debug and os.environ.get('REV_ENV') == 'production':
            errors.append("Debug mode cannot be enabled in production")

        if self.log_format not in ('json', 'text'):
            errors.append(f"Invalid log_format: {self.log_format}. Must be 'json' or 'text'")

        if not hasattr(logging, self.log_level.upper()):
            errors.append(f"Invalid log_level: {self.log_level}")

        if self.max_document_chars <= 0:
            errors.append("max_document_chars must be positive")

        if self.max_sessions <= 0:
            errors.append("max_sessions must be positive")

        if self.session_ttl <= 0:
            errors.append("session_ttl must be positive")

        return (len(errors) == 0, errors)


# Global config instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get or create the global configuration."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def reset_config():
    """Reset the global configuration (for testing)."""
    global _config
    _config = None


# =============================================================================
# STRUCTURED LOGGING
# =============================================================================

class StructuredLogger:
    """Thread-safe structured logger with correlation IDs."""

    _local = threading.local()

    def __init__(self, name: str, config: Optional[AppConfig] = None):
        self.name = name
        self.config = config or get_config()
        self._setup_logger()

    def _setup_logger(self):
        """Configure the underlying Python logger."""
        self.logger = logging.getLogger(self.name)
        self.logger.setLevel(getattr(logging, self.config.log_level.upper(), logging.INFO))
        self.logger.handlers.clear()
        self.logger.propagate = True

        if self.config.log_format == 'json':
            formatter = JsonFormatter()
        else:
            formatter = logging.Formatter(
                '%(asctime)s [%(levelname)s] %(name)s - %(message)s'
            )

        if self.config.log_to_console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

        # File handler with rotation
        if self.config.log_to_file:
            from logging.handlers import RotatingFileHandler
            log_file = self.config.log_dir / f"{self.name.lower()}.log"
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

    @classmethod
    def set_correlation_id(cls, correlation_id: str):
        """Set correlation ID for current thread."""
        cls._local.correlation_id = correlation_id

    @classmethod
    def get_correlation_id(cls) -> str:
        """Get correlation ID for current thread."""
        return getattr(cls._local, 'correlation_id', None) or str(uuid.uuid4())[:8]

    @classmethod
    def new_correlation_id(cls) -> str:
        """Generate and set a new correlation ID."""
        correlation_id = str(uuid.uuid4())[:12]
        cls.set_correlation_id(correlation_id)
        return correlation_id

    @staticmethod
    def _safe_extra(kwargs: Dict[str, Any]) -> Dict[str, Any]:
        return {
            (f"ctx_{key}" if key in _RESERVED_LOG_KEYS else key): value
            for key, value in kwargs.items()
        }

    def _log(self, level: int, message: str, exc_info: bool = False, **kwargs):
        if not self.logger.isEnabledFor(level):
            return
        extra = self._safe_extra(kwargs)
        extra['correlation_id'] = self.get_correlation_id()
        self.logger.log(level, message, exc_info=exc_info, extra=extra)

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log info message."""
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs):
        """Log error message with optional exception info."""
        self._log(logging.ERROR, message, exc_info=exc_info, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log exception with full traceback."""
        self.error(message, exc_info=True, **kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message."""
        self._log(logging.CRITICAL, message, **kwargs)

    @contextmanager
    def log_operation(self, operation: str, **context):
        """Context manager for logging operation start/end with timing."""
        start_time = time.time()
        self.debug(f"{operation} started", operation=operation, status='started', **context)
        try:
            yield
            duration_ms = (time.time() - start_time) * 1000
            self.debug(f"{operation} completed", operation=operation, status='completed',
                       duration_ms=round(duration_ms, 2), **context)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self.error(f"{operation} failed: {e}", operation=operation, status='failed',
                       duration_ms=round(duration_ms, 2), exc_info=True, **context)
            raise


class JsonFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_data['traceback'] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_KEYS and key not in log_data:
                log_data[key] = value

        return json.dumps(log_data, default=str)


# Factory function for getting loggers
def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, get_config())


# =============================================================================
# ERROR HANDLING UTILITIES
# =============================================================================

class RevisionError(Exception):
    """Base exception for the revision engine."""

    def __init__(self, message: str, code: str = "UNKNOWN_ERROR",
                 status_code: int = 500, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response dict."""
        return {
            'success': False,
            'error': {
                'code': self.code,
                'message': self.message,
                'details': self.details
            }
        }


class ValidationError(RevisionError):
    """Malformed input: bad ranges, wrong types, unknown options."""
    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(message, code="VALIDATION_ERROR", status_code=400,
                         details={'field': field, **kwargs})


class UnknownChangeError(RevisionError):
    """A change id that the tracker has never issued."""
    def __init__(self, change_id: str, **kwargs):
        super().__init__(f"Unknown change id: {change_id}", code="UNKNOWN_CHANGE",
                         status_code=404, details={'change_id': change_id, **kwargs})


class InvalidTransitionError(RevisionError):
    """Accepting a rejected change, or rejecting an accepted one."""
    def __init__(self, change_id: str, current: str, requested: str, **kwargs):
        super().__init__(
            f"Change {change_id} is already {current}; cannot mark it {requested}",
            code="INVALID_TRANSITION", status_code=409,
            details={'change_id': change_id, 'current': current,
                     'requested': requested, **kwargs})


class SessionNotFoundError(RevisionError):
    """Tracking session does not exist or has expired."""
    def __init__(self, session_id: str, **kwargs):
        super().__init__(f"Session not found: {session_id}", code="SESSION_NOT_FOUND",
                         status_code=404, details={'session_id': session_id, **kwargs})


class ProcessingError(RevisionError):
    """Unexpected failure while diffing or tracking."""
    def __init__(self, message: str, stage: Optional[str] = None, **kwargs):
        super().__init__(message, code="PROCESSING_ERROR", status_code=500,
                         details={'stage': stage, **kwargs})


def handle_errors(logger: Optional[StructuredLogger] = None):
    """Decorator for standardized error handling."""
    def decorator(func: Callable):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            _logger = logger or get_logger(func.__module__)
            try:
                return func(*args, **kwargs)
            except RevisionError:
                raise
            except (TypeError, ValueError) as e:
                _logger.warning(f"Validation error in {func.__name__}: {e}")
                raise ValidationError(str(e)) from e
            except Exception as e:
                _logger.exception(f"Unexpected error in {func.__name__}: {e}")
                raise ProcessingError(f"An unexpected error occurred: {type(e).__name__}",
                                      stage=func.__name__) from e
        return wrapper
    return decorator
