"""
Error Handling System
=====================

Error taxonomy for the ingestion engine with:
- Custom exception hierarchy
- Store error classification (transient / constraint / corruption / config)
- Error context tracking
- Retry mechanisms
- User-friendly error messages
"""

# ============================================================================
# MODULE OVERVIEW
# ============================================================================
# Purpose:
#   errors.py
#
# Connected modules (direct imports):
#   (none)
#
# Notes:
#   - Parse errors are always recovered locally by the reconstructor.
#   - Store errors carry a sanitized user_message; raw engine text stays in
#     `message` for logs only.
# ============================================================================

# ============================================================================
# IMPORTS
# ============================================================================

import functools
import logging
import sqlite3
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Callable, Any, TypeVar


# ============================================================================
# ERROR SEVERITY LEVELS
# ============================================================================

class ErrorSeverity(Enum):
    """Error severity levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ============================================================================
# CUSTOM EXCEPTION HIERARCHY
# ============================================================================

class GalnetError(Exception):
    """Base exception for all engine errors"""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        user_message: Optional[str] = None,
        context: Optional[dict] = None
    ):
        """
        Initialize engine error

        Args:
            message: Technical error message (for logs)
            severity: Error severity level
            user_message: User-friendly message (for UI)
            context: Additional context (dict)
        """
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.user_message = user_message or message
        self.context = context or {}
        self.timestamp = time.time()

    def to_dict(self) -> dict:
        """Convert error to dictionary"""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "context": self.context,
            "timestamp": self.timestamp
        }


class ConfigurationError(GalnetError):
    """Configuration-related errors"""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.CRITICAL,
            user_message="Configuration error. Please check your settings.",
            **kwargs
        )


class DatabaseError(GalnetError):
    """Database-related errors.

    Subclasses carry a classification `kind` and a `retryable` hint so callers
    can decide between retry, a user-facing message, or a fatal abort.
    """
    kind = "unknown"
    retryable = False
    default_user_message = "Unexpected database error."

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        user_message: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        **kwargs
    ):
        super().__init__(
            message,
            severity=severity,
            user_message=user_message or self.default_user_message,
            **kwargs
        )
        self.code = code

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"kind": self.kind, "code": self.code, "retryable": self.retryable})
        return data


class TransientStoreError(DatabaseError):
    """Lock contention; safe to retry"""
    kind = "transient"
    retryable = True
    default_user_message = "Database is busy; please try again."


class ConstraintStoreError(DatabaseError):
    """Constraint violation"""
    kind = "constraint"
    default_user_message = "A database constraint was violated."


class CorruptionStoreError(DatabaseError):
    """Damaged or foreign database file"""
    kind = "corruption"
    default_user_message = "Database file may be corrupted."

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        super().__init__(message, **kwargs)


class ConfigurationStoreError(DatabaseError):
    """Read-only, unopenable or full database"""
    kind = "config"
    default_user_message = "Database configuration error."


class MigrationError(DatabaseError):
    """Schema migration failed; startup must not continue"""
    kind = "migration"
    default_user_message = "Database upgrade failed. Your data has not been changed."

    def __init__(self, message: str, version: Optional[int] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        super().__init__(message, **kwargs)
        self.version = version


class FileSystemError(GalnetError):
    """File system errors"""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.ERROR,
            user_message="File system error. Check file permissions.",
            **kwargs
        )


class JournalError(GalnetError):
    """Journal file parsing errors"""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.WARNING,
            user_message="Journal file error. Some data may be skipped.",
            **kwargs
        )


class EventParseError(JournalError):
    """A single journal line could not be decoded into an event"""


class ValidationError(GalnetError):
    """Data validation errors"""
    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.WARNING,
            user_message="Invalid data encountered.",
            **kwargs
        )


class NetworkError(GalnetError):
    """Network-related errors"""
    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.WARNING,
            user_message="Network error. Some features may be unavailable.",
            **kwargs
        )
        self.status = status


# ============================================================================
# STORE ERROR CLASSIFICATION
# ============================================================================

@dataclass(frozen=True)
class DbErrorClassification:
    """Result of classifying an engine error"""
    kind: str
    code: Optional[str]
    message: str
    retryable: bool
    user_message: str


_KIND_TO_ERROR = {
    "transient": TransientStoreError,
    "constraint": ConstraintStoreError,
    "corruption": CorruptionStoreError,
    "config": ConfigurationStoreError,
    "unknown": DatabaseError,
}

_CODE_TO_KIND = {
    "SQLITE_BUSY": "transient",
    "SQLITE_LOCKED": "transient",
    "SQLITE_CORRUPT": "corruption",
    "SQLITE_NOTADB": "corruption",
    "SQLITE_READONLY": "config",
    "SQLITE_CANTOPEN": "config",
    "SQLITE_FULL": "config",
    "SQLITE_PERM": "config",
}

# Fallback when the interpreter does not expose sqlite_errorname
_MESSAGE_HINTS = (
    ("database is locked", "SQLITE_BUSY"),
    ("database table is locked", "SQLITE_LOCKED"),
    ("database is busy", "SQLITE_BUSY"),
    ("constraint failed", "SQLITE_CONSTRAINT"),
    ("malformed", "SQLITE_CORRUPT"),
    ("not a database", "SQLITE_NOTADB"),
    ("readonly database", "SQLITE_READONLY"),
    ("unable to open database", "SQLITE_CANTOPEN"),
    ("database or disk is full", "SQLITE_FULL"),
)


def _error_code(error: BaseException) -> Optional[str]:
    code = getattr(error, "sqlite_errorname", None)
    if code:
        return code
    if isinstance(error, sqlite3.IntegrityError):
        return "SQLITE_CONSTRAINT"
    text = str(error).lower()
    for hint, hinted_code in _MESSAGE_HINTS:
        if hint in text:
            return hinted_code
    return None


def classify_db_error(error: BaseException) -> DbErrorClassification:
    """
    Classify an engine error for retry / message / abort decisions

    Args:
        error: Exception raised by sqlite3 (or anything else)

    Returns:
        DbErrorClassification with a sanitized user message
    """
    code = _error_code(error)
    if code and code.startswith("SQLITE_CONSTRAINT"):
        kind = "constraint"
    else:
        kind = _CODE_TO_KIND.get(code or "", "unknown")

    error_cls = _KIND_TO_ERROR[kind]
    return DbErrorClassification(
        kind=kind,
        code=code,
        message=str(error),
        retryable=error_cls.retryable,
        user_message=error_cls.default_user_message,
    )


def wrap_db_error(error: BaseException, operation: str) -> DatabaseError:
    """Convert an engine error into the matching DatabaseError subclass"""
    if isinstance(error, DatabaseError):
        return error
    info = classify_db_error(error)
    error_cls = _KIND_TO_ERROR[info.kind]
    return error_cls(
        f"{operation} failed: {info.message}",
        code=info.code,
        context={"operation": operation, "kind": info.kind},
    )


# ============================================================================
# ERROR CONTEXT
# ============================================================================

@dataclass
class ErrorContext:
    """Context information for errors"""
    operation: str
    component: str
    details: dict

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            "operation": self.operation,
            "component": self.component,
            "details": self.details
        }


# ============================================================================
# ERROR HANDLER
# ============================================================================

class ErrorHandler:
    """Centralized error handling"""

    def __init__(self, logger):
        """
        Initialize error handler

        Args:
            logger: Logger instance (anything with info/error)
        """
        self.logger = logger
        self.error_history = []
        self.max_history = 100

        # Error callbacks (for the presentation boundary)
        self.on_error: Optional[Callable[[GalnetError], None]] = None
        self.on_critical_error: Optional[Callable[[GalnetError], None]] = None

    def handle_error(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None,
        notify_user: bool = True
    ):
        """
        Handle an error

        Args:
            error: Exception that occurred
            context: Error context
            notify_user: Whether to notify the subscriber
        """
        if isinstance(error, sqlite3.Error):
            error = wrap_db_error(error, context.operation if context else "database")
        elif not isinstance(error, GalnetError):
            error = GalnetError(
                message=str(error),
                severity=ErrorSeverity.ERROR,
                context=context.to_dict() if context else {}
            )

        self._add_to_history(error)
        self._log_error(error, context)

        if error.severity == ErrorSeverity.CRITICAL and self.on_critical_error:
            self.on_critical_error(error)
        elif notify_user and self.on_error:
            self.on_error(error)

    def _log_error(self, error: GalnetError, context: Optional[ErrorContext]):
        """Log error with full details"""
        log_message = f"{error.severity.value}: {error.message}"

        if context:
            log_message += f" [Component: {context.component}, Operation: {context.operation}]"

        if error.context:
            log_message += f" [Context: {error.context}]"

        if error.severity in [ErrorSeverity.CRITICAL, ErrorSeverity.ERROR]:
            self.logger.error(log_message)
        else:
            self.logger.info(log_message)

    def _add_to_history(self, error: GalnetError):
        self.error_history.append(error)
        if len(self.error_history) > self.max_history:
            self.error_history = self.error_history[-self.max_history:]

    def get_recent_errors(self, count: int = 10) -> list[GalnetError]:
        """Get recent errors"""
        return self.error_history[-count:]

    def clear_history(self):
        """Clear error history"""
        self.error_history.clear()


# ============================================================================
# DECORATORS
# ============================================================================

T = TypeVar('T')

_retry_logger = logging.getLogger("galnetops.errors")


def retry_on_error(
    max_attempts: int = 3,
    delay_seconds: float = 0.1,
    exponential_backoff: bool = True,
    exceptions: tuple = (TransientStoreError,)
):
    """
    Decorator for retrying operations that fail transiently

    Args:
        max_attempts: Maximum retry attempts
        delay_seconds: Initial delay between retries
        exponential_backoff: Use exponential backoff
        exceptions: Tuple of exceptions to catch

    Usage:
        @retry_on_error(max_attempts=3, delay_seconds=0.5)
        def write_to_database(self, data):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = delay_seconds

            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts - 1:
                        raise
                    _retry_logger.warning(
                        "Retry attempt %d/%d for %s: %s",
                        attempt + 1, max_attempts, func.__name__, e
                    )
                    time.sleep(delay)
                    if exponential_backoff:
                        delay *= 2

        return wrapper
    return decorator
