"""
Error handling framework for the storefront search, cache and prefetch layer.

Every failure in this package degrades functionality instead of breaking the
caller: components catch these errors at their public boundary, log them and
fall back (empty results, unsuccessful cache writes, dropped prefetches).
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels for proper escalation."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better handling strategies."""

    VALIDATION = "validation"
    NETWORK = "network"
    STORAGE = "storage"
    SERIALIZATION = "serialization"
    CONFIGURATION = "configuration"
    INDEX = "index"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Context information for errors."""

    operation: str
    component: str
    resource_key: Optional[str] = None
    url: Optional[str] = None
    additional_data: Optional[Dict[str, Any]] = None


class VitrineError(Exception):
    """Base exception for all vitrine errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context
        self.cause = cause
        self.user_message = user_message or self._generate_user_message()
        self.timestamp = time.time()

    def _generate_user_message(self) -> str:
        """Generate a user-friendly error message."""
        if self.category == ErrorCategory.VALIDATION:
            return "Invalid input provided. Please check your request and try again."
        elif self.category == ErrorCategory.NETWORK:
            return "Content is taking longer than usual to load."
        elif self.category == ErrorCategory.INDEX:
            return "Search is not available yet. Please try again in a moment."
        elif self.category == ErrorCategory.CONFIGURATION:
            return "The storefront is misconfigured. Please contact support."
        else:
            return "An unexpected error occurred. Please try again later."

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "category": self.category.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
            "context": {
                "operation": self.context.operation if self.context else None,
                "component": self.context.component if self.context else None,
                "resource_key": self.context.resource_key if self.context else None,
                "url": self.context.url if self.context else None,
                "additional_data": self.context.additional_data if self.context else None,
            },
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(VitrineError):
    """Raised when configuration values are invalid."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.CONFIGURATION)
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)


class ValidationError(VitrineError):
    """Raised when caller input cannot be accepted."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        self.field = field
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        super().__init__(message, **kwargs)


class IndexUnavailableError(VitrineError):
    """Raised when the search index has not been built or its bulk fetch failed."""

    def __init__(self, message: str = "Search index is not initialized", **kwargs):
        kwargs.setdefault(
            "context", ErrorContext(operation="search", component="search_index")
        )
        super().__init__(
            message,
            category=ErrorCategory.INDEX,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )


class CatalogFetchError(VitrineError):
    """Raised when the bulk product summary fetch fails."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None, **kwargs):
        self.url = url
        self.status_code = status_code
        kwargs.setdefault(
            "context", ErrorContext(operation="fetch_product_summaries", component="catalog", url=url)
        )
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.MEDIUM,
            **kwargs,
        )


class CacheWriteError(VitrineError):
    """Raised when a cache entry cannot be serialized or stored."""

    def __init__(self, key: str, message: str, serialization: bool = False, **kwargs):
        self.key = key
        kwargs.setdefault(
            "context", ErrorContext(operation="set", component="adaptive_cache", resource_key=key)
        )
        super().__init__(
            message,
            category=ErrorCategory.SERIALIZATION if serialization else ErrorCategory.STORAGE,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )


class PrefetchDispatchError(VitrineError):
    """Raised when a speculative page fetch fails at the network level."""

    def __init__(self, url: str, message: str, **kwargs):
        self.url = url
        kwargs.setdefault("context", ErrorContext(operation="dispatch", component="prefetch", url=url))
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )


class MetricsEgressError(VitrineError):
    """Raised when an aggregate metrics beacon cannot be delivered."""

    def __init__(self, message: str, url: Optional[str] = None, **kwargs):
        kwargs.setdefault("context", ErrorContext(operation="send", component="telemetry", url=url))
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.LOW,
            **kwargs,
        )


# Error reporting and monitoring


class ErrorReporter(ABC):
    """Abstract base class for error reporting."""

    @abstractmethod
    def report_error(self, error: VitrineError) -> None:
        """Report an error to the monitoring system."""
        pass


class LoggingErrorReporter(ErrorReporter):
    """Error reporter that logs errors."""

    def report_error(self, error: VitrineError) -> None:
        """Report error by logging."""
        error_dict = error.to_dict()

        if error.severity == ErrorSeverity.CRITICAL:
            logger.critical(f"Critical error: {error.message}", extra={"error_data": error_dict})
        elif error.severity == ErrorSeverity.HIGH:
            logger.error(f"High severity error: {error.message}", extra={"error_data": error_dict})
        elif error.severity == ErrorSeverity.MEDIUM:
            logger.warning(
                f"Medium severity error: {error.message}", extra={"error_data": error_dict}
            )
        else:
            logger.info(f"Low severity error: {error.message}", extra={"error_data": error_dict})


# Global error reporter instance
_error_reporter: Optional[ErrorReporter] = None


def set_error_reporter(reporter: Optional[ErrorReporter]) -> None:
    """Set the global error reporter."""
    global _error_reporter
    _error_reporter = reporter


def report_error(error: VitrineError) -> None:
    """Report an error using the global error reporter."""
    if _error_reporter:
        _error_reporter.report_error(error)
    else:
        # Fallback to basic logging
        logger.warning(f"Error: {error.message}", extra={"error_data": error.to_dict()})
