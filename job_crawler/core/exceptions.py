"""
Custom Exceptions for Job Crawler

Crawl-level exceptions with structured error information.
Only configuration errors abort a run; everything else is caught at the
task boundary by the crawl driver.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for monitoring and alerting."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification and handling."""
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    EXTRACTION = "extraction"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


class CrawlerException(Exception):
    """
    Base exception for all crawler-specific errors.

    Provides structured error information so failures can be logged and
    recorded consistently.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__.upper()
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.retryable = retryable
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }


class ConfigurationError(CrawlerException):
    """Raised when no usable crawl can be derived from the input."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            retryable=False,
            **kwargs
        )


class FetchError(CrawlerException):
    """Transient fetch failure: network error, server error or malformed body."""

    def __init__(
        self,
        url: str,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = True,
        error_code: str = "FETCH_ERROR",
        category: ErrorCategory = ErrorCategory.NETWORK,
        **kwargs
    ):
        super().__init__(
            message=message or f"Failed to fetch {url}",
            error_code=error_code,
            category=category,
            severity=ErrorSeverity.MEDIUM,
            retryable=retryable,
            **kwargs
        )
        self.url = url
        self.status_code = status_code
        self.details.update({"url": url, "status_code": status_code})


class FetchTimeoutError(FetchError):
    """Fetch or page-ready wait exceeded its upper bound."""

    def __init__(self, url: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(
            url=url,
            message=f"Timed out after {timeout}s fetching {url}" if timeout else f"Timed out fetching {url}",
            error_code="FETCH_TIMEOUT",
            category=ErrorCategory.TIMEOUT,
            **kwargs
        )


class BlockedError(FetchError):
    """Blocked by the target site; retried with a fresh session identity."""

    def __init__(self, url: str, status_code: Optional[int] = None, reason: str = "blocked", **kwargs):
        super().__init__(
            url=url,
            message=f"Blocked fetching {url} ({reason})",
            status_code=status_code,
            retryable=True,
            error_code="BLOCKED",
            category=ErrorCategory.RATE_LIMIT,
            **kwargs
        )
        self.reason = reason
        self.details["reason"] = reason
