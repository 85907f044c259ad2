"""
Exception hierarchy for the marketfeed data layer.

Every provider failure is classified into one of a small set of categories.
The category alone decides whether the failure is worth retrying:

Exception Hierarchy:
    MarketFeedError (base)
    └── DataSourceError          (category, provider, retryable, code)
        ├── ConfigurationError   CONFIGURATION  not retryable
        ├── RateLimitError       RATE_LIMIT     retryable
        ├── NetworkError         NETWORK        retryable
        ├── ValidationError      VALIDATION     not retryable
        └── NotFoundError        NOT_FOUND      not retryable

A bare DataSourceError with category UNKNOWN is produced by classify_error()
when nothing more specific matches; it is treated as retryable.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Failure categories shared by every provider."""
    CONFIGURATION = "configuration"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


RETRYABLE_BY_CATEGORY: Dict[ErrorCategory, bool] = {
    ErrorCategory.CONFIGURATION: False,
    ErrorCategory.RATE_LIMIT: True,
    ErrorCategory.NETWORK: True,
    ErrorCategory.VALIDATION: False,
    ErrorCategory.NOT_FOUND: False,
    ErrorCategory.UNKNOWN: True,
}

CODE_BY_CATEGORY: Dict[ErrorCategory, str] = {
    ErrorCategory.CONFIGURATION: "CONFIGURATION_ERROR",
    ErrorCategory.RATE_LIMIT: "RATE_LIMIT_ERROR",
    ErrorCategory.NETWORK: "NETWORK_ERROR",
    ErrorCategory.VALIDATION: "VALIDATION_ERROR",
    ErrorCategory.NOT_FOUND: "NOT_FOUND_ERROR",
    ErrorCategory.UNKNOWN: "UNKNOWN_ERROR",
}

DEFAULT_RATE_LIMIT_WAIT = 60


class MarketFeedError(Exception):
    """
    Base exception for all marketfeed errors.

    Attributes:
        message: Human-readable error description
        details: Additional context (provider, endpoint, etc.)
        cause: Original exception if this wraps another error
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        self.message = message
        self.details = details or {}
        self.cause = cause
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the exception message with details."""
        msg = self.message
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            msg = f"{msg} [{detail_str}]"
        if self.cause:
            msg = f"{msg} (caused by: {type(self.cause).__name__}: {self.cause})"
        return msg


# =============================================================================
# Data Source Failures
# =============================================================================

class DataSourceError(MarketFeedError):
    """
    A classified failure raised by a data source adapter.

    This is the single construction path for every provider failure. The named
    subclasses below fix ``category`` (and with it ``retryable`` and ``code``).

    Attributes:
        category: One of ErrorCategory
        provider: Display name of the adapter that raised it
        retryable: Fixed per category
        code: Stable per-category code string
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        provider: str = "unknown",
        retryable: Optional[bool] = None,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        category = ErrorCategory(category)
        expected = RETRYABLE_BY_CATEGORY[category]
        if retryable is None:
            retryable = expected
        elif retryable != expected:
            raise ValueError(
                f"retryable={retryable} conflicts with category {category.value}"
            )

        self.category = category
        self.provider = provider
        self.retryable = retryable
        self.code = CODE_BY_CATEGORY[category]

        details = dict(details or {})
        details.setdefault("provider", provider)
        super().__init__(message, details=details, cause=cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view for logs and audit records (no stack trace)."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "code": self.code,
            "provider": self.provider,
            "retryable": self.retryable,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(DataSourceError):
    """
    Missing or invalid credentials / configuration.

    Not retryable; an adapter raising this refuses to initialize.
    """

    def __init__(
        self,
        message: str,
        provider: str = "config",
        cause: Optional[BaseException] = None,
        **kwargs
    ):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            provider=provider,
            cause=cause,
            **kwargs
        )


class RateLimitError(DataSourceError):
    """
    Provider quota exceeded.

    Retryable; ``retry_after_seconds`` carries the provider's suggested wait
    when it supplied one.
    """

    def __init__(
        self,
        message: str,
        provider: str,
        retry_after_seconds: Optional[float] = None,
        cause: Optional[BaseException] = None,
        **kwargs
    ):
        self.retry_after_seconds = retry_after_seconds
        details = kwargs.pop("details", {})
        if retry_after_seconds is not None:
            details["retry_after_seconds"] = retry_after_seconds
        super().__init__(
            message,
            category=ErrorCategory.RATE_LIMIT,
            provider=provider,
            cause=cause,
            details=details,
            **kwargs
        )

    def get_retry_after_seconds(self) -> float:
        """Suggested wait in seconds, defaulting to 60."""
        return self.retry_after_seconds or DEFAULT_RATE_LIMIT_WAIT


class NetworkError(DataSourceError):
    """Transport or HTTP-level failure. Retryable with exponential backoff."""

    def __init__(
        self,
        message: str,
        provider: str,
        cause: Optional[BaseException] = None,
        **kwargs
    ):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            provider=provider,
            cause=cause,
            **kwargs
        )


class ValidationError(DataSourceError):
    """Malformed or unparseable response. Not retryable."""

    def __init__(
        self,
        message: str,
        provider: str,
        cause: Optional[BaseException] = None,
        **kwargs
    ):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            provider=provider,
            cause=cause,
            **kwargs
        )


class NotFoundError(DataSourceError):
    """Provider affirmatively has no data for the symbol/series. Not retryable."""

    def __init__(
        self,
        message: str,
        provider: str,
        cause: Optional[BaseException] = None,
        **kwargs
    ):
        super().__init__(
            message,
            category=ErrorCategory.NOT_FOUND,
            provider=provider,
            cause=cause,
            **kwargs
        )


# =============================================================================
# Classification
# =============================================================================

# Checked in this order; configuration problems must win over network noise.
_KEYWORD_FAMILIES = (
    (ErrorCategory.CONFIGURATION, ("api key", "configuration", "missing", "invalid key")),
    (ErrorCategory.RATE_LIMIT, ("rate limit", "429", "too many requests")),
    (ErrorCategory.NETWORK, (
        "network", "timeout", "timed out", "econnrefused", "etimedout",
        "fetch failed", "connection",
    )),
    (ErrorCategory.NOT_FOUND, ("not found", "404", "no data")),
    (ErrorCategory.VALIDATION, ("invalid", "validation", "parse", "malformed", "decode", "json")),
)


def classify_error(error: BaseException, provider: str) -> DataSourceError:
    """
    Map a raw exception to a classified DataSourceError.

    The raw error's type name and text are matched against keyword families in
    a fixed priority order: configuration, rate limit, network, not found,
    validation. Anything else becomes an UNKNOWN (retryable) failure.

    Args:
        error: The raw exception
        provider: Adapter display name to attribute the failure to

    Returns:
        A DataSourceError subclass instance; ``error`` itself if it is
        already classified.
    """
    if isinstance(error, DataSourceError):
        return error

    message = str(error) or type(error).__name__
    haystack = f"{type(error).__name__}: {error}".lower()

    for category, keywords in _KEYWORD_FAMILIES:
        if any(keyword in haystack for keyword in keywords):
            return build_error(category, message, provider, cause=error)

    return DataSourceError(
        message,
        category=ErrorCategory.UNKNOWN,
        provider=provider,
        cause=error,
    )


def build_error(
    category: ErrorCategory,
    message: str,
    provider: str,
    cause: Optional[BaseException] = None,
    retry_after_seconds: Optional[float] = None,
) -> DataSourceError:
    """Construct the named error class for ``category``."""
    if category == ErrorCategory.RATE_LIMIT:
        return RateLimitError(message, provider, retry_after_seconds=retry_after_seconds, cause=cause)
    error_cls = _CLASS_BY_CATEGORY.get(category)
    if error_cls is None:
        return DataSourceError(message, category=category, provider=provider, cause=cause)
    return error_cls(message, provider=provider, cause=cause)


_CLASS_BY_CATEGORY = {
    ErrorCategory.CONFIGURATION: ConfigurationError,
    ErrorCategory.NETWORK: NetworkError,
    ErrorCategory.VALIDATION: ValidationError,
    ErrorCategory.NOT_FOUND: NotFoundError,
}


def retries_exhausted(error: DataSourceError, attempts: int) -> DataSourceError:
    """
    Wrap the last classified failure once every attempt has been used.

    The result keeps the category (so callers can still ``except NetworkError``)
    and carries the last failure as its cause.
    """
    message = (
        f"Failed to fetch from {error.provider} after {attempts} attempts: "
        f"{error.message}"
    )
    retry_after = getattr(error, "retry_after_seconds", None)
    return build_error(
        error.category,
        message,
        error.provider,
        cause=error,
        retry_after_seconds=retry_after,
    )


# =============================================================================
# Utility Functions
# =============================================================================

def is_retryable(error: BaseException) -> bool:
    """
    Determine if an error is likely transient and worth retrying.

    Unclassified exceptions are classified first (with a placeholder provider).
    """
    return classify_error(error, "unknown").retryable


def get_retry_delay(error: BaseException, attempt: int = 1, base_delay: float = 1.0) -> float:
    """
    Get suggested retry delay in seconds after the ``attempt``-th failure.

    Exponential backoff (1s, 2s, 4s, ...); for rate-limit errors carrying a
    provider hint, the larger of the hint and the backoff.
    """
    backoff = base_delay * (2 ** (attempt - 1))
    if isinstance(error, RateLimitError) and error.retry_after_seconds:
        return max(backoff, float(error.retry_after_seconds))
    return backoff
