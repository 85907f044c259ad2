"""
Error log for classified data source failures.

An ErrorLog is handed to adapters and to the fallback engine at construction
time; there is no process-wide instance. Entries are append-only and can be
queried by provider or category for audit and monitoring.
"""

import structlog
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from marketfeed.exceptions import DataSourceError, ErrorCategory

logger = structlog.get_logger(__name__)

_RESERVED_KEYS = frozenset({"event", "provider", "error", "error_type", "code", "retryable"})


@dataclass
class ErrorLogEntry:
    """One logged failure with its request context."""
    error: DataSourceError
    timestamp: datetime = field(default_factory=datetime.now)
    context: Dict[str, Any] = field(default_factory=dict)


class ErrorLog:
    """
    Append-only record of data source failures.

    Example:
        error_log = ErrorLog()
        adapter = PolygonAdapter(error_log=error_log)
        ...
        error_log.get_errors_by_provider("Polygon.io")
    """

    def __init__(self):
        self._entries: List[ErrorLogEntry] = []

    def log(
        self,
        error: DataSourceError,
        context: Optional[Dict[str, Any]] = None
    ) -> ErrorLogEntry:
        """
        Record a failure and emit it through structlog.

        Args:
            error: The classified failure
            context: Additional context (endpoint, status, data type, ...)

        Returns:
            The stored entry
        """
        entry = ErrorLogEntry(error=error, context=dict(context or {}))
        self._entries.append(entry)

        logger.warning(
            "data_source_error",
            provider=error.provider,
            error_type=type(error).__name__,
            code=error.code,
            retryable=error.retryable,
            error=error.message,
            **{k: v for k, v in entry.context.items() if k not in _RESERVED_KEYS}
        )
        return entry

    def get_errors(self) -> List[ErrorLogEntry]:
        """Get all logged errors, oldest first."""
        return list(self._entries)

    def get_errors_by_provider(self, provider: str) -> List[ErrorLogEntry]:
        """Get errors raised by a specific provider."""
        return [e for e in self._entries if e.error.provider == provider]

    def get_errors_by_category(
        self,
        category: Union[ErrorCategory, str]
    ) -> List[ErrorLogEntry]:
        """Get errors of one category."""
        category = ErrorCategory(category)
        return [e for e in self._entries if e.error.category == category]

    def get_stats(self) -> Dict[str, Any]:
        """Aggregate counts by provider, error type and retryability."""
        by_provider = Counter(e.error.provider for e in self._entries)
        by_type = Counter(type(e.error).__name__ for e in self._entries)
        retryable = sum(1 for e in self._entries if e.error.retryable)

        return {
            'total': len(self._entries),
            'by_provider': dict(by_provider),
            'by_type': dict(by_type),
            'retryable': retryable,
            'non_retryable': len(self._entries) - retryable,
        }

    def clear(self) -> None:
        """Clear the log (tests and explicit resets only)."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
