"""
Tests for the error taxonomy.

Covers:
- Fixed retryability and code per category
- Named constructors
- Keyword classification priority
- Retries-exhausted wrapping and retry delay helper
"""

import asyncio
import json

import pytest

from marketfeed.exceptions import (
    ConfigurationError,
    DataSourceError,
    ErrorCategory,
    MarketFeedError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ValidationError,
    build_error,
    classify_error,
    get_retry_delay,
    is_retryable,
    retries_exhausted,
)


class TestCategoryInvariants:
    """Retryability is a pure function of category."""

    @pytest.mark.parametrize("error, category, retryable, code", [
        (ConfigurationError("no key", "P"), ErrorCategory.CONFIGURATION, False, "CONFIGURATION_ERROR"),
        (RateLimitError("slow down", "P"), ErrorCategory.RATE_LIMIT, True, "RATE_LIMIT_ERROR"),
        (NetworkError("down", "P"), ErrorCategory.NETWORK, True, "NETWORK_ERROR"),
        (ValidationError("bad", "P"), ErrorCategory.VALIDATION, False, "VALIDATION_ERROR"),
        (NotFoundError("none", "P"), ErrorCategory.NOT_FOUND, False, "NOT_FOUND_ERROR"),
    ])
    def test_named_constructors(self, error, category, retryable, code):
        assert error.category == category
        assert error.retryable is retryable
        assert error.code == code
        assert isinstance(error, DataSourceError)
        assert isinstance(error, MarketFeedError)

    def test_unknown_defaults_to_retryable(self):
        error = DataSourceError("???", provider="P")

        assert error.category == ErrorCategory.UNKNOWN
        assert error.retryable is True
        assert error.code == "UNKNOWN_ERROR"

    def test_conflicting_retryable_rejected(self):
        with pytest.raises(ValueError):
            DataSourceError("x", category=ErrorCategory.VALIDATION, provider="P", retryable=True)

    def test_matching_retryable_accepted(self):
        error = DataSourceError("x", category=ErrorCategory.NETWORK, provider="P", retryable=True)
        assert error.retryable is True

    def test_category_accepts_string_value(self):
        error = DataSourceError("x", category="not_found", provider="P")
        assert error.category == ErrorCategory.NOT_FOUND


class TestErrorFields:
    """Message, provider and serialization."""

    def test_message_and_provider(self):
        error = NetworkError("HTTP 500: Server Error", "Polygon.io")

        assert error.message == "HTTP 500: Server Error"
        assert error.provider == "Polygon.io"
        assert error.details["provider"] == "Polygon.io"
        assert "HTTP 500" in str(error)

    def test_cause_in_str(self):
        cause = ConnectionError("reset by peer")
        error = NetworkError("request failed", "P", cause=cause)

        assert error.cause is cause
        assert "caused by: ConnectionError" in str(error)

    def test_to_dict_has_no_traceback(self):
        error = ValidationError("bad json", "FRED", cause=ValueError("x"))
        data = error.to_dict()

        assert data == {
            "name": "ValidationError",
            "message": "bad json",
            "category": "validation",
            "code": "VALIDATION_ERROR",
            "provider": "FRED",
            "retryable": False,
            "cause": "x",
        }

    def test_rate_limit_retry_after(self):
        error = RateLimitError("quota", "AV", retry_after_seconds=30)

        assert error.retry_after_seconds == 30
        assert error.get_retry_after_seconds() == 30
        assert error.details["retry_after_seconds"] == 30

    def test_rate_limit_default_wait(self):
        assert RateLimitError("quota", "AV").get_retry_after_seconds() == 60


class TestClassifyError:
    """Keyword families checked in fixed priority order."""

    @pytest.mark.parametrize("raw, expected", [
        (Exception("API key is invalid"), ConfigurationError),
        (Exception("Missing credentials"), ConfigurationError),
        (Exception("Rate limit exceeded"), RateLimitError),
        (Exception("HTTP 429"), RateLimitError),
        (Exception("Too Many Requests"), RateLimitError),
        (Exception("Connection reset"), NetworkError),
        (asyncio.TimeoutError(), NetworkError),
        (Exception("Resource not found"), NotFoundError),
        (Exception("HTTP 404"), NotFoundError),
        (Exception("Could not parse body"), ValidationError),
        (Exception("Invalid response shape"), ValidationError),
        (json.JSONDecodeError("Expecting value", "<html>", 0), ValidationError),
        (Exception("Failed to decode body"), ValidationError),
    ])
    def test_keyword_families(self, raw, expected):
        error = classify_error(raw, "P")

        assert type(error) is expected
        assert error.provider == "P"
        assert error.cause is raw

    def test_configuration_wins_over_network(self):
        error = classify_error(Exception("network timeout: api key missing"), "P")
        assert isinstance(error, ConfigurationError)

    def test_rate_limit_wins_over_network(self):
        error = classify_error(Exception("connection closed: rate limit"), "P")
        assert isinstance(error, RateLimitError)

    def test_unmatched_is_unknown_and_retryable(self):
        error = classify_error(RuntimeError("something odd"), "P")

        assert type(error) is DataSourceError
        assert error.category == ErrorCategory.UNKNOWN
        assert error.retryable is True

    def test_classified_error_returned_unchanged(self):
        original = NotFoundError("none", "P")
        assert classify_error(original, "other") is original

    def test_empty_message_uses_type_name(self):
        error = classify_error(KeyError(), "P")
        assert error.message


class TestHelpers:
    """build_error, retries_exhausted, is_retryable, get_retry_delay."""

    def test_build_error_rate_limit(self):
        error = build_error(ErrorCategory.RATE_LIMIT, "slow", "P", retry_after_seconds=5)

        assert isinstance(error, RateLimitError)
        assert error.retry_after_seconds == 5

    def test_build_error_unknown(self):
        error = build_error(ErrorCategory.UNKNOWN, "?", "P")
        assert type(error) is DataSourceError

    def test_retries_exhausted_keeps_category(self):
        last = NetworkError("HTTP 503: Service Unavailable", "Polygon.io")
        error = retries_exhausted(last, 3)

        assert isinstance(error, NetworkError)
        assert error.cause is last
        assert error.message == (
            "Failed to fetch from Polygon.io after 3 attempts: HTTP 503: Service Unavailable"
        )

    def test_retries_exhausted_keeps_retry_after(self):
        last = RateLimitError("quota", "AV", retry_after_seconds=12)
        error = retries_exhausted(last, 3)

        assert isinstance(error, RateLimitError)
        assert error.retry_after_seconds == 12

    def test_is_retryable(self):
        assert is_retryable(NetworkError("x", "P")) is True
        assert is_retryable(NotFoundError("x", "P")) is False
        assert is_retryable(Exception("connection refused")) is True
        assert is_retryable(Exception("invalid payload")) is False

    @pytest.mark.parametrize("attempt, expected", [(1, 1.0), (2, 2.0), (3, 4.0)])
    def test_retry_delay_backoff(self, attempt, expected):
        assert get_retry_delay(NetworkError("x", "P"), attempt) == expected

    def test_retry_delay_prefers_longer_rate_limit_hint(self):
        error = RateLimitError("x", "P", retry_after_seconds=10)

        assert get_retry_delay(error, 1) == 10
        assert get_retry_delay(RateLimitError("x", "P", retry_after_seconds=0.5), 2) == 2.0
