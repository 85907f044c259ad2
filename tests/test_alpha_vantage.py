"""
Unit tests for the Alpha Vantage adapter.

Tests basic functionality:
- Initialization and credential checks
- Request construction
- Quote and overview parsing
- Error bodies (Error Message, Note, Information)
"""

import os
from unittest.mock import AsyncMock, patch

import pytest

from conftest import attach_session, build_response, request_params
from marketfeed.data.alpha_vantage import AlphaVantageAdapter
from marketfeed.data.cache import no_cache
from marketfeed.exceptions import (
    ConfigurationError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)

GLOBAL_QUOTE = {
    "Global Quote": {
        "01. symbol": "AAPL",
        "05. price": "150.2500",
        "06. volume": "51234567",
        "09. change": "1.2500",
        "10. change percent": "0.8389%",
    }
}

OVERVIEW = {
    "Symbol": "AAPL",
    "Name": "Apple Inc",
    "Description": "Designs consumer electronics.",
    "Sector": "TECHNOLOGY",
    "Industry": "ELECTRONIC COMPUTERS",
    "MarketCapitalization": "2800000000000",
    "PERatio": "29.5",
    "DividendYield": "0.0055",
    "Beta": "None",
}


def make_adapter(**kwargs):
    kwargs.setdefault("cache_decorator", no_cache)
    return AlphaVantageAdapter(api_key="test-key", sleep=AsyncMock(), **kwargs)


class TestAlphaVantageInit:
    """Test AlphaVantageAdapter initialization."""

    def test_init_with_api_key(self):
        adapter = make_adapter()

        assert adapter.source_name == "Alpha Vantage"
        assert adapter.engine.base_url == "https://www.alphavantage.co"
        assert adapter.get_rate_limit().requests_per_minute == 5
        assert adapter.is_configured() is True

    @patch.dict(os.environ, {'ALPHA_VANTAGE_API_KEY': 'env-key'})
    def test_init_from_environment(self):
        adapter = AlphaVantageAdapter()

        assert adapter.engine.api_key == "env-key"

    def test_init_without_key_raises(self, clean_env):
        with pytest.raises(ConfigurationError) as exc_info:
            AlphaVantageAdapter()

        assert "ALPHA_VANTAGE_API_KEY" in exc_info.value.message

    def test_init_whitespace_key_raises(self):
        with pytest.raises(ConfigurationError):
            AlphaVantageAdapter(api_key="   ")


class TestGetQuote:
    """GLOBAL_QUOTE parsing."""

    @pytest.mark.asyncio
    async def test_get_quote_success(self):
        adapter = make_adapter()
        session = attach_session(adapter, build_response(GLOBAL_QUOTE))

        quote = await adapter.get_quote(" aapl ")

        assert quote.symbol == "AAPL"
        assert quote.price == 150.25
        assert quote.volume == 51234567
        assert quote.change == 1.25
        assert quote.change_percent == pytest.approx(0.8389)
        assert quote.source == "Alpha Vantage"
        assert request_params(session) == {
            "function": "GLOBAL_QUOTE",
            "symbol": "AAPL",
            "apikey": "test-key",
        }

    @pytest.mark.asyncio
    async def test_missing_volume_defaults_to_zero(self):
        adapter = make_adapter()
        payload = {"Global Quote": {"01. symbol": "AAPL", "05. price": "150.00"}}
        attach_session(adapter, build_response(payload))

        quote = await adapter.get_quote("AAPL")

        assert quote.volume == 0
        assert quote.change is None
        assert quote.change_percent is None

    @pytest.mark.asyncio
    async def test_empty_global_quote_is_not_found(self):
        adapter = make_adapter()
        attach_session(adapter, build_response({"Global Quote": {}}))

        with pytest.raises(NotFoundError) as exc_info:
            await adapter.get_quote("ZZZZ")

        assert "No quote data found for ZZZZ" in exc_info.value.message
        assert len(adapter.error_log.get_errors_by_provider("Alpha Vantage")) == 1

    @pytest.mark.asyncio
    async def test_missing_price_is_not_found(self):
        adapter = make_adapter()
        attach_session(adapter, build_response({"Global Quote": {"01. symbol": "AAPL", "05. price": "-"}}))

        with pytest.raises(NotFoundError):
            await adapter.get_quote("AAPL")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"Global Quote": ["x"]},
        {"Global Quote": "x"},
        {"Global Quote": 42},
    ])
    async def test_non_object_global_quote_is_validation(self, payload):
        adapter = make_adapter()
        attach_session(adapter, build_response(payload))

        with pytest.raises(ValidationError) as exc_info:
            await adapter.get_quote("AAPL")

        assert "Malformed quote for AAPL" in exc_info.value.message
        assert adapter.error_log.get_errors_by_provider("Alpha Vantage")

    @pytest.mark.asyncio
    async def test_error_message_is_validation(self):
        adapter = make_adapter()
        session = attach_session(adapter, build_response({"Error Message": "Invalid API call."}))

        with pytest.raises(ValidationError) as exc_info:
            await adapter.get_quote("AAPL")

        assert "Invalid API call." in exc_info.value.message
        assert session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_note_is_rate_limit_and_retried(self):
        sleep = AsyncMock()
        adapter = AlphaVantageAdapter(
            api_key="test-key", sleep=sleep, cache_decorator=no_cache, max_retry_wait=120
        )
        attach_session(
            adapter,
            build_response({"Note": "Thank you for using Alpha Vantage! 5 calls per minute."}),
            build_response(GLOBAL_QUOTE),
        )

        quote = await adapter.get_quote("AAPL")

        assert quote.price == 150.25
        sleep.assert_awaited_once_with(60.0)

    @pytest.mark.asyncio
    async def test_information_is_rate_limit(self):
        adapter = make_adapter(max_retry_wait=30)
        attach_session(adapter, build_response({"Information": "Daily limit reached."}))

        with pytest.raises(RateLimitError) as exc_info:
            await adapter.get_quote("AAPL")

        assert exc_info.value.retry_after_seconds == 60


class TestGetCompanyOverview:
    """OVERVIEW parsing."""

    @pytest.mark.asyncio
    async def test_overview_success(self):
        adapter = make_adapter()
        attach_session(adapter, build_response(OVERVIEW))

        profile = await adapter.get_company_overview("AAPL")

        assert profile.symbol == "AAPL"
        assert profile.name == "Apple Inc"
        assert profile.sector == "TECHNOLOGY"
        assert profile.market_cap == 2.8e12
        assert profile.pe_ratio == 29.5
        assert profile.dividend_yield == pytest.approx(0.55)
        assert profile.source == "Alpha Vantage"

    @pytest.mark.asyncio
    async def test_placeholder_values_become_none(self):
        adapter = make_adapter()
        attach_session(adapter, build_response({**OVERVIEW, "PERatio": "-", "DividendYield": "None"}))

        profile = await adapter.get_company_overview("AAPL")

        assert profile.pe_ratio is None
        assert profile.dividend_yield is None
        assert profile.beta is None

    @pytest.mark.asyncio
    async def test_empty_overview_is_not_found(self):
        adapter = make_adapter()
        attach_session(adapter, build_response({}))

        with pytest.raises(NotFoundError):
            await adapter.get_company_overview("ZZZZ")


class TestCaching:
    """Default cache decorator."""

    @pytest.mark.asyncio
    async def test_repeated_quote_served_from_cache(self):
        adapter = AlphaVantageAdapter(api_key="test-key", sleep=AsyncMock())
        session = attach_session(adapter, build_response(GLOBAL_QUOTE))

        first = await adapter.get_quote("AAPL")
        second = await adapter.get_quote("aapl")

        assert first is second
        assert session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_failures_not_cached(self):
        adapter = AlphaVantageAdapter(api_key="test-key", sleep=AsyncMock())
        session = attach_session(
            adapter,
            build_response({"Global Quote": {}}),
            build_response(GLOBAL_QUOTE),
        )

        with pytest.raises(NotFoundError):
            await adapter.get_quote("AAPL")
        quote = await adapter.get_quote("AAPL")

        assert quote.price == 150.25
        assert session.get.call_count == 2
