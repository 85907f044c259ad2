"""Tests for adapter construction and default chain wiring."""

import os
from unittest.mock import AsyncMock, patch

import pytest

from conftest import attach_session, build_response
from marketfeed.data.adapter_factory import (
    Adapters,
    ChainAdapter,
    _yahoo_range,
    configure_fallback_chains,
    create_company_profile_adapter,
    create_historical_data_adapter,
    create_stock_quote_adapter,
    get_configured_fallback_strategies,
    get_initialized_adapters,
    initialize_adapters,
    reset_fallback_strategies,
)
from marketfeed.data.cache import no_cache
from marketfeed.data.fallback import DataTypes, FallbackStrategies
from marketfeed.data.fred import FREDAdapter
from marketfeed.data.polygon import PolygonAdapter
from marketfeed.data.yahoo_finance import YahooFinanceAdapter
from marketfeed.error_log import ErrorLog
from marketfeed.exceptions import ErrorCategory

ALL_KEYS = {
    "ALPHA_VANTAGE_API_KEY": "av-key",
    "FMP_API_KEY": "fmp-key",
    "POLYGON_API_KEY": "polygon-key",
    "FRED_API_KEY": "fred-key",
}


def chain_names(strategies, data_type):
    chain = strategies.get_fallback_chains()[data_type]
    return [adapter.source_name for adapter in chain.adapters]


class TestInitializeAdapters:
    """Missing keys leave adapters out."""

    def test_without_keys_only_yahoo(self, clean_env):
        error_log = ErrorLog()

        adapters = initialize_adapters(error_log=error_log)

        assert adapters.summary() == {
            "alpha_vantage": False,
            "fmp": False,
            "polygon": False,
            "fred": False,
            "yahoo_finance": True,
        }
        assert isinstance(adapters.yahoo_finance, YahooFinanceAdapter)
        assert len(error_log.get_errors_by_category(ErrorCategory.CONFIGURATION)) == 4

    def test_with_all_keys(self, clean_env):
        with patch.dict(os.environ, ALL_KEYS):
            adapters = initialize_adapters()

        assert all(adapters.summary().values())
        assert adapters.polygon.engine.api_key == "polygon-key"

    def test_shared_error_log(self, clean_env):
        error_log = ErrorLog()
        with patch.dict(os.environ, ALL_KEYS):
            adapters = initialize_adapters(error_log=error_log)

        assert adapters.fmp.error_log is error_log
        assert adapters.yahoo_finance.error_log is error_log

    @pytest.mark.asyncio
    async def test_close_all(self, clean_env):
        with patch.dict(os.environ, {"POLYGON_API_KEY": "polygon-key"}):
            adapters = initialize_adapters()
        session = attach_session(adapters.polygon)

        await adapters.close()

        session.close.assert_awaited_once()


class TestConfigureFallbackChains:
    """Default chain order."""

    def test_full_chains(self, clean_env):
        with patch.dict(os.environ, ALL_KEYS):
            adapters = initialize_adapters()
        strategies = FallbackStrategies()

        configure_fallback_chains(strategies, adapters)

        assert chain_names(strategies, DataTypes.STOCK_QUOTE) == ["Polygon.io", "Alpha Vantage", "Yahoo Finance"]
        assert chain_names(strategies, DataTypes.COMPANY_PROFILE) == [
            "Alpha Vantage", "Financial Modeling Prep", "Yahoo Finance"
        ]
        assert chain_names(strategies, DataTypes.HISTORICAL_DATA) == ["Polygon.io", "Yahoo Finance"]
        assert chain_names(strategies, DataTypes.ECONOMIC_DATA) == ["Federal Reserve FRED"]
        assert chain_names(strategies, DataTypes.FINANCIAL_STATEMENTS) == ["Financial Modeling Prep"]
        assert chain_names(strategies, DataTypes.VALUATION_METRICS) == ["Financial Modeling Prep"]

    def test_keyless_chains(self, clean_env):
        strategies = FallbackStrategies()

        configure_fallback_chains(strategies, initialize_adapters())

        assert chain_names(strategies, DataTypes.STOCK_QUOTE) == ["Yahoo Finance"]
        assert chain_names(strategies, DataTypes.COMPANY_PROFILE) == ["Yahoo Finance"]
        assert DataTypes.ECONOMIC_DATA not in strategies.get_fallback_chains()
        assert DataTypes.FINANCIAL_STATEMENTS not in strategies.get_fallback_chains()

    @pytest.mark.asyncio
    async def test_missing_chain_is_soft(self, clean_env):
        strategies = FallbackStrategies()
        configure_fallback_chains(strategies, initialize_adapters())

        result = await strategies.fetch_with_fallback(
            DataTypes.ECONOMIC_DATA, lambda adapter: adapter.fetch("FEDFUNDS")
        )

        assert result.data is None
        assert result.warnings == ["No fallback chain configured for economic-data"]


class TestChainAdapterBuilders:
    """Typed operations shaped for chains."""

    def test_stock_quote_adapter_wraps_polygon(self):
        polygon = PolygonAdapter(api_key="k", cache_decorator=no_cache)

        chain_adapter = create_stock_quote_adapter(polygon)

        assert isinstance(chain_adapter, ChainAdapter)
        assert chain_adapter.source_name == "Polygon.io"
        assert chain_adapter.is_configured() is True
        assert chain_adapter.fetch == polygon.get_current_quote

    def test_unsupported_adapters_rejected(self):
        fred = FREDAdapter(api_key="k")

        with pytest.raises(TypeError):
            create_stock_quote_adapter(fred)
        with pytest.raises(TypeError):
            create_company_profile_adapter(fred)
        with pytest.raises(TypeError):
            create_historical_data_adapter(fred)

    @pytest.mark.asyncio
    async def test_yahoo_history_maps_days_to_range(self):
        yahoo = YahooFinanceAdapter(cache_decorator=no_cache, sleep=AsyncMock())
        chart = {"chart": {"result": [{
            "timestamp": [1700000000],
            "indicators": {"quote": [{"open": [1.0], "high": [1.0], "low": [1.0], "close": [1.0], "volume": [1]}]},
        }], "error": None}}
        session = attach_session(yahoo, build_response(chart))

        history = await create_historical_data_adapter(yahoo).fetch("AAPL", days=90)

        assert len(history.bars) == 1
        assert session.get.call_args.kwargs["params"]["range"] == "3mo"

    @pytest.mark.parametrize("days, range_", [
        (1, "5d"),
        (5, "5d"),
        (30, "1mo"),
        (90, "3mo"),
        (180, "6mo"),
        (365, "1y"),
        (700, "2y"),
        (2000, "5y"),
    ])
    def test_yahoo_range(self, days, range_):
        assert _yahoo_range(days) == range_


class TestSharedStrategies:
    """Process-wide instance."""

    def test_built_once(self, clean_env):
        first = get_configured_fallback_strategies()
        second = get_configured_fallback_strategies()

        assert first is second
        assert isinstance(get_initialized_adapters(), Adapters)

    def test_reset(self, clean_env):
        first = get_configured_fallback_strategies()

        reset_fallback_strategies()

        assert get_initialized_adapters() is None
        assert get_configured_fallback_strategies() is not first

    def test_error_log_used_on_first_build(self, clean_env):
        error_log = ErrorLog()

        strategies = get_configured_fallback_strategies(error_log=error_log)

        assert strategies.error_log is error_log
        assert get_initialized_adapters().yahoo_finance.error_log is error_log
