"""
Adapter construction and default fallback chain wiring.

Keyed adapters whose credentials are missing are left out instead of failing
the whole process; Yahoo Finance needs no key and is always available as the
last resort for quotes, profiles and price history.

Usage:
    strategies = get_configured_fallback_strategies()
    result = await strategies.fetch_with_fallback(
        DataTypes.STOCK_QUOTE, lambda adapter: adapter.fetch("AAPL")
    )
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import structlog

from marketfeed.data.alpha_vantage import AlphaVantageAdapter
from marketfeed.data.base_adapter import ProviderAdapter
from marketfeed.data.fallback import DataTypes, FallbackChain, FallbackStrategies
from marketfeed.data.fmp import FMPAdapter
from marketfeed.data.fred import FREDAdapter
from marketfeed.data.polygon import PolygonAdapter
from marketfeed.data.yahoo_finance import YahooFinanceAdapter
from marketfeed.error_log import ErrorLog
from marketfeed.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

A = TypeVar("A", bound=ProviderAdapter)


@dataclass
class ChainAdapter:
    """
    One typed operation of a provider, shaped for a fallback chain.

    ``fetch`` takes whatever arguments the operation needs (symbol, series id,
    ...), so a chain's closure can call it the same way for every source.
    """
    source_name: str
    is_configured: Callable[[], bool]
    fetch: Callable[..., Awaitable[Any]]


@dataclass
class Adapters:
    """Initialized provider adapters; None where a key is missing."""
    yahoo_finance: YahooFinanceAdapter
    alpha_vantage: Optional[AlphaVantageAdapter] = None
    fmp: Optional[FMPAdapter] = None
    polygon: Optional[PolygonAdapter] = None
    fred: Optional[FREDAdapter] = None

    def summary(self) -> Dict[str, bool]:
        return {
            "alpha_vantage": self.alpha_vantage is not None,
            "fmp": self.fmp is not None,
            "polygon": self.polygon is not None,
            "fred": self.fred is not None,
            "yahoo_finance": True,
        }

    async def close(self) -> None:
        for adapter in (self.alpha_vantage, self.fmp, self.polygon, self.fred, self.yahoo_finance):
            if adapter is not None:
                await adapter.close()


def _safe_initialize(name: str, factory: Callable[[], A]) -> Optional[A]:
    """Build an adapter, or None when its configuration is missing."""
    try:
        return factory()
    except ConfigurationError as e:
        logger.warning("adapter_not_configured", adapter=name, error=e.message)
        return None


def initialize_adapters(error_log: Optional[ErrorLog] = None, **adapter_kwargs) -> Adapters:
    """
    Construct every provider adapter.

    Args:
        error_log: Shared error log handed to each adapter
        **adapter_kwargs: Passed through to each adapter (cache_decorator, clock, ...)
    """
    error_log = error_log if error_log is not None else ErrorLog()
    kwargs = dict(adapter_kwargs, error_log=error_log)

    adapters = Adapters(
        alpha_vantage=_safe_initialize("Alpha Vantage", lambda: AlphaVantageAdapter(**kwargs)),
        fmp=_safe_initialize("Financial Modeling Prep", lambda: FMPAdapter(**kwargs)),
        polygon=_safe_initialize("Polygon.io", lambda: PolygonAdapter(**kwargs)),
        fred=_safe_initialize("FRED", lambda: FREDAdapter(**kwargs)),
        yahoo_finance=YahooFinanceAdapter(**kwargs),
    )

    logger.info("adapters_initialized", **adapters.summary())
    return adapters


# =============================================================================
# Chain adapter builders
# =============================================================================

def _chain_adapter(adapter: ProviderAdapter, fetch: Callable[..., Awaitable[Any]]) -> ChainAdapter:
    return ChainAdapter(
        source_name=adapter.source_name,
        is_configured=adapter.is_configured,
        fetch=fetch,
    )


def create_stock_quote_adapter(adapter: ProviderAdapter) -> ChainAdapter:
    """``fetch(symbol) -> StockQuote``"""
    if isinstance(adapter, PolygonAdapter):
        return _chain_adapter(adapter, adapter.get_current_quote)
    if isinstance(adapter, AlphaVantageAdapter):
        return _chain_adapter(adapter, adapter.get_quote)
    if isinstance(adapter, YahooFinanceAdapter):
        return _chain_adapter(adapter, adapter.fetch_quote)
    raise TypeError(f"{adapter.source_name} does not provide stock quotes")


def create_company_profile_adapter(adapter: ProviderAdapter) -> ChainAdapter:
    """``fetch(symbol) -> CompanyProfile``"""
    if isinstance(adapter, AlphaVantageAdapter):
        return _chain_adapter(adapter, adapter.get_company_overview)
    if isinstance(adapter, FMPAdapter):
        return _chain_adapter(adapter, adapter.get_company_profile)
    if isinstance(adapter, YahooFinanceAdapter):
        return _chain_adapter(adapter, adapter.fetch_company_profile)
    raise TypeError(f"{adapter.source_name} does not provide company profiles")


def _yahoo_range(days: int) -> str:
    """Smallest Yahoo chart range covering ``days`` calendar days."""
    for limit, range_ in ((5, "5d"), (31, "1mo"), (92, "3mo"), (183, "6mo"), (366, "1y"), (731, "2y")):
        if days <= limit:
            return range_
    return "5y"


def create_historical_data_adapter(adapter: ProviderAdapter) -> ChainAdapter:
    """``fetch(symbol, days=30) -> HistoricalData``"""
    if isinstance(adapter, PolygonAdapter):
        return _chain_adapter(adapter, adapter.get_daily_prices)
    if isinstance(adapter, YahooFinanceAdapter):
        async def fetch(symbol: str, days: int = 30):
            return await adapter.fetch_historical_prices(symbol, range_=_yahoo_range(days))
        return _chain_adapter(adapter, fetch)
    raise TypeError(f"{adapter.source_name} does not provide historical data")


def create_economic_data_adapter(adapter: FREDAdapter) -> ChainAdapter:
    """``fetch(series_id, limit=1) -> List[EconomicObservation]``"""
    return _chain_adapter(adapter, adapter.get_series)


def create_financial_statements_adapter(adapter: FMPAdapter) -> ChainAdapter:
    """``fetch(symbol, period='annual', limit=5) -> List[FinancialStatement]``"""
    return _chain_adapter(adapter, adapter.get_income_statement)


def create_valuation_metrics_adapter(adapter: FMPAdapter) -> ChainAdapter:
    """``fetch(symbol, period='annual', limit=5) -> List[KeyMetrics]``"""
    return _chain_adapter(adapter, adapter.get_key_metrics)


# =============================================================================
# Chain configuration
# =============================================================================

def _register(
    strategies: FallbackStrategies,
    data_type: str,
    candidates: List[Optional[ProviderAdapter]],
    builder: Callable[[Any], ChainAdapter],
) -> None:
    chain = [builder(adapter) for adapter in candidates if adapter is not None]
    if not chain:
        logger.info("fallback_chain_unavailable", data_type=data_type)
        return

    strategies.register_fallback_chain(data_type, FallbackChain(primary=chain[0], fallbacks=chain[1:]))
    logger.info(
        "fallback_chain_configured",
        data_type=data_type,
        chain=" -> ".join(adapter.source_name for adapter in chain),
    )


def configure_fallback_chains(strategies: FallbackStrategies, adapters: Adapters) -> None:
    """
    Register the default chains.

    - stock-quote: Polygon -> Alpha Vantage -> Yahoo Finance
    - company-profile: Alpha Vantage -> FMP -> Yahoo Finance
    - historical-data: Polygon -> Yahoo Finance
    - economic-data: FRED
    - financial-statements: FMP
    - valuation-metrics: FMP
    """
    _register(
        strategies, DataTypes.STOCK_QUOTE,
        [adapters.polygon, adapters.alpha_vantage, adapters.yahoo_finance],
        create_stock_quote_adapter,
    )
    _register(
        strategies, DataTypes.COMPANY_PROFILE,
        [adapters.alpha_vantage, adapters.fmp, adapters.yahoo_finance],
        create_company_profile_adapter,
    )
    _register(
        strategies, DataTypes.HISTORICAL_DATA,
        [adapters.polygon, adapters.yahoo_finance],
        create_historical_data_adapter,
    )
    _register(strategies, DataTypes.ECONOMIC_DATA, [adapters.fred], create_economic_data_adapter)
    _register(strategies, DataTypes.FINANCIAL_STATEMENTS, [adapters.fmp], create_financial_statements_adapter)
    _register(strategies, DataTypes.VALUATION_METRICS, [adapters.fmp], create_valuation_metrics_adapter)


# Shared instance, built on first use
_fallback_strategies: Optional[FallbackStrategies] = None
_adapters: Optional[Adapters] = None


def get_configured_fallback_strategies(error_log: Optional[ErrorLog] = None) -> FallbackStrategies:
    """
    The process-wide FallbackStrategies with default chains registered.

    ``error_log`` is only used the first time the instance is built.
    """
    global _fallback_strategies, _adapters

    if _fallback_strategies is None:
        error_log = error_log if error_log is not None else ErrorLog()
        _adapters = initialize_adapters(error_log=error_log)
        strategies = FallbackStrategies(error_log=error_log)
        configure_fallback_chains(strategies, _adapters)
        _fallback_strategies = strategies

    return _fallback_strategies


def get_initialized_adapters() -> Optional[Adapters]:
    return _adapters


def reset_fallback_strategies() -> None:
    """Forget the shared instance (tests)."""
    global _fallback_strategies, _adapters
    _fallback_strategies = None
    _adapters = None
