"""
Data Fetching Module

Rate-limited, retrying provider adapters and the fallback chain engine.

Module Structure:
- models.py: Request/response envelopes, rate-limit state, domain records
- cache.py: Injectable caching decorator and TTL configuration
- base_adapter.py: ProviderSpec, SourceAdapter engine, ProviderAdapter base
- alpha_vantage.py, fmp.py, polygon.py, fred.py, yahoo_finance.py: providers
- fallback.py: FallbackStrategies chain engine and degraded cache
- adapter_factory.py: Adapter initialization and default chains
- batch_fetcher.py: Batching and timeout helpers

Usage:
    from marketfeed.data import DataTypes, get_configured_fallback_strategies

    strategies = get_configured_fallback_strategies()
    result = await strategies.fetch_with_fallback(
        DataTypes.STOCK_QUOTE, lambda adapter: adapter.fetch("AAPL")
    )
    if result.data is None:
        print(result.warnings)
"""

from marketfeed.data.models import (
    CompanyProfile,
    DataRequest,
    DataResponse,
    EconomicObservation,
    FinancialData,
    FinancialStatement,
    HistoricalData,
    KeyMetrics,
    MacroSnapshot,
    OHLCVBar,
    RateLimitState,
    SectorPerformance,
    SectorRanking,
    StockCandidate,
    StockQuote,
    rank_sectors,
)

from marketfeed.data.cache import (
    CACHE_CONFIG,
    CacheKeys,
    cached_fetcher,
    no_cache,
)

from marketfeed.data.base_adapter import (
    ProviderAdapter,
    ProviderSpec,
    SourceAdapter,
)

# Providers
from marketfeed.data.alpha_vantage import AlphaVantageAdapter
from marketfeed.data.fmp import FMPAdapter
from marketfeed.data.fred import FREDAdapter
from marketfeed.data.polygon import PolygonAdapter
from marketfeed.data.yahoo_finance import YahooFinanceAdapter

from marketfeed.data.fallback import (
    CachedSnapshot,
    DataTypes,
    FallbackChain,
    FallbackResult,
    FallbackStrategies,
)

from marketfeed.data.adapter_factory import (
    Adapters,
    ChainAdapter,
    configure_fallback_chains,
    create_stock_quote_adapter,
    get_configured_fallback_strategies,
    get_initialized_adapters,
    initialize_adapters,
    reset_fallback_strategies,
)

from marketfeed.data.batch_fetcher import (
    batch_fetch,
    batch_fetch_stock_quotes,
    fetch_with_timeout,
    parallel_fetch,
)

__all__ = [
    # Models
    'CompanyProfile',
    'DataRequest',
    'DataResponse',
    'EconomicObservation',
    'FinancialData',
    'FinancialStatement',
    'HistoricalData',
    'KeyMetrics',
    'MacroSnapshot',
    'OHLCVBar',
    'RateLimitState',
    'SectorPerformance',
    'SectorRanking',
    'StockCandidate',
    'StockQuote',
    'rank_sectors',
    # Cache
    'CACHE_CONFIG',
    'CacheKeys',
    'cached_fetcher',
    'no_cache',
    # Engine
    'ProviderAdapter',
    'ProviderSpec',
    'SourceAdapter',
    # Providers
    'AlphaVantageAdapter',
    'FMPAdapter',
    'FREDAdapter',
    'PolygonAdapter',
    'YahooFinanceAdapter',
    # Fallback
    'CachedSnapshot',
    'DataTypes',
    'FallbackChain',
    'FallbackResult',
    'FallbackStrategies',
    # Factory
    'Adapters',
    'ChainAdapter',
    'configure_fallback_chains',
    'create_stock_quote_adapter',
    'get_configured_fallback_strategies',
    'get_initialized_adapters',
    'initialize_adapters',
    'reset_fallback_strategies',
    # Batch
    'batch_fetch',
    'batch_fetch_stock_quotes',
    'fetch_with_timeout',
    'parallel_fetch',
]
