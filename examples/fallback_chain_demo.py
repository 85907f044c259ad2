#!/usr/bin/env python3
"""
Fallback Chain Demo

Shows how the data layer degrades when providers are missing or failing:
- Which adapters are configured from the environment
- A stock quote fetched through the default fallback chain
- Macro data from FRED, cached for later degraded use
- Price history as a pandas DataFrame

Only Yahoo Finance works without an API key, so the demo runs with an empty
environment; set POLYGON_API_KEY, ALPHA_VANTAGE_API_KEY, FMP_API_KEY or
FRED_API_KEY to see longer chains.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from marketfeed.data import (
    DataTypes,
    get_configured_fallback_strategies,
    get_initialized_adapters,
)


def print_result(label, result):
    print(f"\n{label}")
    print(f"  source:        {result.source}")
    print(f"  used fallback: {result.used_fallback}")
    for warning in result.warnings:
        print(f"  warning:       {warning}")


async def demo_quote(strategies, symbol):
    print("=" * 80)
    print(f"DEMO 1: Stock quote for {symbol}")
    print("=" * 80)

    result = await strategies.fetch_with_fallback(
        DataTypes.STOCK_QUOTE, lambda adapter: adapter.fetch(symbol)
    )
    print_result("Quote", result)
    if result.data is not None:
        quote = result.data
        print(f"  price:         {quote.price}")
        print(f"  change:        {quote.change} ({quote.change_percent}%)")


async def demo_macro(strategies, adapters):
    print("\n" + "=" * 80)
    print("DEMO 2: Macro snapshot with degraded cache")
    print("=" * 80)

    if adapters.fred is None:
        print("\nFRED is not configured.")
        print_result("Cached macro fallback", strategies.get_macro_data_fallback())
        return

    snapshot = await adapters.fred.get_macro_snapshot()
    strategies.cache_macro_data(snapshot)
    print(f"\n  interest rate:     {snapshot.interest_rate}")
    print(f"  inflation rate:    {snapshot.inflation_rate}")
    print(f"  unemployment rate: {snapshot.unemployment_rate}")
    print_result("Cached macro fallback", strategies.get_macro_data_fallback())


async def demo_history(strategies, symbol):
    print("\n" + "=" * 80)
    print(f"DEMO 3: 30 days of prices for {symbol}")
    print("=" * 80)

    result = await strategies.fetch_with_fallback(
        DataTypes.HISTORICAL_DATA, lambda adapter: adapter.fetch(symbol, days=30)
    )
    print_result("History", result)
    if result.data is not None:
        print(result.data.to_frame().tail())


async def main(symbol="AAPL"):
    strategies = get_configured_fallback_strategies()
    adapters = get_initialized_adapters()

    print("\nConfigured adapters:")
    for name, configured in adapters.summary().items():
        print(f"  {name:15s} {'yes' if configured else 'no'}")

    try:
        await demo_quote(strategies, symbol)
        await demo_macro(strategies, adapters)
        await demo_history(strategies, symbol)
    finally:
        await adapters.close()

    stats = strategies.error_log.get_stats()
    print(f"\nErrors logged: {stats['total']} {stats['by_provider']}")


if __name__ == "__main__":
    asyncio.run(main(*sys.argv[1:2]))
