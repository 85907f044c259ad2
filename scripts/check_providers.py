#!/usr/bin/env python3
"""
Check which data providers are usable.

Reports the credentials found in the environment and, with --live, makes one
quote request per configured quote source.

Exit code is 1 when no keyed provider is configured (or a live check fails).
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from marketfeed.config import validate_environment_variables
from marketfeed.data import create_stock_quote_adapter, initialize_adapters
from marketfeed.exceptions import ConfigurationError, DataSourceError


def check_credentials():
    print("Checking credentials...")
    try:
        status = validate_environment_variables(require_any=True)
    except ConfigurationError as e:
        print(f"  {e.message}")
        return False

    for provider, present in status.items():
        print(f"  {provider:25s} {'ok' if present else 'missing'}")
    return True


async def check_live(symbol):
    print(f"\nFetching {symbol} from each quote source...")
    adapters = initialize_adapters()
    sources = [adapters.polygon, adapters.alpha_vantage, adapters.yahoo_finance]
    ok = True

    try:
        for adapter in sources:
            if adapter is None:
                continue
            chain_adapter = create_stock_quote_adapter(adapter)
            try:
                quote = await chain_adapter.fetch(symbol)
                print(f"  {chain_adapter.source_name:25s} {quote.price}")
            except DataSourceError as e:
                ok = False
                print(f"  {chain_adapter.source_name:25s} FAILED ({e.category.value}): {e.message}")
    finally:
        await adapters.close()

    return ok


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--live", action="store_true", help="make one quote request per source")
    parser.add_argument("--symbol", default="AAPL")
    args = parser.parse_args()

    ok = check_credentials()
    if args.live:
        ok = asyncio.run(check_live(args.symbol)) and ok

    print("\nAll checks passed" if ok else "\nSome checks failed")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
