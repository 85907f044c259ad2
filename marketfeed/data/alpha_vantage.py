"""
Alpha Vantage adapter.

Stock quotes (GLOBAL_QUOTE) and company fundamentals (OVERVIEW).
Free tier: 5 requests/minute, 25 requests/day.
"""

from datetime import datetime
from typing import Any

import structlog

from marketfeed.data.base_adapter import ProviderAdapter, ProviderSpec
from marketfeed.data.cache import CACHE_CONFIG
from marketfeed.data.models import (
    CompanyProfile,
    DataRequest,
    StockQuote,
    parse_int,
    parse_numeric,
)
from marketfeed.exceptions import RateLimitError, ValidationError

logger = structlog.get_logger(__name__)

SOURCE_NAME = "Alpha Vantage"


def inspect_alpha_vantage_payload(payload: Any, request: DataRequest, source: str) -> None:
    """Alpha Vantage reports errors and throttling inside 200 responses."""
    if not isinstance(payload, dict):
        return
    if payload.get("Error Message"):
        raise ValidationError(f"Alpha Vantage API Error: {payload['Error Message']}", source)
    if payload.get("Note"):
        raise RateLimitError(f"Alpha Vantage Rate Limit: {payload['Note']}", source, retry_after_seconds=60)
    if payload.get("Information"):
        raise RateLimitError(f"Alpha Vantage: {payload['Information']}", source, retry_after_seconds=60)


ALPHA_VANTAGE_SPEC = ProviderSpec(
    source_name=SOURCE_NAME,
    base_url="https://www.alphavantage.co",
    requests_per_minute=5,
    api_key_env="ALPHA_VANTAGE_API_KEY",
    api_key_param="apikey",
    inspect_payload=inspect_alpha_vantage_payload,
)


class AlphaVantageAdapter(ProviderAdapter):
    """
    Adapter for the Alpha Vantage API.

    Raises ConfigurationError at construction without ALPHA_VANTAGE_API_KEY.
    """

    SPEC = ALPHA_VANTAGE_SPEC

    def __init__(self, api_key=None, **kwargs):
        super().__init__(api_key, **kwargs)
        self._get_quote = self._cached(self._fetch_quote, "quote", CACHE_CONFIG['QUOTES'])
        self._get_overview = self._cached(
            self._fetch_company_overview, "overview", CACHE_CONFIG['COMPANY_PROFILES']
        )

    async def get_quote(self, symbol: str) -> StockQuote:
        """
        Fetch real-time stock quote for a symbol.

        Args:
            symbol: Stock ticker symbol (e.g., "AAPL")

        Raises:
            NotFoundError: Provider returned an empty quote
        """
        return await self._get_quote(symbol.strip().upper())

    async def get_company_overview(self, symbol: str) -> CompanyProfile:
        """Fetch company overview and fundamental data."""
        return await self._get_overview(symbol.strip().upper())

    async def _fetch_quote(self, symbol: str) -> StockQuote:
        request = DataRequest(
            endpoint="/query",
            params={"function": "GLOBAL_QUOTE", "symbol": symbol},
        )
        response = await self.fetch(request)
        return self.parse_quote(response.payload, symbol)

    async def _fetch_company_overview(self, symbol: str) -> CompanyProfile:
        request = DataRequest(
            endpoint="/query",
            params={"function": "OVERVIEW", "symbol": symbol},
        )
        response = await self.fetch(request)
        return self.parse_company_overview(response.payload, symbol)

    def parse_quote(self, data: Any, symbol: str) -> StockQuote:
        """Parse a GLOBAL_QUOTE payload."""
        global_quote = data.get("Global Quote") if isinstance(data, dict) else None

        if not global_quote:
            raise self._not_found(
                f"No quote data found for {symbol}",
                symbol=symbol, endpoint="GLOBAL_QUOTE",
            )
        if not isinstance(global_quote, dict):
            raise self._invalid(
                f"Malformed quote for {symbol}: 'Global Quote' is not an object",
                symbol=symbol, endpoint="GLOBAL_QUOTE",
            )

        price = parse_numeric(global_quote.get("05. price"))
        if price is None:
            raise self._not_found(
                f"Quote for {symbol} has no price",
                symbol=symbol, endpoint="GLOBAL_QUOTE",
            )

        return StockQuote(
            symbol=global_quote.get("01. symbol") or symbol,
            price=price,
            change=parse_numeric(global_quote.get("09. change")),
            change_percent=parse_numeric(global_quote.get("10. change percent")),
            # Missing volume is reported as 0 by convention
            volume=parse_int(global_quote.get("06. volume"), default=0),
            timestamp=datetime.now(),
            source=self.source_name,
        )

    def parse_company_overview(self, data: Any, symbol: str) -> CompanyProfile:
        """Parse an OVERVIEW payload; '-'/'None' values become None."""
        if not isinstance(data, dict) or not data.get("Symbol"):
            raise self._not_found(
                f"No company overview data found for {symbol}",
                symbol=symbol, endpoint="OVERVIEW",
            )

        dividend_yield = parse_numeric(data.get("DividendYield"))

        return CompanyProfile(
            symbol=data.get("Symbol") or symbol,
            name=data.get("Name") or symbol,
            description=data.get("Description") or "",
            sector=data.get("Sector") or "Unknown",
            industry=data.get("Industry") or "Unknown",
            market_cap=parse_numeric(data.get("MarketCapitalization")),
            pe_ratio=parse_numeric(data.get("PERatio")),
            # Convert to percentage
            dividend_yield=dividend_yield * 100 if dividend_yield is not None else None,
            beta=parse_numeric(data.get("Beta")),
            source=self.source_name,
        )
