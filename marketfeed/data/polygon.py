"""
Polygon.io adapter.

Real-time quotes and historical price data.

Rate Limits:
- Free tier: 5 requests per minute
- Starter: 100 requests per minute
- Developer: 1000 requests per minute
"""

from datetime import date, datetime, timedelta
from typing import Any, List, Optional

import structlog

from marketfeed.data.base_adapter import ProviderAdapter, ProviderSpec
from marketfeed.data.cache import CACHE_CONFIG
from marketfeed.data.models import (
    DataRequest,
    HistoricalData,
    OHLCVBar,
    StockQuote,
    parse_int,
    parse_numeric,
)
from marketfeed.exceptions import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

SOURCE_NAME = "Polygon.io"
TIMESPANS = ("minute", "hour", "day", "week", "month")


def inspect_polygon_payload(payload: Any, request: DataRequest, source: str) -> None:
    """Polygon signals errors with a ``status`` field on 200 responses."""
    if not isinstance(payload, dict):
        return
    status = payload.get("status")
    if status == "NOT_FOUND":
        raise NotFoundError(
            f"Polygon.io: {payload.get('message') or 'resource not found'}", source
        )
    if status == "ERROR" or payload.get("error"):
        message = payload.get("error") or payload.get("message") or "Unknown error"
        raise ValidationError(f"Polygon.io API Error: {message}", source)


POLYGON_SPEC = ProviderSpec(
    source_name=SOURCE_NAME,
    base_url="https://api.polygon.io",
    requests_per_minute=5,
    api_key_env="POLYGON_API_KEY",
    api_key_param="apiKey",
    inspect_payload=inspect_polygon_payload,
)


def _from_epoch(value: Any, per_second: int) -> Optional[datetime]:
    number = parse_numeric(value)
    if number is None:
        return None
    try:
        return datetime.fromtimestamp(number / per_second)
    except (OverflowError, OSError, ValueError):
        return None


def _from_millis(value: Any) -> Optional[datetime]:
    return _from_epoch(value, 1000)


def _from_nanos(value: Any) -> Optional[datetime]:
    return _from_epoch(value, 1_000_000_000)


def _format_date(value) -> str:
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return str(value)


class PolygonAdapter(ProviderAdapter):
    """Adapter for the Polygon.io API."""

    SPEC = POLYGON_SPEC

    def __init__(self, api_key=None, **kwargs):
        super().__init__(api_key, **kwargs)
        self._current_quote = self._cached(self._fetch_current_quote, "last-trade", CACHE_CONFIG['QUOTES'])
        self._previous_close = self._cached(self._fetch_previous_close, "prev-close", CACHE_CONFIG['QUOTES'])
        self._aggregates = self._cached(self._fetch_aggregates, "aggregates", CACHE_CONFIG['HISTORICAL_DATA'])

    async def get_current_quote(self, symbol: str) -> StockQuote:
        """
        Fetch current quote using the last trade endpoint.

        Last trade carries no change information, so ``change`` and
        ``change_percent`` are None.
        """
        return await self._current_quote(symbol.strip().upper())

    async def get_previous_close(self, symbol: str) -> StockQuote:
        """Fetch the previous trading day's close."""
        return await self._previous_close(symbol.strip().upper())

    async def get_aggregates(
        self,
        symbol: str,
        timespan: str,
        from_date,
        to_date,
        multiplier: int = 1
    ) -> HistoricalData:
        """
        Fetch aggregated OHLCV bars.

        Args:
            symbol: Stock ticker symbol
            timespan: 'minute', 'hour', 'day', 'week' or 'month'
            from_date: Start date (date or YYYY-MM-DD)
            to_date: End date (date or YYYY-MM-DD)
            multiplier: Size of the timespan multiplier
        """
        if timespan not in TIMESPANS:
            raise ValueError(f"timespan must be one of {TIMESPANS}, got {timespan!r}")
        return await self._aggregates(
            symbol.strip().upper(),
            timespan,
            _format_date(from_date),
            _format_date(to_date),
            multiplier,
        )

    async def get_daily_prices(self, symbol: str, days: int = 30) -> HistoricalData:
        """Daily bars for the last ``days`` calendar days."""
        to_date = date.today()
        from_date = to_date - timedelta(days=days)
        return await self.get_aggregates(symbol, "day", from_date, to_date, 1)

    async def _fetch_current_quote(self, symbol: str) -> StockQuote:
        response = await self.fetch(DataRequest(endpoint=f"/v2/last/trade/{symbol}"))
        return self.parse_current_quote(response.payload, symbol)

    async def _fetch_previous_close(self, symbol: str) -> StockQuote:
        request = DataRequest(
            endpoint=f"/v2/aggs/ticker/{symbol}/prev",
            params={"adjusted": "true"},
        )
        response = await self.fetch(request)
        return self.parse_previous_close(response.payload, symbol)

    async def _fetch_aggregates(
        self,
        symbol: str,
        timespan: str,
        from_str: str,
        to_str: str,
        multiplier: int
    ) -> HistoricalData:
        request = DataRequest(
            endpoint=f"/v2/aggs/ticker/{symbol}/range/{multiplier}/{timespan}/{from_str}/{to_str}",
            params={"adjusted": "true", "sort": "asc"},
        )
        response = await self.fetch(request)
        return self.parse_aggregates(response.payload, symbol)

    def parse_current_quote(self, data: Any, symbol: str) -> StockQuote:
        result = data.get("results") if isinstance(data, dict) else None
        if not result:
            raise self._not_found(
                f"No quote data found for {symbol}",
                symbol=symbol, endpoint="last/trade",
            )
        if not isinstance(result, dict):
            raise self._invalid(
                f"Malformed last trade for {symbol}: expected an object",
                symbol=symbol, endpoint="last/trade",
            )

        price = parse_numeric(result.get("p"))
        if price is None:
            raise self._not_found(
                f"Last trade for {symbol} has no price",
                symbol=symbol, endpoint="last/trade",
            )

        return StockQuote(
            symbol=result.get("T") or symbol,
            price=price,
            volume=parse_int(result.get("s"), default=0),
            # Nanosecond SIP timestamp
            timestamp=_from_nanos(result.get("t")),
            source=self.source_name,
        )

    def _results_list(self, data: Any, symbol: str, endpoint: str, what: str) -> List[dict]:
        """The non-empty ``results`` array of bar objects, or a classified failure."""
        results = data.get("results") if isinstance(data, dict) else None
        if not results:
            raise self._not_found(
                f"No {what} data found for {symbol}",
                symbol=symbol, endpoint=endpoint,
            )
        if not isinstance(results, list) or not all(isinstance(bar, dict) for bar in results):
            raise self._invalid(
                f"Malformed {what} results for {symbol}: expected a list of bars",
                symbol=symbol, endpoint=endpoint,
            )
        return results

    def parse_previous_close(self, data: Any, symbol: str) -> StockQuote:
        bar = self._results_list(data, symbol, "aggs/prev", "previous close")[0]
        close = parse_numeric(bar.get("c"))
        if close is None:
            raise self._not_found(
                f"Previous close for {symbol} has no close price",
                symbol=symbol, endpoint="aggs/prev",
            )

        open_price = parse_numeric(bar.get("o"))
        change: Optional[float] = None
        change_percent: Optional[float] = None
        if open_price is not None:
            change = close - open_price
            change_percent = (change / open_price) * 100 if open_price else None

        return StockQuote(
            symbol=data.get("ticker") or symbol,
            price=close,
            change=change,
            change_percent=change_percent,
            volume=parse_int(bar.get("v"), default=0),
            timestamp=_from_millis(bar.get("t")),
            source=self.source_name,
        )

    def parse_aggregates(self, data: Any, symbol: str) -> HistoricalData:
        """Bars in payload order; a bar without a usable timestamp fails the whole response."""
        results = self._results_list(data, symbol, "aggs/range", "aggregate")

        bars = []
        for bar in results:
            timestamp = _from_millis(bar.get("t"))
            if timestamp is None:
                raise self._invalid(
                    f"Aggregate bar for {symbol} has no valid timestamp",
                    symbol=symbol, endpoint="aggs/range",
                )
            bars.append(OHLCVBar(
                timestamp=timestamp,
                open=parse_numeric(bar.get("o")),
                high=parse_numeric(bar.get("h")),
                low=parse_numeric(bar.get("l")),
                close=parse_numeric(bar.get("c")),
                volume=parse_int(bar.get("v"), default=0),
            ))

        return HistoricalData(
            symbol=data.get("ticker") or symbol,
            bars=bars,
            source=self.source_name,
        )
