"""
Yahoo Finance adapter.

Unauthenticated last-resort source for quotes, company profiles, price
history, fundamentals and sector ETF performance. No API key is needed, so
this adapter is always configured.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from marketfeed.data.base_adapter import ProviderAdapter, ProviderSpec
from marketfeed.data.cache import CACHE_CONFIG
from marketfeed.data.models import (
    CompanyProfile,
    DataRequest,
    FinancialData,
    HistoricalData,
    OHLCVBar,
    SectorPerformance,
    StockQuote,
    parse_int,
    parse_numeric,
)
from marketfeed.exceptions import DataSourceError, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

SOURCE_NAME = "Yahoo Finance"

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json",
}

# SPDR sector ETFs
SECTOR_ETFS = {
    "XLK": "Technology",
    "XLF": "Financials",
    "XLV": "Healthcare",
    "XLE": "Energy",
    "XLI": "Industrials",
    "XLY": "Consumer Discretionary",
    "XLP": "Consumer Staples",
    "XLU": "Utilities",
    "XLRE": "Real Estate",
    "XLB": "Materials",
    "XLC": "Communication Services",
}

# Trading days per performance horizon
RETURN_PERIODS = {
    "performance_1d": 1,
    "performance_1w": 5,
    "performance_1m": 21,
    "performance_3m": 63,
    "performance_1y": 252,
}

FINANCIAL_MODULES = (
    "financialData,defaultKeyStatistics,incomeStatementHistory,"
    "balanceSheetHistory,cashflowStatementHistory"
)

# Top-level keys Yahoo nests its results (and errors) under
_ENVELOPES = ("quoteResponse", "quoteSummary", "chart", "finance")


def _envelope_error(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    for key in _ENVELOPES:
        section = payload.get(key)
        if isinstance(section, dict) and isinstance(section.get("error"), dict):
            return section["error"]
    return None


def inspect_yahoo_payload(payload: Any, request: DataRequest, source: str) -> None:
    if not isinstance(payload, dict):
        return
    error = _envelope_error(payload)
    if error is None:
        return
    code = error.get("code") or "Error"
    description = error.get("description") or code
    if code == "Not Found":
        raise NotFoundError(f"Yahoo Finance: {description}", source)
    raise ValidationError(f"Yahoo Finance API Error: {description}", source)


YAHOO_FINANCE_SPEC = ProviderSpec(
    source_name=SOURCE_NAME,
    base_url="https://query2.finance.yahoo.com",
    requests_per_minute=120,
    requires_api_key=False,
    default_headers=BROWSER_HEADERS,
    inspect_payload=inspect_yahoo_payload,
)


def _raw(value: Any) -> Optional[float]:
    # quoteSummary wraps numbers as {"raw": ..., "fmt": ...}
    if isinstance(value, dict):
        value = value.get("raw")
    return parse_numeric(value)


def _from_epoch_seconds(value: Any) -> Optional[datetime]:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(value)
    except (OverflowError, OSError, ValueError):
        return None


def _period_return(closes: List[float], periods: int) -> Optional[float]:
    """Percent change over the last ``periods`` closes."""
    if len(closes) < periods + 1:
        return None
    current, past = closes[-1], closes[-1 - periods]
    if not past:
        return None
    return (current - past) / past * 100


def _annualized_growth(values: List[Optional[float]]) -> Optional[float]:
    """CAGR between the newest (first) and oldest (last) positive values."""
    positive = [v for v in values if v is not None and v > 0]
    if len(positive) < 2:
        return None
    latest, oldest = positive[0], positive[-1]
    years = len(positive) - 1
    return ((latest / oldest) ** (1 / years) - 1) * 100


class YahooFinanceAdapter(ProviderAdapter):
    """Adapter for the public Yahoo Finance endpoints."""

    SPEC = YAHOO_FINANCE_SPEC

    def __init__(self, api_key=None, **kwargs):
        super().__init__(api_key, **kwargs)
        self._quote = self._cached(self._fetch_quote, "quote", CACHE_CONFIG['QUOTES'])
        self._profile = self._cached(self._fetch_company_profile, "profile", CACHE_CONFIG['COMPANY_PROFILES'])
        self._history = self._cached(self._fetch_historical_prices, "chart", CACHE_CONFIG['HISTORICAL_DATA'])
        self._financials = self._cached(
            self._fetch_financial_data, "financial-data", CACHE_CONFIG['FINANCIAL_STATEMENTS']
        )
        self._sectors = self._cached(self._fetch_sector_data, "sector-data", CACHE_CONFIG['SECTOR_DATA'])

    async def fetch_quote(self, ticker: str) -> StockQuote:
        """Fetch the regular-market quote for a ticker."""
        return await self._quote(ticker.strip().upper())

    async def fetch_company_profile(self, ticker: str) -> CompanyProfile:
        """Fetch asset/summary profile for a ticker."""
        return await self._profile(ticker.strip().upper())

    async def fetch_historical_prices(
        self,
        ticker: str,
        range_: str = "1mo",
        interval: str = "1d"
    ) -> HistoricalData:
        """
        Fetch chart bars.

        Args:
            ticker: Stock ticker symbol
            range_: Yahoo range string ('5d', '1mo', '1y', ...)
            interval: Bar interval ('1d', '1wk', ...)
        """
        return await self._history(ticker.strip().upper(), range_, interval)

    async def fetch_financial_data(self, ticker: str) -> FinancialData:
        """
        Fetch fundamentals from the quoteSummary financial modules.

        Growth rates are annualized over the statement history Yahoo returns
        (up to four fiscal years).
        """
        return await self._financials(ticker.strip().upper())

    async def fetch_sector_data(self) -> List[SectorPerformance]:
        """
        Trailing performance of the eleven SPDR sector ETFs.

        An ETF whose chart fails is left out; if every one fails the last
        failure is raised.
        """
        return await self._sectors()

    async def _fetch_quote(self, ticker: str) -> StockQuote:
        request = DataRequest(endpoint="/v7/finance/quote", params={"symbols": ticker})
        response = await self.fetch(request)
        return self.parse_quote(response.payload, ticker)

    async def _fetch_company_profile(self, ticker: str) -> CompanyProfile:
        request = DataRequest(
            endpoint=f"/v10/finance/quoteSummary/{ticker}",
            params={"modules": "assetProfile,summaryProfile"},
        )
        response = await self.fetch(request)
        return self.parse_company_profile(response.payload, ticker)

    async def _fetch_historical_prices(self, ticker: str, range_: str, interval: str) -> HistoricalData:
        request = DataRequest(
            endpoint=f"/v8/finance/chart/{ticker}",
            params={"range": range_, "interval": interval},
        )
        response = await self.fetch(request)
        return self.parse_chart(response.payload, ticker)

    async def _fetch_financial_data(self, ticker: str) -> FinancialData:
        request = DataRequest(
            endpoint=f"/v10/finance/quoteSummary/{ticker}",
            params={"modules": FINANCIAL_MODULES},
        )
        response = await self.fetch(request)
        return self.parse_financial_data(response.payload, ticker)

    async def _fetch_sector_performance(self, etf: str) -> SectorPerformance:
        history = await self._fetch_historical_prices(etf, "1y", "1d")
        return self.parse_sector_performance(history, etf)

    async def _fetch_sector_data(self) -> List[SectorPerformance]:
        outcomes = await asyncio.gather(
            *(self._fetch_sector_performance(etf) for etf in SECTOR_ETFS),
            return_exceptions=True,
        )

        sectors: List[SectorPerformance] = []
        last_error: Optional[DataSourceError] = None
        for etf, outcome in zip(SECTOR_ETFS, outcomes):
            if isinstance(outcome, DataSourceError):
                logger.warning("sector_etf_unavailable", etf=etf, error=outcome.message)
                last_error = outcome
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            sectors.append(outcome)

        if not sectors:
            raise last_error
        return sectors

    # ------------------------------------------------------------------
    # Payload parsing
    # ------------------------------------------------------------------

    def _first_result(self, data: Any, envelope: str, ticker: str, endpoint: str, what: str) -> Dict[str, Any]:
        """``data[envelope]['result'][0]``, checked at every level."""
        if not isinstance(data, dict):
            raise self._invalid(
                f"Malformed {what} response for {ticker}: expected an object",
                symbol=ticker, endpoint=endpoint,
            )
        section = data.get(envelope)
        if section is not None and not isinstance(section, dict):
            raise self._invalid(
                f"Malformed {what} response for {ticker}: '{envelope}' is not an object",
                symbol=ticker, endpoint=endpoint,
            )
        results = (section or {}).get("result")
        if not results:
            raise self._not_found(
                f"No {what} data found for {ticker}",
                symbol=ticker, endpoint=endpoint,
            )
        if not isinstance(results, list) or not isinstance(results[0], dict):
            raise self._invalid(
                f"Malformed {what} response for {ticker}: expected a list of result objects",
                symbol=ticker, endpoint=endpoint,
            )
        return results[0]

    def _module(self, result: Dict[str, Any], name: str, ticker: str, endpoint: str) -> Dict[str, Any]:
        """A quoteSummary module; {} when absent."""
        module = result.get(name)
        if module is None:
            return {}
        if not isinstance(module, dict):
            raise self._invalid(
                f"Malformed quoteSummary for {ticker}: '{name}' is not an object",
                symbol=ticker, endpoint=endpoint,
            )
        return module

    def _statements(
        self,
        result: Dict[str, Any],
        module_name: str,
        list_key: str,
        ticker: str,
        endpoint: str,
    ) -> List[Dict[str, Any]]:
        """Statement history rows of a quoteSummary module, newest first."""
        rows = self._module(result, module_name, ticker, endpoint).get(list_key) or []
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise self._invalid(
                f"Malformed quoteSummary for {ticker}: '{module_name}.{list_key}' is not a list of statements",
                symbol=ticker, endpoint=endpoint,
            )
        return rows

    def parse_quote(self, data: Any, ticker: str) -> StockQuote:
        result = self._first_result(data, "quoteResponse", ticker, "v7/finance/quote", "quote")
        price = parse_numeric(result.get("regularMarketPrice"))

        if price is None:
            raise self._not_found(
                f"Quote for {ticker} has no price",
                symbol=ticker, endpoint="v7/finance/quote",
            )

        return StockQuote(
            symbol=result.get("symbol") or ticker,
            price=price,
            change=parse_numeric(result.get("regularMarketChange")),
            change_percent=parse_numeric(result.get("regularMarketChangePercent")),
            volume=parse_int(result.get("regularMarketVolume"), default=0),
            bid=parse_numeric(result.get("bid")),
            ask=parse_numeric(result.get("ask")),
            timestamp=datetime.now(),
            source=self.source_name,
        )

    def parse_company_profile(self, data: Any, ticker: str) -> CompanyProfile:
        endpoint = "v10/finance/quoteSummary"
        result = self._first_result(data, "quoteSummary", ticker, endpoint, "profile")
        profile = self._module(result, "assetProfile", ticker, endpoint)
        summary = self._module(result, "summaryProfile", ticker, endpoint)

        if not profile and not summary:
            raise self._not_found(
                f"No profile data found for {ticker}",
                symbol=ticker, endpoint=endpoint,
            )

        def pick(key: str):
            return profile.get(key) or summary.get(key)

        return CompanyProfile(
            symbol=ticker,
            name=pick("longName") or ticker,
            description=pick("longBusinessSummary") or "",
            sector=pick("sector") or "Unknown",
            industry=pick("industry") or "Unknown",
            market_cap=_raw(pick("marketCap")),
            beta=_raw(pick("beta")),
            source=self.source_name,
        )

    def parse_chart(self, data: Any, ticker: str) -> HistoricalData:
        endpoint = "v8/finance/chart"
        result = self._first_result(data, "chart", ticker, endpoint, "chart")
        timestamps = result.get("timestamp")

        if not timestamps:
            raise self._not_found(
                f"No chart data found for {ticker}",
                symbol=ticker, endpoint=endpoint,
            )

        indicators = result.get("indicators") or {}
        quotes = indicators.get("quote") if isinstance(indicators, dict) else None
        series = quotes[0] if isinstance(quotes, list) and quotes else None
        if (
            not isinstance(timestamps, list)
            or not isinstance(series, dict)
            or not all(isinstance(series.get(name) or [], list)
                       for name in ("open", "high", "low", "close", "volume"))
        ):
            raise self._invalid(
                f"Malformed chart for {ticker}: expected timestamp and indicator arrays",
                symbol=ticker, endpoint=endpoint,
            )

        def column(name: str):
            values = series.get(name) or []
            return lambda i: values[i] if i < len(values) else None

        opens, highs, lows, closes, volumes = (
            column("open"), column("high"), column("low"), column("close"), column("volume")
        )

        bars = []
        for i, ts in enumerate(timestamps):
            timestamp = _from_epoch_seconds(ts)
            if timestamp is None:
                raise self._invalid(
                    f"Malformed chart for {ticker}: invalid timestamp {ts!r}",
                    symbol=ticker, endpoint=endpoint,
                )
            bars.append(OHLCVBar(
                timestamp=timestamp,
                open=parse_numeric(opens(i)),
                high=parse_numeric(highs(i)),
                low=parse_numeric(lows(i)),
                close=parse_numeric(closes(i)),
                volume=parse_int(volumes(i), default=0),
            ))

        return HistoricalData(symbol=ticker, bars=bars, source=self.source_name)

    def parse_sector_performance(self, history: HistoricalData, etf: str) -> SectorPerformance:
        closes = [bar.close for bar in history.bars if bar.close is not None]
        if not closes:
            raise self._not_found(
                f"No closing prices found for {etf}",
                symbol=etf, endpoint="v8/finance/chart",
            )

        return SectorPerformance(
            sector_name=SECTOR_ETFS.get(etf, etf),
            etf_symbol=etf,
            source=self.source_name,
            **{field: _period_return(closes, periods) for field, periods in RETURN_PERIODS.items()},
        )

    def parse_financial_data(self, data: Any, ticker: str) -> FinancialData:
        endpoint = "v10/finance/quoteSummary"
        result = self._first_result(data, "quoteSummary", ticker, endpoint, "financial")
        financial = self._module(result, "financialData", ticker, endpoint)
        key_stats = self._module(result, "defaultKeyStatistics", ticker, endpoint)
        income = self._statements(result, "incomeStatementHistory", "incomeStatementHistory", ticker, endpoint)
        balance = self._statements(result, "balanceSheetHistory", "balanceSheetStatements", ticker, endpoint)
        cashflow = self._statements(result, "cashflowStatementHistory", "cashflowStatements", ticker, endpoint)

        if not (financial or key_stats or income or balance or cashflow):
            raise self._not_found(
                f"No financial data found for {ticker}",
                symbol=ticker, endpoint=endpoint,
            )

        latest_income = income[0] if income else {}
        latest_balance = balance[0] if balance else {}
        latest_cashflow = cashflow[0] if cashflow else {}

        total_revenue = _raw(latest_income.get("totalRevenue"))
        net_income = _raw(latest_income.get("netIncome"))
        total_debt = _raw(financial.get("totalDebt"))
        if total_debt is None:
            total_debt = _raw(latest_balance.get("longTermDebt"))
        total_cash = _raw(financial.get("totalCash"))
        if total_cash is None:
            total_cash = _raw(latest_balance.get("cash"))
        total_equity = _raw(latest_balance.get("totalStockholderEquity"))
        operating_cash_flow = _raw(latest_cashflow.get("totalCashFromOperatingActivities"))
        capex = _raw(latest_cashflow.get("capitalExpenditures"))

        profit_margin = _raw(financial.get("profitMargins"))
        if profit_margin is not None:
            profit_margin *= 100
        elif total_revenue and net_income is not None:
            profit_margin = net_income / total_revenue * 100

        # Yahoo reports debt/equity as a percentage
        debt_to_equity = _raw(financial.get("debtToEquity"))
        if debt_to_equity is not None:
            debt_to_equity /= 100
        elif total_debt is not None and total_equity:
            debt_to_equity = total_debt / total_equity

        return_on_equity = _raw(financial.get("returnOnEquity"))
        if return_on_equity is None:
            return_on_equity = _raw(key_stats.get("returnOnEquity"))
        if return_on_equity is not None:
            return_on_equity *= 100

        free_cash_flow = None
        if operating_cash_flow is not None and capex is not None:
            free_cash_flow = operating_cash_flow - abs(capex)

        return FinancialData(
            symbol=ticker,
            source=self.source_name,
            revenue_growth_5y=_annualized_growth([_raw(s.get("totalRevenue")) for s in income]),
            earnings_growth_5y=_annualized_growth([_raw(s.get("netIncome")) for s in income]),
            profit_margin=profit_margin,
            debt_to_equity=debt_to_equity,
            free_cash_flow=free_cash_flow,
            return_on_equity=return_on_equity,
            total_revenue=total_revenue,
            net_income=net_income,
            total_debt=total_debt,
            total_cash=total_cash,
            operating_cash_flow=operating_cash_flow,
        )
