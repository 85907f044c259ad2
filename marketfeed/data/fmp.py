"""
Financial Modeling Prep (FMP) adapter.

Financial statements, company profiles and key valuation metrics.

Rate Limits:
- Free tier: 250 requests per day
- The per-minute window is set high; the daily quota is the binding limit
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog

from marketfeed.data.base_adapter import ProviderAdapter, ProviderSpec
from marketfeed.data.cache import CACHE_CONFIG
from marketfeed.data.models import (
    CompanyProfile,
    DataRequest,
    FinancialStatement,
    KeyMetrics,
    parse_numeric,
)
from marketfeed.exceptions import ValidationError

logger = structlog.get_logger(__name__)

SOURCE_NAME = "Financial Modeling Prep"
PERIODS = ("annual", "quarter")


def inspect_fmp_payload(payload: Any, request: DataRequest, source: str) -> None:
    """FMP error bodies come back as dicts alongside a 200 status."""
    if not isinstance(payload, dict):
        return
    message = payload.get("Error Message") or payload.get("Error")
    if message:
        raise ValidationError(f"FMP API Error: {message}", source)


FMP_SPEC = ProviderSpec(
    source_name=SOURCE_NAME,
    base_url="https://financialmodelingprep.com/api/v3",
    requests_per_minute=250,
    api_key_env="FMP_API_KEY",
    api_key_param="apikey",
    inspect_payload=inspect_fmp_payload,
    daily_request_limit=250,
)


def _parse_date(item: Dict[str, Any]) -> Optional[datetime]:
    raw = item.get("date") or item.get("fillingDate")
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw)[:10])
    except ValueError:
        return None


def _first_numeric(item: Dict[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        value = parse_numeric(item.get(key))
        if value is not None:
            return value
    return None


class FMPAdapter(ProviderAdapter):
    """
    Adapter for the Financial Modeling Prep API.

    Example:
        async with FMPAdapter() as fmp:
            statements = await fmp.get_income_statement("AAPL", limit=3)
    """

    SPEC = FMP_SPEC

    def __init__(self, api_key=None, **kwargs):
        super().__init__(api_key, **kwargs)
        statements = CACHE_CONFIG['FINANCIAL_STATEMENTS']
        self._income = self._cached(self._fetch_income_statement, "income-statement", statements)
        self._balance = self._cached(self._fetch_balance_sheet, "balance-sheet", statements)
        self._cash_flow = self._cached(self._fetch_cash_flow_statement, "cash-flow-statement", statements)
        self._profile = self._cached(self._fetch_company_profile, "profile", CACHE_CONFIG['COMPANY_PROFILES'])
        self._metrics = self._cached(self._fetch_key_metrics, "key-metrics", CACHE_CONFIG['VALUATION_DATA'])

    # ------------------------------------------------------------------
    # Typed operations
    # ------------------------------------------------------------------

    async def get_income_statement(
        self,
        symbol: str,
        period: str = "annual",
        limit: int = 5
    ) -> List[FinancialStatement]:
        """
        Fetch income statements.

        Args:
            symbol: Stock ticker symbol (e.g., "AAPL")
            period: 'annual' or 'quarter'
            limit: Number of periods to fetch

        Raises:
            NotFoundError: FMP returned no statements
        """
        return await self._income(symbol.strip().upper(), self._check_period(period), limit)

    async def get_balance_sheet(
        self,
        symbol: str,
        period: str = "annual",
        limit: int = 5
    ) -> List[FinancialStatement]:
        """Fetch balance sheet statements."""
        return await self._balance(symbol.strip().upper(), self._check_period(period), limit)

    async def get_cash_flow_statement(
        self,
        symbol: str,
        period: str = "annual",
        limit: int = 5
    ) -> List[FinancialStatement]:
        """Fetch cash flow statements."""
        return await self._cash_flow(symbol.strip().upper(), self._check_period(period), limit)

    async def get_company_profile(self, symbol: str) -> CompanyProfile:
        """Fetch company profile."""
        return await self._profile(symbol.strip().upper())

    async def get_key_metrics(
        self,
        symbol: str,
        period: str = "annual",
        limit: int = 5
    ) -> List[KeyMetrics]:
        """Fetch key metrics and valuation ratios."""
        return await self._metrics(symbol.strip().upper(), self._check_period(period), limit)

    # ------------------------------------------------------------------
    # Fetch + parse
    # ------------------------------------------------------------------

    def _check_period(self, period: str) -> str:
        if period not in PERIODS:
            raise ValueError(f"period must be one of {PERIODS}, got {period!r}")
        return period

    async def _fetch_statements(
        self,
        endpoint: str,
        symbol: str,
        period: str,
        limit: int,
        label: str,
        build: Callable[[Dict[str, Any]], Dict[str, Optional[float]]],
    ) -> List[FinancialStatement]:
        request = DataRequest(
            endpoint=f"/{endpoint}/{symbol}",
            params={"period": period, "limit": limit},
        )
        response = await self.fetch(request)
        return self.parse_statements(response.payload, symbol, period, endpoint, label, build)

    def _records(self, data: Any, symbol: str, endpoint: str, label: str) -> List[Dict[str, Any]]:
        """The payload's non-empty array of record objects, or a classified failure."""
        if not data:
            raise self._not_found(
                f"No {label} data found for {symbol}",
                symbol=symbol, endpoint=endpoint,
            )
        if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
            raise self._invalid(
                f"Malformed {label} response for {symbol}: expected a list of records",
                symbol=symbol, endpoint=endpoint,
            )
        return data

    def parse_statements(
        self,
        data: Any,
        symbol: str,
        period: str,
        endpoint: str,
        label: str,
        build: Callable[[Dict[str, Any]], Dict[str, Optional[float]]],
    ) -> List[FinancialStatement]:
        return [
            FinancialStatement(
                symbol=item.get("symbol") or symbol,
                date=_parse_date(item),
                period=period,
                source=self.source_name,
                **build(item)
            )
            for item in self._records(data, symbol, endpoint, label)
        ]

    async def _fetch_income_statement(self, symbol: str, period: str, limit: int) -> List[FinancialStatement]:
        return await self._fetch_statements(
            "income-statement", symbol, period, limit, "income statement",
            lambda item: {
                "revenue": parse_numeric(item.get("revenue")),
                "net_income": parse_numeric(item.get("netIncome")),
                "eps": _first_numeric(item, "eps", "epsdiluted"),
            },
        )

    async def _fetch_balance_sheet(self, symbol: str, period: str, limit: int) -> List[FinancialStatement]:
        return await self._fetch_statements(
            "balance-sheet-statement", symbol, period, limit, "balance sheet",
            lambda item: {
                "total_assets": parse_numeric(item.get("totalAssets")),
                "total_liabilities": parse_numeric(item.get("totalLiabilities")),
                "total_equity": _first_numeric(item, "totalStockholdersEquity", "totalEquity"),
            },
        )

    async def _fetch_cash_flow_statement(self, symbol: str, period: str, limit: int) -> List[FinancialStatement]:
        return await self._fetch_statements(
            "cash-flow-statement", symbol, period, limit, "cash flow statement",
            lambda item: {
                "operating_cash_flow": parse_numeric(item.get("operatingCashFlow")),
            },
        )

    async def _fetch_company_profile(self, symbol: str) -> CompanyProfile:
        response = await self.fetch(DataRequest(endpoint=f"/profile/{symbol}"))
        return self.parse_company_profile(response.payload, symbol)

    async def _fetch_key_metrics(self, symbol: str, period: str, limit: int) -> List[KeyMetrics]:
        request = DataRequest(
            endpoint=f"/key-metrics/{symbol}",
            params={"period": period, "limit": limit},
        )
        response = await self.fetch(request)
        return self.parse_key_metrics(response.payload, symbol)

    def parse_company_profile(self, data: Any, symbol: str) -> CompanyProfile:
        # FMP returns an array with a single profile object
        profile = data[0] if isinstance(data, list) and data else data

        if profile and not isinstance(profile, dict):
            raise self._invalid(
                f"Malformed company profile for {symbol}: expected an object",
                symbol=symbol, endpoint="profile",
            )
        if not profile:
            raise self._not_found(
                f"No company profile data found for {symbol}",
                symbol=symbol, endpoint="profile",
            )

        return CompanyProfile(
            symbol=profile.get("symbol") or symbol,
            name=profile.get("companyName") or profile.get("name") or symbol,
            description=profile.get("description") or "",
            sector=profile.get("sector") or "Unknown",
            industry=profile.get("industry") or "Unknown",
            market_cap=_first_numeric(profile, "mktCap", "marketCap"),
            beta=parse_numeric(profile.get("beta")),
            source=self.source_name,
        )

    def parse_key_metrics(self, data: Any, symbol: str) -> List[KeyMetrics]:
        return [
            KeyMetrics(
                symbol=item.get("symbol") or symbol,
                date=_parse_date(item),
                pe_ratio=parse_numeric(item.get("peRatio")),
                pb_ratio=parse_numeric(item.get("pbRatio")),
                debt_to_equity=parse_numeric(item.get("debtToEquity")),
                return_on_equity=parse_numeric(item.get("roe")),
                dividend_yield=parse_numeric(item.get("dividendYield")),
                source=self.source_name,
            )
            for item in self._records(data, symbol, "key-metrics", "key metrics")
        ]
