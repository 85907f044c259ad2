"""
Request/response envelopes, rate-limit state and normalized domain records.

Every record carries a ``source`` naming the provider that served it.
Optional numeric fields are None when the provider had no value; they are
never silently replaced with zero.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

# Provider placeholders meaning "no value"
MISSING_VALUES = {"", "-", "None", "none", "N/A", "n/a", ".", "null"}


def parse_numeric(value: Any) -> Optional[float]:
    """Parse a provider number, returning None for missing/placeholder values."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip('%')
        if value in MISSING_VALUES:
            return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed


def parse_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Parse an integer count (e.g. volume); ``default`` when missing."""
    parsed = parse_numeric(value)
    if parsed is None:
        return default
    return int(parsed)


# =============================================================================
# Envelopes
# =============================================================================

@dataclass
class DataRequest:
    """A logical request against one provider."""
    endpoint: str
    params: Dict[str, Any] = field(default_factory=dict)
    headers: Optional[Dict[str, str]] = None


@dataclass
class DataResponse:
    """Normalized response every adapter produces regardless of provider."""
    payload: Any
    http_status: int
    timestamp: datetime
    source_name: str


@dataclass
class RateLimitState:
    """Per-adapter request budget for the current one-minute window."""
    requests_per_minute: int
    requests_remaining: int
    window_reset_at: float
    window_seconds: float = 60.0

    @classmethod
    def start(cls, requests_per_minute: int, now: float, window_seconds: float = 60.0) -> 'RateLimitState':
        return cls(
            requests_per_minute=requests_per_minute,
            requests_remaining=requests_per_minute,
            window_reset_at=now + window_seconds,
            window_seconds=window_seconds,
        )

    def reset(self, now: float) -> None:
        """Open a fresh window at full capacity."""
        self.requests_remaining = self.requests_per_minute
        self.window_reset_at = now + self.window_seconds

    def refresh(self, now: float) -> None:
        """Reset the window if it has elapsed."""
        if now >= self.window_reset_at:
            self.reset(now)

    def consume(self) -> None:
        """Record one dispatched request."""
        self.requests_remaining = max(0, self.requests_remaining - 1)

    def seconds_until_reset(self, now: float) -> float:
        return max(0.0, self.window_reset_at - now)

    def copy(self) -> 'RateLimitState':
        return RateLimitState(**asdict(self))


# =============================================================================
# Domain Records
# =============================================================================

@dataclass
class StockQuote:
    """Current or last-close quote."""
    symbol: str
    price: float
    volume: int
    timestamp: Optional[datetime]
    source: str
    change: Optional[float] = None
    change_percent: Optional[float] = None
    bid: Optional[float] = None
    ask: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CompanyProfile:
    """Company description and headline fundamentals."""
    symbol: str
    name: str
    source: str
    description: str = ""
    sector: str = "Unknown"
    industry: str = "Unknown"
    market_cap: Optional[float] = None
    pe_ratio: Optional[float] = None
    dividend_yield: Optional[float] = None
    beta: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FinancialStatement:
    """
    One period of a financial statement.

    Income, balance sheet and cash flow endpoints each fill their own fields;
    fields belonging to another statement stay None.
    """
    symbol: str
    date: Optional[datetime]
    period: str
    source: str
    revenue: Optional[float] = None
    net_income: Optional[float] = None
    eps: Optional[float] = None
    total_assets: Optional[float] = None
    total_liabilities: Optional[float] = None
    total_equity: Optional[float] = None
    operating_cash_flow: Optional[float] = None


@dataclass
class KeyMetrics:
    """Valuation ratios for one period."""
    symbol: str
    date: Optional[datetime]
    source: str
    pe_ratio: Optional[float] = None
    pb_ratio: Optional[float] = None
    debt_to_equity: Optional[float] = None
    return_on_equity: Optional[float] = None
    dividend_yield: Optional[float] = None


@dataclass
class OHLCVBar:
    timestamp: datetime
    open: Optional[float]
    high: Optional[float]
    low: Optional[float]
    close: Optional[float]
    volume: int = 0


@dataclass
class HistoricalData:
    """Price history for one symbol."""
    symbol: str
    bars: List[OHLCVBar]
    source: str

    def to_frame(self) -> pd.DataFrame:
        """Bars as a DataFrame indexed by timestamp."""
        if not self.bars:
            return pd.DataFrame(columns=['open', 'high', 'low', 'close', 'volume'])
        frame = pd.DataFrame([asdict(bar) for bar in self.bars])
        return frame.set_index('timestamp').sort_index()


@dataclass
class EconomicObservation:
    """One observation of an economic data series."""
    series_id: str
    date: str
    value: float
    units: Optional[str] = None


@dataclass
class MacroSnapshot:
    """Headline macro indicators used by the market-conditions step."""
    source: str
    interest_rate: Optional[float] = None
    inflation_rate: Optional[float] = None
    unemployment_rate: Optional[float] = None
    as_of: datetime = field(default_factory=datetime.now)


@dataclass
class SectorRanking:
    sector_name: str
    score: float
    rationale: str
    data_points: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StockCandidate:
    """A screening result."""
    symbol: str
    name: str
    sector: Optional[str] = None
    price: Optional[float] = None
    market_cap: Optional[float] = None
    metrics: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SectorPerformance:
    """Trailing returns (percent) of a sector ETF; None where history is too short."""
    sector_name: str
    etf_symbol: str
    source: str
    performance_1d: Optional[float] = None
    performance_1w: Optional[float] = None
    performance_1m: Optional[float] = None
    performance_3m: Optional[float] = None
    performance_1y: Optional[float] = None


@dataclass
class FinancialData:
    """Fundamentals summary; ratios in percent except ``debt_to_equity``."""
    symbol: str
    source: str
    revenue_growth_5y: Optional[float] = None
    earnings_growth_5y: Optional[float] = None
    profit_margin: Optional[float] = None
    debt_to_equity: Optional[float] = None
    free_cash_flow: Optional[float] = None
    return_on_equity: Optional[float] = None
    total_revenue: Optional[float] = None
    net_income: Optional[float] = None
    total_debt: Optional[float] = None
    total_cash: Optional[float] = None
    operating_cash_flow: Optional[float] = None


def rank_sectors(
    performances: List[SectorPerformance],
    horizon: str = "performance_3m",
) -> List[SectorRanking]:
    """
    Rank sectors by one trailing return, best first.

    Sectors without a value for ``horizon`` are left out.
    """
    scored = [(getattr(p, horizon), p) for p in performances if getattr(p, horizon) is not None]
    scored.sort(key=lambda item: item[0], reverse=True)
    label = horizon.replace("performance_", "")
    return [
        SectorRanking(
            sector_name=p.sector_name,
            score=value,
            rationale=f"{p.etf_symbol} {label} return {value:.2f}%",
            data_points=asdict(p),
        )
        for value, p in scored
    ]
