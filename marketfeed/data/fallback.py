"""
Fallback chains and degraded-cache fallbacks.

A fallback chain is an ordered list of adapters registered under a data type
key. ``fetch_with_fallback`` walks it in registration order and is the one
place where failures turn into a soft result (``data=None`` plus warnings)
instead of an exception.

When a whole chain is exhausted the caller can fall back on snapshots cached
earlier through ``cache_macro_data`` / ``cache_sector_data`` /
``cache_stock_data``. Snapshots carry a ``stale_at`` deadline that is checked
on read; nothing runs in the background.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Protocol,
    TypeVar,
)

import structlog

from marketfeed.data.models import MacroSnapshot, SectorRanking, StockCandidate
from marketfeed.error_log import ErrorLog
from marketfeed.exceptions import DataSourceError, classify_error

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class DataTypes:
    """Registry keys for the standard chains."""
    STOCK_QUOTE = "stock-quote"
    COMPANY_PROFILE = "company-profile"
    FINANCIAL_STATEMENTS = "financial-statements"
    HISTORICAL_DATA = "historical-data"
    VALUATION_METRICS = "valuation-metrics"
    ECONOMIC_DATA = "economic-data"


class DataAdapter(Protocol):
    """What the chain needs from an adapter."""
    source_name: str

    def is_configured(self) -> bool: ...


@dataclass
class FallbackChain:
    primary: DataAdapter
    fallbacks: List[DataAdapter] = field(default_factory=list)

    @property
    def adapters(self) -> List[DataAdapter]:
        return [self.primary, *self.fallbacks]


@dataclass
class FallbackResult(Generic[T]):
    """
    Outcome of a fallback lookup.

    ``used_fallback`` is True when anything other than the primary source
    (or a cached/synthetic stand-in) supplied ``data``.
    """
    data: Optional[T]
    used_fallback: bool
    warnings: List[str] = field(default_factory=list)
    source: Optional[str] = None
    fallback_reason: Optional[str] = None


@dataclass
class CachedSnapshot(Generic[T]):
    """A cached result and its staleness deadline."""
    data: T
    cached_at: datetime
    stale_at: datetime
    is_stale: bool = False

    def refresh(self, now: datetime) -> 'CachedSnapshot[T]':
        # Staleness only ever flips one way
        if not self.is_stale and now >= self.stale_at:
            self.is_stale = True
        return self


# Degraded cache kinds and their TTLs
MACRO = "macro"
SECTOR = "sector"
SCREENING = "screening"

CACHE_TTLS: Dict[str, timedelta] = {
    MACRO: timedelta(hours=1),
    SECTOR: timedelta(hours=24),
    SCREENING: timedelta(minutes=15),
}

DEFAULT_CACHE_KEY = "default"


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


class FallbackStrategies:
    """
    Fallback chain registry plus the degraded cache.

    Args:
        error_log: Collaborator that records every chain failure
        clock: Returns the current time; used for snapshot staleness
    """

    def __init__(
        self,
        error_log: Optional[ErrorLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.error_log = error_log if error_log is not None else ErrorLog()
        self._clock = clock or datetime.now
        self._chains: Dict[str, FallbackChain] = {}
        self._caches: Dict[str, Dict[str, CachedSnapshot]] = {kind: {} for kind in CACHE_TTLS}

    # =========================================================================
    # Fallback chains
    # =========================================================================

    def register_fallback_chain(self, data_type: str, chain: FallbackChain) -> None:
        """Store a chain under ``data_type``, replacing any existing one."""
        self._chains[data_type] = chain
        logger.debug(
            "fallback_chain_registered",
            data_type=data_type,
            sources=[adapter.source_name for adapter in chain.adapters],
        )

    async def fetch_with_fallback(
        self,
        data_type: str,
        fetch_fn: Callable[[Any], Awaitable[T]],
    ) -> FallbackResult[T]:
        """
        Try each adapter of the chain in order until one succeeds.

        Unconfigured adapters are skipped without being called. Any failure,
        retryable or not, moves on to the next adapter. Never raises for
        adapter failures.

        Args:
            data_type: Registered chain key
            fetch_fn: Performs the typed fetch against the given adapter
        """
        chain = self._chains.get(data_type)
        if chain is None:
            return FallbackResult(
                data=None,
                used_fallback=False,
                warnings=[f"No fallback chain configured for {data_type}"],
            )

        warnings: List[str] = []

        for index, adapter in enumerate(chain.adapters):
            name = adapter.source_name

            if not adapter.is_configured():
                warnings.append(f"{name} is not configured, skipping")
                continue

            try:
                data = await fetch_fn(adapter)
            except Exception as e:
                error = e if isinstance(e, DataSourceError) else classify_error(e, name)
                warnings.append(f"{name} failed: {error.message}")
                self.error_log.log(error, {"data_type": data_type, "adapter_index": index})
                continue

            used_fallback = index != 0
            if used_fallback:
                logger.warning(
                    "fallback_activated",
                    data_type=data_type,
                    source=name,
                    adapter_index=index,
                    skipped=len(warnings),
                )

            return FallbackResult(
                data=data,
                used_fallback=used_fallback,
                warnings=warnings,
                source=name,
                fallback_reason=f"Primary source failed, using {name}" if used_fallback else None,
            )

        logger.error("fallback_chain_exhausted", data_type=data_type, attempts=len(warnings))
        return FallbackResult(
            data=None,
            used_fallback=False,
            warnings=[*warnings, f"All data sources failed for {data_type}"],
        )

    def get_fallback_chains(self) -> Dict[str, FallbackChain]:
        """Copy of the registry."""
        return dict(self._chains)

    def clear_fallback_chain(self, data_type: str) -> None:
        self._chains.pop(data_type, None)

    def clear_all_fallback_chains(self) -> None:
        self._chains.clear()

    # =========================================================================
    # Degraded cache
    # =========================================================================

    def cache(self, kind: str, data: Any, cache_key: str = DEFAULT_CACHE_KEY) -> CachedSnapshot:
        """Store a snapshot of ``data`` that goes stale after the kind's TTL."""
        if kind not in CACHE_TTLS:
            raise ValueError(f"Unknown cache kind {kind!r}; expected one of {sorted(CACHE_TTLS)}")

        now = self._clock()
        snapshot = CachedSnapshot(data=data, cached_at=now, stale_at=now + CACHE_TTLS[kind])
        self._caches[kind][cache_key] = snapshot
        return snapshot

    def get_cached_fallback(self, kind: str, cache_key: str = DEFAULT_CACHE_KEY) -> Optional[CachedSnapshot]:
        """The snapshot for ``cache_key`` with staleness brought up to date, or None."""
        snapshot = self._caches.get(kind, {}).get(cache_key)
        if snapshot is None:
            return None
        return snapshot.refresh(self._clock())

    def cache_macro_data(self, data: MacroSnapshot, cache_key: str = DEFAULT_CACHE_KEY) -> None:
        self.cache(MACRO, data, cache_key)

    def get_macro_data_fallback(self, cache_key: str = DEFAULT_CACHE_KEY) -> FallbackResult[MacroSnapshot]:
        """Cached macro data, with a staleness warning once it is over an hour old."""
        cached = self.get_cached_fallback(MACRO, cache_key)
        if cached is None:
            return FallbackResult(
                data=None,
                used_fallback=False,
                warnings=["No macro data available and no cached data found."],
            )

        warnings = []
        if cached.is_stale:
            warnings.append(
                f"Using cached macro data from {_format_timestamp(cached.cached_at)}. "
                "Data may be outdated."
            )

        return FallbackResult(
            data=cached.data,
            used_fallback=True,
            fallback_reason="Primary data source unavailable, using cached data",
            warnings=warnings,
        )

    def cache_sector_data(self, data: List[SectorRanking], cache_key: str = DEFAULT_CACHE_KEY) -> None:
        self.cache(SECTOR, data, cache_key)

    def get_sector_data_fallback(
        self,
        manual_sectors: Optional[List[str]] = None,
        cache_key: str = DEFAULT_CACHE_KEY,
    ) -> FallbackResult[List[SectorRanking]]:
        """
        Sector rankings when automated analysis is unavailable.

        Manually selected sectors win over cached data and are ranked in the
        order given with descending scores.
        """
        if manual_sectors:
            rankings = [
                SectorRanking(
                    sector_name=sector,
                    score=50 - index * 5,
                    rationale="Manually selected sector (no automated analysis available)",
                )
                for index, sector in enumerate(manual_sectors)
            ]
            return FallbackResult(
                data=rankings,
                used_fallback=True,
                fallback_reason="Manual sector selection",
                warnings=["Automated sector analysis unavailable. Using manually selected sectors."],
            )

        cached = self.get_cached_fallback(SECTOR, cache_key)
        if cached is not None:
            warnings = []
            if cached.is_stale:
                warnings.append(
                    f"Using cached sector data from {_format_timestamp(cached.cached_at)}. "
                    "Data may be outdated."
                )
            return FallbackResult(
                data=cached.data,
                used_fallback=True,
                fallback_reason="Using cached sector data",
                warnings=warnings,
            )

        return FallbackResult(
            data=None,
            used_fallback=False,
            warnings=[
                "Sector data unavailable. Please provide manual sector selection or try again later."
            ],
        )

    def cache_stock_data(self, data: List[StockCandidate], cache_key: str = DEFAULT_CACHE_KEY) -> None:
        self.cache(SCREENING, data, cache_key)

    def get_stock_screening_fallback(
        self,
        partial_results: Optional[List[StockCandidate]] = None,
        total_expected: Optional[int] = None,
        cache_key: str = DEFAULT_CACHE_KEY,
    ) -> FallbackResult[List[StockCandidate]]:
        """Partial screening results, else cached results, else nothing."""
        if partial_results:
            count = len(partial_results)
            if total_expected and count < total_expected:
                warning = (
                    f"Stock screening timed out. Returning {count} of {total_expected} "
                    "expected results. You may continue with these results or retry for complete data."
                )
            else:
                warning = f"Stock screening completed with {count} results (partial data)."
            return FallbackResult(
                data=partial_results,
                used_fallback=True,
                fallback_reason="Partial results due to timeout",
                warnings=[warning],
            )

        cached = self.get_cached_fallback(SCREENING, cache_key)
        if cached is not None:
            warnings = [
                f"Using cached stock screening results from {_format_timestamp(cached.cached_at)}."
            ]
            if cached.is_stale:
                warnings.append("Cached screening results may be outdated.")
            return FallbackResult(
                data=cached.data,
                used_fallback=True,
                fallback_reason="Using cached screening results",
                warnings=warnings,
            )

        return FallbackResult(
            data=None,
            used_fallback=False,
            warnings=["Stock screening failed with no partial results available."],
        )

    def get_analyst_data_fallback(self) -> FallbackResult[None]:
        return FallbackResult(
            data=None,
            used_fallback=True,
            fallback_reason="Analyst data unavailable",
            warnings=[
                "Analyst sentiment data is unavailable. Proceeding without analyst ratings. "
                "You may continue with fundamental and technical analysis."
            ],
        )

    def get_technical_analysis_fallback(self) -> FallbackResult[None]:
        return FallbackResult(
            data=None,
            used_fallback=True,
            fallback_reason="Technical analysis is optional and unavailable",
            warnings=[
                "Technical analysis is unavailable. This is an optional step and has been "
                "automatically skipped. You may proceed with the workflow."
            ],
        )

    def clear_all_caches(self) -> None:
        for store in self._caches.values():
            store.clear()

    def get_cache_stats(self) -> Dict[str, int]:
        """Number of cached snapshots per kind."""
        return {
            "macro_data_cached": len(self._caches[MACRO]),
            "sector_data_cached": len(self._caches[SECTOR]),
            "stock_data_cached": len(self._caches[SCREENING]),
        }
