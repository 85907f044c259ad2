"""
Federal Reserve Economic Data (FRED) adapter.

Interest rates, inflation and unemployment series for the macro snapshot.
"""

from datetime import datetime
from typing import Any, List, Optional

import structlog

from marketfeed.data.base_adapter import ProviderAdapter, ProviderSpec
from marketfeed.data.cache import CACHE_CONFIG
from marketfeed.data.models import (
    DataRequest,
    EconomicObservation,
    MacroSnapshot,
    parse_numeric,
)
from marketfeed.exceptions import DataSourceError, ValidationError

logger = structlog.get_logger(__name__)

SOURCE_NAME = "Federal Reserve FRED"

# Series identifiers
FEDERAL_FUNDS_RATE = "FEDFUNDS"
CONSUMER_PRICE_INDEX = "CPIAUCSL"
UNEMPLOYMENT_RATE = "UNRATE"


def inspect_fred_payload(payload: Any, request: DataRequest, source: str) -> None:
    if isinstance(payload, dict) and payload.get("error_message"):
        raise ValidationError(f"FRED API Error: {payload['error_message']}", source)


FRED_SPEC = ProviderSpec(
    source_name=SOURCE_NAME,
    base_url="https://api.stlouisfed.org/fred",
    requests_per_minute=120,
    api_key_env="FRED_API_KEY",
    api_key_param="api_key",
    inspect_payload=inspect_fred_payload,
)


class FREDAdapter(ProviderAdapter):
    """
    Adapter for the FRED API.

    Observations are requested newest first, so index 0 of a parsed series
    is the latest value.
    """

    SPEC = FRED_SPEC

    def __init__(self, api_key=None, **kwargs):
        super().__init__(api_key, **kwargs)
        macro = CACHE_CONFIG['MACRO_DATA']
        self._interest_rate = self._cached(self._fetch_interest_rate, "interest-rate", macro)
        self._inflation_rate = self._cached(self._fetch_inflation_rate, "inflation-rate", macro)
        self._unemployment_rate = self._cached(self._fetch_unemployment_rate, "unemployment-rate", macro)

    async def get_series(self, series_id: str, limit: int = 1) -> List[EconomicObservation]:
        """
        Fetch the most recent observations of a series.

        Missing observations (reported as ".") are dropped.

        Raises:
            NotFoundError: The series has no usable observations
        """
        request = DataRequest(
            endpoint="/series/observations",
            params={
                "series_id": series_id,
                "file_type": "json",
                "sort_order": "desc",
                "limit": limit,
            },
        )
        response = await self.fetch(request)
        return self.parse_series(response.payload, series_id)

    async def fetch_interest_rate(self) -> float:
        """Federal Funds Effective Rate, percent."""
        return await self._interest_rate()

    async def fetch_inflation_rate(self) -> float:
        """Year-over-year CPI change, percent."""
        return await self._inflation_rate()

    async def fetch_unemployment_rate(self) -> float:
        """Civilian unemployment rate, percent."""
        return await self._unemployment_rate()

    async def get_macro_snapshot(self) -> MacroSnapshot:
        """
        Headline indicators in one record.

        An indicator that fails is left as None and logged; the snapshot
        itself fails only when every indicator is unavailable.
        """
        values = {}
        last_error: Optional[DataSourceError] = None

        for name, operation in (
            ("interest_rate", self.fetch_interest_rate),
            ("inflation_rate", self.fetch_inflation_rate),
            ("unemployment_rate", self.fetch_unemployment_rate),
        ):
            try:
                values[name] = await operation()
            except DataSourceError as e:
                logger.warning("macro_indicator_unavailable", indicator=name, error=e.message)
                values[name] = None
                last_error = e

        if all(value is None for value in values.values()):
            raise last_error

        return MacroSnapshot(source=self.source_name, as_of=datetime.now(), **values)

    async def _fetch_interest_rate(self) -> float:
        observations = await self.get_series(FEDERAL_FUNDS_RATE)
        return observations[0].value

    async def _fetch_inflation_rate(self) -> float:
        # 13 months for the year-over-year change
        observations = await self.get_series(CONSUMER_PRICE_INDEX, limit=13)
        if len(observations) < 13:
            raise self._not_found(
                "Insufficient data for inflation calculation",
                series_id=CONSUMER_PRICE_INDEX, observations=len(observations),
            )

        current = observations[0].value
        year_ago = observations[12].value
        if year_ago == 0:
            raise self._invalid(
                "CPI value of zero a year ago",
                series_id=CONSUMER_PRICE_INDEX,
            )
        return ((current - year_ago) / year_ago) * 100

    async def _fetch_unemployment_rate(self) -> float:
        observations = await self.get_series(UNEMPLOYMENT_RATE)
        return observations[0].value

    def parse_series(self, data: Any, series_id: str) -> List[EconomicObservation]:
        raw = data.get("observations") if isinstance(data, dict) else None
        if raw is not None and (
            not isinstance(raw, list) or not all(isinstance(obs, dict) for obs in raw)
        ):
            raise self._invalid(
                f"Malformed observations for series {series_id}",
                series_id=series_id,
            )

        observations = []
        for obs in raw or []:
            value = parse_numeric(obs.get("value"))
            if value is None:
                continue
            observations.append(EconomicObservation(
                series_id=series_id,
                date=obs.get("date", ""),
                value=value,
                units=data.get("units"),
            ))

        if not observations:
            raise self._not_found(
                f"No observations available for series {series_id}",
                series_id=series_id,
            )
        return observations
