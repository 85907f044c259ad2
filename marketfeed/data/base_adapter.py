"""
Source Adapter Engine

One generic engine drives every external provider:
- Strictly FIFO request queue drained by a single loop (one in-flight call)
- Per-minute rate-limit window, plus an optional daily quota
- Up to 3 attempts per logical fetch with exponential backoff (1s, 2s)
- Classification of transport/HTTP/parse outcomes into DataSourceError

Provider differences (base URL, quota, credential handling, error-body
detection) are described by a ProviderSpec value rather than by subclassing
the engine. ProviderAdapter composes an engine with a provider's typed
operations (quote, profile, statement, series).
"""

import asyncio
import json
import os
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

import aiohttp
import structlog

from marketfeed.config import config
from marketfeed.data.cache import CacheDecorator, CacheSettings, cached_fetcher
from marketfeed.data.models import DataRequest, DataResponse, RateLimitState
from marketfeed.error_log import ErrorLog
from marketfeed.exceptions import (
    ConfigurationError,
    DataSourceError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ValidationError,
    classify_error,
    retries_exhausted,
)

logger = structlog.get_logger(__name__)

PayloadInspector = Callable[[Any, DataRequest, str], None]


@dataclass(frozen=True)
class ProviderSpec:
    """
    Everything the engine needs to know about one provider.

    Attributes:
        source_name: Display name used for attribution (unique per provider)
        base_url: Root URL; endpoints are appended to it
        requests_per_minute: Provider-documented per-minute quota
        api_key_env: Environment variable holding the credential
        api_key_param: Query parameter the credential is sent as
        requires_api_key: Fail fast at construction without a credential
        default_headers: Headers sent with every request
        inspect_payload: Raises a classified error for error bodies that
            arrive with a 2xx status (provider "Note", "NOT_FOUND", ...)
        daily_request_limit: Optional per-UTC-day quota
    """
    source_name: str
    base_url: str
    requests_per_minute: int = 60
    api_key_env: Optional[str] = None
    api_key_param: Optional[str] = None
    requires_api_key: bool = True
    default_headers: Dict[str, str] = field(default_factory=dict)
    inspect_payload: Optional[PayloadInspector] = None
    daily_request_limit: Optional[int] = None


@dataclass
class _QueuedRequest:
    request: DataRequest
    future: 'asyncio.Future[DataResponse]'


def _next_midnight_utc(now: datetime) -> datetime:
    tomorrow = (now + timedelta(days=1)).date()
    return datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=timezone.utc)


def _parse_retry_after(value: Any) -> Optional[float]:
    if not isinstance(value, (str, int, float)):
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds > 0 else None


class SourceAdapter:
    """
    Rate-limited, retrying, serialized client for one provider.

    Example:
        engine = SourceAdapter(POLYGON_SPEC, api_key="...")
        async with engine:
            response = await engine.fetch(DataRequest("/v2/last/trade/AAPL"))
    """

    MAX_ATTEMPTS = 3
    RETRY_DELAY_BASE = 1.0

    def __init__(
        self,
        spec: ProviderSpec,
        api_key: Optional[str] = None,
        *,
        error_log: Optional[ErrorLog] = None,
        timeout: Optional[float] = None,
        max_retry_wait: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        utcnow: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.spec = spec
        self.source_name = spec.source_name
        self.base_url = spec.base_url
        self.error_log = error_log if error_log is not None else ErrorLog()
        self.timeout = timeout or config.request_timeout
        self.max_retry_wait = config.max_retry_wait if max_retry_wait is None else max_retry_wait

        if api_key is None and spec.api_key_env:
            api_key = os.environ.get(spec.api_key_env, "")
        self.api_key = api_key or ""

        if spec.requires_api_key and not self.is_configured():
            hint = f" Set {spec.api_key_env} environment variable." if spec.api_key_env else ""
            error = ConfigurationError(
                f"{self.source_name} API key is required.{hint}",
                provider=self.source_name,
            )
            self.error_log.log(error)
            raise error

        self._clock = clock
        self._sleep = sleep
        self._utcnow = utcnow
        self._rate_limit = RateLimitState.start(spec.requests_per_minute, clock())
        self._daily_count = 0
        self._daily_reset_at = _next_midnight_utc(utcnow())

        self._pending: Deque[_QueuedRequest] = deque()
        self._drain_task: Optional[asyncio.Task] = None
        self._session: Optional[aiohttp.ClientSession] = None

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def is_configured(self) -> bool:
        """True when no key is needed or a non-blank key is present."""
        if not self.spec.requires_api_key and not self.spec.api_key_param:
            return True
        return bool(self.api_key and self.api_key.strip())

    def get_rate_limit(self) -> RateLimitState:
        """Snapshot of the current rate-limit window."""
        state = self._rate_limit.copy()
        state.refresh(self._clock())
        return state

    async def fetch(self, request: DataRequest) -> DataResponse:
        """
        Queue a request and wait for its outcome.

        Requests are served strictly in arrival order, one at a time. A failure
        of one request does not affect the ones queued behind it.

        Raises:
            NetworkError, RateLimitError, ValidationError, NotFoundError
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._pending.append(_QueuedRequest(request, future))

        if self._drain_task is None or self._drain_task.done():
            self._drain_task = loop.create_task(self._drain_queue())

        return await future

    def build_url(self, endpoint: str) -> str:
        """Join base URL and endpoint without dropping the base path."""
        base = self.base_url.rstrip('/')
        if endpoint.startswith(('http://', 'https://')):
            return endpoint
        return f"{base}/{endpoint.lstrip('/')}" if endpoint else base

    async def __aenter__(self) -> 'SourceAdapter':
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    async def _drain_queue(self) -> None:
        while self._pending:
            queued = self._pending.popleft()
            if queued.future.done():
                # Caller gave up waiting
                continue

            try:
                response = await self._fetch_with_retry(queued.request)
            except Exception as e:
                if not queued.future.done():
                    queued.future.set_exception(e)
            else:
                if not queued.future.done():
                    queued.future.set_result(response)

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    async def _fetch_with_retry(self, request: DataRequest) -> DataResponse:
        last_error: Optional[DataSourceError] = None

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            if last_error is not None:
                delay = self._retry_delay(attempt - 1, last_error)
                logger.warning(
                    "fetch_retry",
                    source=self.source_name,
                    endpoint=request.endpoint,
                    attempt=attempt,
                    max_attempts=self.MAX_ATTEMPTS,
                    delay=delay,
                    error=last_error.message,
                )
                await self._sleep(delay)

            try:
                await self._acquire_slot()
                return await self._perform_fetch(request)
            except DataSourceError as e:
                last_error = e
            except Exception as e:
                last_error = classify_error(e, self.source_name)
                self.error_log.log(last_error, {"endpoint": request.endpoint})

            if not last_error.retryable:
                raise last_error
            if self._exceeds_retry_wait(last_error):
                logger.warning(
                    "rate_limit_wait_too_long",
                    source=self.source_name,
                    retry_after=last_error.retry_after_seconds,
                    max_retry_wait=self.max_retry_wait,
                )
                raise last_error

        logger.error(
            "fetch_retries_exhausted",
            source=self.source_name,
            endpoint=request.endpoint,
            attempts=self.MAX_ATTEMPTS,
            error=last_error.message,
        )
        raise retries_exhausted(last_error, self.MAX_ATTEMPTS)

    def _retry_delay(self, failures: int, error: DataSourceError) -> float:
        """Delay after the ``failures``-th failed attempt: 1s, 2s, 4s ..."""
        delay = self.RETRY_DELAY_BASE * (2 ** (failures - 1))
        if isinstance(error, RateLimitError) and error.retry_after_seconds:
            delay = max(delay, float(error.retry_after_seconds))
        return delay

    def _exceeds_retry_wait(self, error: DataSourceError) -> bool:
        return (
            isinstance(error, RateLimitError)
            and error.retry_after_seconds is not None
            and error.retry_after_seconds > self.max_retry_wait
        )

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    async def _acquire_slot(self) -> None:
        """Block until the window has capacity, then take one request from it."""
        self._check_daily_quota()

        state = self._rate_limit
        now = self._clock()
        state.refresh(now)

        if state.requests_remaining <= 0:
            wait = state.seconds_until_reset(now)
            logger.info(
                "rate_limit_wait",
                source=self.source_name,
                wait_seconds=round(wait, 3),
                requests_per_minute=state.requests_per_minute,
            )
            await self._sleep(wait)
            state.reset(self._clock())

        state.consume()

    def _check_daily_quota(self) -> None:
        limit = self.spec.daily_request_limit
        if not limit:
            return

        now = self._utcnow()
        if now >= self._daily_reset_at:
            self._daily_count = 0
            self._daily_reset_at = _next_midnight_utc(now)

        if self._daily_count >= limit:
            wait = (self._daily_reset_at - now).total_seconds()
            error = RateLimitError(
                f"{self.source_name} daily rate limit exceeded. "
                f"Resets at {self._daily_reset_at.isoformat()}",
                self.source_name,
                retry_after_seconds=max(1, int(wait)),
            )
            self.error_log.log(error, {"daily_request_count": self._daily_count})
            raise error

        self._daily_count += 1

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    def _build_params(self, params: Dict[str, Any]) -> Dict[str, str]:
        query = {k: str(v) for k, v in params.items() if v is not None}
        if self.spec.api_key_param and self.api_key:
            query[self.spec.api_key_param] = self.api_key
        return query

    async def _perform_fetch(self, request: DataRequest) -> DataResponse:
        """
        Single transport call, classified.

        Raises:
            RateLimitError: HTTP 429 or provider quota note
            NetworkError: Connection failure, timeout, other non-2xx
            ValidationError: Undecodable JSON or provider error body
            NotFoundError: Provider "no data" sentinel
        """
        url = self.build_url(request.endpoint)
        headers = {'User-Agent': config.user_agent, **self.spec.default_headers}
        headers.update(request.headers or {})
        context = {"endpoint": request.endpoint}

        session = await self._get_session()
        try:
            async with session.get(url, params=self._build_params(request.params), headers=headers) as response:
                status = response.status
                context["status"] = status

                if status == 429:
                    raise RateLimitError(
                        f"{self.source_name} rate limit exceeded (HTTP 429)",
                        self.source_name,
                        retry_after_seconds=_parse_retry_after(
                            (response.headers or {}).get('Retry-After')
                        ),
                    )

                if not 200 <= status < 300:
                    raise NetworkError(
                        f"HTTP {status}: {response.reason}",
                        self.source_name,
                    )

                try:
                    payload = await response.json(content_type=None)
                except (aiohttp.ContentTypeError, json.JSONDecodeError, ValueError) as e:
                    raise ValidationError(
                        f"Failed to parse JSON response: {e}",
                        self.source_name,
                        cause=e,
                    )

        except DataSourceError as e:
            self.error_log.log(e, context)
            raise
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            error = NetworkError(
                f"Network request failed: {e or type(e).__name__}",
                self.source_name,
                cause=e,
            )
            self.error_log.log(error, context)
            raise error

        if self.spec.inspect_payload is not None:
            try:
                self.spec.inspect_payload(payload, request, self.source_name)
            except DataSourceError as e:
                self.error_log.log(e, context)
                raise

        return DataResponse(
            payload=payload,
            http_status=status,
            timestamp=datetime.now(),
            source_name=self.source_name,
        )


class ProviderAdapter:
    """
    Typed operations for one provider on top of a SourceAdapter engine.

    Subclasses set SPEC and add methods that build a DataRequest, call
    ``fetch`` and parse the payload into a domain record.
    """

    SPEC: ProviderSpec

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        error_log: Optional[ErrorLog] = None,
        cache_decorator: CacheDecorator = cached_fetcher,
        **engine_kwargs
    ):
        self.engine = SourceAdapter(
            self.SPEC, api_key, error_log=error_log, **engine_kwargs
        )
        self.error_log = self.engine.error_log
        self._cache_decorator = cache_decorator

    @property
    def source_name(self) -> str:
        return self.engine.source_name

    def is_configured(self) -> bool:
        return self.engine.is_configured()

    async def fetch(self, request: DataRequest) -> DataResponse:
        return await self.engine.fetch(request)

    def get_rate_limit(self) -> RateLimitState:
        return self.engine.get_rate_limit()

    async def close(self) -> None:
        await self.engine.close()

    async def __aenter__(self):
        await self.engine.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.engine.close()

    def _cached(self, fn, key_prefix: str, settings: CacheSettings):
        """Wrap a bound fetch operation with the injected cache decorator."""
        return self._cache_decorator(fn, f"{self.source_name}:{key_prefix}", settings)

    def _not_found(self, message: str, **context) -> NotFoundError:
        error = NotFoundError(message, self.source_name)
        self.error_log.log(error, context)
        return error

    def _invalid(self, message: str, **context) -> ValidationError:
        error = ValidationError(message, self.source_name)
        self.error_log.log(error, context)
        return error
