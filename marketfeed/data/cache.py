"""
Caching decorator for adapter fetch operations.

Adapters never own cache storage themselves. Each typed operation is wrapped
by a decorator with the signature ``decorator(fn, key_prefix, config) -> fn``.
The host process can inject its own; ``cached_fetcher`` is the in-process
default and ``no_cache`` disables caching.

The decorator is transparent: a failure is never cached and never altered,
it only short-circuits repeated successful calls within the TTL.
"""

import functools
import hashlib
from time import monotonic
from typing import Any, Awaitable, Callable, Dict, Tuple, TypedDict, List

import structlog

logger = structlog.get_logger(__name__)


class CacheSettings(TypedDict):
    ttl_seconds: int
    tags: List[str]


CACHE_CONFIG: Dict[str, CacheSettings] = {
    # Macro economic data - updates infrequently
    'MACRO_DATA': {'ttl_seconds': 3600, 'tags': ['macro-data']},
    # Sector data - daily updates
    'SECTOR_DATA': {'ttl_seconds': 86400, 'tags': ['sector-data']},
    # Stock quotes - frequent updates
    'QUOTES': {'ttl_seconds': 900, 'tags': ['quotes']},
    # Company profiles - rarely change
    'COMPANY_PROFILES': {'ttl_seconds': 604800, 'tags': ['company-profiles']},
    'FINANCIAL_STATEMENTS': {'ttl_seconds': 86400, 'tags': ['financial-statements']},
    'ANALYST_RATINGS': {'ttl_seconds': 86400, 'tags': ['analyst-ratings']},
    'VALUATION_DATA': {'ttl_seconds': 86400, 'tags': ['valuation-data']},
    'HISTORICAL_DATA': {'ttl_seconds': 86400, 'tags': ['historical-data']},
}

AsyncFn = Callable[..., Awaitable[Any]]
CacheDecorator = Callable[[AsyncFn, str, CacheSettings], AsyncFn]


class CacheKeys:
    """Cache key builders. Equal normalized inputs give equal keys."""

    @staticmethod
    def build(prefix: str, *args: Any, **kwargs: Any) -> str:
        parts = [prefix]
        parts.extend(_normalize_part(a) for a in args)
        parts.extend(f"{k}={_normalize_part(v)}" for k, v in sorted(kwargs.items()))
        return ":".join(parts)

    @staticmethod
    def quote(source: str, ticker: str) -> str:
        return f"quote-{source}-{ticker.upper()}"

    @staticmethod
    def company_profile(source: str, ticker: str) -> str:
        return f"company-profile-{source}-{ticker.upper()}"

    @staticmethod
    def macro_data() -> str:
        return "macro-data"

    @staticmethod
    def sector_data() -> str:
        return "sector-data"

    @staticmethod
    def stock_screen(filters_hash: str) -> str:
        return f"stock-screen-{filters_hash}"


def _normalize_part(value: Any) -> str:
    if isinstance(value, str):
        return value.strip().upper()
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return repr(value)


def hash_screening_filters(filters: Dict[str, Any]) -> str:
    """Stable, key-order-independent hash of screening filters."""
    filter_string = "|".join(f"{key}:{filters[key]}" for key in sorted(filters))
    return hashlib.sha1(filter_string.encode('utf-8')).hexdigest()[:12]


def cached_fetcher(fn: AsyncFn, key_prefix: str, config: CacheSettings) -> AsyncFn:
    """
    Memoize an async fetch operation for ``config['ttl_seconds']``.

    Each wrapped function gets its own store; expired entries are dropped
    whenever a new result is written. Exceptions propagate unchanged and
    leave the store untouched.
    """
    ttl = config['ttl_seconds']
    store: Dict[str, Tuple[float, Any]] = {}

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        key = CacheKeys.build(key_prefix, *args, **kwargs)
        hit = store.get(key)
        now = monotonic()
        if hit is not None and hit[0] > now:
            logger.debug("cache_hit", key=key)
            return hit[1]

        result = await fn(*args, **kwargs)
        now = monotonic()
        for expired in [k for k, (deadline, _) in store.items() if deadline <= now]:
            del store[expired]
        store[key] = (now + ttl, result)
        return result

    wrapper.cache_clear = store.clear
    wrapper.cache_size = store.__len__
    wrapper.cache_tags = list(config['tags'])
    return wrapper


def no_cache(fn: AsyncFn, key_prefix: str, config: CacheSettings) -> AsyncFn:
    """Pass-through decorator."""
    return fn
