"""Tests for the caching decorator and cache keys."""

from unittest.mock import AsyncMock, patch

import pytest

from marketfeed.data.cache import (
    CACHE_CONFIG,
    CacheKeys,
    cached_fetcher,
    hash_screening_filters,
    no_cache,
)


class TestCacheConfig:
    """TTLs per data type."""

    @pytest.mark.parametrize("name, ttl", [
        ('MACRO_DATA', 3600),
        ('SECTOR_DATA', 86400),
        ('QUOTES', 900),
        ('COMPANY_PROFILES', 604800),
        ('FINANCIAL_STATEMENTS', 86400),
        ('HISTORICAL_DATA', 86400),
    ])
    def test_ttls(self, name, ttl):
        assert CACHE_CONFIG[name]['ttl_seconds'] == ttl
        assert CACHE_CONFIG[name]['tags']


class TestCacheKeys:
    """Equal normalized inputs give equal keys."""

    def test_build_normalizes_strings(self):
        assert CacheKeys.build("quote", " aapl ") == CacheKeys.build("quote", "AAPL")

    def test_build_kwargs_order_independent(self):
        assert CacheKeys.build("x", a=1, b=2) == CacheKeys.build("x", b=2, a=1)

    def test_build_distinguishes_arguments(self):
        assert CacheKeys.build("x", "AAPL", 5) != CacheKeys.build("x", "AAPL", 10)

    def test_named_keys(self):
        assert CacheKeys.quote("Polygon.io", "aapl") == "quote-Polygon.io-AAPL"
        assert CacheKeys.company_profile("FMP", "msft") == "company-profile-FMP-MSFT"
        assert CacheKeys.macro_data() == "macro-data"
        assert CacheKeys.stock_screen("abc") == "stock-screen-abc"

    def test_screening_hash_order_independent(self):
        first = hash_screening_filters({"sector": "Tech", "min_cap": 1e9})
        second = hash_screening_filters({"min_cap": 1e9, "sector": "Tech"})

        assert first == second
        assert first != hash_screening_filters({"sector": "Energy", "min_cap": 1e9})


class TestCachedFetcher:
    """In-process TTL memoization."""

    @pytest.mark.asyncio
    async def test_hit_within_ttl(self):
        fn = AsyncMock(return_value=42)
        cached = cached_fetcher(fn, "answer", {'ttl_seconds': 60, 'tags': ['t']})

        assert await cached("a") == 42
        assert await cached("a") == 42
        assert fn.await_count == 1
        assert cached.cache_tags == ['t']

    @pytest.mark.asyncio
    async def test_distinct_arguments_miss(self):
        fn = AsyncMock(side_effect=lambda symbol: symbol.lower())
        cached = cached_fetcher(fn, "lower", {'ttl_seconds': 60, 'tags': []})

        assert await cached("A") == "a"
        assert await cached("B") == "b"
        assert fn.await_count == 2

    @pytest.mark.asyncio
    async def test_expiry(self):
        fn = AsyncMock(return_value=1)
        cached = cached_fetcher(fn, "x", {'ttl_seconds': 10, 'tags': []})

        with patch("marketfeed.data.cache.monotonic", side_effect=[0.0, 0.0, 5.0, 11.0, 11.0]):
            await cached()
            await cached()
            await cached()

        assert fn.await_count == 2

    @pytest.mark.asyncio
    async def test_failures_propagate_and_are_not_cached(self):
        fn = AsyncMock(side_effect=[RuntimeError("boom"), 7])
        cached = cached_fetcher(fn, "x", {'ttl_seconds': 60, 'tags': []})

        with pytest.raises(RuntimeError):
            await cached()
        assert await cached() == 7

    @pytest.mark.asyncio
    async def test_cache_clear(self):
        fn = AsyncMock(return_value=1)
        cached = cached_fetcher(fn, "x", {'ttl_seconds': 60, 'tags': []})

        await cached()
        cached.cache_clear()
        await cached()

        assert fn.await_count == 2

    def test_no_cache_is_identity(self):
        fn = AsyncMock()
        assert no_cache(fn, "x", CACHE_CONFIG['QUOTES']) is fn

    @pytest.mark.asyncio
    async def test_expired_entries_evicted_on_write(self):
        fn = AsyncMock(side_effect=lambda symbol: symbol)
        cached = cached_fetcher(fn, "x", {'ttl_seconds': 10, 'tags': []})

        # lookup/store per miss: A at 0, B at 5, C at 12 (A expired), D at 16 (B expired)
        with patch("marketfeed.data.cache.monotonic", side_effect=[0.0, 0.0, 5.0, 5.0, 12.0, 12.0, 16.0, 16.0]):
            await cached("A")
            await cached("B")
            assert cached.cache_size() == 2

            await cached("C")
            assert cached.cache_size() == 2

            await cached("D")
            assert cached.cache_size() == 2

    @pytest.mark.asyncio
    async def test_store_does_not_grow_with_distinct_keys(self):
        fn = AsyncMock(side_effect=lambda symbol: symbol)
        cached = cached_fetcher(fn, "x", {'ttl_seconds': 1, 'tags': []})
        ticks = iter(float(t) for t in range(0, 400))

        with patch("marketfeed.data.cache.monotonic", side_effect=lambda: next(ticks)):
            for i in range(100):
                await cached(f"T{i}")

        assert cached.cache_size() <= 2
