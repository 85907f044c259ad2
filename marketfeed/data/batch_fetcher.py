"""
Batching and parallel fetch helpers.

Adapters already serialize their own outbound calls, so fanning out across
many tickers only queues work; these helpers bound how much is queued at once
and collect results without letting one failure sink the batch.
"""

import asyncio
from typing import (
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    TypeVar,
)

import structlog

from marketfeed.exceptions import NetworkError

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def batch_fetch(
    items: Sequence[T],
    fetcher: Callable[[T], Awaitable[R]],
    batch_size: int = 5,
    on_error: Optional[Callable[[T, BaseException], None]] = None,
) -> List[R]:
    """
    Fetch ``items`` in sequential batches, concurrently within a batch.

    Failed items are dropped from the result and reported to ``on_error``.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    results: List[R] = []

    for start in range(0, len(items), batch_size):
        batch = items[start:start + batch_size]
        outcomes = await asyncio.gather(*(fetcher(item) for item in batch), return_exceptions=True)

        for item, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if on_error is not None:
                    on_error(item, outcome)
                continue
            results.append(outcome)

    return results


async def parallel_fetch(
    items: Iterable[T],
    fetcher: Callable[[T], Awaitable[R]],
) -> List[Optional[R]]:
    """Fetch everything at once; failures become None in their position."""
    outcomes = await asyncio.gather(*(fetcher(item) for item in items), return_exceptions=True)
    for outcome in outcomes:
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
    return [None if isinstance(outcome, BaseException) else outcome for outcome in outcomes]


async def fetch_with_timeout(
    awaitable: Awaitable[T],
    timeout: float,
    message: str = "Request timed out",
) -> T:
    """
    Bound a fetch by ``timeout`` seconds.

    Raises:
        NetworkError: The timeout elapsed (provider ``"timeout"``)
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise NetworkError(message, provider="timeout", cause=e)


async def batch_fetch_stock_quotes(
    tickers: Sequence[str],
    quote_fetcher: Callable[[str], Awaitable[R]],
    batch_size: int = 10,
) -> Dict[str, R]:
    """
    Quotes keyed by ticker.

    Tickers whose fetch failed are absent from the result.
    """
    results: Dict[str, R] = {}

    async def fetch_one(ticker: str):
        results[ticker] = await quote_fetcher(ticker)

    def report(ticker: str, error: BaseException) -> None:
        logger.warning("quote_fetch_failed", ticker=ticker, error=str(error))

    await batch_fetch(tickers, fetch_one, batch_size=batch_size, on_error=report)
    return {ticker: results[ticker] for ticker in tickers if ticker in results}
