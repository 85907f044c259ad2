"""
Shared fixtures for adapter tests.

HTTP is never touched: an adapter's engine gets a MagicMock session whose
``get()`` returns an async context manager yielding a canned response.
"""

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from marketfeed.data.adapter_factory import reset_fallback_strategies

PROVIDER_KEY_VARS = (
    "ALPHA_VANTAGE_API_KEY",
    "FMP_API_KEY",
    "POLYGON_API_KEY",
    "FRED_API_KEY",
)


def build_response(payload=None, status=200, reason="OK", headers=None, json_error=None):
    """A mock aiohttp response."""
    response = MagicMock()
    response.status = status
    response.reason = reason
    response.headers = headers or {}
    if json_error is not None:
        response.json = AsyncMock(side_effect=json_error)
    else:
        response.json = AsyncMock(return_value=payload)
    return response


def build_context_manager(response=None, error=None):
    cm = AsyncMock()
    if error is not None:
        cm.__aenter__ = AsyncMock(side_effect=error)
    else:
        cm.__aenter__ = AsyncMock(return_value=response)
    cm.__aexit__ = AsyncMock(return_value=None)
    return cm


def build_session(*outcomes):
    """
    A mock ClientSession serving ``outcomes`` in order, one per ``get()``.

    Each outcome is either a response mock or an exception to raise on entry.
    """
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    session.get = MagicMock(side_effect=[
        build_context_manager(error=outcome) if isinstance(outcome, BaseException)
        else build_context_manager(response=outcome)
        for outcome in outcomes
    ])
    return session


def attach_session(adapter, *outcomes):
    """Install a mock session on an adapter (or bare engine) and return it."""
    engine = getattr(adapter, "engine", adapter)
    session = build_session(*outcomes)
    engine._session = session
    return session


def request_params(session, call_index=0):
    """Query params sent with the n-th ``get()``."""
    return session.get.call_args_list[call_index].kwargs["params"]


def request_url(session, call_index=0):
    return session.get.call_args_list[call_index].args[0]


@pytest.fixture
def no_sleep():
    """Stand-in for asyncio.sleep that records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def clean_env():
    """Environment with every provider key removed."""
    env = {k: v for k, v in os.environ.items() if k not in PROVIDER_KEY_VARS}
    with patch.dict(os.environ, env, clear=True):
        yield


@pytest.fixture(autouse=True)
def _reset_shared_strategies():
    reset_fallback_strategies()
    yield
    reset_fallback_strategies()
