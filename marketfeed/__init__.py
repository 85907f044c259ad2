"""Resilient multi-source market data fetch layer."""

__version__ = "0.1.0"
