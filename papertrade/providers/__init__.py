"""Market data and analyst providers."""

from .analysts import AnalystProvider
from .market import MarketDataError, MarketDataProvider, quote_from_bars

__all__ = [
    "AnalystProvider",
    "MarketDataError",
    "MarketDataProvider",
    "quote_from_bars",
]
