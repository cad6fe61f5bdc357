"""Services: exit settlement, manual trading and market scanning."""

from .exit_executor import ExitExecutor
from .scanner import DEFAULT_STOCKS, MarketScanner, rank_plans
from .trading_service import TradeRejected, TradingService

__all__ = [
    "DEFAULT_STOCKS",
    "ExitExecutor",
    "MarketScanner",
    "TradeRejected",
    "TradingService",
    "rank_plans",
]
