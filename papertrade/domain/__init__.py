"""Domain models."""

from .models import (
    AnalystConsensus,
    Alert,
    ExitType,
    Holding,
    Portfolio,
    Quote,
    Trade,
    TradeAction,
)

__all__ = [
    "AnalystConsensus",
    "Alert",
    "ExitType",
    "Holding",
    "Portfolio",
    "Quote",
    "Trade",
    "TradeAction",
]
