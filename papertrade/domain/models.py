"""Domain models for the simulated cash account."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class ExitType(str, Enum):
    """Why a position was closed automatically."""
    TAKE_PROFIT = "TAKE_PROFIT"
    STOP_LOSS = "STOP_LOSS"


@dataclass(frozen=True)
class Quote:
    """Point-in-time market quote. Never persisted."""
    symbol: str
    price: float
    high: float
    low: float
    volume: float
    timestamp: datetime
    previous_close: Optional[float] = None
    source: str = "unknown"
    stale: bool = False

    @property
    def change_percent(self) -> Optional[float]:
        if not self.previous_close:
            return None
        return (self.price / self.previous_close - 1) * 100


@dataclass
class Holding:
    """Open position. A holding with shares <= 0 does not exist."""
    symbol: str
    shares: float
    avg_cost: float
    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def cost_basis(self) -> float:
        return self.shares * self.avg_cost

    @property
    def is_monitored(self) -> bool:
        """True when the position carries at least one exit threshold."""
        return self.take_profit is not None or self.stop_loss is not None


@dataclass
class Trade:
    """Append-only execution record."""
    symbol: str
    action: TradeAction
    shares: float
    price: float
    total: float
    commission: float = 0.0
    tax: float = 0.0
    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None
    exit_type: Optional[ExitType] = None
    realized_pl: Optional[float] = None
    realized_pl_percent: Optional[float] = None
    executed_at: datetime = field(default_factory=utc_now)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "action": self.action.value,
            "shares": self.shares,
            "price": self.price,
            "total": self.total,
            "commission": self.commission,
            "tax": self.tax,
            "take_profit": self.take_profit,
            "stop_loss": self.stop_loss,
            "exit_type": self.exit_type.value if self.exit_type else None,
            "realized_pl": self.realized_pl,
            "realized_pl_percent": self.realized_pl_percent,
            "executed_at": self.executed_at.isoformat(),
        }


@dataclass
class Alert:
    """Auto-exit notification. Only `read` ever changes."""
    type: ExitType
    symbol: str
    shares: float
    exit_price: float
    target_price: float
    realized_pl: float
    realized_pl_percent: float
    message: str = ""
    read: bool = False
    created_at: datetime = field(default_factory=utc_now)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "symbol": self.symbol,
            "shares": self.shares,
            "exit_price": self.exit_price,
            "target_price": self.target_price,
            "realized_pl": self.realized_pl,
            "realized_pl_percent": self.realized_pl_percent,
            "message": self.message,
            "read": self.read,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Portfolio:
    """Single simulated cash account with cumulative counters."""
    cash: float
    total_commissions_paid: float = 0.0
    total_taxes_paid: float = 0.0
    total_realized_pl: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class AnalystConsensus:
    """Wall Street recommendation counts for the latest reporting period."""
    strong_buy: int = 0
    buy: int = 0
    hold: int = 0
    sell: int = 0
    strong_sell: int = 0
    period: Optional[str] = None
    target_mean: Optional[float] = None

    @property
    def total(self) -> int:
        return self.strong_buy + self.buy + self.hold + self.sell + self.strong_sell

    @property
    def score(self) -> Optional[float]:
        """Weighted rating: Strong Buy=5 ... Strong Sell=1. None without analysts."""
        if self.total == 0:
            return None
        weighted = (
            self.strong_buy * 5
            + self.buy * 4
            + self.hold * 3
            + self.sell * 2
            + self.strong_sell * 1
        )
        return round(weighted / self.total, 2)

    @property
    def consensus(self) -> str:
        score = self.score
        if score is None:
            return "Hold"
        if score >= 4.5:
            return "Strong Buy"
        if score >= 3.5:
            return "Buy"
        if score >= 2.5:
            return "Hold"
        if score >= 1.5:
            return "Sell"
        return "Strong Sell"
