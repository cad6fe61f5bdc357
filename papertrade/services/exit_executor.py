"""Settle automatic take-profit / stop-loss exits against the ledger."""

import logging
from typing import Optional

from ..db import LedgerStore
from ..domain.models import Alert, ExitType, Holding, Trade, TradeAction, utc_now

logger = logging.getLogger(__name__)


class ExitExecutor:
    """
    Closes a whole position at a given price.

    Every step runs inside one ledger transaction. The holding is re-read
    first so a second call for a position that is already gone is a no-op,
    and a failure in any step rolls back the cash credit with it.
    """

    def __init__(self, ledger: LedgerStore):
        self.ledger = ledger

    def execute(self, holding: Holding, exit_price: float, exit_type: ExitType) -> Optional[Alert]:
        """
        Sell `holding` in full at `exit_price`.

        Returns:
            The created Alert, or None if the holding no longer exists
        """
        with self.ledger.transaction():
            current = self.ledger.get_holding(holding.symbol)
            if current is None:
                logger.info("Exit skipped for %s: position already closed", holding.symbol)
                return None

            shares = current.shares
            proceeds = shares * exit_price
            cost_basis = shares * current.avg_cost
            realized_pl = proceeds - cost_basis
            realized_pl_percent = round(realized_pl / cost_basis * 100, 2) if cost_basis > 0 else 0.0

            if exit_type == ExitType.TAKE_PROFIT:
                target_price = current.take_profit if current.take_profit is not None else exit_price
            else:
                target_price = current.stop_loss if current.stop_loss is not None else exit_price

            portfolio = self.ledger.get_portfolio()
            self.ledger.update_cash(portfolio.cash + proceeds)
            self.ledger.add_realized_pl(realized_pl)
            self.ledger.upsert_holding(current.symbol, 0, 0)

            self.ledger.add_trade(
                Trade(
                    symbol=current.symbol,
                    action=TradeAction.SELL,
                    shares=shares,
                    price=exit_price,
                    total=proceeds,
                    exit_type=exit_type,
                    realized_pl=realized_pl,
                    realized_pl_percent=realized_pl_percent,
                    executed_at=utc_now(),
                )
            )

            alert = self.ledger.add_alert(
                Alert(
                    type=exit_type,
                    symbol=current.symbol,
                    shares=shares,
                    exit_price=exit_price,
                    target_price=target_price,
                    realized_pl=realized_pl,
                    realized_pl_percent=realized_pl_percent,
                    message=format_exit_message(current.symbol, shares, exit_price, exit_type, realized_pl, realized_pl_percent),
                )
            )

        logger.info(
            "%s exit for %s: %s shares @ $%.2f, P&L $%.2f (%.2f%%)",
            exit_type.value,
            current.symbol,
            shares,
            exit_price,
            realized_pl,
            realized_pl_percent,
        )
        return alert


def format_exit_message(
    symbol: str,
    shares: float,
    exit_price: float,
    exit_type: ExitType,
    realized_pl: float,
    realized_pl_percent: float,
) -> str:
    label = "Take profit" if exit_type == ExitType.TAKE_PROFIT else "Stop loss"
    sign = "+" if realized_pl >= 0 else "-"
    return (
        f"{label} hit: sold {shares:g} {symbol} @ ${exit_price:.2f} "
        f"({sign}${abs(realized_pl):.2f}, {realized_pl_percent:+.2f}%)"
    )
