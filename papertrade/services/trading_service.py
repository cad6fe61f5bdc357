"""Manual buy/sell against the simulated cash account."""

import logging
from typing import Any, Dict, List, Optional

from ..analytics.verdict import compute_levels
from ..config import Config
from ..db import LedgerStore
from ..domain.models import Alert, Holding, Trade, TradeAction, utc_now
from ..providers.market import MarketDataError, MarketDataProvider

logger = logging.getLogger(__name__)


class TradeRejected(Exception):
    """Manual trade refused before any ledger change. Message is user-facing."""


class TradingService:
    """Fills manual orders immediately and in full at a fresh quote."""

    def __init__(self, ledger: LedgerStore, market_provider: MarketDataProvider, config: Config):
        self.ledger = ledger
        self.market_provider = market_provider
        self.config = config

    def commission_for(self, total: float) -> float:
        return round(max(self.config.min_commission, total * self.config.commission_rate), 2)

    async def _fresh_price(self, symbol: str) -> float:
        try:
            quote = await self.market_provider.get_fresh_quote(symbol)
        except MarketDataError as exc:
            logger.warning("Quote unavailable for %s: %s", symbol, exc)
            raise TradeRejected(f"Could not fetch a price for {symbol}") from exc
        return quote.price

    @staticmethod
    def _validate(symbol: str, shares: float) -> str:
        symbol = (symbol or "").strip().upper()
        if not symbol:
            raise TradeRejected("Symbol is required")
        if shares is None or shares <= 0:
            raise TradeRejected("Shares must be a positive number")
        return symbol

    async def buy(
        self,
        symbol: str,
        shares: float,
        take_profit: Optional[float] = None,
        stop_loss: Optional[float] = None,
    ) -> Dict[str, Any]:
        symbol = self._validate(symbol, shares)
        price = await self._fresh_price(symbol)

        total = shares * price
        commission = self.commission_for(total)
        total_cost = total + commission

        default_target, default_stop, _ = compute_levels(price, None)
        if take_profit is None:
            take_profit = default_target
        if stop_loss is None:
            stop_loss = default_stop
        if take_profit <= stop_loss:
            raise TradeRejected("Take profit must be above stop loss")

        with self.ledger.transaction():
            portfolio = self.ledger.get_portfolio()
            if portfolio.cash < total_cost:
                raise TradeRejected(
                    f"Insufficient funds: need ${total_cost:.2f} (including ${commission:.2f} commission), "
                    f"have ${portfolio.cash:.2f}"
                )

            existing = self.ledger.get_holding(symbol)
            if existing:
                new_shares = existing.shares + shares
                avg_cost = (existing.cost_basis + total) / new_shares
            else:
                new_shares = shares
                avg_cost = price

            self.ledger.update_cash(portfolio.cash - total_cost)
            self.ledger.add_commission(commission)
            holding = self.ledger.upsert_holding(symbol, new_shares, avg_cost, take_profit, stop_loss)
            trade = self.ledger.add_trade(
                Trade(
                    symbol=symbol,
                    action=TradeAction.BUY,
                    shares=shares,
                    price=price,
                    total=total,
                    commission=commission,
                    take_profit=take_profit,
                    stop_loss=stop_loss,
                    executed_at=utc_now(),
                )
            )

        logger.info("BUY %s x%s @ $%.2f (commission $%.2f)", symbol, shares, price, commission)
        return {
            "trade": trade.to_dict(),
            "holding": holding,
            "cash": portfolio.cash - total_cost,
        }

    async def sell(self, symbol: str, shares: float) -> Dict[str, Any]:
        symbol = self._validate(symbol, shares)

        holding = self.ledger.get_holding(symbol)
        if holding is None:
            raise TradeRejected(f"You don't own any {symbol}")
        if holding.shares < shares:
            raise TradeRejected(f"Insufficient shares: you own {holding.shares:g} {symbol}")

        price = await self._fresh_price(symbol)

        total = shares * price
        commission = self.commission_for(total)
        gross_pl = (price - holding.avg_cost) * shares
        taxable = gross_pl - commission
        tax = round(taxable * self.config.tax_rate, 2) if taxable > 0 else 0.0
        net_proceeds = total - commission - tax
        realized_pl = gross_pl - commission - tax
        cost_basis = holding.avg_cost * shares
        realized_pl_percent = round(realized_pl / cost_basis * 100, 2) if cost_basis > 0 else 0.0

        with self.ledger.transaction():
            current = self.ledger.get_holding(symbol)
            if current is None or current.shares < shares:
                raise TradeRejected(f"Position in {symbol} changed, please retry")

            portfolio = self.ledger.get_portfolio()
            self.ledger.update_cash(portfolio.cash + net_proceeds)
            self.ledger.add_commission(commission)
            if tax > 0:
                self.ledger.add_tax(tax)
            self.ledger.add_realized_pl(realized_pl)

            remaining = current.shares - shares
            if remaining > 0:
                self.ledger.upsert_holding(symbol, remaining, current.avg_cost)
            else:
                self.ledger.upsert_holding(symbol, 0, 0)

            trade = self.ledger.add_trade(
                Trade(
                    symbol=symbol,
                    action=TradeAction.SELL,
                    shares=shares,
                    price=price,
                    total=total,
                    commission=commission,
                    tax=tax,
                    realized_pl=realized_pl,
                    realized_pl_percent=realized_pl_percent,
                    executed_at=utc_now(),
                )
            )

        logger.info(
            "SELL %s x%s @ $%.2f (commission $%.2f, tax $%.2f, P&L $%.2f)",
            symbol, shares, price, commission, tax, realized_pl,
        )
        return {
            "trade": trade.to_dict(),
            "net_proceeds": net_proceeds,
            "cash": portfolio.cash + net_proceeds,
        }

    def update_targets(
        self,
        symbol: str,
        take_profit: Optional[float],
        stop_loss: Optional[float],
    ) -> Holding:
        """Edit TP/SL on an open position. None clears a threshold."""
        symbol = (symbol or "").strip().upper()
        if self.ledger.get_holding(symbol) is None:
            raise TradeRejected(f"You don't own any {symbol}")
        if take_profit is not None and stop_loss is not None and take_profit <= stop_loss:
            raise TradeRejected("Take profit must be above stop loss")
        return self.ledger.set_targets(symbol, take_profit, stop_loss)

    async def portfolio_summary(self) -> Dict[str, Any]:
        """Holdings valued at live quotes (avg cost when a quote is unavailable)."""
        portfolio = self.ledger.get_portfolio()
        positions: List[Dict[str, Any]] = []
        market_value = 0.0

        for holding in self.ledger.get_holdings():
            try:
                quote = await self.market_provider.get_quote(holding.symbol)
                price = quote.price
                priced = True
            except MarketDataError as exc:
                logger.warning("Valuing %s at cost: %s", holding.symbol, exc)
                price = holding.avg_cost
                priced = False

            value = holding.shares * price
            unrealized = value - holding.cost_basis
            market_value += value
            positions.append(
                {
                    "symbol": holding.symbol,
                    "shares": holding.shares,
                    "avg_cost": holding.avg_cost,
                    "price": price,
                    "live_price": priced,
                    "market_value": value,
                    "unrealized_pl": unrealized,
                    "unrealized_pl_percent": (unrealized / holding.cost_basis * 100) if holding.cost_basis else 0.0,
                    "take_profit": holding.take_profit,
                    "stop_loss": holding.stop_loss,
                }
            )

        return {
            "cash": portfolio.cash,
            "market_value": market_value,
            "equity": portfolio.cash + market_value,
            "total_return": portfolio.cash + market_value - self.ledger.initial_cash,
            "positions": positions,
            "fees": self.ledger.get_fees_summary(),
        }

    def reset(self):
        return self.ledger.reset_portfolio()

    def unread_alerts(self) -> List[Alert]:
        return self.ledger.get_alerts(include_read=False)

    def mark_alert_read(self, alert_id: int) -> bool:
        return self.ledger.mark_alert_read(alert_id)

    def mark_all_alerts_read(self) -> int:
        return self.ledger.mark_all_alerts_read()
