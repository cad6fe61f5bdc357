"""Tests for manual buy/sell."""

import tempfile
import unittest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from papertrade.config import Config
from papertrade.db import LedgerStore
from papertrade.domain.models import Quote, TradeAction
from papertrade.jobs.position_monitor import check_live_crossing
from papertrade.providers.market import MarketDataError
from papertrade.services.trading_service import TradeRejected, TradingService


def make_quote(symbol, price):
    return Quote(
        symbol=symbol,
        price=price,
        high=price,
        low=price,
        volume=1_000_000,
        timestamp=datetime(2025, 7, 1, 15, 0, tzinfo=timezone.utc),
    )


class TradingServiceTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
            db_path = f.name
        self.ledger = LedgerStore(db_path, initial_cash=100000.0)
        self.market = MagicMock()
        self.market.get_fresh_quote = AsyncMock(return_value=make_quote("AAPL", 100.0))
        self.market.get_quote = AsyncMock(return_value=make_quote("AAPL", 100.0))
        self.service = TradingService(self.ledger, self.market, Config())

    def price_at(self, price):
        self.market.get_fresh_quote.return_value = make_quote("AAPL", price)


class TestBuy(TradingServiceTestCase):
    async def test_buy_debits_cash_and_commission(self):
        result = await self.service.buy("aapl", 100)

        self.assertAlmostEqual(result["cash"], 100000.0 - 10000.0 - 10.0)
        self.assertAlmostEqual(self.ledger.get_portfolio().cash, 89990.0)
        self.assertAlmostEqual(self.ledger.get_fees_summary()["total_commissions_paid"], 10.0)

        holding = self.ledger.get_holding("AAPL")
        self.assertEqual(holding.shares, 100)
        self.assertEqual(holding.avg_cost, 100.0)
        self.assertEqual(holding.take_profit, 108.0)
        self.assertEqual(holding.stop_loss, 96.0)

        trade = self.ledger.get_trades()[0]
        self.assertEqual(trade.action, TradeAction.BUY)
        self.assertEqual(trade.commission, 10.0)
        self.assertEqual(trade.take_profit, 108.0)

    async def test_minimum_commission(self):
        await self.service.buy("AAPL", 1)
        self.assertEqual(self.ledger.get_trades()[0].commission, 7.5)

    async def test_explicit_targets(self):
        await self.service.buy("AAPL", 10, take_profit=130.0, stop_loss=90.0)

        holding = self.ledger.get_holding("AAPL")
        self.assertEqual((holding.take_profit, holding.stop_loss), (130.0, 90.0))

    async def test_penny_stock_default_targets_bracket_fill(self):
        for price in (0.05, 0.10, 0.12):
            with self.subTest(price=price):
                self.ledger.reset_portfolio()
                self.price_at(price)

                await self.service.buy("AAPL", 1000)

                holding = self.ledger.get_holding("AAPL")
                self.assertGreater(holding.take_profit, price)
                self.assertLess(holding.stop_loss, price)
                self.assertIsNone(check_live_crossing(holding, price))

    async def test_additional_buy_averages_cost(self):
        await self.service.buy("AAPL", 10)
        self.price_at(120.0)
        await self.service.buy("AAPL", 10)

        holding = self.ledger.get_holding("AAPL")
        self.assertEqual(holding.shares, 20)
        self.assertAlmostEqual(holding.avg_cost, 110.0)

    async def test_insufficient_funds_changes_nothing(self):
        with self.assertRaises(TradeRejected):
            await self.service.buy("AAPL", 1000)

        self.assertEqual(self.ledger.get_portfolio().cash, 100000.0)
        self.assertIsNone(self.ledger.get_holding("AAPL"))
        self.assertEqual(self.ledger.get_trades(), [])

    async def test_invalid_input(self):
        for symbol, shares in (("", 1), ("AAPL", 0), ("AAPL", -5)):
            with self.assertRaises(TradeRejected):
                await self.service.buy(symbol, shares)
        self.market.get_fresh_quote.assert_not_awaited()

    async def test_inverted_targets_rejected(self):
        with self.assertRaises(TradeRejected):
            await self.service.buy("AAPL", 1, take_profit=90.0, stop_loss=95.0)

    async def test_quote_failure(self):
        self.market.get_fresh_quote.side_effect = MarketDataError("down")

        with self.assertRaises(TradeRejected):
            await self.service.buy("AAPL", 1)


class TestSell(TradingServiceTestCase):
    async def asyncSetUp(self):
        await self.service.buy("AAPL", 100)

    async def test_profitable_sell_pays_tax(self):
        self.price_at(110.0)

        result = await self.service.sell("AAPL", 100)

        # commission 11.00, tax 25% of (1000 - 11)
        self.assertAlmostEqual(result["net_proceeds"], 11000.0 - 11.0 - 247.25)
        self.assertAlmostEqual(self.ledger.get_portfolio().cash, 89990.0 + 10741.75)
        self.assertIsNone(self.ledger.get_holding("AAPL"))

        fees = self.ledger.get_fees_summary()
        self.assertAlmostEqual(fees["total_commissions_paid"], 21.0)
        self.assertAlmostEqual(fees["total_taxes_paid"], 247.25)
        self.assertAlmostEqual(fees["total_realized_pl"], 741.75)

        trade = self.ledger.get_trades()[0]
        self.assertEqual(trade.action, TradeAction.SELL)
        self.assertIsNone(trade.exit_type)

    async def test_losing_sell_has_no_tax(self):
        self.price_at(90.0)

        await self.service.sell("AAPL", 100)

        self.assertEqual(self.ledger.get_fees_summary()["total_taxes_paid"], 0)
        self.assertAlmostEqual(self.ledger.get_fees_summary()["total_realized_pl"], -1000.0 - 9.0)

    async def test_partial_sell_keeps_targets(self):
        await self.service.sell("AAPL", 40)

        holding = self.ledger.get_holding("AAPL")
        self.assertEqual(holding.shares, 60)
        self.assertEqual(holding.avg_cost, 100.0)
        self.assertEqual(holding.take_profit, 108.0)

    async def test_cannot_oversell(self):
        with self.assertRaises(TradeRejected):
            await self.service.sell("AAPL", 101)
        self.assertEqual(self.ledger.get_holding("AAPL").shares, 100)

    async def test_cannot_sell_unowned(self):
        with self.assertRaises(TradeRejected):
            await self.service.sell("MSFT", 1)


class TestTargetsAndSummary(TradingServiceTestCase):
    async def test_update_targets(self):
        await self.service.buy("AAPL", 10)

        holding = self.service.update_targets("aapl", 125.0, None)

        self.assertEqual(holding.take_profit, 125.0)
        self.assertIsNone(holding.stop_loss)

    async def test_update_targets_validation(self):
        with self.assertRaises(TradeRejected):
            self.service.update_targets("AAPL", 110.0, 90.0)

        await self.service.buy("AAPL", 10)
        with self.assertRaises(TradeRejected):
            self.service.update_targets("AAPL", 90.0, 110.0)

    async def test_portfolio_summary(self):
        await self.service.buy("AAPL", 10)
        self.ledger.upsert_holding("MSFT", 2, 400.0)

        async def quote(symbol):
            if symbol == "MSFT":
                raise MarketDataError("down")
            return make_quote(symbol, 120.0)

        self.market.get_quote.side_effect = quote

        summary = await self.service.portfolio_summary()

        positions = {p["symbol"]: p for p in summary["positions"]}
        self.assertAlmostEqual(positions["AAPL"]["unrealized_pl"], 200.0)
        self.assertFalse(positions["MSFT"]["live_price"])
        self.assertAlmostEqual(positions["MSFT"]["market_value"], 800.0)
        self.assertAlmostEqual(summary["market_value"], 2000.0)
        self.assertAlmostEqual(summary["equity"], summary["cash"] + 2000.0)

    async def test_reset_and_alert_helpers(self):
        await self.service.buy("AAPL", 10)

        portfolio = self.service.reset()

        self.assertEqual(portfolio.cash, 100000.0)
        self.assertEqual(self.service.unread_alerts(), [])
        self.assertEqual(self.service.mark_all_alerts_read(), 0)


if __name__ == "__main__":
    unittest.main()
