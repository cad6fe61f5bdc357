"""Tests for settling automatic exits."""

import sqlite3
import tempfile
import unittest
from unittest.mock import patch

from papertrade.db import LedgerStore
from papertrade.domain.models import ExitType, TradeAction
from papertrade.services.exit_executor import ExitExecutor


class TestExitExecutor(unittest.TestCase):
    def setUp(self):
        with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
            self.db_path = f.name
        self.ledger = LedgerStore(self.db_path, initial_cash=10000.0)
        self.ledger.upsert_holding("AAPL", 10, 150.0, take_profit=160.0, stop_loss=145.0)
        self.executor = ExitExecutor(self.ledger)

    def test_take_profit_settlement(self):
        holding = self.ledger.get_holding("AAPL")

        alert = self.executor.execute(holding, 161.0, ExitType.TAKE_PROFIT)

        self.assertIsNone(self.ledger.get_holding("AAPL"))
        self.assertAlmostEqual(self.ledger.get_portfolio().cash, 10000.0 + 1610.0)
        self.assertAlmostEqual(self.ledger.get_fees_summary()["total_realized_pl"], 110.0)

        trades = self.ledger.get_trades()
        self.assertEqual(len(trades), 1)
        self.assertEqual(trades[0].action, TradeAction.SELL)
        self.assertEqual(trades[0].exit_type, ExitType.TAKE_PROFIT)
        self.assertAlmostEqual(trades[0].total, 1610.0)

        self.assertEqual(alert.type, ExitType.TAKE_PROFIT)
        self.assertEqual(alert.target_price, 160.0)
        self.assertAlmostEqual(alert.realized_pl, 110.0)
        self.assertEqual(alert.realized_pl_percent, 7.33)
        self.assertFalse(alert.read)
        self.assertIn("AAPL", alert.message)
        self.assertEqual([a.id for a in self.ledger.get_alerts()], [alert.id])

    def test_stop_loss_targets_stop_price(self):
        holding = self.ledger.get_holding("AAPL")

        alert = self.executor.execute(holding, 145.0, ExitType.STOP_LOSS)

        self.assertEqual(alert.target_price, 145.0)
        self.assertAlmostEqual(alert.realized_pl, -50.0)
        self.assertEqual(alert.realized_pl_percent, -3.33)

    def test_second_execution_is_noop(self):
        holding = self.ledger.get_holding("AAPL")

        first = self.executor.execute(holding, 161.0, ExitType.TAKE_PROFIT)
        second = self.executor.execute(holding, 161.0, ExitType.TAKE_PROFIT)

        self.assertIsNotNone(first)
        self.assertIsNone(second)
        self.assertEqual(len(self.ledger.get_trades()), 1)
        self.assertEqual(len(self.ledger.get_alerts()), 1)
        self.assertAlmostEqual(self.ledger.get_portfolio().cash, 11610.0)

    def test_failure_after_cash_update_rolls_back(self):
        holding = self.ledger.get_holding("AAPL")

        with patch.object(self.ledger, "add_trade", side_effect=sqlite3.OperationalError("disk I/O error")):
            with self.assertRaises(sqlite3.OperationalError):
                self.executor.execute(holding, 161.0, ExitType.TAKE_PROFIT)

        self.assertEqual(self.ledger.get_portfolio().cash, 10000.0)
        self.assertIsNotNone(self.ledger.get_holding("AAPL"))
        self.assertEqual(self.ledger.get_trades(), [])
        self.assertEqual(self.ledger.get_alerts(), [])

        # The retry after the failure settles exactly once
        self.executor.execute(holding, 161.0, ExitType.TAKE_PROFIT)
        self.assertAlmostEqual(self.ledger.get_portfolio().cash, 11610.0)
        self.assertEqual(len(self.ledger.get_trades()), 1)

    def test_uses_stored_position_size(self):
        stale = self.ledger.get_holding("AAPL")
        self.ledger.upsert_holding("AAPL", 4, 150.0)

        alert = self.executor.execute(stale, 161.0, ExitType.TAKE_PROFIT)

        self.assertEqual(alert.shares, 4)
        self.assertAlmostEqual(self.ledger.get_portfolio().cash, 10000.0 + 644.0)


if __name__ == "__main__":
    unittest.main()
