"""SQLite ledger for the simulated cash account."""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from .domain.models import Alert, ExitType, Holding, Portfolio, Trade, TradeAction, utc_now

logger = logging.getLogger(__name__)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class LedgerStore:
    """
    Portfolio, holdings, trades, alerts and watchlist.

    Every public method is atomic on its own. `transaction()` groups
    several calls into a single SQLite transaction: all of them commit
    together or none do.
    """

    def __init__(self, db_path: str, initial_cash: float = 100000.0):
        self.db_path = db_path
        self.initial_cash = initial_cash
        self._tx_conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Connection for one operation; joins the open transaction if any."""
        if self._tx_conn is not None:
            yield self._tx_conn
            return

        conn = self._open()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator["LedgerStore"]:
        """Run the enclosed ledger calls as one all-or-nothing unit."""
        if self._tx_conn is not None:
            yield self
            return

        conn = self._open()
        conn.execute("BEGIN IMMEDIATE")
        self._tx_conn = conn
        try:
            yield self
            conn.commit()
        except Exception:
            conn.rollback()
            logger.warning("Ledger transaction rolled back")
            raise
        finally:
            self._tx_conn = None
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        now = utc_now().isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS portfolio (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    cash REAL NOT NULL,
                    total_commissions_paid REAL NOT NULL DEFAULT 0,
                    total_taxes_paid REAL NOT NULL DEFAULT 0,
                    total_realized_pl REAL NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS holdings (
                    symbol TEXT PRIMARY KEY,
                    shares REAL NOT NULL CHECK (shares > 0),
                    avg_cost REAL NOT NULL,
                    take_profit REAL,
                    stop_loss REAL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trades (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    action TEXT NOT NULL,
                    shares REAL NOT NULL,
                    price REAL NOT NULL,
                    total REAL NOT NULL,
                    commission REAL NOT NULL DEFAULT 0,
                    tax REAL NOT NULL DEFAULT 0,
                    take_profit REAL,
                    stop_loss REAL,
                    exit_type TEXT,
                    realized_pl REAL,
                    realized_pl_percent REAL,
                    executed_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_trades_symbol ON trades(symbol)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS alerts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    type TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    shares REAL NOT NULL,
                    exit_price REAL NOT NULL,
                    target_price REAL NOT NULL,
                    realized_pl REAL NOT NULL,
                    realized_pl_percent REAL NOT NULL,
                    message TEXT NOT NULL DEFAULT '',
                    read INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_unread ON alerts(read) WHERE read = 0")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS watchlist (
                    symbol TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                INSERT OR IGNORE INTO portfolio(id, cash, created_at, updated_at)
                VALUES (1, ?, ?, ?)
                """,
                (self.initial_cash, now, now),
            )
        logger.info("Ledger initialized at %s", self.db_path)

    # ==================== Portfolio ====================

    def get_portfolio(self) -> Portfolio:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM portfolio WHERE id = 1").fetchone()
        return Portfolio(
            cash=row["cash"],
            total_commissions_paid=row["total_commissions_paid"],
            total_taxes_paid=row["total_taxes_paid"],
            total_realized_pl=row["total_realized_pl"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def update_cash(self, new_cash: float) -> Portfolio:
        with self._connect() as conn:
            conn.execute(
                "UPDATE portfolio SET cash = ?, updated_at = ? WHERE id = 1",
                (new_cash, utc_now().isoformat()),
            )
        return self.get_portfolio()

    def _add_to_counter(self, column: str, amount: float) -> float:
        with self._connect() as conn:
            conn.execute(
                f"UPDATE portfolio SET {column} = {column} + ?, updated_at = ? WHERE id = 1",
                (amount, utc_now().isoformat()),
            )
            row = conn.execute(f"SELECT {column} FROM portfolio WHERE id = 1").fetchone()
        return row[0]

    def add_commission(self, amount: float) -> float:
        return self._add_to_counter("total_commissions_paid", amount)

    def add_tax(self, amount: float) -> float:
        return self._add_to_counter("total_taxes_paid", amount)

    def add_realized_pl(self, amount: float) -> float:
        return self._add_to_counter("total_realized_pl", amount)

    def get_fees_summary(self) -> Dict[str, float]:
        portfolio = self.get_portfolio()
        return {
            "total_commissions_paid": portfolio.total_commissions_paid,
            "total_taxes_paid": portfolio.total_taxes_paid,
            "total_realized_pl": portfolio.total_realized_pl,
            "total_costs": portfolio.total_commissions_paid + portfolio.total_taxes_paid,
        }

    def reset_portfolio(self) -> Portfolio:
        """Back to initial cash; clears holdings, trades and alerts, keeps the watchlist."""
        now = utc_now().isoformat()
        with self.transaction():
            with self._connect() as conn:
                conn.execute("DELETE FROM holdings")
                conn.execute("DELETE FROM trades")
                conn.execute("DELETE FROM alerts")
                conn.execute(
                    """
                    UPDATE portfolio SET cash = ?, total_commissions_paid = 0,
                        total_taxes_paid = 0, total_realized_pl = 0,
                        created_at = ?, updated_at = ?
                    WHERE id = 1
                    """,
                    (self.initial_cash, now, now),
                )
        logger.info("Portfolio reset to $%.2f", self.initial_cash)
        return self.get_portfolio()

    # ==================== Holdings ====================

    @staticmethod
    def _row_to_holding(row: sqlite3.Row) -> Holding:
        return Holding(
            symbol=row["symbol"],
            shares=row["shares"],
            avg_cost=row["avg_cost"],
            take_profit=row["take_profit"],
            stop_loss=row["stop_loss"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def get_holdings(self) -> List[Holding]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM holdings ORDER BY symbol").fetchall()
        return [self._row_to_holding(row) for row in rows]

    def get_holding(self, symbol: str) -> Optional[Holding]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM holdings WHERE symbol = ?",
                (symbol.upper(),),
            ).fetchone()
        return self._row_to_holding(row) if row else None

    def upsert_holding(
        self,
        symbol: str,
        shares: float,
        avg_cost: float,
        take_profit: Optional[float] = None,
        stop_loss: Optional[float] = None,
    ) -> Optional[Holding]:
        """
        Create or update a holding. shares <= 0 deletes it.

        Existing TP/SL values are only overwritten when a new value is given.
        """
        symbol = symbol.upper()
        now = utc_now().isoformat()

        with self._connect() as conn:
            if shares <= 0:
                conn.execute("DELETE FROM holdings WHERE symbol = ?", (symbol,))
                logger.debug("Holding %s removed", symbol)
                return None

            conn.execute(
                """
                INSERT INTO holdings(symbol, shares, avg_cost, take_profit, stop_loss, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(symbol) DO UPDATE SET
                    shares=excluded.shares,
                    avg_cost=excluded.avg_cost,
                    take_profit=COALESCE(excluded.take_profit, holdings.take_profit),
                    stop_loss=COALESCE(excluded.stop_loss, holdings.stop_loss),
                    updated_at=excluded.updated_at
                """,
                (symbol, shares, avg_cost, take_profit, stop_loss, now, now),
            )
        return self.get_holding(symbol)

    def set_targets(self, symbol: str, take_profit: Optional[float], stop_loss: Optional[float]) -> Optional[Holding]:
        """Replace both thresholds (None clears one)."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE holdings SET take_profit = ?, stop_loss = ?, updated_at = ? WHERE symbol = ?",
                (take_profit, stop_loss, utc_now().isoformat(), symbol.upper()),
            )
        return self.get_holding(symbol)

    # ==================== Trades ====================

    def add_trade(self, trade: Trade) -> Trade:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO trades(symbol, action, shares, price, total, commission, tax,
                                   take_profit, stop_loss, exit_type, realized_pl,
                                   realized_pl_percent, executed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    trade.symbol.upper(),
                    trade.action.value,
                    trade.shares,
                    trade.price,
                    trade.total,
                    trade.commission,
                    trade.tax,
                    trade.take_profit,
                    trade.stop_loss,
                    trade.exit_type.value if trade.exit_type else None,
                    trade.realized_pl,
                    trade.realized_pl_percent,
                    trade.executed_at.isoformat(),
                ),
            )
            trade.id = cursor.lastrowid
        return trade

    def get_trades(self, limit: int = 100) -> List[Trade]:
        """Most recent trades first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM trades ORDER BY executed_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            Trade(
                id=row["id"],
                symbol=row["symbol"],
                action=TradeAction(row["action"]),
                shares=row["shares"],
                price=row["price"],
                total=row["total"],
                commission=row["commission"],
                tax=row["tax"],
                take_profit=row["take_profit"],
                stop_loss=row["stop_loss"],
                exit_type=ExitType(row["exit_type"]) if row["exit_type"] else None,
                realized_pl=row["realized_pl"],
                realized_pl_percent=row["realized_pl_percent"],
                executed_at=_parse_ts(row["executed_at"]),
            )
            for row in rows
        ]

    # ==================== Alerts ====================

    def add_alert(self, alert: Alert) -> Alert:
        """Store an alert as unread."""
        alert.read = False
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO alerts(type, symbol, shares, exit_price, target_price,
                                   realized_pl, realized_pl_percent, message, read, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (
                    alert.type.value,
                    alert.symbol.upper(),
                    alert.shares,
                    alert.exit_price,
                    alert.target_price,
                    alert.realized_pl,
                    alert.realized_pl_percent,
                    alert.message,
                    alert.created_at.isoformat(),
                ),
            )
            alert.id = cursor.lastrowid
        return alert

    def get_alerts(self, include_read: bool = False) -> List[Alert]:
        """Newest first; unread only unless include_read."""
        query = "SELECT * FROM alerts"
        if not include_read:
            query += " WHERE read = 0"
        query += " ORDER BY created_at DESC, id DESC"

        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        return [
            Alert(
                id=row["id"],
                type=ExitType(row["type"]),
                symbol=row["symbol"],
                shares=row["shares"],
                exit_price=row["exit_price"],
                target_price=row["target_price"],
                realized_pl=row["realized_pl"],
                realized_pl_percent=row["realized_pl_percent"],
                message=row["message"],
                read=bool(row["read"]),
                created_at=_parse_ts(row["created_at"]),
            )
            for row in rows
        ]

    def mark_alert_read(self, alert_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("UPDATE alerts SET read = 1 WHERE id = ?", (alert_id,))
        return cursor.rowcount > 0

    def mark_all_alerts_read(self) -> int:
        with self._connect() as conn:
            cursor = conn.execute("UPDATE alerts SET read = 1 WHERE read = 0")
        return cursor.rowcount

    def clear_alerts(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM alerts")

    # ==================== Watchlist ====================

    def get_watchlist(self) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT symbol FROM watchlist ORDER BY symbol").fetchall()
        return [row["symbol"] for row in rows]

    def add_to_watchlist(self, symbol: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO watchlist(symbol, created_at) VALUES (?, ?)",
                (symbol.upper(), utc_now().isoformat()),
            )

    def remove_from_watchlist(self, symbol: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM watchlist WHERE symbol = ?", (symbol.upper(),))
