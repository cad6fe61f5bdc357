"""Background job that closes positions when take-profit or stop-loss is crossed."""

import asyncio
import logging
import sqlite3
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..db import LedgerStore
from ..domain.models import Alert, ExitType, Holding, Quote, utc_now
from ..market_calendar import MarketCalendar, MarketStatus, SessionState
from ..services.exit_executor import ExitExecutor

logger = logging.getLogger(__name__)


def check_live_crossing(holding: Holding, price: float) -> Optional[ExitType]:
    """
    Crossing at a live price. Take-profit wins when both thresholds
    are crossed by the same price.
    """
    if holding.take_profit is not None and price >= holding.take_profit:
        return ExitType.TAKE_PROFIT
    if holding.stop_loss is not None and price <= holding.stop_loss:
        return ExitType.STOP_LOSS
    return None


def check_retroactive_crossing(holding: Holding, day_low: float, day_high: float) -> Optional[Tuple[ExitType, float]]:
    """
    Crossing during a session the monitor did not watch.

    Stop-loss is checked against the day low first: when the range covers
    both thresholds the order of the moves is unknown, so the loss is
    assumed. The exit is booked at the threshold itself, not the extreme.
    """
    if holding.stop_loss is not None and day_low <= holding.stop_loss:
        return ExitType.STOP_LOSS, holding.stop_loss
    if holding.take_profit is not None and day_high >= holding.take_profit:
        return ExitType.TAKE_PROFIT, holding.take_profit
    return None


class PositionMonitor:
    """
    Polls quotes for every holding with a TP/SL on a market-calendar driven
    cadence and hands crossings to the ExitExecutor.

    The timer is a single asyncio task. Ticks never overlap; `stop()` lets
    an in-flight tick finish.
    """

    def __init__(
        self,
        calendar: MarketCalendar,
        quote_source,
        ledger: LedgerStore,
        executor: ExitExecutor,
        notifier=None,
        clock: Optional[Callable[[], datetime]] = None,
        open_interval: float = 30,
        closed_interval: float = 300,
        quote_timeout: float = 10.0,
        max_concurrency: int = 5,
    ):
        self.calendar = calendar
        self.quote_source = quote_source
        self.ledger = ledger
        self.executor = executor
        self.notifier = notifier
        self.clock = clock or utc_now
        self.open_interval = open_interval
        self.closed_interval = closed_interval
        self.quote_timeout = quote_timeout
        self.max_concurrency = max_concurrency

        self.interval: Optional[float] = None
        self.last_status: Optional[MarketStatus] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._tick_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def interval_for(self, state: SessionState) -> float:
        return self.closed_interval if state == SessionState.CLOSED else self.open_interval

    def _sync_interval(self, status: MarketStatus) -> bool:
        """Adopt the cadence for the current session. Returns True on change."""
        self.last_status = status
        interval = self.interval_for(status.state)
        if interval == self.interval:
            return False
        if self.interval is None:
            logger.info("Monitor interval set to %ss (market %s)", interval, status.state.value)
        else:
            logger.info(
                "Market is now %s, monitor interval %ss -> %ss",
                status.state.value,
                self.interval,
                interval,
            )
        self.interval = interval
        return True

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Run startup reconciliation, then schedule the recurring tick."""
        if self.running:
            logger.warning("Position monitor already running")
            return

        self._stop_event = asyncio.Event()
        try:
            await self.reconcile_startup()
        except Exception as exc:
            logger.error("Startup reconciliation failed: %s", exc, exc_info=True)

        if self.interval is None:
            self.interval = self.closed_interval
        self._task = asyncio.create_task(self._run())
        logger.info("Position monitor started (interval: %ss)", self.interval)

    async def stop(self) -> None:
        """Clear the timer. A tick already in progress completes first."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Position monitor stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.tick()
            except Exception as exc:
                logger.error("Position monitor tick failed: %s", exc, exc_info=True)

    # ==================== Evaluation ====================

    def _monitored_holdings(self) -> List[Holding]:
        return [h for h in self.ledger.get_holdings() if h.is_monitored]

    async def tick(self) -> List[Alert]:
        """One live evaluation. Returns the alerts of exits settled in this tick."""
        if self._tick_lock.locked():
            logger.warning("Previous monitor tick still running, skipping")
            return []

        async with self._tick_lock:
            status = self.calendar.status(self.clock())
            self._sync_interval(status)

            if not status.is_open:
                logger.debug("Market closed, skipping price checks")
                return []

            holdings = self._monitored_holdings()
            if not holdings:
                return []

            quotes = await self._fetch_quotes(h.symbol for h in holdings)

            alerts = []
            for holding in holdings:
                quote = quotes.get(holding.symbol)
                if quote is None:
                    continue
                exit_type = check_live_crossing(holding, quote.price)
                if exit_type is None:
                    continue
                alert = await self._settle(holding, quote.price, exit_type)
                if alert is not None:
                    alerts.append(alert)
            return alerts

    async def reconcile_startup(self) -> List[Alert]:
        """
        Catch crossings that happened while the process was down.

        With the market closed, each holding is checked against the latest
        day's low/high. With the market open, a normal tick runs instead.
        """
        status = self.calendar.status(self.clock())
        if status.is_open:
            logger.info("Market open at startup, running immediate check")
            return await self.tick()

        self._sync_interval(status)
        logger.info("Market closed at startup, checking for crossings missed while offline")

        async with self._tick_lock:
            holdings = self._monitored_holdings()
            if not holdings:
                return []

            quotes = await self._fetch_quotes(h.symbol for h in holdings)

            alerts = []
            for holding in holdings:
                quote = quotes.get(holding.symbol)
                if quote is None:
                    continue
                crossing = check_retroactive_crossing(holding, quote.low, quote.high)
                if crossing is None:
                    continue
                exit_type, exit_price = crossing
                logger.info(
                    "[%s] %s crossed while offline (low $%.2f, high $%.2f)",
                    holding.symbol,
                    exit_type.value,
                    quote.low,
                    quote.high,
                )
                alert = await self._settle(holding, exit_price, exit_type)
                if alert is not None:
                    alerts.append(alert)

        logger.info("Startup reconciliation complete: %d exit(s)", len(alerts))
        return alerts

    async def _fetch_quotes(self, symbols: Iterable[str]) -> Dict[str, Quote]:
        """Fetch quotes concurrently. Failed, timed out or stale symbols are left out."""
        symbols = list(dict.fromkeys(symbols))
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _fetch(symbol: str) -> Quote:
            async with semaphore:
                return await asyncio.wait_for(self.quote_source.get_quote(symbol), timeout=self.quote_timeout)

        results = await asyncio.gather(*(_fetch(s) for s in symbols), return_exceptions=True)

        quotes = {}
        for symbol, result in zip(symbols, results):
            if isinstance(result, asyncio.TimeoutError):
                logger.warning("[%s] Quote fetch timed out after %ss, skipping", symbol, self.quote_timeout)
            elif isinstance(result, BaseException):
                logger.warning("[%s] Quote fetch failed, skipping: %s", symbol, result)
            elif result.stale:
                logger.warning("[%s] Only a stale quote is available, skipping", symbol)
            else:
                quotes[symbol] = result
        return quotes

    async def _settle(self, holding: Holding, exit_price: float, exit_type: ExitType) -> Optional[Alert]:
        """Execute one exit; ledger errors leave the holding for the next tick."""
        try:
            alert = self.executor.execute(holding, exit_price, exit_type)
        except sqlite3.Error as exc:
            logger.error("[%s] %s exit failed, will retry: %s", holding.symbol, exit_type.value, exc, exc_info=True)
            return None

        if alert is not None and self.notifier is not None:
            try:
                await self.notifier.send_alert(alert)
            except Exception as exc:
                logger.error("[%s] Alert notification failed: %s", holding.symbol, exc, exc_info=True)
        return alert
