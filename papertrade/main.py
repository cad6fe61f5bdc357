"""Process entry point: runs the position monitor until SIGINT/SIGTERM."""

import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone

from .cache import InMemoryCache
from .config import Config
from .db import LedgerStore
from .http_client import close_http_client, get_http_client
from .jobs.position_monitor import PositionMonitor
from .market_calendar import MarketCalendar
from .notifications import build_notifier
from .providers.market import MarketDataProvider
from .services.exit_executor import ExitExecutor

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


def build_monitor(config: Config) -> PositionMonitor:
    """Wire the monitor and its collaborators from configuration."""
    ledger = LedgerStore(config.db_path, initial_cash=config.initial_cash)
    calendar = MarketCalendar.load(config.market_calendar_path)

    market_provider = MarketDataProvider(
        config=config,
        cache=InMemoryCache(default_ttl=config.market_data_cache_ttl),
        http_client=get_http_client(config.http_timeout),
        semaphore=asyncio.Semaphore(config.max_concurrent_requests),
    )

    notifier = build_notifier(config)
    logger.info("Telegram notifications %s", "enabled" if config.notifications_enabled else "disabled")

    return PositionMonitor(
        calendar=calendar,
        quote_source=market_provider,
        ledger=ledger,
        executor=ExitExecutor(ledger),
        notifier=notifier,
        open_interval=config.monitor_open_interval,
        closed_interval=config.monitor_closed_interval,
        quote_timeout=config.quote_timeout,
        max_concurrency=config.max_concurrent_requests,
    )


async def main() -> None:
    """Main application entry point."""
    config = Config.from_env()
    logging.getLogger().setLevel(config.log_level)

    monitor = build_monitor(config)
    holdings = monitor.ledger.get_holdings()
    logger.info(
        "Starting position monitor at %s (%d holdings, %d with TP/SL)",
        datetime.now(timezone.utc).isoformat(),
        len(holdings),
        sum(1 for h in holdings if h.is_monitored),
    )

    stop_event = asyncio.Event()

    def _on_signal(signum):
        logger.info("Signal %d received, shutting down gracefully...", signum)
        stop_event.set()

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGTERM, lambda: _on_signal(signal.SIGTERM))
    loop.add_signal_handler(signal.SIGINT, lambda: _on_signal(signal.SIGINT))

    try:
        await monitor.start()
        await stop_event.wait()
    finally:
        logger.info("Stopping position monitor...")
        await monitor.stop()
        await close_http_client()
        logger.info("Shutdown complete")


def run() -> None:
    """Synchronous entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    run()
