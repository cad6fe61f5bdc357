"""Market scanner: battle plans for a universe of symbols, ranked."""

import asyncio
import logging
from typing import Iterable, List, Optional

from ..analytics.indicators import compute_indicators
from ..analytics.verdict import DEFAULT_POLICY, BattlePlan, VerdictPolicy, generate_battle_plan
from ..providers.analysts import AnalystProvider
from ..providers.market import MarketDataError, MarketDataProvider

logger = logging.getLogger(__name__)

HISTORY_PERIOD = "6mo"
MIN_HISTORY_ROWS = 15

# Large-cap US names across sectors
DEFAULT_STOCKS = [
    # Technology
    "AAPL", "MSFT", "NVDA", "AVGO", "ORCL", "CRM", "CSCO", "ADBE", "AMD", "QCOM",
    "TXN", "INTU", "AMAT", "MU", "PANW", "CRWD",
    # Communication / consumer
    "GOOGL", "META", "NFLX", "AMZN", "TSLA", "HD", "MCD", "NKE", "SBUX", "COST",
    "WMT", "PG", "KO", "PEP",
    # Healthcare
    "UNH", "JNJ", "LLY", "MRK", "ABBV", "TMO", "ABT", "ISRG", "AMGN", "VRTX",
    # Financials
    "JPM", "BAC", "WFC", "GS", "MS", "V", "MA", "AXP", "BLK", "SCHW",
    # Industrials / energy
    "CAT", "DE", "GE", "HON", "UNP", "LMT", "XOM", "CVX", "COP", "SLB",
]


def search_symbols(query: str, limit: int = 10) -> List[str]:
    """Substring match against the default universe."""
    query = (query or "").strip().upper()
    if not query:
        return []
    return [symbol for symbol in DEFAULT_STOCKS if query in symbol][:limit]


def rank_plans(plans: Iterable[BattlePlan]) -> List[BattlePlan]:
    """BUY_NOW < WAIT_FOR_DIP < WATCH < AVOID, then confidence descending."""
    return sorted(plans, key=lambda plan: (plan.verdict.priority, -plan.confidence_score))


class MarketScanner:
    """Builds a BattlePlan per symbol from quote, history and analyst data."""

    def __init__(
        self,
        market_provider: MarketDataProvider,
        analyst_provider: Optional[AnalystProvider] = None,
        policy: VerdictPolicy = DEFAULT_POLICY,
        max_concurrency: int = 5,
    ):
        self.market_provider = market_provider
        self.analyst_provider = analyst_provider
        self.policy = policy
        self.max_concurrency = max_concurrency

    async def analyze(self, symbol: str) -> Optional[BattlePlan]:
        """Battle plan for one symbol, or None when market data is unavailable."""
        symbol = symbol.upper()

        history, error = await self.market_provider.get_price_history(
            symbol, period=HISTORY_PERIOD, interval="1d", min_rows=MIN_HISTORY_ROWS
        )
        if history is None:
            logger.info("[%s] Skipped: %s", symbol, error)
            return None

        try:
            quote = await self.market_provider.get_quote(symbol)
        except MarketDataError as exc:
            logger.warning("[%s] Skipped: %s", symbol, exc)
            return None

        indicators = compute_indicators(history)

        analyst = None
        if self.analyst_provider is not None and self.analyst_provider.enabled:
            analyst = await self.analyst_provider.get_consensus(symbol)

        return generate_battle_plan(symbol, quote, indicators, analyst, self.policy)

    async def scan(self, symbols: Optional[Iterable[str]] = None) -> List[BattlePlan]:
        """Analyze every symbol with bounded concurrency; failures are dropped."""
        symbols = list(symbols) if symbols is not None else list(DEFAULT_STOCKS)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        logger.info("Scanning %d symbols", len(symbols))

        async def _analyze(symbol: str) -> Optional[BattlePlan]:
            async with semaphore:
                return await self.analyze(symbol)

        results = await asyncio.gather(*(_analyze(s) for s in symbols), return_exceptions=True)

        plans = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, Exception):
                logger.error("[%s] Analysis failed: %s", symbol, result)
            elif result is not None:
                plans.append(result)

        logger.info("Scan complete: %d/%d symbols", len(plans), len(symbols))
        return rank_plans(plans)
