"""Market data provider with fallback chain."""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from io import StringIO
from typing import Optional, Tuple

import httpx
import pandas as pd
import yfinance as yf

from ..cache import CacheInterface
from ..config import Config
from ..domain.models import Quote

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"Open", "High", "Low", "Close", "Volume"}
STOOQ_URL = "https://stooq.com/q/d/l/"

PERIOD_DAYS = {
    "1d": 1, "5d": 5, "1mo": 30, "3mo": 90,
    "6mo": 180, "1y": 365, "2y": 730, "5y": 1825, "max": 3650,
}


class MarketDataError(Exception):
    """No source could produce the requested market data."""


class MarketDataProvider:
    """
    Quote source and daily price history.

    Strategy:
    - Primary: yfinance (retried with exponential backoff)
    - Fallback: Stooq CSV API (daily data, no rate limits)

    Quotes are derived from the most recent daily bar: during the session
    that bar is today's and its Close is the last traded price; High/Low
    are the day's extremes. Both quotes and histories are TTL cached.
    """

    def __init__(
        self,
        config: Config,
        cache: CacheInterface,
        http_client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
    ):
        self.config = config
        self.cache = cache
        self.http_client = http_client
        self.semaphore = semaphore

    async def get_price_history(
        self,
        ticker: str,
        period: str = "6mo",
        interval: str = "1d",
        min_rows: int = 30,
    ) -> Tuple[Optional[pd.DataFrame], Optional[str]]:
        """
        Get daily OHLCV history.

        Returns:
            (DataFrame, None) on success with columns: Open, High, Low, Close, Volume
            (None, error_reason) on failure where error_reason is one of:
                - "not_found": no source returned data
                - "insufficient_data": fewer than min_rows rows
        """
        ticker = ticker.upper()
        cache_key = f"history:{ticker}:{period}:{interval}"

        cached = self.cache.get(cache_key, ttl_seconds=self.config.market_data_cache_ttl)
        if cached is not None:
            logger.debug("Cache hit for %s (period=%s, interval=%s)", ticker, period, interval)
            return cached, None

        logger.info("Fetching price history for %s (period=%s, interval=%s)", ticker, period, interval)
        data = await self._load_bars(ticker, period, interval)

        if data is None:
            stale = self.cache.get_stale(cache_key)
            if stale is not None:
                logger.warning("Using stale cached history for %s", ticker)
                return stale, None
            return None, "not_found"

        if len(data) < min_rows:
            logger.warning("Only %d rows < min_rows %d for %s", len(data), min_rows, ticker)
            return None, "insufficient_data"

        self.cache.set(cache_key, data)
        return data, None

    async def get_quote(self, symbol: str, use_cache: bool = True) -> Quote:
        """
        Latest quote for `symbol`.

        Raises:
            MarketDataError: if neither source returns a usable bar
        """
        symbol = symbol.upper()
        cache_key = f"quote:{symbol}"

        if use_cache:
            cached = self.cache.get(cache_key, ttl_seconds=self.config.quote_cache_ttl)
            if cached is not None:
                return cached

        bars = await self._load_bars(symbol, "5d", "1d")
        if bars is None or bars.empty:
            stale = self.cache.get_stale(cache_key) if use_cache else None
            if stale is not None:
                logger.warning("Using stale cached quote for %s", symbol)
                return replace(stale, stale=True)
            raise MarketDataError(f"No quote available for {symbol}")

        quote = quote_from_bars(symbol, bars, source=bars.attrs.get("source", "unknown"))
        if quote.price <= 0:
            raise MarketDataError(f"Invalid price {quote.price} for {symbol}")

        self.cache.set(cache_key, quote)
        logger.debug("[%s] $%.2f (%s)", symbol, quote.price, quote.source)
        return quote

    async def get_fresh_quote(self, symbol: str) -> Quote:
        """Quote that bypasses the cache (used at trade execution)."""
        return await self.get_quote(symbol, use_cache=False)

    async def _load_bars(self, ticker: str, period: str, interval: str) -> Optional[pd.DataFrame]:
        """Daily bars from yfinance, else Stooq. None when both come back empty."""
        retries = max(1, self.config.max_retries)
        for attempt in range(retries):
            try:
                data = await self._fetch_yfinance(ticker, period, interval)
            except Exception as exc:
                rate_limited = _is_rate_limited(exc)
                logger.warning(
                    "yfinance %s failed (attempt %d/%d)%s: %s",
                    ticker,
                    attempt + 1,
                    retries,
                    " [rate limited]" if rate_limited else "",
                    exc,
                )
                if rate_limited or attempt == retries - 1:
                    break
                await asyncio.sleep(self.config.retry_backoff_factor * (2 ** attempt))
                continue

            if data is not None:
                data.attrs["source"] = "yfinance"
                return data
            break

        logger.info("Falling back to Stooq for %s", ticker)
        try:
            data = await self._fetch_stooq(ticker, period)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Stooq fallback failed for %s: %s", ticker, exc)
            return None

        if data is not None:
            data.attrs["source"] = "stooq"
        return data

    async def _fetch_yfinance(self, ticker: str, period: str, interval: str) -> Optional[pd.DataFrame]:
        # yfinance is blocking; keep it off the event loop
        def _download():
            return yf.download(ticker, period=period, interval=interval, progress=False, auto_adjust=False)

        async with self.semaphore:
            df = await asyncio.get_running_loop().run_in_executor(None, _download)

        if df is not None and isinstance(df.columns, pd.MultiIndex):
            df.columns = df.columns.get_level_values(0)
        return _normalize_bars(df, ticker)

    async def _fetch_stooq(self, ticker: str, period: str) -> Optional[pd.DataFrame]:
        """Stooq daily CSV. Plain US tickers need the .US suffix there."""
        end = datetime.now(timezone.utc)
        start = end - timedelta(days=PERIOD_DAYS.get(period, 500))
        symbol = f"{ticker}.US" if ticker.isalpha() and len(ticker) <= 5 else ticker

        async with self.semaphore:
            response = await self.http_client.get(
                STOOQ_URL,
                params={"s": symbol, "d1": start.strftime("%Y%m%d"), "d2": end.strftime("%Y%m%d"), "i": "d"},
                timeout=self.config.http_timeout,
                follow_redirects=True,
            )
            response.raise_for_status()

        if "Date" not in response.text.split("\n", 1)[0]:
            return None
        df = pd.read_csv(StringIO(response.text), parse_dates=["Date"], index_col="Date")
        return _normalize_bars(df.sort_index(), ticker)


def _is_rate_limited(exc: Exception) -> bool:
    message = str(exc).lower()
    return "rate limit" in message or "too many requests" in message or "429" in message


def _normalize_bars(df: Optional[pd.DataFrame], ticker: str) -> Optional[pd.DataFrame]:
    """Title-case OHLCV columns, drop incomplete rows. None if unusable."""
    if df is None or df.empty:
        return None

    df = df.rename(columns=lambda col: str(col).capitalize())
    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        logger.warning("Missing columns for %s: %s", ticker, sorted(missing))
        return None

    df = df[["Open", "High", "Low", "Close", "Volume"]].dropna()
    return df if not df.empty else None


def quote_from_bars(symbol: str, bars: pd.DataFrame, source: str = "unknown") -> Quote:
    """Quote from the latest daily bar; previous close from the bar before it."""
    latest = bars.iloc[-1]
    previous_close = float(bars["Close"].iloc[-2]) if len(bars) > 1 else None
    price = float(latest["Close"])
    return Quote(
        symbol=symbol.upper(),
        price=price,
        high=float(latest.get("High", price)),
        low=float(latest.get("Low", price)),
        volume=float(latest.get("Volume", 0) or 0),
        timestamp=datetime.now(timezone.utc),
        previous_close=previous_close,
        source=source,
    )
