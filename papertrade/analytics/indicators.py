"""
Technical indicator calculator.

Pure, deterministic functions over a chronologically ordered daily OHLCV
DataFrame (columns Open, High, Low, Close, Volume). Every moving-window
value is None when the history is shorter than the window, never a
placeholder number.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

SMA_FAST = 20
SMA_SLOW = 50
RSI_PERIOD = 14
ATR_PERIOD = 14
VOLUME_LOOKBACK = 20
CROSS_LOOKBACK = 5
# Gap between SMA20 and SMA50, relative to SMA50, below which the averages are "flat"
CROSS_NEUTRAL_BAND = 0.001
# ATR as % of price: upper bounds of low / normal / elevated / high
VOLATILITY_THRESHOLDS = (1.0, 2.0, 3.0, 5.0)


class CrossStatus(str, Enum):
    STRONG_BULLISH = "strong_bullish"
    BULLISH = "bullish"
    NEUTRAL = "neutral"
    BEARISH = "bearish"
    STRONG_BEARISH = "strong_bearish"
    UNKNOWN = "unknown"

    @property
    def is_bearish(self) -> bool:
        return self in (CrossStatus.BEARISH, CrossStatus.STRONG_BEARISH)

    @property
    def is_bullish(self) -> bool:
        return self in (CrossStatus.BULLISH, CrossStatus.STRONG_BULLISH)


class VolatilityLevel(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"
    EXTREME = "extreme"


@dataclass(frozen=True)
class IndicatorSet:
    """Indicator snapshot at the latest bar."""
    price: float
    bars: int
    sma20: Optional[float]
    sma50: Optional[float]
    rsi14: Optional[float]
    atr14: Optional[float]
    atr_percent: Optional[float]
    avg_volume20: Optional[float]
    volume_ratio: float
    cross_status: CrossStatus
    golden_cross: bool
    death_cross: bool
    consecutive_down_days: int
    volatility_level: Optional[VolatilityLevel]


def calculate_sma(values: pd.Series, period: int) -> Optional[float]:
    """
    Calculate Simple Moving Average of the last `period` values.

    Returns:
        SMA value or None if insufficient data
    """
    if values is None or len(values) < period:
        return None
    return float(values.iloc[-period:].mean())


def calculate_rsi(closes: pd.Series, period: int = RSI_PERIOD) -> Optional[float]:
    """
    Calculate RSI with Wilder's smoothing.

    The first average gain/loss is the simple mean of the first `period`
    changes; every later change is folded in as
    avg = (avg * (period - 1) + current) / period.

    Returns:
        RSI (0-100, two decimals) or None with fewer than period + 1 closes
    """
    if closes is None or len(closes) < period + 1:
        return None

    changes = np.diff(closes.to_numpy(dtype=float))
    gains = np.where(changes > 0, changes, 0.0)
    losses = np.where(changes < 0, -changes, 0.0)

    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0

    rs = avg_gain / avg_loss
    return round(float(100 - (100 / (1 + rs))), 2)


def true_range(df: pd.DataFrame) -> pd.Series:
    """True range per bar; the first bar has no previous close and is dropped."""
    prev_close = df["Close"].shift(1)
    ranges = pd.concat(
        [
            df["High"] - df["Low"],
            (df["High"] - prev_close).abs(),
            (df["Low"] - prev_close).abs(),
        ],
        axis=1,
    )
    return ranges.max(axis=1).iloc[1:]


def calculate_atr(df: pd.DataFrame, period: int = ATR_PERIOD) -> Optional[float]:
    """
    Calculate Average True Range as the mean of the last `period` true ranges.

    Returns:
        ATR in price units or None with fewer than period + 1 bars
    """
    if df is None or len(df) < period + 1:
        return None
    if not {"High", "Low", "Close"}.issubset(df.columns):
        return None
    return float(true_range(df).iloc[-period:].mean())


def calculate_volume_ratio(volumes: pd.Series, lookback: int = VOLUME_LOOKBACK) -> Tuple[float, Optional[float]]:
    """
    Latest volume divided by the mean volume of the preceding bars.

    Returns:
        (ratio, average) where ratio is 1.0 and average None when there is
        no usable history
    """
    if volumes is None or len(volumes) < 2:
        return 1.0, None

    prior = volumes.iloc[-(lookback + 1):-1]
    avg_volume = float(prior.mean())
    if np.isnan(avg_volume) or avg_volume <= 0:
        return 1.0, None

    return float(volumes.iloc[-1]) / avg_volume, avg_volume


def classify_cross(
    closes: pd.Series,
    fast: int = SMA_FAST,
    slow: int = SMA_SLOW,
    lookback: int = CROSS_LOOKBACK,
) -> Tuple[CrossStatus, bool, bool]:
    """
    Classify the SMA20/SMA50 relationship.

    "strong" means the gap is wider than `lookback` bars ago on the same
    side. A golden (death) cross is a change of sign of the gap from
    non-positive to positive (non-negative to negative) within `lookback` bars.

    Returns:
        (status, golden_cross, death_cross)
    """
    if closes is None or len(closes) < slow:
        return CrossStatus.UNKNOWN, False, False

    gap = closes.rolling(fast).mean() - closes.rolling(slow).mean()
    slow_sma = closes.rolling(slow).mean()
    current = float(gap.iloc[-1])

    recent = gap.iloc[-(lookback + 1):].dropna()
    golden = bool(len(recent) > 1 and (recent.iloc[:-1] <= 0).any() and current > 0)
    death = bool(len(recent) > 1 and (recent.iloc[:-1] >= 0).any() and current < 0)

    if abs(current) < CROSS_NEUTRAL_BAND * float(slow_sma.iloc[-1]):
        return CrossStatus.NEUTRAL, golden, death

    previous = gap.iloc[-(lookback + 1)] if len(gap) > lookback else np.nan
    widening = (
        not pd.isna(previous)
        and np.sign(previous) == np.sign(current)
        and abs(current) > abs(previous)
    )

    if current > 0:
        status = CrossStatus.STRONG_BULLISH if widening else CrossStatus.BULLISH
    else:
        status = CrossStatus.STRONG_BEARISH if widening else CrossStatus.BEARISH
    return status, golden, death


def count_consecutive_down_days(closes: pd.Series) -> int:
    """Trailing closes each strictly lower than the one before."""
    values = closes.to_numpy(dtype=float) if closes is not None else np.array([])
    count = 0
    for i in range(len(values) - 1, 0, -1):
        if values[i] < values[i - 1]:
            count += 1
        else:
            break
    return count


def classify_volatility(
    atr_percent: Optional[float],
    thresholds: Sequence[float] = VOLATILITY_THRESHOLDS,
) -> Optional[VolatilityLevel]:
    """Bucket ATR% of price; None when ATR is unavailable."""
    if atr_percent is None:
        return None
    levels = (
        VolatilityLevel.LOW,
        VolatilityLevel.NORMAL,
        VolatilityLevel.ELEVATED,
        VolatilityLevel.HIGH,
    )
    for bound, level in zip(thresholds, levels):
        if atr_percent < bound:
            return level
    return VolatilityLevel.EXTREME


def compute_indicators(df: pd.DataFrame) -> IndicatorSet:
    """
    Compute the full indicator set for the latest bar of `df`.

    Raises:
        ValueError: if `df` is empty or has no Close column
    """
    if df is None or len(df) == 0 or "Close" not in df.columns:
        raise ValueError("Price history must contain at least one bar with a Close column")

    closes = df["Close"].astype(float)
    price = float(closes.iloc[-1])

    atr = calculate_atr(df)
    atr_percent = (atr / price) * 100 if atr is not None and price > 0 else None

    if "Volume" in df.columns:
        volume_ratio, avg_volume = calculate_volume_ratio(df["Volume"].astype(float))
    else:
        volume_ratio, avg_volume = 1.0, None

    cross_status, golden, death = classify_cross(closes)

    indicators = IndicatorSet(
        price=price,
        bars=len(df),
        sma20=calculate_sma(closes, SMA_FAST),
        sma50=calculate_sma(closes, SMA_SLOW),
        rsi14=calculate_rsi(closes, RSI_PERIOD),
        atr14=atr,
        atr_percent=atr_percent,
        avg_volume20=avg_volume,
        volume_ratio=volume_ratio,
        cross_status=cross_status,
        golden_cross=golden,
        death_cross=death,
        consecutive_down_days=count_consecutive_down_days(closes),
        volatility_level=classify_volatility(atr_percent),
    )
    logger.debug(
        "Indicators: bars=%d SMA20=%s SMA50=%s RSI=%s ATR=%s cross=%s",
        indicators.bars,
        indicators.sma20,
        indicators.sma50,
        indicators.rsi14,
        indicators.atr14,
        indicators.cross_status.value,
    )
    return indicators
