"""
Verdict engine: quote + indicators (+ analyst consensus) -> BattlePlan.

The plan is recomputed on every scan and is a pure function of its
inputs. Four filters (trend, momentum, volume, price floor) drive the
verdict; ATR drives the entry zone, profit target and stop loss, with a
fixed-percentage fallback when ATR is unavailable.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..domain.models import AnalystConsensus, Quote
from .indicators import CrossStatus, IndicatorSet, VolatilityLevel

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    BUY_NOW = "BUY_NOW"
    WAIT_FOR_DIP = "WAIT_FOR_DIP"
    WATCH = "WATCH"
    AVOID = "AVOID"

    @property
    def priority(self) -> int:
        """Scanner sort order, best first."""
        return _VERDICT_PRIORITY[self]


_VERDICT_PRIORITY = {
    Verdict.BUY_NOW: 0,
    Verdict.WAIT_FOR_DIP: 1,
    Verdict.WATCH: 2,
    Verdict.AVOID: 3,
}


@dataclass(frozen=True)
class VerdictPolicy:
    """Tunable thresholds for filters, levels and warnings."""
    rsi_low: float = 50.0
    rsi_high: float = 70.0
    rsi_ideal_low: float = 55.0
    rsi_ideal_high: float = 65.0
    volume_floor: float = 1.1
    price_floor: float = 10.0

    atr_stop_multiplier: float = 1.5
    atr_target_multiplier: float = 3.0
    fallback_stop_pct: float = 4.0
    fallback_target_pct: float = 8.0
    entry_atr_below: float = 0.5
    entry_atr_above: float = 1.0
    entry_fallback_pct: float = 1.0

    falling_knife_warn_days: int = 3
    falling_knife_severe_days: int = 5
    min_risk_reward: float = 1.5
    min_analysts: int = 5

    max_position_value: float = 5000.0

    @classmethod
    def from_config(cls, config) -> "VerdictPolicy":
        """Defaults, with the position-size cap taken from `Config`."""
        return cls(max_position_value=config.max_position_value)


DEFAULT_POLICY = VerdictPolicy()


@dataclass(frozen=True)
class FilterResults:
    trend: bool
    momentum: bool
    volume: bool
    price: bool

    @property
    def passed(self) -> int:
        return sum((self.trend, self.momentum, self.volume, self.price))

    @property
    def all_passed(self) -> bool:
        return self.passed == 4


@dataclass(frozen=True)
class EntryZone:
    low: float
    high: float
    current: float

    def contains(self, price: float) -> bool:
        return self.low <= price <= self.high


@dataclass(frozen=True)
class PriceLevel:
    price: float
    percentage: float
    per_share: float


@dataclass(frozen=True)
class RiskReward:
    ratio: float
    description: str


@dataclass(frozen=True)
class SuggestedPosition:
    shares: int
    investment: float
    max_risk: float
    max_profit: float


@dataclass(frozen=True)
class CrossoverData:
    status: CrossStatus
    sma20: Optional[float]
    sma50: Optional[float]
    golden_cross: bool
    death_cross: bool


@dataclass(frozen=True)
class FallingKnifeData:
    consecutive_down_days: int
    severe: bool


@dataclass(frozen=True)
class VolatilityData:
    atr: Optional[float]
    atr_percent: Optional[float]
    level: Optional[VolatilityLevel]
    volatility_based: bool


@dataclass(frozen=True)
class BattlePlan:
    """Structured trade recommendation for one symbol."""
    symbol: str
    price: float
    verdict: Verdict
    confidence_score: int
    confidence: str
    reasoning: str
    filter_results: FilterResults
    entry_zone: EntryZone
    profit_target: PriceLevel
    stop_loss: PriceLevel
    risk_reward: RiskReward
    suggested_position: SuggestedPosition
    warnings: List[str] = field(default_factory=list)
    why_factors: List[str] = field(default_factory=list)
    crossover_data: Optional[CrossoverData] = None
    falling_knife_data: Optional[FallingKnifeData] = None
    volatility_data: Optional[VolatilityData] = None
    analyst_data: Optional[AnalystConsensus] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["verdict"] = self.verdict.value
        if self.crossover_data:
            data["crossover_data"]["status"] = self.crossover_data.status.value
        if self.volatility_data and self.volatility_data.level:
            data["volatility_data"]["level"] = self.volatility_data.level.value
        return data


def _round(value: float) -> float:
    return round(value, 2)


def evaluate_filters(price: float, indicators: IndicatorSet, policy: VerdictPolicy = DEFAULT_POLICY) -> FilterResults:
    rsi = indicators.rsi14
    return FilterResults(
        trend=indicators.sma50 is not None and price > indicators.sma50,
        momentum=rsi is not None and policy.rsi_low <= rsi <= policy.rsi_high,
        volume=indicators.volume_ratio > policy.volume_floor,
        price=price > policy.price_floor,
    )


def compute_levels(price: float, atr: Optional[float], policy: VerdictPolicy = DEFAULT_POLICY):
    """
    Profit target and stop loss around `price`.

    Returns:
        (target, stop, volatility_based). Falls back to fixed percentages
        when ATR is missing or the rounded levels degenerate (stop at or
        below zero, or no room between the levels and price).
    """
    if atr is not None and atr > 0:
        stop = _round(price - atr * policy.atr_stop_multiplier)
        target = _round(price + atr * policy.atr_target_multiplier)
        if target > price > stop > 0:
            return target, stop, True

    # Keep at least a cent between each level and price; stop floors at zero
    stop = min(_round(price * (1 - policy.fallback_stop_pct / 100)), _round(price - 0.01))
    target = max(_round(price * (1 + policy.fallback_target_pct / 100)), _round(price + 0.01))
    return target, max(stop, 0.0), False


def compute_entry_zone(
    price: float,
    indicators: IndicatorSet,
    volatility_based: bool,
    policy: VerdictPolicy = DEFAULT_POLICY,
) -> EntryZone:
    """Buy zone anchored on SMA20 (or price when SMA20 is unavailable)."""
    reference = indicators.sma20 if indicators.sma20 is not None else price
    if volatility_based:
        low = reference - indicators.atr14 * policy.entry_atr_below
        high = reference + indicators.atr14 * policy.entry_atr_above
    else:
        width = policy.entry_fallback_pct / 100
        low = reference * (1 - width)
        high = reference * (1 + width)
    return EntryZone(low=_round(low), high=_round(high), current=price)


def compute_confidence(
    filters: FilterResults,
    indicators: IndicatorSet,
    analyst: Optional[AnalystConsensus],
    policy: VerdictPolicy = DEFAULT_POLICY,
) -> int:
    """Weighted 0-100 score; every additional positive signal can only raise it."""
    score = 0.0
    if filters.trend:
        score += 25
    if filters.momentum:
        score += 30
    if filters.volume:
        score += 20
    if filters.price:
        score += 5

    rsi = indicators.rsi14
    if rsi is not None:
        if policy.rsi_ideal_low <= rsi <= policy.rsi_ideal_high:
            distance = 0.0
        else:
            distance = min(abs(rsi - policy.rsi_ideal_low), abs(rsi - policy.rsi_ideal_high))
        score += max(0.0, 10 - distance)

    if indicators.volume_ratio > 1:
        score += min(5.0, (indicators.volume_ratio - 1) * 25)

    if analyst is not None and analyst.score is not None:
        # Hold (3.0) is neutral; each rating step is worth 5 points
        score += (analyst.score - 3) * 5

    return int(round(min(100.0, max(0.0, score))))


def confidence_label(score: int) -> str:
    if score >= 70:
        return "High"
    if score >= 45:
        return "Medium"
    return "Low"


def collect_warnings(
    indicators: IndicatorSet,
    risk_reward: float,
    analyst: Optional[AnalystConsensus],
    policy: VerdictPolicy = DEFAULT_POLICY,
) -> List[str]:
    warnings = []

    down_days = indicators.consecutive_down_days
    if down_days >= policy.falling_knife_warn_days:
        warnings.append(f"Falling knife: {down_days} consecutive down days")

    level = indicators.volatility_level
    if level in (VolatilityLevel.HIGH, VolatilityLevel.EXTREME):
        warnings.append(
            f"{level.value.capitalize()} volatility: ATR is {indicators.atr_percent:.1f}% of price"
        )

    if risk_reward < policy.min_risk_reward:
        warnings.append(f"Low risk/reward ratio: 1:{risk_reward:.1f}")

    if analyst is not None and analyst.total < policy.min_analysts:
        warnings.append(f"Thin analyst coverage: {analyst.total} analyst(s)")

    if indicators.sma50 is None:
        warnings.append(f"Limited price history: {indicators.bars} bars")

    return warnings


def is_severe(indicators: IndicatorSet, policy: VerdictPolicy = DEFAULT_POLICY) -> bool:
    """Conditions that force AVOID regardless of the filters."""
    if indicators.consecutive_down_days >= policy.falling_knife_severe_days:
        return True
    return (
        indicators.volatility_level is VolatilityLevel.EXTREME
        and indicators.cross_status.is_bearish
    )


def _why_factors(filters: FilterResults, indicators: IndicatorSet, analyst: Optional[AnalystConsensus]) -> List[str]:
    factors = []
    if filters.trend:
        factors.append("📈 TREND: Price ABOVE 50-day average")
    elif indicators.sma50 is None:
        factors.append("⚪ TREND: Not enough history for 50-day average")
    else:
        factors.append("📉 TREND: Price BELOW 50-day average")

    rsi = indicators.rsi14
    if rsi is not None:
        if filters.momentum:
            factors.append(f"🎯 MOMENTUM: RSI {rsi:.1f} - Bullish")
        elif rsi > 70:
            factors.append(f"⚠️ MOMENTUM: RSI {rsi:.1f} - Overbought")
        else:
            factors.append(f"⏳ MOMENTUM: RSI {rsi:.1f} - Weak")

    volume_pct = indicators.volume_ratio * 100
    if filters.volume:
        factors.append(f"🔊 VOLUME: {volume_pct:.0f}% of average")
    else:
        factors.append(f"🔇 VOLUME: {volume_pct:.0f}% of average (low)")

    if analyst is not None and analyst.total > 0:
        factors.append(f"🏦 ANALYSTS: {analyst.consensus} ({analyst.total} analysts)")
    return factors


def generate_battle_plan(
    symbol: str,
    quote: Quote,
    indicators: IndicatorSet,
    analyst: Optional[AnalystConsensus] = None,
    policy: VerdictPolicy = DEFAULT_POLICY,
) -> BattlePlan:
    """Classify a trade setup and derive its levels and sizing."""
    price = quote.price
    filters = evaluate_filters(price, indicators, policy)

    target, stop, volatility_based = compute_levels(price, indicators.atr14, policy)
    profit_per_share = _round(target - price)
    loss_per_share = _round(price - stop)
    risk_reward = round(profit_per_share / loss_per_share, 1) if loss_per_share > 0 else 0.0

    entry_zone = compute_entry_zone(price, indicators, volatility_based, policy)
    warnings = collect_warnings(indicators, risk_reward, analyst, policy)
    severe = is_severe(indicators, policy)

    if not filters.trend:
        verdict = Verdict.AVOID
        if indicators.sma50 is None:
            reasoning = "Not enough history to confirm an uptrend."
        else:
            reasoning = "Below SMA50 indicates downtrend. Wait for trend reversal."
    elif severe:
        verdict = Verdict.AVOID
        reasoning = "Severe risk condition: " + "; ".join(warnings[:2])
    elif filters.all_passed and entry_zone.contains(price):
        verdict = Verdict.BUY_NOW
        reasoning = (
            f"All quality filters pass: price above SMA50, RSI {indicators.rsi14:.1f}, "
            f"volume {indicators.volume_ratio * 100:.0f}% of average, price inside entry zone."
        )
    elif filters.all_passed and price > entry_zone.high:
        verdict = Verdict.WAIT_FOR_DIP
        reasoning = (
            f"All filters pass but price ${price:.2f} is extended above the "
            f"entry zone (${entry_zone.low:.2f}-${entry_zone.high:.2f}). Wait for a pullback."
        )
    elif filters.all_passed:
        verdict = Verdict.WATCH
        reasoning = f"Price slipped below the entry zone (${entry_zone.low:.2f}). Wait for support to hold."
    else:
        verdict = Verdict.WATCH
        reasoning = f"{filters.passed} of 4 filters pass. Monitoring for better entry conditions."

    score = compute_confidence(filters, indicators, analyst, policy)
    shares = int(math.floor(policy.max_position_value / price)) if price > 0 else 0

    plan = BattlePlan(
        symbol=symbol.upper(),
        price=price,
        verdict=verdict,
        confidence_score=score,
        confidence=confidence_label(score),
        reasoning=reasoning,
        filter_results=filters,
        entry_zone=entry_zone,
        profit_target=PriceLevel(
            price=target,
            percentage=_round((target - price) / price * 100),
            per_share=profit_per_share,
        ),
        stop_loss=PriceLevel(
            price=stop,
            percentage=_round((price - stop) / price * 100),
            per_share=loss_per_share,
        ),
        risk_reward=RiskReward(
            ratio=risk_reward,
            description=f"Risk ${loss_per_share:.2f} to make ${profit_per_share:.2f}",
        ),
        suggested_position=SuggestedPosition(
            shares=shares,
            investment=_round(shares * price),
            max_risk=_round(shares * loss_per_share),
            max_profit=_round(shares * profit_per_share),
        ),
        warnings=warnings,
        why_factors=_why_factors(filters, indicators, analyst),
        crossover_data=CrossoverData(
            status=indicators.cross_status,
            sma20=indicators.sma20,
            sma50=indicators.sma50,
            golden_cross=indicators.golden_cross,
            death_cross=indicators.death_cross,
        ),
        falling_knife_data=FallingKnifeData(
            consecutive_down_days=indicators.consecutive_down_days,
            severe=indicators.consecutive_down_days >= policy.falling_knife_severe_days,
        ),
        volatility_data=VolatilityData(
            atr=indicators.atr14,
            atr_percent=indicators.atr_percent,
            level=indicators.volatility_level,
            volatility_based=volatility_based,
        ),
        analyst_data=analyst,
    )

    logger.debug("[%s] %s (confidence %d)", plan.symbol, verdict.value, score)
    return plan
