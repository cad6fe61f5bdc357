"""Analytics: technical indicators and the verdict engine."""

from .indicators import CrossStatus, IndicatorSet, VolatilityLevel, compute_indicators
from .verdict import BattlePlan, Verdict, VerdictPolicy, generate_battle_plan

__all__ = [
    "BattlePlan",
    "CrossStatus",
    "IndicatorSet",
    "Verdict",
    "VerdictPolicy",
    "VolatilityLevel",
    "compute_indicators",
    "generate_battle_plan",
]
