"""Adherence analytics, derived daily views and contextual insight rules."""

from .adherence import AdherenceEngine
from .derived import DailySchedule, WindowGroup, build_daily_schedule, compute_stats, group_by_window, next_pending
from .models import (
    AdherenceByItem,
    AdherenceByWindow,
    DailyBurden,
    Insight,
    InsightContext,
    InsightsSummary,
    InsightType,
    Observation,
    Streak,
    TaskStats,
)
from .rules import INSIGHT_RULES, evaluate_rules, primary_insight

__all__ = [
    "INSIGHT_RULES",
    "AdherenceByItem",
    "AdherenceByWindow",
    "AdherenceEngine",
    "DailyBurden",
    "DailySchedule",
    "Insight",
    "InsightContext",
    "InsightType",
    "InsightsSummary",
    "Observation",
    "Streak",
    "TaskStats",
    "WindowGroup",
    "build_daily_schedule",
    "compute_stats",
    "evaluate_rules",
    "group_by_window",
    "next_pending",
    "primary_insight",
]
