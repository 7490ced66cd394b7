"""Contextual insight rules.

Each rule is a pure function ``(InsightContext) -> Insight | None``. The
table is evaluated in order; insights under :data:`MIN_CONFIDENCE` are
dropped and the rest are sorted by priority (lower first). Rules are meant
to be supportive rather than nagging, so most of them only speak up in a
narrow window of the day.
"""

from __future__ import annotations

from collections.abc import Callable

from carecadence.instances.models import DailyInstance, InstanceStatus
from carecadence.regimen.models import ItemType, WindowLabel

from .models import Insight, InsightContext, InsightType

InsightRule = Callable[[InsightContext], Insight | None]

MIN_CONFIDENCE = 0.7

BP_MED_KEYWORDS = ("blood pressure", "lisinopril", "amlodipine", "metoprolol", "losartan")
WITH_FOOD_KEYWORDS = ("with food", "with meal", "metformin", "ibuprofen")
MEAL_HOURS = frozenset({7, 8, 12, 13, 18, 19})


def _pending(tasks: tuple[DailyInstance, ...] | list[DailyInstance], item_type: str | None = None) -> list[DailyInstance]:
    return [t for t in tasks if t.status == InstanceStatus.PENDING and (item_type is None or t.item_type == item_type)]


def all_complete_rule(ctx: InsightContext) -> Insight | None:
    if ctx.stats.total == 0 or ctx.stats.pending > 0:
        return None
    return Insight(
        id="all-complete",
        icon="✓",
        title="All done for today",
        message="Every scheduled task is complete. Nothing more needed.",
        type=InsightType.REINFORCEMENT,
        confidence=1.0,
        priority=1,
    )


def streak_rule(ctx: InsightContext) -> Insight | None:
    days = ctx.consecutive_logging_days or 0
    if days < 3:
        return None
    return Insight(
        id="streak",
        icon="🔥",
        title=f"{days}-day streak",
        message="Consistent tracking helps spot patterns over time.",
        type=InsightType.REINFORCEMENT,
        confidence=0.9,
        priority=2,
    )


def high_completion_rule(ctx: InsightContext) -> Insight | None:
    rate = ctx.recent_completion_rate
    if rate is None or rate < 85:
        return None
    return Insight(
        id="high-completion",
        icon="📈",
        title="Strong adherence",
        message=f"{round(rate)}% completion rate this week. Keep it up!",
        type=InsightType.REINFORCEMENT,
        confidence=0.85,
        priority=3,
    )


def vitals_before_bp_meds_rule(ctx: InsightContext) -> Insight | None:
    if not 6 <= ctx.current_hour < 12:
        return None
    has_bp_med = any(
        any(kw in t.item_name.lower() for kw in BP_MED_KEYWORDS) for t in _pending(ctx.tasks, ItemType.MEDICATION)
    )
    if not has_bp_med or not _pending(ctx.tasks, ItemType.VITALS):
        return None
    return Insight(
        id="vitals-before-bp",
        icon="📊",
        title="A quick check first",
        message="Recording vitals before blood pressure medication helps track effectiveness.",
        type=InsightType.DEPENDENCY,
        confidence=0.8,
        priority=4,
        category="vitals",
    )


def morning_med_timing_rule(ctx: InsightContext) -> Insight | None:
    if not 9 <= ctx.current_hour < 11:
        return None
    if not _pending(ctx.by_window.get(WindowLabel.MORNING, []), ItemType.MEDICATION):
        return None
    return Insight(
        id="morning-med-timing",
        icon="💊",
        title="Consistent timing helps",
        message="Taking medications at the same time each day improves their effectiveness.",
        type=InsightType.PATTERN,
        confidence=0.75,
        priority=5,
        category="meds",
    )


def _taken_with_food(task: DailyInstance) -> bool:
    instructions = (task.instructions or "").lower()
    name = task.item_name.lower()
    return "with food" in instructions or "with meal" in instructions or any(kw in name for kw in WITH_FOOD_KEYWORDS)


def meal_med_dependency_rule(ctx: InsightContext) -> Insight | None:
    med = next((t for t in _pending(ctx.tasks, ItemType.MEDICATION) if _taken_with_food(t)), None)
    if med is None or ctx.current_hour not in MEAL_HOURS:
        return None
    return Insight(
        id="meal-med-dependency",
        icon="🍽️",
        title="With food works better",
        message=f"{med.item_name} is more effective when taken with a meal.",
        type=InsightType.DEPENDENCY,
        confidence=0.8,
        priority=4,
        category="nutrition",
    )


def hydration_pattern_rule(ctx: InsightContext) -> Insight | None:
    if not 14 <= ctx.current_hour < 17:
        return None
    hydration = [t for t in ctx.tasks if t.item_type == ItemType.HYDRATION]
    if not hydration:
        return None
    completed = sum(1 for t in hydration if t.status == InstanceStatus.COMPLETED)
    if completed >= len(hydration) / 2:
        return None
    return Insight(
        id="hydration-pattern",
        icon="💧",
        title="Afternoon hydration",
        message="Steady water intake supports medication absorption and energy levels.",
        type=InsightType.SUGGESTION,
        confidence=0.7,
        priority=6,
        category="hydration",
    )


def evening_wind_down_rule(ctx: InsightContext) -> Insight | None:
    if not 20 <= ctx.current_hour < 22:
        return None
    remaining = len(_pending(ctx.by_window.get(WindowLabel.EVENING, []))) + len(
        _pending(ctx.by_window.get(WindowLabel.NIGHT, []))
    )
    if not remaining:
        return None
    noun = "task" if remaining == 1 else "tasks"
    return Insight(
        id="evening-wind-down",
        icon="🌙",
        title="Winding down",
        message=f"{remaining} {noun} left for tonight when ready.",
        type=InsightType.SUGGESTION,
        confidence=0.8,
        priority=5,
    )


def mood_tracking_rule(ctx: InsightContext) -> Insight | None:
    mood = [t for t in ctx.tasks if t.item_type == ItemType.MOOD]
    if not mood or any(t.status == InstanceStatus.COMPLETED for t in mood):
        return None
    if not 15 <= ctx.current_hour < 19:
        return None
    return Insight(
        id="mood-tracking",
        icon="😊",
        title="Mood check",
        message="Tracking mood helps identify patterns with medications and activities.",
        type=InsightType.PATTERN,
        confidence=0.7,
        priority=7,
        category="mood",
    )


INSIGHT_RULES: tuple[InsightRule, ...] = (
    all_complete_rule,
    streak_rule,
    high_completion_rule,
    vitals_before_bp_meds_rule,
    morning_med_timing_rule,
    meal_med_dependency_rule,
    hydration_pattern_rule,
    evening_wind_down_rule,
    mood_tracking_rule,
)


def evaluate_rules(ctx: InsightContext, rules: tuple[InsightRule, ...] = INSIGHT_RULES) -> list[Insight]:
    """Run every rule; keep confident insights, most important first."""
    fired = [insight for rule in rules if (insight := rule(ctx)) is not None and insight.confidence >= MIN_CONFIDENCE]
    # sorted() is stable, so equal priorities keep table order
    return sorted(fired, key=lambda i: i.priority)


def primary_insight(ctx: InsightContext) -> Insight | None:
    insights = evaluate_rules(ctx)
    return insights[0] if insights else None
