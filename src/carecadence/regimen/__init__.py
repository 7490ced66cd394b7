"""Regimen: the long-lived, versioned care plan and its items."""

from .models import (
    CarePlan,
    CarePlanItem,
    ItemPriority,
    ItemType,
    PlanStatus,
    Schedule,
    ScheduleFrequency,
    TimeWindow,
    WindowKind,
    WindowLabel,
)
from .store import RegimenStore

__all__ = [
    "CarePlan",
    "CarePlanItem",
    "ItemPriority",
    "ItemType",
    "PlanStatus",
    "RegimenStore",
    "Schedule",
    "ScheduleFrequency",
    "TimeWindow",
    "WindowKind",
    "WindowLabel",
]
