"""Reminders: per-item configs, the notification registry and the scheduler.

Only the data model is re-exported here; import ``registry`` and
``scheduler`` from their modules.
"""

from .models import (
    DeliveryPreferences,
    FollowUpConfig,
    NotificationConfig,
    NotificationStatus,
    NotificationTiming,
    QuietHours,
    ScheduledNotification,
    default_config_for_type,
)

__all__ = [
    "DeliveryPreferences",
    "FollowUpConfig",
    "NotificationConfig",
    "NotificationStatus",
    "NotificationTiming",
    "QuietHours",
    "ScheduledNotification",
    "default_config_for_type",
]
