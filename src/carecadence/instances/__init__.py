"""Daily instances: generation, storage and the per-date document model."""

from .models import DailyInstance, InstanceStatus, instance_id
from .repository import InstanceRepository

__all__ = ["DailyInstance", "InstanceRepository", "InstanceStatus", "instance_id"]
