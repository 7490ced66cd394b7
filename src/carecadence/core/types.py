"""Shared type aliases used across carecadence."""

from collections.abc import Callable
from datetime import datetime

# Injected wall clock; must return a timezone-aware datetime
Clock = Callable[[], datetime]
