"""carecadence: regimen scheduling and adherence engine for family caregivers."""

__version__ = "0.1.0"
