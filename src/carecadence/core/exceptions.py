"""
carecadence exception hierarchy.

All carecadence exceptions inherit from CareCadenceError, making it easy for
callers to catch engine-level errors while still distinguishing specific
failure modes.
"""


class CareCadenceError(Exception):
    """Base exception class for all carecadence errors."""


class ConfigurationError(CareCadenceError):
    """Raised for configuration errors (missing keys, invalid values)."""


class NotFoundError(CareCadenceError):
    """Raised when a regimen, item, instance, log or notification is absent."""


class InvalidTransitionError(CareCadenceError):
    """Raised when an instance status change is not allowed.

    Completing or skipping a non-pending instance, double completion, and
    marking an instance missed before its grace period has elapsed all land
    here.
    """


class ConcurrentGenerationSkipped(CareCadenceError):
    """Signal (not a failure) that generation for a patient/date is already in flight."""


class ValidationError(CareCadenceError):
    """Raised for malformed input: bad schedules, unknown outcomes, bad payloads."""


class NotificationDeliveryFailure(CareCadenceError):
    """Raised by a delivery channel when a reminder could not be handed off.

    Never fatal: the scheduler logs it and retries on the next dispatch pass.
    """
