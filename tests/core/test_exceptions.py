"""Tests for carecadence.core.exceptions."""

from carecadence.core.exceptions import (
    CareCadenceError,
    ConcurrentGenerationSkipped,
    ConfigurationError,
    InvalidTransitionError,
    NotFoundError,
    NotificationDeliveryFailure,
    ValidationError,
)
from carecadence.core.storage import StorageError, StorageKeyError


def test_hierarchy():
    """All exceptions should inherit from CareCadenceError."""
    for exc_cls in [
        ConfigurationError,
        NotFoundError,
        InvalidTransitionError,
        ConcurrentGenerationSkipped,
        ValidationError,
        NotificationDeliveryFailure,
        StorageError,
    ]:
        assert issubclass(exc_cls, CareCadenceError)


def test_storage_key_error_is_key_error():
    assert issubclass(StorageKeyError, KeyError)
    assert issubclass(StorageKeyError, StorageError)


def test_exception_message():
    err = InvalidTransitionError("Instance abc is already completed")
    assert "already completed" in str(err)


def test_catch_base():
    try:
        raise NotFoundError("no plan")
    except CareCadenceError as e:
        assert "no plan" in str(e)
