"""Core infrastructure: configuration, events, exceptions, storage, logging."""
