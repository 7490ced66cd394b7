"""Utility modules: logging setup, keyed locks, time helpers."""
