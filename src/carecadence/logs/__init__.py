"""Append-only completion log and typed log payloads."""

from .models import LogEntry, LogEntryData, LogOutcome, LogSource, check_payload_for_item, parse_log_data
from .store import LogStore

__all__ = [
    "LogEntry",
    "LogEntryData",
    "LogOutcome",
    "LogSource",
    "LogStore",
    "check_payload_for_item",
    "parse_log_data",
]
