"""Domain models for the OOS tracker.

This package contains the record, history, filter and configuration value
objects shared by the services layer.
"""

from .config_models import AppConfig, StorageConfig
from .error_record import ErrorRecord
from .filter_state import FilterState, Summary
from .history_event import EventKind, HistoryEvent
from .merged_record import MergedRecord, RecordStatus, status_for_remarks

__all__ = [
    # Configuration models
    "AppConfig",
    "StorageConfig",
    # Record / history models
    "MergedRecord",
    "RecordStatus",
    "status_for_remarks",
    "EventKind",
    "HistoryEvent",
    # Query models
    "FilterState",
    "Summary",
    "ErrorRecord",
]
