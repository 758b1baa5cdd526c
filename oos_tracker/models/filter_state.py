from __future__ import annotations

from dataclasses import dataclass

from .merged_record import RecordStatus

"""Filter / summary value objects consumed by the query layer."""

__all__ = [
    "FilterState",
    "Summary",
]


@dataclass(frozen=True)
class FilterState:
    """Active table filters. Empty / None values do not filter."""
    garage: str | None = None
    oos_reason: str | None = None
    status: RecordStatus | None = None
    search_text: str | None = None


@dataclass(frozen=True)
class Summary:
    total: int
    ready: int
    in_progress: int
    overdue: int = 0
