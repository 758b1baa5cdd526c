from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from ..models.filter_state import FilterState, Summary
from ..models.merged_record import MergedRecord, RecordStatus
from .normalizer import clean_text

"""Query / filter layer over the record collection.

All functions are pure: they never mutate records and keep input order.
"""

__all__ = [
    "UNKNOWN_LABEL",
    "normalize_filters",
    "filter_records",
    "summarize",
    "filter_options",
    "count_by",
    "chart_data",
    "garage_tabs",
]

UNKNOWN_LABEL = "Unknown"


def _search_haystack(record: MergedRecord) -> str:
    parts = (
        record.agreement,
        record.unit,
        record.license,
        record.make,
        record.model,
        record.oos_reason,
        record.garage_mapped,
        record.remarks,
        record.location,
    )
    return " | ".join(clean_text(p).lower() for p in parts)


def normalize_filters(raw: Mapping[str, Any] | None) -> FilterState:
    """Build a FilterState from loosely typed input (CLI args, query params).

    Blank strings mean "no filter". Status accepts Ready / InProgress / In Progress.
    """
    raw = raw or {}
    status_raw = clean_text(raw.get("status"))
    return FilterState(
        garage=clean_text(raw.get("garage")) or None,
        oos_reason=clean_text(raw.get("oos_reason")) or None,
        status=RecordStatus.parse(status_raw) if status_raw else None,
        search_text=clean_text(raw.get("search_text")) or None,
    )


def filter_records(records: Iterable[MergedRecord], state: FilterState | None = None) -> list[MergedRecord]:
    if state is None:
        return list(records)
    garage = clean_text(state.garage)
    reason = clean_text(state.oos_reason)
    query = clean_text(state.search_text).lower()

    out: list[MergedRecord] = []
    for record in records:
        if garage and record.garage_mapped != garage:
            continue
        if reason and record.oos_reason != reason:
            continue
        if state.status is not None and record.status is not state.status:
            continue
        if query and query not in _search_haystack(record):
            continue
        out.append(record)
    return out


def _is_overdue(record: MergedRecord, overdue_days: int) -> bool:
    return record.days_in_garage is not None and record.days_in_garage > overdue_days


def summarize(records: Sequence[MergedRecord], overdue_days: int = 30) -> Summary:
    ready = sum(1 for r in records if r.status is RecordStatus.READY)
    return Summary(
        total=len(records),
        ready=ready,
        in_progress=len(records) - ready,
        overdue=sum(1 for r in records if _is_overdue(r, overdue_days)),
    )


def filter_options(records: Iterable[MergedRecord]) -> dict[str, list[str]]:
    """Distinct non-empty garages / OOS reasons, sorted, for filter dropdowns."""
    records = list(records)
    return {
        "garages": sorted({r.garage_mapped for r in records if r.garage_mapped}),
        "oos_reasons": sorted({r.oos_reason for r in records if r.oos_reason}),
    }


def count_by(records: Iterable[MergedRecord], key: Callable[[MergedRecord], str]) -> dict[str, int]:
    """Count records per key in first-seen order; blank keys count as Unknown."""
    counts: Counter[str] = Counter()
    for record in records:
        counts[key(record) or UNKNOWN_LABEL] += 1
    return dict(counts)


def chart_data(records: Sequence[MergedRecord]) -> dict[str, dict[str, int]]:
    """Series for the dashboard charts."""
    return {
        "vehicles_by_garage": count_by(records, lambda r: r.garage_mapped),
        "ready_by_garage": count_by(
            (r for r in records if r.status is RecordStatus.READY), lambda r: r.garage_mapped
        ),
        "oos_reasons": count_by(records, lambda r: r.oos_reason),
    }


def garage_tabs(records: Sequence[MergedRecord]) -> list[tuple[str, int]]:
    """(garage, count) pairs sorted by garage name."""
    counts = count_by(records, lambda r: r.garage_mapped)
    return sorted(counts.items())
