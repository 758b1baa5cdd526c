from __future__ import annotations

from ..models.filter_state import Summary

"""SUMMARY line rendering.

Formats (message part; the SUMMARY label is added by the log formatter):
    total=<n> ready=<n> in_progress=<n> overdue=<n>
    imported=<n> located=<n> unlocated=<n> join_key=<key>
"""

__all__ = [
    "render_summary_line",
    "render_import_line",
]


def render_summary_line(summary: Summary) -> str:
    """Render record counts.

    Examples:
        >>> render_summary_line(Summary(total=3, ready=1, in_progress=2, overdue=0))
        'total=3 ready=1 in_progress=2 overdue=0'
    """
    return (
        f"total={summary.total} "
        f"ready={summary.ready} "
        f"in_progress={summary.in_progress} "
        f"overdue={summary.overdue}"
    )


def render_import_line(imported: int, located: int, join_key: str | None) -> str:
    """Render import results. Spaces in the join key are replaced by '_'."""
    key = (join_key or "-").replace(" ", "_")
    return (
        f"imported={imported} "
        f"located={located} "
        f"unlocated={imported - located} "
        f"join_key={key}"
    )
