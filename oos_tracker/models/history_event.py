from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

"""HistoryEvent model for the per-record audit trail.

Events are append-only and grouped by record id in the history ledger.
Serialized form (one JSON object per event) has a fixed key set:
timestamp, kind, actor, field, old_value, new_value.
"""

__all__ = [
    "EventKind",
    "HistoryEvent",
    "IMPORT_ACTOR",
    "IMPORT_FIELD",
]

IMPORT_ACTOR = "import"
IMPORT_FIELD = "import"


class EventKind(Enum):
    IMPORT = "import"
    EDIT = "edit"


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class HistoryEvent:
    """Single audit event.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        kind: import or edit
        actor: Who caused the event ("import" for imports)
        field: Edited field name, or "import"
        old_value: Previous value (None for imports)
        new_value: New value (field snapshot dict for imports)
    """
    timestamp: str
    kind: EventKind
    actor: str
    field: str
    old_value: Any = None
    new_value: Any = None

    @staticmethod
    def create_import(snapshot: dict[str, Any]) -> HistoryEvent:
        return HistoryEvent(
            timestamp=_utc_now_iso(),
            kind=EventKind.IMPORT,
            actor=IMPORT_ACTOR,
            field=IMPORT_FIELD,
            old_value=None,
            new_value=dict(snapshot),
        )

    @staticmethod
    def create_edit(field: str, old_value: Any, new_value: Any, actor: str) -> HistoryEvent:
        return HistoryEvent(
            timestamp=_utc_now_iso(),
            kind=EventKind.EDIT,
            actor=actor,
            field=field,
            old_value=old_value,
            new_value=new_value,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "kind": self.kind.value,
            "actor": self.actor,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEvent:
        return cls(
            timestamp=data["timestamp"],
            kind=EventKind(data["kind"]),
            actor=data.get("actor", ""),
            field=data.get("field", ""),
            old_value=data.get("old_value"),
            new_value=data.get("new_value"),
        )
