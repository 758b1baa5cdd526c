from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any

"""MergedRecord domain model.

One MergedRecord is produced per out-of-service row after the join against the
location sheet. ``status`` is never stored: it is derived from ``remarks`` each
time it is read so that edits to remarks cannot leave a stale status behind.
"""

__all__ = [
    "READY_PATTERN",
    "RecordStatus",
    "MergedRecord",
    "status_for_remarks",
]

READY_PATTERN = re.compile(r"(^|\b)(READY|READY FOR COLLECTION|FOR COLLECTION)\b", re.IGNORECASE)


class RecordStatus(Enum):
    """Derived vehicle status."""
    READY = "Ready"
    IN_PROGRESS = "InProgress"

    @property
    def label(self) -> str:
        return "Ready" if self is RecordStatus.READY else "In Progress"

    @classmethod
    def parse(cls, value: str) -> RecordStatus:
        """Accept the enum value, its label or the member name (case-insensitive)."""
        key = re.sub(r"[\s_]+", "", value).upper()
        for member in cls:
            if key in (member.value.upper(), member.name.replace("_", "")):
                return member
        raise ValueError(f"unknown status: {value!r}")


def status_for_remarks(remarks: Any) -> RecordStatus:
    if remarks is None:
        return RecordStatus.IN_PROGRESS
    return RecordStatus.READY if READY_PATTERN.search(str(remarks)) else RecordStatus.IN_PROGRESS


@dataclass(frozen=True)
class MergedRecord:
    """Canonical vehicle record after merge.

    Attributes:
        id: Stable identity (license, unit, agreement or a fallback id)
        garage_original: Garage name as found in the source sheet
        garage_mapped: Canonical garage (mapping rules, or a manual override after edit)
        days_in_garage: Non-negative day count, None when unknown
        raw: JSON-safe copy of the source row kept for audit
    """
    id: str
    agreement: str = ""
    unit: str = ""
    license: str = ""
    make: str = ""
    model: str = ""
    oos_reason: str = ""
    garage_original: str = ""
    garage_mapped: str = ""
    days_in_garage: int | None = None
    remarks: str = ""
    location: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> RecordStatus:
        return status_for_remarks(self.remarks)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def snapshot(self) -> dict[str, Any]:
        """Field values recorded on the import history event (no id / raw payload)."""
        data = self.to_dict()
        data.pop("id")
        data.pop("raw")
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MergedRecord:
        if not data.get("id"):
            raise ValueError("record without id")
        known = {f.name for f in fields(cls)}
        # status などの派生キーは無視
        return cls(**{k: v for k, v in data.items() if k in known})
