from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the import issue log.

Issues found while importing (unreadable files, unparseable dates, malformed
legacy rows) are buffered as ErrorRecords and written as JSON Lines. Use
row=-1 for file-level issues where no specific row applies.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured import issue.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Source file name
        kind: Upload kind ("oos" / "location")
        row: 1-based sheet row number (header = 1). -1 when unknown
        error_type: Issue classification in UPPER_SNAKE_CASE
        message: Human readable description
    """
    timestamp: str  # ISO8601 UTC
    file: str
    kind: str
    row: int
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(file: str, kind: str, row: int, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            kind=kind,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
