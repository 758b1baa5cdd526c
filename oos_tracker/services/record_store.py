from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..db.document_store import DocumentStore, StorageError
from ..models.history_event import HistoryEvent
from ..models.merged_record import MergedRecord
from .history import HistoryLedger
from .normalizer import clean_text

"""Record store: the authoritative MergedRecord collection.

Every mutation is load -> mutate -> persist without interruption. Both new
states (records and history) are built before anything is written. The history
document is written first, then the records; if the records write fails the
previous history document is written back. In-memory state is replaced only
after both writes succeed, so a failed write (StorageError) leaves the stored
and the in-memory state as they were.
"""

__all__ = [
    "EDITABLE_FIELDS",
    "NotFoundError",
    "RecordStore",
]

logger = logging.getLogger(__name__)

# patch key -> MergedRecord attribute
EDITABLE_FIELDS: dict[str, str] = {
    "garage": "garage_mapped",
    "location": "location",
    "remarks": "remarks",
}


class NotFoundError(Exception):
    """Raised when a record id is not present."""


class RecordStore:
    def __init__(
        self,
        storage: DocumentStore,
        ledger: HistoryLedger,
        *,
        records_key: str = "oos_rows_v1",
        actor: str = "user",
    ) -> None:
        self._storage = storage
        self.ledger = ledger
        self.records_key = records_key
        self.actor = actor
        self._records: list[MergedRecord] = []

    def load(self) -> None:
        """Load records and history from storage (missing documents -> empty)."""
        document = self._storage.load(self.records_key) or []
        self._records = [MergedRecord.from_dict(d) for d in document]
        self.ledger.load()
        logger.debug("records loaded: %d", len(self._records))

    @property
    def records(self) -> list[MergedRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return any(r.id == record_id for r in self._records)

    def get(self, record_id: str) -> MergedRecord:
        for record in self._records:
            if record.id == record_id:
                return record
        raise NotFoundError(f"record not found: {record_id}")

    def _commit(
        self,
        records: list[MergedRecord],
        events: dict[str, list[HistoryEvent]] | None = None,
    ) -> None:
        """Persist `records` and, when given, the full ledger state `events` as a pair."""
        previous = self.ledger.get_all()
        if events is not None:
            self.ledger.commit(events)
        try:
            self._storage.save(self.records_key, [r.to_dict() for r in records])
        except StorageError:
            if events is not None:
                # 履歴を元の内容に戻す
                logger.warning("records write failed, restoring previous history document")
                self.ledger.commit(previous)
            raise
        self._records = records

    def replace_all(self, records: Iterable[MergedRecord]) -> int:
        """Replace the whole collection and record first-time imports.

        Returns:
            Number of import events appended (ids seen for the first time)
        """
        new_records = list(records)
        pending: dict[str, list[HistoryEvent]] = {}
        for record in new_records:
            if record.id in pending or self.ledger.has_import(record.id):
                continue
            pending[record.id] = [HistoryEvent.create_import(record.snapshot())]
        self._commit(new_records, self.ledger.extended(pending) if pending else None)
        logger.info("records replaced: total=%d new_import_events=%d", len(new_records), len(pending))
        return len(pending)

    def apply_edit(self, record_id: str, patch: Mapping[str, Any]) -> MergedRecord:
        """Apply a manual edit of garage / location / remarks.

        Only fields whose trimmed value differs from the current one change and
        get an edit event. A garage edit is stored as-is (manual override, the
        mapping rules are not re-run). The collection is persisted even when
        nothing changed.

        Raises:
            NotFoundError: Unknown record id (nothing is written)
            ValueError: Patch names a field that cannot be edited
        """
        unknown = set(patch) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"fields not editable: {sorted(unknown)}")

        current = self.get(record_id)
        changes: dict[str, str] = {}
        events: list[HistoryEvent] = []
        for key, attr in EDITABLE_FIELDS.items():
            if key not in patch or patch[key] is None:
                continue
            old_value = getattr(current, attr)
            new_value = clean_text(patch[key])
            if new_value == clean_text(old_value):
                continue
            changes[attr] = new_value
            events.append(HistoryEvent.create_edit(key, old_value, new_value, self.actor))

        updated = dataclasses.replace(current, **changes) if changes else current
        self._commit(
            [updated if r.id == record_id and r is current else r for r in self._records],
            self.ledger.extended({record_id: events}) if events else None,
        )
        if events:
            logger.info("record %s edited: %s", record_id, ", ".join(e.field for e in events))
        return updated

    def reset(self) -> None:
        """Drop every record and the whole history."""
        self._commit([], {})
        logger.info("records and history cleared")
