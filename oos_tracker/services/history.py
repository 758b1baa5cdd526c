from __future__ import annotations

import logging
from collections.abc import Iterable

from ..db.document_store import DocumentStore
from ..models.history_event import EventKind, HistoryEvent

"""History ledger: append-only audit events grouped by record id.

Persisted as its own document (record id -> list of events), independent of
the record collection, so history of a vehicle survives imports that no
longer contain it.
"""

__all__ = [
    "HistoryLedger",
]

logger = logging.getLogger(__name__)


class HistoryLedger:
    def __init__(self, storage: DocumentStore, *, history_key: str = "oos_history_v1") -> None:
        self._storage = storage
        self.history_key = history_key
        self._events: dict[str, list[HistoryEvent]] = {}

    def load(self) -> None:
        document = self._storage.load(self.history_key) or {}
        self._events = {
            record_id: [HistoryEvent.from_dict(e) for e in events]
            for record_id, events in document.items()
        }
        logger.debug("history loaded: %d record ids", len(self._events))

    def _document(self, events: dict[str, list[HistoryEvent]]) -> dict[str, list[dict]]:
        return {record_id: [e.to_dict() for e in items] for record_id, items in events.items()}

    def commit(self, events: dict[str, list[HistoryEvent]]) -> None:
        """Persist `events` as the whole ledger, then adopt it in memory."""
        # 書き込み成功後にのみメモリ状態を差し替える
        self._storage.save(self.history_key, self._document(events))
        self._events = events

    def save(self) -> None:
        """Persist the current state as-is."""
        self._storage.save(self.history_key, self._document(self._events))

    def append(self, record_id: str, event: HistoryEvent) -> None:
        self.extend(record_id, [event])

    def extend(self, record_id: str, events: Iterable[HistoryEvent]) -> None:
        new_events = list(events)
        if not new_events:
            return
        updated = dict(self._events)
        updated[record_id] = [*self._events.get(record_id, []), *new_events]
        self.commit(updated)

    def extended(self, batch: dict[str, list[HistoryEvent]]) -> dict[str, list[HistoryEvent]]:
        """Return the ledger state with `batch` appended, without writing anything."""
        updated = dict(self._events)
        for record_id, new_events in batch.items():
            if new_events:
                updated[record_id] = [*self._events.get(record_id, []), *new_events]
        return updated

    def extend_many(self, batch: dict[str, list[HistoryEvent]]) -> None:
        """Append events for several ids with a single write."""
        if not any(batch.values()):
            return
        self.commit(self.extended(batch))

    def get_events(self, record_id: str) -> list[HistoryEvent]:
        """Events of one record in insertion (chronological) order; [] when unknown."""
        return list(self._events.get(record_id, []))

    def has_import(self, record_id: str) -> bool:
        return any(e.kind is EventKind.IMPORT for e in self._events.get(record_id, []))

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._events

    def get_all(self) -> dict[str, list[HistoryEvent]]:
        return {record_id: list(items) for record_id, items in self._events.items()}

    def clear(self) -> None:
        self.commit({})
