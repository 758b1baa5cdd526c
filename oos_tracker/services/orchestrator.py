from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from ..db.document_store import DocumentStore
from ..excel.reader import ParseError, RawRow, guess_format, read_positional_rows, read_sheet
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import AppConfig
from ..models.error_record import ErrorRecord
from ..models.filter_state import FilterState, Summary
from ..models.history_event import HistoryEvent
from ..models.merged_record import MergedRecord
from .history import HistoryLedger
from .merge import guess_join_key, merge_positional, merge_records
from .normalizer import utc_now
from .progress import ProgressTracker
from .query import chart_data, filter_options, filter_records, garage_tabs, summarize
from .record_store import NotFoundError, RecordStore

"""Dashboard session: the surface the UI / CLI adapter calls into.

Holds the current uploads and join key (no module level state), triggers the
merge once both sheets and a join key are present, and forwards edits,
history lookups and resets to the record store.
"""

__all__ = [
    "UploadKind",
    "PreconditionNotMet",
    "MergedView",
    "Dashboard",
]

logger = logging.getLogger(__name__)

Source = Path | str | bytes


class UploadKind(Enum):
    OOS = "oos"
    LOCATION = "location"


class PreconditionNotMet(Exception):
    """Merge requested before both sheets and a join key are available.

    Normal transient state while the user is still uploading; the session
    turns it into a no-op.
    """


@dataclass(frozen=True)
class MergedView:
    rows: list[MergedRecord]
    summary: Summary


class Dashboard:
    """One user session over a record store.

    Args:
        store: Loaded record store (owns the history ledger)
        config: Application config (join key guesses, fallback ids, overdue days)
        error_log: Import issue buffer (default: under config.log_directory)
        clock: Returns "now" as naive UTC; injectable for tests
    """

    def __init__(
        self,
        store: RecordStore,
        config: AppConfig | None = None,
        *,
        error_log: ErrorLogBuffer | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.config = config or AppConfig()
        self.error_log = error_log or ErrorLogBuffer(Path(self.config.log_directory))
        self._clock = clock
        self._oos_rows: list[RawRow] = []
        self._loc_rows: list[RawRow] = []
        self._oos_name = ""
        self._join_key: str | None = None
        self._join_candidates: list[str] = []

    @classmethod
    def open(cls, storage: DocumentStore, config: AppConfig | None = None, **kwargs: Any) -> Dashboard:
        """Build ledger + store on ``storage`` and load persisted state."""
        config = config or AppConfig()
        ledger = HistoryLedger(storage, history_key=config.storage.history_key)
        store = RecordStore(
            storage, ledger, records_key=config.storage.records_key, actor=config.actor
        )
        store.load()
        return cls(store, config, **kwargs)

    @property
    def join_key(self) -> str | None:
        return self._join_key

    @property
    def join_candidates(self) -> list[str]:
        return list(self._join_candidates)

    def _read(self, source: Source, kind: UploadKind, fmt: str | None, name: str | None, *, positional: bool = False) -> tuple[str, Any]:
        if isinstance(source, bytes):
            if fmt is None and name is None:
                raise ParseError("format or file name required for in-memory uploads")
            data = source
            label = name or f"<{kind.value} upload>"
        else:
            path = Path(source)
            label = name or path.name
            try:
                data = path.read_bytes()
            except OSError as e:
                raise ParseError(f"cannot read file {path}: {e}") from e
        try:
            fmt = fmt or guess_format(label)
            rows = read_positional_rows(data, fmt) if positional else read_sheet(data, fmt)
        except ParseError as e:
            self.error_log.append(ErrorRecord.create(label, kind.value, -1, "PARSE_ERROR", str(e)))
            self._flush_issues()
            raise
        logger.info("%s file read: %s (%d rows)", kind.value, label, len(rows))
        return label, rows

    def on_upload(
        self,
        source: Source,
        kind: UploadKind | str,
        *,
        fmt: str | None = None,
        name: str | None = None,
    ) -> list[MergedRecord] | None:
        """Read an uploaded sheet and merge when possible.

        An OOS upload resets the join key to the best guess for its headers.

        Returns:
            Merged records, or None when the merge preconditions are not met yet

        Raises:
            ParseError: Unreadable file; current uploads and records are unchanged
        """
        kind = UploadKind(kind)
        label, rows = self._read(source, kind, fmt, name)
        if kind is UploadKind.OOS:
            self._oos_rows = rows
            self._oos_name = label
            self._join_candidates = list(rows[0].keys()) if rows else []
            self._join_key = guess_join_key(self._join_candidates, self.config.join_key_guesses)
            logger.info("join key guess: %s", self._join_key)
        else:
            self._loc_rows = rows
        return self.try_merge()

    def select_join_key(self, name: str) -> list[MergedRecord] | None:
        self._join_key = name or None
        return self.try_merge()

    def _check_preconditions(self) -> None:
        if not self._oos_rows:
            raise PreconditionNotMet("no out-of-service rows uploaded")
        if not self._loc_rows:
            raise PreconditionNotMet("no location rows uploaded")
        if not self._join_key:
            raise PreconditionNotMet("no join key selected")

    def try_merge(self) -> list[MergedRecord] | None:
        try:
            self._check_preconditions()
        except PreconditionNotMet as e:
            logger.debug("merge skipped: %s", e)
            return None

        with ProgressTracker(len(self._oos_rows), description="Merging rows") as tracker:
            records = merge_records(
                self._oos_rows,
                self._loc_rows,
                self._join_key,
                fallback_id=self.config.fallback_id,
                now=self._clock(),
                error_log=self.error_log,
                source_name=self._oos_name,
                progress=tracker.advance,
            )
        self.store.replace_all(records)
        self._flush_issues()
        return records

    def import_legacy(
        self,
        oos_source: Source,
        loc_source: Source,
        *,
        fmt: str | None = None,
    ) -> list[MergedRecord] | None:
        """Positional import: 6 unlabeled OOS columns paired with location rows by index."""
        oos_label, oos_cells = self._read(oos_source, UploadKind.OOS, fmt, None, positional=True)
        _, loc_cells = self._read(loc_source, UploadKind.LOCATION, fmt, None, positional=True)
        if not oos_cells or not loc_cells:
            logger.debug("legacy merge skipped: empty input")
            return None
        records = merge_positional(
            oos_cells,
            loc_cells,
            fallback_id=self.config.fallback_id,
            error_log=self.error_log,
            source_name=oos_label,
        )
        self.store.replace_all(records)
        self._flush_issues()
        return records

    def _flush_issues(self) -> None:
        if len(self.error_log):
            count = len(self.error_log)
            path = self.error_log.flush()
            logger.warning("%d import issue(s) written to %s", count, path)

    def get_merged_view(self, filter_state: FilterState | None = None) -> MergedView:
        rows = filter_records(self.store.records, filter_state)
        return MergedView(rows=rows, summary=summarize(rows, self.config.overdue_days))

    def chart_data(self, filter_state: FilterState | None = None) -> dict[str, dict[str, int]]:
        return chart_data(filter_records(self.store.records, filter_state))

    def filter_options(self) -> dict[str, list[str]]:
        return filter_options(self.store.records)

    def garage_tabs(self) -> list[tuple[str, int]]:
        return garage_tabs(self.store.records)

    def edit_record(self, record_id: str, patch: Mapping[str, Any]) -> MergedRecord:
        return self.store.apply_edit(record_id, patch)

    def get_history(self, record_id: str) -> list[HistoryEvent]:
        """History of a current or previously imported record.

        Raises:
            NotFoundError: Id unknown to both the collection and the ledger
        """
        if record_id not in self.store and record_id not in self.store.ledger:
            raise NotFoundError(f"record not found: {record_id}")
        return self.store.ledger.get_events(record_id)

    def reset_all(self) -> None:
        self.store.reset()
        self._oos_rows = []
        self._loc_rows = []
        self._oos_name = ""
        self._join_key = None
        self._join_candidates = []
