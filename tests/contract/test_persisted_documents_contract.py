from __future__ import annotations

import json
from pathlib import Path

from oos_tracker.db.document_store import JsonFileDocumentStore
from oos_tracker.models.config_models import AppConfig
from oos_tracker.services.orchestrator import Dashboard, UploadKind

"""Persisted document contract.

oos_rows_v1.json    : list of records, one object per vehicle
oos_history_v1.json : record id -> list of events (fixed key set)
"""

RECORD_KEYS = {
    "id", "agreement", "unit", "license", "make", "model", "oos_reason",
    "garage_original", "garage_mapped", "days_in_garage", "remarks", "location", "raw",
}
EVENT_KEYS = {"timestamp", "kind", "actor", "field", "old_value", "new_value"}


def _import(tmp_path: Path, make_xlsx, oos_rows, loc_rows) -> Path:
    state = tmp_path / "state"
    dashboard = Dashboard.open(JsonFileDocumentStore(state), AppConfig())
    dashboard.on_upload(make_xlsx(oos_rows), UploadKind.OOS, fmt="xlsx")
    dashboard.on_upload(make_xlsx(loc_rows), UploadKind.LOCATION, fmt="xlsx")
    dashboard.edit_record("D 12345", {"remarks": "waiting"})
    return state


def test_records_document_shape(tmp_path: Path, make_xlsx, oos_rows, loc_rows):
    state = _import(tmp_path, make_xlsx, oos_rows, loc_rows)
    records = json.loads((state / "oos_rows_v1.json").read_text(encoding="utf-8"))
    assert isinstance(records, list) and len(records) == 3
    for record in records:
        assert set(record) == RECORD_KEYS
        assert isinstance(record["days_in_garage"], int) and record["days_in_garage"] >= 0
        # status は保存しない (remarks から都度導出)
        assert "status" not in record


def test_history_document_shape(tmp_path: Path, make_xlsx, oos_rows, loc_rows):
    state = _import(tmp_path, make_xlsx, oos_rows, loc_rows)
    history = json.loads((state / "oos_history_v1.json").read_text(encoding="utf-8"))
    assert set(history) == {"D 12345", "D 67890", "U003"}
    for events in history.values():
        assert events[0]["kind"] == "import"
        assert events[0]["actor"] == "import"
        assert events[0]["old_value"] is None
        for event in events:
            assert set(event) == EVENT_KEYS
            assert event["timestamp"].endswith("Z")
    edit = history["D 12345"][-1]
    assert (edit["kind"], edit["field"], edit["old_value"], edit["new_value"]) == (
        "edit", "remarks", "READY FOR COLLECTION", "waiting",
    )
