from __future__ import annotations
import json
from pathlib import Path
from oos_tracker.logging.error_log import ErrorLogBuffer
from oos_tracker.models.error_record import ErrorRecord

KEYS = {"timestamp", "file", "kind", "row", "error_type", "message"}


def test_error_record_creation_and_json_line():
    rec = ErrorRecord.create(
        file="oos.xlsx",
        kind="oos",
        row=10,
        error_type="UNPARSEABLE_DATE",
        message="CHECK_OUT_DATE not recognized",
    )
    data = json.loads(rec.to_json_line())
    assert data["file"] == "oos.xlsx"
    assert data["kind"] == "oos"
    assert data["row"] == 10
    assert data["error_type"] == "UNPARSEABLE_DATE"
    assert data["timestamp"].endswith("Z")
    assert set(data.keys()) == KEYS


def test_error_log_buffer_flush(temp_workdir: Path):
    buf = ErrorLogBuffer()
    buf.append(ErrorRecord.create("oos.csv", "oos", 2, "UNPARSEABLE_DATE", "bad date"))
    buf.append(ErrorRecord.create("legacy.csv", "oos", 3, "MALFORMED_ROW", "expected 6 columns"))
    path = buf.flush()
    assert path.exists()
    assert path.parent == Path("./logs")
    assert path.name.startswith("import-issues-")
    # ファイル内容検証
    lines = path.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 2
    for raw in lines:
        assert set(json.loads(raw).keys()) == KEYS
    # flush 後バッファクリア
    assert len(buf) == 0


def test_empty_flush_writes_nothing(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path / "logs")
    assert buf.flush() is None
    assert not (tmp_path / "logs").exists()


def test_error_log_buffer_multiple_flushes(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path)
    buf.append(ErrorRecord.create("f.csv", "location", -1, "PARSE_ERROR", "cannot parse csv"))
    path = buf.flush()
    size1 = path.stat().st_size
    # 再追加して再flush
    buf.append(ErrorRecord.create("f.csv", "location", -1, "PARSE_ERROR", "again"))
    path2 = buf.flush()
    assert path == path2
    assert path2.stat().st_size > size1
