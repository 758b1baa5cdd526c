# Shared pytest fixtures
from __future__ import annotations
import io
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any
import pandas as pd
import pytest

from oos_tracker.db.document_store import MemoryDocumentStore
from oos_tracker.logging.error_log import ErrorLogBuffer
from oos_tracker.models.config_models import AppConfig
from oos_tracker.services.orchestrator import Dashboard

FIXED_NOW = datetime(2024, 3, 31, 12, 0, 0)


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        (p / "state").mkdir()
        monkeypatch.chdir(p)
        monkeypatch.delenv("OOS_STATE_DIR", raising=False)
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.delenv("PGDSN", raising=False)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """storage:
  backend: file
  directory: ./state
join_key_guesses: [Grouping, LICENSE_NO]
fallback_id: hash
overdue_days: 30
actor: tester
log_directory: ./logs
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "oos.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def xlsx_bytes(rows: list[dict[str, Any]]) -> bytes:
    """Build an in-memory workbook (first row = headers)."""
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        pd.DataFrame(rows).to_excel(writer, sheet_name="Sheet1", index=False)
    return buf.getvalue()


def csv_bytes(text: str) -> bytes:
    return text.encode("utf-8")


@pytest.fixture()
def oos_rows() -> list[dict[str, Any]]:
    return [
        {
            "Grouping": "G1",
            "LICENSE_NO": "D 12345",
            "UNIT_NO": "U001",
            "AGREEMENT_NO": "AG-1",
            "MAKE": "Toyota",
            "MODEL": "Corolla",
            "OOS_REASON": "Accident Damage",
            "GARAGE_NAME": "ABC Garage",
            "REMARKS": "READY FOR COLLECTION",
            "ACTUAL_DAYS_IN_GARAGE": 12,
            "CHECK_OUT_DATE": "",
            "CURRENT_DATE": "",
        },
        {
            "Grouping": "G2",
            "LICENSE_NO": "D 67890",
            "UNIT_NO": "U002",
            "AGREEMENT_NO": "AG-2",
            "MAKE": "GAC S1",
            "MODEL": "GS3",
            "OOS_REASON": "Vehicle Servicing",
            "GARAGE_NAME": "DOMASCO MAIN",
            "REMARKS": "In garage, parts pending",
            "ACTUAL_DAYS_IN_GARAGE": "",
            "CHECK_OUT_DATE": datetime(2024, 2, 20),
            "CURRENT_DATE": datetime(2024, 3, 31),
        },
        {
            "Grouping": "G3",
            "LICENSE_NO": "",
            "UNIT_NO": "U003",
            "AGREEMENT_NO": "AG-3",
            "MAKE": "Mazda",
            "MODEL": "CX-5",
            "OOS_REASON": "Technical Repairs",
            "GARAGE_NAME": "DOMASCO AL QUOZ",
            "REMARKS": "",
            "ACTUAL_DAYS_IN_GARAGE": "",
            "CHECK_OUT_DATE": "",
            "CURRENT_DATE": "",
        },
    ]


@pytest.fixture()
def loc_rows() -> list[dict[str, Any]]:
    return [
        {"GROUPING": "G1", "LOCATION": "Warehouse A"},
        {"GROUPING": "G2", "LOCATION": "Yard B"},
    ]


@pytest.fixture()
def memory_storage() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture()
def dashboard(memory_storage: MemoryDocumentStore, tmp_path: Path) -> Dashboard:
    config = AppConfig(fallback_id="hash", actor="tester", log_directory=str(tmp_path / "logs"))
    return Dashboard.open(
        memory_storage,
        config,
        error_log=ErrorLogBuffer(tmp_path / "logs"),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture()
def make_xlsx():
    return xlsx_bytes


@pytest.fixture()
def write_xlsx(temp_workdir: Path):
    def _write(name: str, rows: list[dict[str, Any]]) -> Path:
        path = temp_workdir / "data" / name
        path.write_bytes(xlsx_bytes(rows))
        return path
    return _write
