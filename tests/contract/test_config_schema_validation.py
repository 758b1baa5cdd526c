from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import pytest

from oos_tracker.config.loader import SCHEMA_PATH, ConfigError, load_config

"""Config schema contract: unknown keys and out-of-range values are rejected."""


def _write(temp_workdir: Path, text: str) -> Path:
    path = temp_workdir / "config" / "oos.yml"
    path.write_text(text, encoding="utf-8")
    return path


def test_schema_file_is_valid_draft7():
    schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    jsonschema.Draft7Validator.check_schema(schema)


@pytest.mark.parametrize(
    "text",
    [
        "unknown_key: 1\n",
        "storage:\n  backend: sqlite\n",
        "storage:\n  extra: 1\n",
        "storage:\n  records_key: 'bad key'\n",
        "fallback_id: sequential\n",
        "overdue_days: -1\n",
        "overdue_days: ten\n",
        "join_key_guesses: []\n",
        "actor: ''\n",
    ],
)
def test_invalid_configs_rejected(temp_workdir: Path, text: str):
    with pytest.raises(ConfigError, match="config validation failed"):
        load_config(_write(temp_workdir, text))


def test_full_valid_config(temp_workdir: Path):
    cfg = load_config(
        _write(
            temp_workdir,
            """storage:
  backend: postgres
  directory: ./state
  dsn: postgresql://localhost/oos
  records_key: rows_v2
  history_key: history_v2
join_key_guesses: [UNIT_NO]
fallback_id: random
overdue_days: 14
actor: ops
log_directory: ./logs
""",
        )
    )
    assert cfg.storage.backend == "postgres"
    assert cfg.storage.dsn == "postgresql://localhost/oos"
    assert cfg.overdue_days == 14
