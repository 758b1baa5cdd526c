from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the OOS tracker.

Loaded from YAML by ``oos_tracker.config.loader``; every key is optional and
falls back to the defaults declared here.
"""

DEFAULT_JOIN_KEY_GUESSES = ("Grouping", "LICENSE_NO", "UNIT_NO", "AGREEMENT_NO")
STORAGE_BACKENDS = ("file", "postgres")
FALLBACK_ID_STRATEGIES = ("random", "hash")


@dataclass(frozen=True)
class StorageConfig:
    """Where the records / history documents are persisted.

    Environment variables (OOS_STATE_DIR, DATABASE_URL / PGDSN) take
    precedence over these values at CLI level.
    """
    backend: str = "file"
    directory: str = "./state"
    dsn: str | None = None
    records_key: str = "oos_rows_v1"
    history_key: str = "oos_history_v1"


@dataclass(frozen=True)
class AppConfig:
    """Root configuration object."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    join_key_guesses: tuple[str, ...] = DEFAULT_JOIN_KEY_GUESSES
    fallback_id: str = "random"  # random | hash (ids for rows without license/unit/agreement)
    overdue_days: int = 30
    actor: str = "user"  # edit event actor
    log_directory: str = "./logs"
