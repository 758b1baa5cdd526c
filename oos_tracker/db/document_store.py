from __future__ import annotations

import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import psycopg2
from psycopg2.extras import Json

"""Durable key -> JSON document storage.

The record store and history ledger each persist one JSON document under their
own key. A save either replaces the whole document or leaves the previous one
untouched:

- JsonFileDocumentStore: one `<key>.json` file per document, written to a temp
  file in the same directory and swapped in with os.replace
- PostgresDocumentStore: one row per key in a jsonb table, upsert + COMMIT
  (ROLLBACK on failure)
- MemoryDocumentStore: process-local, documents kept as serialized JSON
"""

__all__ = [
    "StorageError",
    "DocumentStore",
    "JsonFileDocumentStore",
    "MemoryDocumentStore",
    "PostgresDocumentStore",
]

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")
_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class StorageError(Exception):
    """Raised when a document cannot be read or written."""


def _check_key(key: str) -> str:
    if not _KEY_PATTERN.match(key):
        raise StorageError(f"invalid document key: {key!r}")
    return key


class DocumentStore(ABC):
    """Abstract key -> JSON document storage."""

    @abstractmethod
    def load(self, key: str) -> Any | None:
        """Return the stored document, or None when the key was never saved."""

    @abstractmethod
    def save(self, key: str, document: Any) -> None:
        """Replace the document stored under ``key``."""


class JsonFileDocumentStore(DocumentStore):
    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{_check_key(key)}.json"

    def load(self, key: str) -> Any | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"cannot read {path}: {e}") from e

    def save(self, key: str, document: Any) -> None:
        path = self.path_for(key)
        try:
            payload = json.dumps(document, ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as e:
            raise StorageError(f"document {key!r} is not JSON serializable: {e}") from e

        tmp_name: str | None = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.directory, prefix=f".{key}.", suffix=".tmp", delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise StorageError(f"cannot write {path}: {e}") from e
        finally:
            # 失敗時は一時ファイルを残さない
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)


class MemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._documents: dict[str, str] = {}

    def load(self, key: str) -> Any | None:
        raw = self._documents.get(_check_key(key))
        return None if raw is None else json.loads(raw)

    def save(self, key: str, document: Any) -> None:
        try:
            self._documents[_check_key(key)] = json.dumps(document, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"document {key!r} is not JSON serializable: {e}") from e


class PostgresDocumentStore(DocumentStore):
    """Documents in a `(doc_key text primary key, body jsonb)` table.

    The connection is owned by the caller; this class only runs statements and
    ends each save with COMMIT / ROLLBACK.
    """

    def __init__(self, connection: Any, table: str = "oos_documents") -> None:
        if not _IDENTIFIER_PATTERN.match(table):
            raise StorageError(f"invalid table name: {table!r}")
        self._conn = connection
        self.table = table
        self._table_ready = False

    def _ensure_table(self, cursor: Any) -> None:
        if self._table_ready:
            return
        cursor.execute(
            f"CREATE TABLE IF NOT EXISTS {self.table} ("
            "doc_key TEXT PRIMARY KEY, "
            "body JSONB NOT NULL, "
            "updated_at TIMESTAMPTZ NOT NULL DEFAULT now())"
        )
        self._table_ready = True

    def load(self, key: str) -> Any | None:
        try:
            with self._conn.cursor() as cur:
                self._ensure_table(cur)
                cur.execute(f"SELECT body FROM {self.table} WHERE doc_key = %s", (_check_key(key),))
                row = cur.fetchone()
            self._conn.commit()
        except psycopg2.Error as e:
            self._conn.rollback()
            raise StorageError(f"cannot load document {key!r}: {e}") from e
        if row is None:
            return None
        body = row[0]
        # jsonb は psycopg2 が dict/list にデコード済み。text 列の場合のみ文字列
        return json.loads(body) if isinstance(body, str) else body

    def save(self, key: str, document: Any) -> None:
        try:
            with self._conn.cursor() as cur:
                self._ensure_table(cur)
                cur.execute(
                    f"INSERT INTO {self.table} (doc_key, body) VALUES (%s, %s) "
                    "ON CONFLICT (doc_key) DO UPDATE SET body = EXCLUDED.body, updated_at = now()",
                    (_check_key(key), Json(document)),
                )
            self._conn.commit()
        except (psycopg2.Error, TypeError, ValueError) as e:
            self._conn.rollback()
            raise StorageError(f"cannot save document {key!r}: {e}") from e
