from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

LOGGER = logging.getLogger(__name__)


class LocalStorage:
    """Durable key -> JSON document store on the device.

    Every write replaces the whole document for a key inside one transaction,
    so an abandoned operation leaves either the old or the new collection.
    """

    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        with self.connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS local_storage (
                  key TEXT PRIMARY KEY,
                  value_json TEXT NOT NULL
                )
                """
            )

    @property
    def path(self) -> str:
        return str(self._path)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _decode(key: str, row: sqlite3.Row | None, default: Any) -> Any:
        if row is None:
            return default
        try:
            return json.loads(row["value_json"])
        except json.JSONDecodeError:
            LOGGER.error("Discarding unreadable local storage value for %s", key)
            return default

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock, self.connection() as conn:
            row = conn.execute("SELECT value_json FROM local_storage WHERE key = ?", (key,)).fetchone()
        return self._decode(key, row, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock, self.connection() as conn:
            conn.execute(
                """
                INSERT INTO local_storage (key, value_json) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json
                """,
                (key, json.dumps(value, ensure_ascii=False)),
            )

    def remove(self, key: str) -> None:
        with self._lock, self.connection() as conn:
            conn.execute("DELETE FROM local_storage WHERE key = ?", (key,))

    def update(self, key: str, mutate: Callable[[Any], Any], default: Any = None) -> Any:
        """Read-modify-write one key atomically and return the stored value."""
        with self._lock, self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT value_json FROM local_storage WHERE key = ?", (key,)).fetchone()
            value = mutate(self._decode(key, row, default))
            conn.execute(
                """
                INSERT INTO local_storage (key, value_json) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json
                """,
                (key, json.dumps(value, ensure_ascii=False)),
            )
        return value
