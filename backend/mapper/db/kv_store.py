"""Durable key-value storage backed by the ``local_storage`` sqlite table.

This is the device-local store that drafts and the fallback queue live in.
Every operation opens its own connection so the store can be shared by the
scheduler task and request handlers alike. Any ``sqlite3.Error`` surfaces as
``PersistenceError``; callers decide whether that is fatal.
"""

import sqlite3
from datetime import datetime
from pathlib import Path

from .database import get_db


class PersistenceError(RuntimeError):
    """Raised when the local store cannot be read or written."""


class SqliteKeyValueStore:
    def __init__(self, db_path: str | Path | None = None):
        self._db_path = db_path

    def get(self, key: str) -> str | None:
        conn = None
        try:
            conn = get_db(self._db_path)
            row = conn.execute(
                "SELECT value FROM local_storage WHERE key = ?",
                (key,),
            ).fetchone()
        except sqlite3.Error as err:
            raise PersistenceError(f"Failed to read {key!r}: {err}") from err
        finally:
            if conn is not None:
                conn.close()
        return None if row is None else str(row["value"])

    def set(self, key: str, value: str) -> None:
        conn = None
        try:
            conn = get_db(self._db_path)
            conn.execute(
                """
                INSERT INTO local_storage (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                  value = excluded.value,
                  updated_at = excluded.updated_at
                """,
                (key, value, datetime.utcnow().isoformat()),
            )
            conn.commit()
        except sqlite3.Error as err:
            raise PersistenceError(f"Failed to write {key!r}: {err}") from err
        finally:
            if conn is not None:
                conn.close()

    def remove(self, key: str) -> None:
        conn = None
        try:
            conn = get_db(self._db_path)
            conn.execute("DELETE FROM local_storage WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as err:
            raise PersistenceError(f"Failed to remove {key!r}: {err}") from err
        finally:
            if conn is not None:
                conn.close()

    def keys(self, prefix: str = "") -> list[str]:
        conn = None
        try:
            conn = get_db(self._db_path)
            rows = conn.execute(
                "SELECT key FROM local_storage WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        except sqlite3.Error as err:
            raise PersistenceError(f"Failed to list keys under {prefix!r}: {err}") from err
        finally:
            if conn is not None:
                conn.close()
        return [str(row["key"]) for row in rows]
