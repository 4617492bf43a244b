"""Key-value storage backends.

Every entity kind lives in one flat namespace of string keys mapped to JSON
strings. The repository and ledger only rely on the small capability set of
``KeyValueStore``; ``SQLiteStore`` persists to disk and ``MemoryStore`` keeps
everything in a dict (handy for tests and throwaway sessions).
"""

import json
import logging
import os
import sqlite3
import tempfile
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import settings
from .errors import StorageError

logger = logging.getLogger(__name__)


def default_store_path() -> str:
    """Database file used when no explicit path is given.

    Priority:
    1) LIBRARY_DB_FILE (via settings)
    2) per-process temp file
    """
    return settings.data_file or os.path.join(tempfile.gettempdir(), f"campus_library_{os.getpid()}.db")


def _merge_json(current: Optional[str], partial: str) -> str:
    """Shallow merge of two JSON objects, keys of ``partial`` win."""
    try:
        update = json.loads(partial)
        base = json.loads(current) if current is not None else {}
    except json.JSONDecodeError as e:
        raise StorageError(f"Cannot merge non-JSON value: {e}") from e
    if not isinstance(base, dict) or not isinstance(update, dict):
        raise StorageError("Only JSON objects can be merged.")
    base.update(update)
    return json.dumps(base, ensure_ascii=False)


class KeyValueStore(ABC):
    """Durable string-keyed store with no schema and no cross-call transactions."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def merge(self, key: str, partial: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def list_keys(self) -> List[str]:
        ...

    @abstractmethod
    def multi_get(self, keys: Sequence[str]) -> List[Tuple[str, Optional[str]]]:
        ...

    @abstractmethod
    def multi_set(self, pairs: Iterable[Tuple[str, str]]) -> None:
        """Write every pair or none of them."""

    def close(self) -> None:
        return None


class MemoryStore(KeyValueStore):
    """Dict-backed store; insertion order is the enumeration order."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def merge(self, key: str, partial: str) -> None:
        self._data[key] = _merge_json(self._data.get(key), partial)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def list_keys(self) -> List[str]:
        return list(self._data)

    def multi_get(self, keys: Sequence[str]) -> List[Tuple[str, Optional[str]]]:
        return [(key, self._data.get(key)) for key in keys]

    def multi_set(self, pairs: Iterable[Tuple[str, str]]) -> None:
        # Materialize first so a failing iterator leaves the dict untouched
        staged = list(pairs)
        self._data.update(staged)


class SQLiteStore(KeyValueStore):
    """SQLite-backed store. A connection is opened per operation."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file or default_store_path()
        self.create_tables()

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_file)
        except sqlite3.Error as e:
            logger.error(f"Could not open database {self.db_file}: {e}")
            raise StorageError(f"Could not open database {self.db_file}") from e
        conn.row_factory = sqlite3.Row
        return conn

    def create_tables(self) -> None:
        """Create the key-value table if it does not exist."""
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Could not initialize database: {e}") from e
        finally:
            conn.close()

    def get(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None
        except sqlite3.Error as e:
            logger.error(f"Read failed for key {key!r}: {e}")
            raise StorageError(f"Read failed for key {key!r}") from e
        finally:
            conn.close()

    def set(self, key: str, value: str) -> None:
        self.multi_set([(key, value)])

    def merge(self, key: str, partial: str) -> None:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
            merged = _merge_json(row["value"] if row else None, partial)
            self._upsert(conn, [(key, merged)])
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Merge failed for key {key!r}: {e}")
            raise StorageError(f"Merge failed for key {key!r}") from e
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Delete failed for key {key!r}: {e}")
            raise StorageError(f"Delete failed for key {key!r}") from e
        finally:
            conn.close()

    def list_keys(self) -> List[str]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT key FROM kv_store ORDER BY rowid").fetchall()
            return [row["key"] for row in rows]
        except sqlite3.Error as e:
            logger.error(f"Listing keys failed: {e}")
            raise StorageError("Listing keys failed") from e
        finally:
            conn.close()

    def multi_get(self, keys: Sequence[str]) -> List[Tuple[str, Optional[str]]]:
        if not keys:
            return []
        conn = self._connect()
        try:
            found: Dict[str, str] = {}
            # Stay under SQLite's bound-parameter limit
            for start in range(0, len(keys), 500):
                chunk = list(keys[start:start + 500])
                placeholders = ", ".join("?" for _ in chunk)
                cursor = conn.execute(
                    f"SELECT key, value FROM kv_store WHERE key IN ({placeholders})", chunk
                )
                found.update({row["key"]: row["value"] for row in cursor.fetchall()})
            return [(key, found.get(key)) for key in keys]
        except sqlite3.Error as e:
            logger.error(f"Bulk read failed: {e}")
            raise StorageError("Bulk read failed") from e
        finally:
            conn.close()

    def multi_set(self, pairs: Iterable[Tuple[str, str]]) -> None:
        staged = list(pairs)
        conn = self._connect()
        try:
            self._upsert(conn, staged)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Write failed for keys {[k for k, _ in staged]}: {e}")
            raise StorageError("Write failed") from e
        finally:
            conn.close()

    @staticmethod
    def _upsert(conn: sqlite3.Connection, pairs: List[Tuple[str, str]]) -> None:
        # ON CONFLICT keeps the original rowid, so enumeration order is creation order
        conn.executemany(
            "INSERT INTO kv_store (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            pairs,
        )
