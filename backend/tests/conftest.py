import sys
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from mapper.db.kv_store import PersistenceError, SqliteKeyValueStore
from mapper.db.schema import init_db


class FailingStore:
    """Key-value store whose writes fail, as with exhausted quota."""

    def __init__(self, inner=None, fail_on_keys=None):
        self._inner = inner
        self._fail_on_keys = fail_on_keys

    def _should_fail(self, key: str) -> bool:
        if self._fail_on_keys is None:
            return True
        return any(key.startswith(prefix) for prefix in self._fail_on_keys)

    def get(self, key):
        if self._inner is None:
            return None
        return self._inner.get(key)

    def set(self, key, value):
        if self._inner is None or self._should_fail(key):
            raise PersistenceError("quota exceeded")
        self._inner.set(key, value)

    def remove(self, key):
        if self._inner is None or self._should_fail(key):
            raise PersistenceError("storage disabled")
        self._inner.remove(key)

    def keys(self, prefix=""):
        if self._inner is None:
            return []
        return self._inner.keys(prefix)


@pytest.fixture
def kv_store(tmp_path):
    db_path = tmp_path / "island_mapper.db"
    init_db(db_path)
    return SqliteKeyValueStore(db_path)
