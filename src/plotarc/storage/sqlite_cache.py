"""SQLite-backed fallback cache with a byte quota.

SqliteFallbackCache implements the FallbackCache protocol using stdlib
sqlite3. Each entry is one row; the quota is enforced inside a single
transaction so a rejected write leaves the previous value in place.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from plotarc.errors import StorageQuotaExceeded
from plotarc.storage.backends import DEFAULT_QUOTA_BYTES, blob_size

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS entries (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    size       INTEGER NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);
"""


class SqliteFallbackCache:
    """SQLite-backed FallbackCache.

    Sizes are stored per row so quota checks are a single aggregate query.
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        quota_bytes: int = DEFAULT_QUOTA_BYTES,
        *,
        _conn: sqlite3.Connection | None = None,
    ) -> None:
        """Open or create a cache database.

        Args:
            db_path: Path to ``.db`` file, or ``":memory:"`` for in-memory.
            quota_bytes: Maximum total size of keys plus values.
            _conn: Pre-existing connection (for testing). If provided,
                   *db_path* is ignored.
        """
        if _conn is not None:
            self._conn = _conn
            self._db_path = ":memory:"
        else:
            self._db_path = str(db_path)
            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                self._db_path,
                isolation_level=None,  # autocommit; set() opens its own transaction
            )
        self.quota_bytes = quota_bytes
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> SqliteFallbackCache:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        self.close()

    # -- FallbackCache ---------------------------------------------------------

    def get(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM entries WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return str(row["value"])

    def set(self, key: str, value: str) -> None:
        needed = blob_size(key, value)
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            row = self._conn.execute(
                "SELECT COALESCE(SUM(size), 0) AS used FROM entries WHERE key != ?",
                (key,),
            ).fetchone()
            if row["used"] + needed > self.quota_bytes:
                raise StorageQuotaExceeded(key, needed=needed, quota=self.quota_bytes)
            self._conn.execute(
                "INSERT INTO entries (key, value, size) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "size = excluded.size, "
                "updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')",
                (key, value, needed),
            )
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM entries WHERE key = ?", (key,))

    def keys(self, prefix: str = "") -> list[str]:
        rows = self._conn.execute(
            "SELECT key FROM entries WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        ).fetchall()
        return [row["key"] for row in rows]

    # -- Introspection ---------------------------------------------------------

    def used_bytes(self) -> int:
        row = self._conn.execute("SELECT COALESCE(SUM(size), 0) AS used FROM entries").fetchone()
        return int(row["used"])

    def entry_count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) AS cnt FROM entries").fetchone()
        return int(row["cnt"])
