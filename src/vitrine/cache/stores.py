"""
Storage tiers for the adaptive cache.

MemoryStore is the fast, bounded tier; SQLiteStore is the durable tier that
survives restarts and also keeps the per-key access metrics.
"""

import logging
import sqlite3
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..models import AccessMetrics, CacheEntry

logger = logging.getLogger(__name__)


class MemoryStore:
    """In-process LRU store for serialized cache entries."""

    def __init__(self, max_entries: int = 500):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    def put(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry
        self._entries.move_to_end(entry.key)
        while len(self._entries) > self.max_entries:
            evicted_key, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Evicted least recently used entry {evicted_key}")

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def sweep(self, cutoff: float) -> int:
        """Drop entries whose expiry is at or before the cutoff."""
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= cutoff]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def keys(self) -> List[str]:
        return list(self._entries)


class SQLiteStore:
    """SQLite-backed durable tier.

    sqlite3 is synchronous; the async interface matches the rest of the cache
    manager so callers never need to know which tier they are talking to.
    Storage failures surface as ``sqlite3.Error``.
    """

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout
        self.conn: Optional[sqlite3.Connection] = None

    @property
    def is_open(self) -> bool:
        return self.conn is not None

    async def initialize(self) -> None:
        """Open the database and create the schema."""
        if self.conn is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=self.timeout,
            isolation_level=None,
        )
        self.conn.row_factory = sqlite3.Row

        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA synchronous=NORMAL")
        self.conn.execute("PRAGMA temp_store=MEMORY")

        self._create_schema()
        logger.info(f"Cache database opened: {self.db_path}")

    async def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Cache database connection closed")

    def _require_conn(self) -> sqlite3.Connection:
        if not self.conn:
            raise sqlite3.ProgrammingError("Cache database not initialized")
        return self.conn

    def _create_schema(self) -> None:
        conn = self._require_conn()
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS cache_entries (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,  -- JSON-serialized payload
                created_at REAL NOT NULL,
                expires_at REAL NOT NULL,
                resource_type TEXT NOT NULL DEFAULT 'generic',
                version TEXT NOT NULL DEFAULT 'latest'
            )
        """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_cache_entries_expires_at ON cache_entries(expires_at)"
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS access_metrics (
                key TEXT PRIMARY KEY,
                hits INTEGER NOT NULL DEFAULT 0,
                misses INTEGER NOT NULL DEFAULT 0,
                first_access REAL,
                last_access REAL,
                recommended_ttl INTEGER,
                resource_type TEXT NOT NULL DEFAULT 'generic',
                last_updated REAL
            )
        """
        )

    async def get(self, key: str) -> Optional[CacheEntry]:
        conn = self._require_conn()
        row = conn.execute(
            """
            SELECT key, value, created_at, expires_at, resource_type, version
            FROM cache_entries WHERE key = ?
        """,
            (key,),
        ).fetchone()
        if row is None:
            return None
        return CacheEntry(
            key=row["key"],
            value=row["value"],
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            resource_type=row["resource_type"],
            version=row["version"],
        )

    async def put(self, entry: CacheEntry) -> None:
        conn = self._require_conn()
        conn.execute(
            """
            INSERT OR REPLACE INTO cache_entries
                (key, value, created_at, expires_at, resource_type, version)
            VALUES (?, ?, ?, ?, ?, ?)
        """,
            (
                entry.key,
                entry.value,
                entry.created_at,
                entry.expires_at,
                entry.resource_type,
                entry.version,
            ),
        )

    async def delete(self, key: str) -> bool:
        conn = self._require_conn()
        cursor = conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        return cursor.rowcount > 0

    async def sweep(self, cutoff: float) -> int:
        """Delete entries whose expiry is at or before the cutoff."""
        conn = self._require_conn()
        cursor = conn.execute("DELETE FROM cache_entries WHERE expires_at <= ?", (cutoff,))
        return cursor.rowcount

    async def clear(self, include_metrics: bool = True) -> int:
        conn = self._require_conn()
        cursor = conn.execute("DELETE FROM cache_entries")
        if include_metrics:
            conn.execute("DELETE FROM access_metrics")
        return cursor.rowcount

    async def count(self) -> int:
        conn = self._require_conn()
        row = conn.execute("SELECT COUNT(*) AS n FROM cache_entries").fetchone()
        return row["n"]

    async def load_metrics(self) -> Dict[str, AccessMetrics]:
        conn = self._require_conn()
        rows = conn.execute(
            """
            SELECT key, hits, misses, first_access, last_access,
                   recommended_ttl, resource_type, last_updated
            FROM access_metrics
        """
        ).fetchall()
        return {row["key"]: AccessMetrics(**dict(row)) for row in rows}

    async def save_metrics(self, metrics: Iterable[AccessMetrics]) -> int:
        conn = self._require_conn()
        rows = [
            (
                m.key,
                m.hits,
                m.misses,
                m.first_access,
                m.last_access,
                m.recommended_ttl,
                m.resource_type,
                m.last_updated,
            )
            for m in metrics
        ]
        conn.executemany(
            """
            INSERT OR REPLACE INTO access_metrics
                (key, hits, misses, first_access, last_access,
                 recommended_ttl, resource_type, last_updated)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
            rows,
        )
        return len(rows)
