"""SQLite-backed cache store with expiry and least-recently-accessed eviction."""

import asyncio
import inspect
import json
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

import aiosqlite

from ..config import resolve_db_path
from ..logging_config import get_logger
from ..models import CacheEntry

logger = get_logger(__name__)


class ICacheStore(Protocol):
    """Persistent key/value store with per-entry expiry and bounded size."""

    async def init(self) -> None:
        """Open the database, create tables and start the expiry sweep."""
        ...

    async def close(self) -> None:
        """Stop the sweep and close the database."""
        ...

    async def get(self, key: str, default: Any = None) -> Any:
        """Get a value, or default on miss/expiry/corruption."""
        ...

    async def set(self, key: str, value: Any, ttl_seconds: float = 60) -> None:
        """Store a JSON-serialisable value for ttl_seconds."""
        ...

    async def delete(self, key: str) -> None:
        """Delete a key."""
        ...

    async def has(self, key: str) -> bool:
        """Whether a live (unexpired) entry exists."""
        ...

    async def size(self) -> int:
        """Number of stored entries."""
        ...

    async def keys(self, prefix: str = "") -> list[str]:
        """Stored keys, optionally filtered by prefix."""
        ...

    async def wrap(
        self,
        key: str,
        compute: Callable[[], Any | Awaitable[Any]],
        ttl_seconds: float = 60,
    ) -> Any:
        """Return the cached value, computing and storing it if absent."""
        ...

    async def get_entry(self, key: str) -> CacheEntry | None:
        """Get the full stored entry for a live key."""
        ...

    async def sweep(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        ...

    async def clear(self) -> None:
        """Delete every entry."""
        ...


class CacheStore:
    """SQLite cache store.

    Reads past expiry behave as misses and delete the row. After every set()
    the table is trimmed to ``max_entries`` by evicting the least recently
    accessed rows. Storage and decode failures are logged and reported as
    misses, never raised from get().
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        max_entries: int = 10_000,
        sweep_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self._db_path = resolve_db_path(db_path)
        self._max_entries = max_entries
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._sweep_task: asyncio.Task | None = None
        self._pending_wraps: dict[str, asyncio.Task] = {}

    @property
    def max_entries(self) -> int:
        return self._max_entries

    async def init(self) -> None:
        """Open the database, create tables and start the expiry sweep."""
        self._conn = await aiosqlite.connect(self._db_path)

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

        if self._sweep_interval and self._sweep_interval > 0:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def close(self) -> None:
        """Stop the sweep and close the database."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("CacheStore not initialized")
        return self._conn

    async def _lookup(self, key: str) -> tuple[bool, Any]:
        """Return (found, value), applying expiry and refreshing last access."""
        conn = self._require_conn()
        try:
            cursor = await conn.execute(
                "SELECT value, expires_at FROM cache WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            logger.warning("Cache read failed for %s", key, exc_info=True)
            return False, None

        if not row:
            return False, None

        now = self._clock()
        if row[1] <= now:
            await self.delete(key)
            return False, None

        try:
            value = json.loads(row[0])
        except (TypeError, ValueError):
            logger.warning("Corrupt cache value for %s, dropping it", key, exc_info=True)
            await self.delete(key)
            return False, None

        try:
            await conn.execute(
                "UPDATE cache SET last_access = ? WHERE key = ?",
                (now, key),
            )
            await conn.commit()
        except aiosqlite.Error:
            logger.warning("Failed to touch cache entry %s", key, exc_info=True)

        return True, value

    async def get(self, key: str, default: Any = None) -> Any:
        """Get a value, or default on miss/expiry/corruption."""
        found, value = await self._lookup(key)
        return value if found else default

    async def get_entry(self, key: str) -> CacheEntry | None:
        """Get the full stored entry for a live key."""
        found, value = await self._lookup(key)
        if not found:
            return None

        cursor = await self._require_conn().execute(
            "SELECT expires_at, last_access FROM cache WHERE key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return CacheEntry(key=key, value=value, expires_at=row[0], last_access=row[1])

    async def set(self, key: str, value: Any, ttl_seconds: float = 60) -> None:
        """Store a JSON-serialisable value for ttl_seconds.

        A non-positive ttl deletes the key instead.
        """
        if ttl_seconds is None or ttl_seconds <= 0:
            await self.delete(key)
            return

        serialized = json.dumps(value)
        conn = self._require_conn()

        async with self._lock:
            now = self._clock()
            try:
                await conn.execute(
                    """
                    INSERT OR REPLACE INTO cache (key, value, expires_at, last_access)
                    VALUES (?, ?, ?, ?)
                    """,
                    (key, serialized, now + ttl_seconds, now),
                )
                await self._evict(conn)
                await conn.commit()
            except aiosqlite.Error:
                logger.warning("Cache write failed for %s", key, exc_info=True)

    async def _evict(self, conn: aiosqlite.Connection) -> None:
        cursor = await conn.execute("SELECT COUNT(*) FROM cache")
        row = await cursor.fetchone()
        overflow = row[0] - self._max_entries
        if overflow <= 0:
            return

        await conn.execute(
            """
            DELETE FROM cache WHERE key IN (
                SELECT key FROM cache
                ORDER BY last_access ASC, rowid ASC
                LIMIT ?
            )
            """,
            (overflow,),
        )
        logger.debug("Evicted %d cache entries", overflow)

    async def delete(self, key: str) -> None:
        """Delete a key."""
        conn = self._require_conn()
        try:
            await conn.execute("DELETE FROM cache WHERE key = ?", (key,))
            await conn.commit()
        except aiosqlite.Error:
            logger.warning("Cache delete failed for %s", key, exc_info=True)

    async def has(self, key: str) -> bool:
        """Whether a live (unexpired) entry exists."""
        conn = self._require_conn()
        try:
            cursor = await conn.execute(
                "SELECT expires_at FROM cache WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            logger.warning("Cache read failed for %s", key, exc_info=True)
            return False

        if not row:
            return False
        if row[0] <= self._clock():
            await self.delete(key)
            return False
        return True

    async def size(self) -> int:
        """Number of stored entries."""
        try:
            cursor = await self._require_conn().execute("SELECT COUNT(*) FROM cache")
            row = await cursor.fetchone()
        except aiosqlite.Error:
            logger.warning("Cache count failed", exc_info=True)
            return 0
        return row[0]

    async def keys(self, prefix: str = "") -> list[str]:
        """Stored keys, optionally filtered by prefix."""
        conn = self._require_conn()
        try:
            if prefix:
                cursor = await conn.execute(
                    "SELECT key FROM cache WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                )
            else:
                cursor = await conn.execute("SELECT key FROM cache ORDER BY key")
            rows = await cursor.fetchall()
        except aiosqlite.Error:
            logger.warning("Cache key listing failed", exc_info=True)
            return []
        return [row[0] for row in rows]

    async def wrap(
        self,
        key: str,
        compute: Callable[[], Any | Awaitable[Any]],
        ttl_seconds: float = 60,
    ) -> Any:
        """Return the cached value, computing and storing it if absent.

        Concurrent wraps of the same key share a single computation.
        """
        task = self._pending_wraps.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute(key, compute, ttl_seconds))
            self._pending_wraps[key] = task

            def _forget(done: asyncio.Task) -> None:
                if self._pending_wraps.get(key) is done:
                    del self._pending_wraps[key]

            task.add_done_callback(_forget)

        return await asyncio.shield(task)

    async def _compute(self, key: str, compute: Callable, ttl_seconds: float) -> Any:
        found, value = await self._lookup(key)
        if found:
            return value

        result = compute()
        if inspect.isawaitable(result):
            result = await result
        await self.set(key, result, ttl_seconds)
        return result

    async def sweep(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        conn = self._require_conn()
        async with self._lock:
            cursor = await conn.execute(
                "DELETE FROM cache WHERE expires_at <= ?",
                (self._clock(),),
            )
            await conn.commit()
        removed = cursor.rowcount or 0
        if removed:
            logger.debug("Swept %d expired cache entries", removed)
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep()
            except aiosqlite.Error:
                logger.warning("Cache sweep failed", exc_info=True)

    async def clear(self) -> None:
        """Delete every entry."""
        conn = self._require_conn()
        async with self._lock:
            await conn.execute("DELETE FROM cache")
            await conn.commit()
