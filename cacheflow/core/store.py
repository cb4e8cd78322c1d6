"""cacheflow.core.store
=====================
Entry stores: key → value with TTL, behind one async contract.

Public API  (async)    Description
---------------------  ---------------------------------------------
`get()`                Live entry or ``None`` (expired entries read as absent)
`set()`                Write value with TTL in seconds from now
`refresh_ttl()`        Slide the expiry of a live entry; ``False`` if gone
`delete()`             Remove an entry
`size_bytes()`         Approximate footprint of one entry
`scan()`               Iterate every stored entry, expired ones included

`SQLiteEntryStore` persists the local table with **aiosqlite** behind a
single connection and an ``asyncio.Lock`` (one writer).  `RedisEntryStore`
delegates to a Redis server with native TTL.  `InMemoryEntryStore`
implements the same interface for fast unit-testing without touching the
filesystem.

Expiry of local entries is lazy: `get()` hides them, but only the sweeper
deletes them so size accounting stays in one place.
"""
from __future__ import annotations

import asyncio
import logging
import pathlib
from typing import Any, AsyncIterator, Protocol

import aiosqlite
import orjson
import redis.asyncio as redis

from cacheflow.config.settings import RemoteSettings
from cacheflow.core.models import CacheEntry, Clock, epoch_millis, expiry_from_ttl, size_of
from cacheflow.utils.exceptions import BackendError, wrap_exception
from cacheflow.utils.metrics import LAT_STORE

logger = logging.getLogger(__name__)

__all__ = [
    "EntryStore",
    "InMemoryEntryStore",
    "SQLiteEntryStore",
    "RedisEntryStore",
]


def _dumps(value: Any) -> str:
    return orjson.dumps(value).decode()


###############################################################################
# Abstract interface – handy for unit-test mocks
###############################################################################

class EntryStore(Protocol):
    """Behaviour contract for entry stores."""

    backend: str

    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: float | None) -> CacheEntry: ...

    async def refresh_ttl(self, key: str, ttl_seconds: float | None) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def size_bytes(self, key: str) -> int: ...

    def scan(self) -> AsyncIterator[tuple[str, CacheEntry]]: ...

    async def close(self) -> None: ...


###############################################################################
# In-memory dummy – great for fast unit tests
###############################################################################

class InMemoryEntryStore:
    """Very simple dict-backed store used in unit tests."""

    backend = "memory"

    def __init__(self, *, clock: Clock = epoch_millis) -> None:
        self._db: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: str) -> CacheEntry | None:
        async with self._lock:
            entry = self._db.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return None
            return CacheEntry(entry.key, entry.value, entry.expires_at)

    @wrap_exception(BackendError, "Failed to write cache entry")
    async def set(self, key: str, value: Any, ttl_seconds: float | None) -> CacheEntry:
        # keep the JSON contract of the persistent backends
        value = orjson.loads(orjson.dumps(value))
        async with self._lock:
            entry = CacheEntry(key, value, expiry_from_ttl(self._clock(), ttl_seconds))
            self._db[key] = entry
            return CacheEntry(key, value, entry.expires_at)

    async def refresh_ttl(self, key: str, ttl_seconds: float | None) -> bool:
        async with self._lock:
            now = self._clock()
            entry = self._db.get(key)
            if entry is None or entry.is_expired(now):
                return False
            entry.expires_at = expiry_from_ttl(now, ttl_seconds)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._db.pop(key, None) is not None

    async def size_bytes(self, key: str) -> int:
        async with self._lock:
            entry = self._db.get(key)
            return size_of(entry.value) if entry else 0

    async def scan(self) -> AsyncIterator[tuple[str, CacheEntry]]:
        async with self._lock:
            snapshot = [(k, CacheEntry(e.key, e.value, e.expires_at)) for k, e in self._db.items()]
        for item in snapshot:
            yield item

    async def clear(self) -> None:
        async with self._lock:
            self._db.clear()

    async def close(self) -> None:
        # nothing to close
        pass


###############################################################################
# SQLite implementation (local backend)
###############################################################################

class SQLiteEntryStore:
    """Async SQLite entry table ``entries(key, data, expire)``.

    ``data`` holds the JSON-encoded value and ``expire`` the absolute expiry
    in epoch milliseconds (``NULL`` = never expires), which is the document
    shape ``{key: {data, expire}}`` exposed by :meth:`dump`.
    """

    backend = "sqlite"

    def __init__(self, db_path: str | pathlib.Path, *, clock: Clock = epoch_millis) -> None:
        self._db_path = str(db_path)
        self._clock = clock
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    @wrap_exception(BackendError, "Failed to open local entry table")
    async def open(self, *, reset: bool = False) -> None:
        if self._conn is not None:
            return
        if self._db_path != ":memory:":
            pathlib.Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS entries (
                key     TEXT PRIMARY KEY,
                data    JSON NOT NULL,
                expire  INTEGER
            );
            """
        )
        if reset:
            await conn.execute("DELETE FROM entries")
        self._conn = conn
        logger.debug("Local entry table ready at %s (reset=%s)", self._db_path, reset)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    # ---------------------------------------------------------------------
    # Public high-level API
    # ---------------------------------------------------------------------

    @wrap_exception(BackendError, "Failed to read cache entry")
    async def get(self, key: str) -> CacheEntry | None:
        with LAT_STORE.labels(self.backend).time():
            cur = await self._connection().execute(
                "SELECT data, expire FROM entries WHERE key = ?", (key,)
            )
            row = await cur.fetchone()
            await cur.close()
        if row is None:
            return None
        entry = CacheEntry(key, orjson.loads(row[0]), row[1])
        return None if entry.is_expired(self._clock()) else entry

    @wrap_exception(BackendError, "Failed to write cache entry")
    async def set(self, key: str, value: Any, ttl_seconds: float | None) -> CacheEntry:
        payload = _dumps(value)
        async with self._lock:
            with LAT_STORE.labels(self.backend).time():
                expire = expiry_from_ttl(self._clock(), ttl_seconds)
                await self._connection().execute(
                    """
                    INSERT INTO entries(key, data, expire) VALUES (?, json(?), ?)
                    ON CONFLICT(key) DO UPDATE SET data = excluded.data, expire = excluded.expire
                    """,
                    (key, payload, expire),
                )
        return CacheEntry(key, orjson.loads(payload), expire)

    @wrap_exception(BackendError, "Failed to refresh cache entry")
    async def refresh_ttl(self, key: str, ttl_seconds: float | None) -> bool:
        async with self._lock:
            with LAT_STORE.labels(self.backend).time():
                now = self._clock()
                cur = await self._connection().execute(
                    "UPDATE entries SET expire = ? WHERE key = ? AND (expire IS NULL OR expire >= ?)",
                    (expiry_from_ttl(now, ttl_seconds), key, now),
                )
                updated = cur.rowcount
                await cur.close()
        return updated > 0

    @wrap_exception(BackendError, "Failed to delete cache entry")
    async def delete(self, key: str) -> bool:
        async with self._lock:
            cur = await self._connection().execute("DELETE FROM entries WHERE key = ?", (key,))
            deleted = cur.rowcount
            await cur.close()
        return deleted > 0

    @wrap_exception(BackendError, "Failed to size cache entry")
    async def size_bytes(self, key: str) -> int:
        cur = await self._connection().execute("SELECT data FROM entries WHERE key = ?", (key,))
        row = await cur.fetchone()
        await cur.close()
        return size_of(orjson.loads(row[0])) if row else 0

    async def scan(self) -> AsyncIterator[tuple[str, CacheEntry]]:
        for entry in await self._fetch_all():
            yield entry.key, entry

    async def dump(self) -> dict[str, dict[str, Any]]:
        """Whole table as ``{key: {"data": ..., "expire": ...}}``."""
        return {entry.key: entry.to_document() for entry in await self._fetch_all()}

    @wrap_exception(BackendError, "Failed to clear local entry table")
    async def clear(self) -> None:
        async with self._lock:
            await self._connection().execute("DELETE FROM entries")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @wrap_exception(BackendError, "Failed to scan local entry table")
    async def _fetch_all(self) -> list[CacheEntry]:
        cur = await self._connection().execute("SELECT key, data, expire FROM entries ORDER BY key")
        rows = await cur.fetchall()
        await cur.close()
        return [CacheEntry(r[0], orjson.loads(r[1]), r[2]) for r in rows]

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise BackendError("Local entry table is not open", context={"path": self._db_path})
        return self._conn


###############################################################################
# Redis implementation (remote backend)
###############################################################################

class RedisEntryStore:
    """Redis-backed entry store with native TTL.

    Values are stored as JSON strings; TTLs are set in milliseconds
    (``PX`` / ``PEXPIRE``) so fractional ``maxAge`` values survive.
    """

    backend = "redis"

    def __init__(self, client: redis.Redis, *, key_prefix: str = "", clock: Clock = epoch_millis) -> None:
        self._client = client
        self._prefix = key_prefix
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: RemoteSettings, *, clock: Clock = epoch_millis) -> "RedisEntryStore":
        client = redis.Redis(
            host=settings.host,
            port=settings.port,
            db=settings.db,
            password=settings.password.get_secret_value() if settings.password else None,
            decode_responses=True,
            socket_connect_timeout=settings.socket_timeout,
            socket_timeout=settings.socket_timeout,
        )
        return cls(client, key_prefix=settings.key_prefix, clock=clock)

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    @wrap_exception(BackendError, "Cannot connect to Redis")
    async def ping(self) -> None:
        await self._client.ping()

    async def close(self) -> None:
        await self._client.aclose()

    # ---------------------------------------------------------------------
    # Public high-level API
    # ---------------------------------------------------------------------

    @wrap_exception(BackendError, "Failed to read cache entry from Redis")
    async def get(self, key: str) -> CacheEntry | None:
        name = self._name(key)
        with LAT_STORE.labels(self.backend).time():
            raw = await self._client.get(name)
            if raw is None:
                return None
            pttl = await self._client.pttl(name)
        expire = self._clock() + pttl if pttl is not None and pttl >= 0 else None
        return CacheEntry(key, orjson.loads(raw), expire)

    @wrap_exception(BackendError, "Failed to write cache entry to Redis")
    async def set(self, key: str, value: Any, ttl_seconds: float | None) -> CacheEntry:
        payload = _dumps(value)
        with LAT_STORE.labels(self.backend).time():
            if ttl_seconds is None:
                await self._client.set(self._name(key), payload)
            else:
                await self._client.set(self._name(key), payload, px=self._ttl_ms(ttl_seconds))
        return CacheEntry(key, orjson.loads(payload), expiry_from_ttl(self._clock(), ttl_seconds))

    @wrap_exception(BackendError, "Failed to refresh cache entry in Redis")
    async def refresh_ttl(self, key: str, ttl_seconds: float | None) -> bool:
        with LAT_STORE.labels(self.backend).time():
            if ttl_seconds is None:
                return bool(await self._client.exists(self._name(key)))
            return bool(await self._client.pexpire(self._name(key), self._ttl_ms(ttl_seconds)))

    @wrap_exception(BackendError, "Failed to delete cache entry from Redis")
    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(self._name(key)))

    @wrap_exception(BackendError, "Failed to size cache entry in Redis")
    async def size_bytes(self, key: str) -> int:
        return int(await self._client.memory_usage(self._name(key)) or 0)

    async def scan(self) -> AsyncIterator[tuple[str, CacheEntry]]:
        async for name in self._client.scan_iter(match=f"{self._prefix}*"):
            key = name[len(self._prefix):]
            entry = await self.get(key)
            if entry is not None:
                yield key, entry

    @wrap_exception(BackendError, "Failed to query Redis memory usage")
    async def memory_used(self) -> int:
        """``used_memory`` from ``INFO memory``."""
        info = await self._client.info("memory")
        return int(info["used_memory"])

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _name(self, key: str) -> str:
        return f"{self._prefix}{key}"

    @staticmethod
    def _ttl_ms(ttl_seconds: float) -> int:
        return max(1, int(ttl_seconds * 1000))
