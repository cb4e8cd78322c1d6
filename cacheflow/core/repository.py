"""cacheflow.core.repository
==========================
Durable home of the metric documents read by the viewer.

Two tables keep the JSON shapes addressable one key at a time::

    resolver_metrics(key TEXT PRIMARY KEY, document JSON)
    global_metrics(id INTEGER PRIMARY KEY CHECK (id = 1), document JSON)

so a per-key update rewrites a single row instead of the whole metrics
file.  `InMemoryMetricsRepository` is the test double.
"""
from __future__ import annotations

import asyncio
import pathlib
from typing import Any, Protocol

import aiosqlite
import orjson

from cacheflow.utils.exceptions import BackendError, wrap_exception

__all__ = [
    "MetricsRepository",
    "InMemoryMetricsRepository",
    "SQLiteMetricsRepository",
]

Document = dict[str, Any]


class MetricsRepository(Protocol):
    async def save(self, key: str | None, resolver: Document | None, global_doc: Document) -> None:
        """Persist one resolver document (if any) together with the global document."""

    async def load_resolver(self, key: str) -> Document | None: ...

    async def load_resolvers(self) -> dict[str, Document]: ...

    async def load_global(self) -> Document | None: ...

    async def reset(self) -> None: ...

    async def close(self) -> None: ...


class InMemoryMetricsRepository:
    """Dict-backed repository; documents are round-tripped through JSON."""

    def __init__(self) -> None:
        self._resolvers: dict[str, bytes] = {}
        self._global: bytes | None = None

    async def save(self, key: str | None, resolver: Document | None, global_doc: Document) -> None:
        if key is not None and resolver is not None:
            self._resolvers[key] = orjson.dumps(resolver)
        self._global = orjson.dumps(global_doc)

    async def load_resolver(self, key: str) -> Document | None:
        raw = self._resolvers.get(key)
        return orjson.loads(raw) if raw is not None else None

    async def load_resolvers(self) -> dict[str, Document]:
        return {k: orjson.loads(v) for k, v in self._resolvers.items()}

    async def load_global(self) -> Document | None:
        return orjson.loads(self._global) if self._global is not None else None

    async def reset(self) -> None:
        self._resolvers.clear()
        self._global = None

    async def close(self) -> None:
        pass


class SQLiteMetricsRepository:
    """Metric documents in SQLite, written through one connection."""

    def __init__(self, db_path: str | pathlib.Path) -> None:
        self._db_path = str(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @wrap_exception(BackendError, "Failed to open metrics tables")
    async def open(self) -> None:
        if self._conn is not None:
            return
        if self._db_path != ":memory:":
            pathlib.Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS resolver_metrics (
                key       TEXT PRIMARY KEY,
                document  JSON NOT NULL
            );
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS global_metrics (
                id        INTEGER PRIMARY KEY CHECK (id = 1),
                document  JSON NOT NULL
            );
            """
        )
        self._conn = conn

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @wrap_exception(BackendError, "Failed to persist metric documents")
    async def save(self, key: str | None, resolver: Document | None, global_doc: Document) -> None:
        resolvers = {key: resolver} if key is not None and resolver is not None else {}
        await self._write(resolvers, global_doc)

    @wrap_exception(BackendError, "Failed to read resolver metrics")
    async def load_resolver(self, key: str) -> Document | None:
        cur = await self._connection().execute(
            "SELECT document FROM resolver_metrics WHERE key = ?", (key,)
        )
        row = await cur.fetchone()
        await cur.close()
        return orjson.loads(row[0]) if row else None

    @wrap_exception(BackendError, "Failed to read resolver metrics")
    async def load_resolvers(self) -> dict[str, Document]:
        cur = await self._connection().execute(
            "SELECT key, document FROM resolver_metrics ORDER BY key"
        )
        rows = await cur.fetchall()
        await cur.close()
        return {r[0]: orjson.loads(r[1]) for r in rows}

    @wrap_exception(BackendError, "Failed to read global metrics")
    async def load_global(self) -> Document | None:
        cur = await self._connection().execute("SELECT document FROM global_metrics WHERE id = 1")
        row = await cur.fetchone()
        await cur.close()
        return orjson.loads(row[0]) if row else None

    @wrap_exception(BackendError, "Failed to reset metric documents")
    async def reset(self) -> None:
        async with self._lock:
            conn = self._connection()
            await conn.execute("DELETE FROM resolver_metrics")
            await conn.execute("DELETE FROM global_metrics")

    async def _write(self, resolvers: dict[str, Document], global_doc: Document) -> None:
        async with self._lock:
            conn = self._connection()
            await conn.execute("BEGIN")
            try:
                if resolvers:
                    await conn.executemany(
                        """
                        INSERT INTO resolver_metrics(key, document) VALUES (?, json(?))
                        ON CONFLICT(key) DO UPDATE SET document = excluded.document
                        """,
                        [(k, orjson.dumps(doc).decode()) for k, doc in resolvers.items()],
                    )
                await conn.execute(
                    """
                    INSERT INTO global_metrics(id, document) VALUES (1, json(?))
                    ON CONFLICT(id) DO UPDATE SET document = excluded.document
                    """,
                    (orjson.dumps(global_doc).decode(),),
                )
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise BackendError("Metrics tables are not open", context={"path": self._db_path})
        return self._conn
