"""Base class for SQLite storage adapters."""

import asyncio
import json
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import aiosqlite

from healthwatch.core.exceptions import StorageUnavailableError
from healthwatch.core.logs import get_logger

logger = get_logger(__name__)


def _safe_json_loads(data: str | None, default: dict[str, Any] | None = None) -> dict[str, Any]:
    """Safely parse a JSON object, returning default on decode error."""
    if default is None:
        default = {}
    if not data:
        return default
    try:
        result: dict[str, Any] = json.loads(data)
        return result
    except json.JSONDecodeError:
        logger.warning("Discarding undecodable JSON column", extra={"length": len(data)})
        return default


class AsyncConnectionManager:
    """Manages async (aiosqlite) database connections.

    Handles schema initialization and connection lifecycle. For :memory:
    databases, maintains a persistent connection since SQLite in-memory
    databases are connection-scoped.
    """

    def __init__(self, db_path: str, schema: str) -> None:
        self._db_path = db_path
        self._schema = schema
        self._initialized = False
        self._init_lock: asyncio.Lock | None = None
        self._persistent_conn: aiosqlite.Connection | None = None

    def _get_lock(self) -> asyncio.Lock:
        """Get or create the initialization lock (lazy to avoid event loop issues)."""
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        return self._init_lock

    @property
    def _is_memory(self) -> bool:
        return self._db_path == ":memory:"

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        async with self._get_lock():
            if self._initialized:
                return
            if self._is_memory:
                self._persistent_conn = await aiosqlite.connect(":memory:")
                await self._persistent_conn.executescript(self._schema)
            else:
                async with aiosqlite.connect(self._db_path) as db:
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.executescript(self._schema)
            self._initialized = True

    async def _get_connection(self) -> aiosqlite.Connection:
        await self._ensure_initialized()
        if self._is_memory:
            if self._persistent_conn is None:
                raise StorageUnavailableError("memory database connection not initialized")
            return self._persistent_conn
        return await aiosqlite.connect(self._db_path)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for a connection; sqlite3 errors become StorageUnavailableError.

        File-based connections are closed on exit; the :memory: connection
        stays open until ``close``.
        """
        try:
            db = await self._get_connection()
        except sqlite3.Error as exc:
            raise StorageUnavailableError(f"cannot open {self._db_path}: {exc}") from exc
        try:
            yield db
        except sqlite3.Error as exc:
            if self._is_memory:
                await db.rollback()
            raise StorageUnavailableError(str(exc)) from exc
        finally:
            if not self._is_memory:
                await db.close()

    async def close(self) -> None:
        """Close persistent connection (for :memory: databases)."""
        if self._persistent_conn is not None:
            await self._persistent_conn.close()
            self._persistent_conn = None
            self._initialized = False


class SQLiteStorageBase:
    """Base class for SQLite repositories.

    Subclasses provide the schema and implement their port's methods on top
    of ``connection()``. Each write commits exactly one statement, so a
    failed write leaves no partial state behind.
    """

    _schema: str

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._manager = AsyncConnectionManager(db_path, self._schema)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        async with self._manager.connection() as db:
            yield db

    async def _execute(self, query: str, params: tuple[Any, ...] = ()) -> int:
        """Execute and commit one write statement. Returns the row count."""
        async with self.connection() as db:
            cursor = await db.execute(query, params)
            await db.commit()
            return cursor.rowcount

    async def _fetchone(self, query: str, params: tuple[Any, ...] = ()) -> Any:
        async with self.connection() as db:
            async with db.execute(query, params) as cursor:
                return await cursor.fetchone()

    async def _iterate(self, query: str, params: tuple[Any, ...] = ()) -> AsyncIterator[Any]:
        async with self.connection() as db:
            async with db.execute(query, params) as cursor:
                async for row in cursor:
                    yield row

    async def close(self) -> None:
        """Close persistent connection (for :memory: databases)."""
        await self._manager.close()
