"""
Async SQLite persistence for the counter store.

This module provides:
- DatabaseAdapter: Abstract interface for transactional backends
- SQLiteTransaction: Row-as-dict helpers over one connection
- SQLiteAdapter: aiosqlite-backed adapter with exclusive write transactions

Design Principles:
- SQLite uses BEGIN IMMEDIATE for write locking (no FOR UPDATE), so a
  read-evaluate-write inside one transaction is atomic across callers
- File databases get a fresh connection per transaction and WAL mode
- In-memory databases share one connection guarded by an asyncio.Lock
"""
import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

import aiosqlite


@runtime_checkable
class TransactionProtocol(Protocol):
    """Protocol for database transaction operations."""

    async def execute(self, query: str, params: tuple = ()) -> None:
        """Execute a query."""
        ...

    async def fetch_one(self, query: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        """Fetch a single row as dict."""
        ...

    async def fetch_all(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        """Fetch all rows as list of dicts."""
        ...


class DatabaseAdapter(ABC):
    """
    Abstract database adapter.

    CounterStore only needs an exclusive transaction with execute/fetch
    helpers, so alternative backends plug in behind this interface.
    """

    @abstractmethod
    def exclusive_transaction(self) -> AsyncContextManager[TransactionProtocol]:
        """Return a transaction context holding the write lock."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the database connection."""
        pass


class SQLiteTransaction:
    """SQLite transaction wrapper implementing TransactionProtocol."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def execute(self, query: str, params: tuple = ()) -> None:
        """Execute a query."""
        await self._conn.execute(query, params)

    async def fetch_one(self, query: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        """Fetch a single row as dict."""
        cursor = await self._conn.execute(query, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        columns = [description[0] for description in cursor.description]
        return dict(zip(columns, row))

    async def fetch_all(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        """Fetch all rows as list of dicts."""
        cursor = await self._conn.execute(query, params)
        rows = await cursor.fetchall()
        columns = [description[0] for description in cursor.description]
        return [dict(zip(columns, row)) for row in rows]


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite adapter using aiosqlite.

    Uses BEGIN IMMEDIATE for exclusive locking, which:
    - Acquires write lock immediately (before any reads)
    - Prevents two callers from both reading the same counter value
    - Works with single-writer, multi-reader model

    For in-memory databases (:memory:), a shared connection is used since
    separate connections would create separate databases.
    """

    BUSY_TIMEOUT_MS = 5000

    def __init__(self, db_path: str):
        """
        Initialize SQLite adapter.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory
        """
        self.db_path = db_path
        self._shared_conn: Optional[aiosqlite.Connection] = None
        self._is_memory = db_path == ":memory:"
        self._conn_lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        """Get or create the connection lock."""
        if self._conn_lock is None:
            self._conn_lock = asyncio.Lock()
        return self._conn_lock

    async def _create_connection(self) -> aiosqlite.Connection:
        """Create a new configured connection."""
        conn = await aiosqlite.connect(
            self.db_path,
            isolation_level=None,
        )
        conn.row_factory = aiosqlite.Row

        await conn.execute(f"PRAGMA busy_timeout = {self.BUSY_TIMEOUT_MS}")

        if not self._is_memory:
            await conn.execute("PRAGMA journal_mode = WAL")

        return conn

    async def _ensure_connected(self) -> aiosqlite.Connection:
        """Ensure shared connection exists and return it."""
        if self._shared_conn is None:
            self._shared_conn = await self._create_connection()
        return self._shared_conn

    @asynccontextmanager
    async def exclusive_transaction(self) -> AsyncIterator[SQLiteTransaction]:
        """
        Return transaction context with exclusive locking.

        For file-based databases, creates a new connection per transaction.
        For in-memory databases, uses a shared connection with a lock.
        """
        if self._is_memory:
            async with self._get_lock():
                conn = await self._ensure_connected()
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    yield SQLiteTransaction(conn)
                    await conn.execute("COMMIT")
                except BaseException:
                    await conn.execute("ROLLBACK")
                    raise
        else:
            conn = await self._create_connection()
            try:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    yield SQLiteTransaction(conn)
                    await conn.execute("COMMIT")
                except BaseException:
                    await conn.execute("ROLLBACK")
                    raise
            finally:
                await conn.close()

    async def close(self) -> None:
        """Close the shared connection."""
        if self._shared_conn is not None:
            await self._shared_conn.close()
            self._shared_conn = None
