"""
Tessera DB Backend — SQLite adapter via aiosqlite.

Statements outside a transaction run on one shared connection in autocommit
mode. Each transaction opens its own connection, so work done outside it is
never rolled back with it. ``:memory:`` databases are opened as a named
shared-cache memory database so every connection sees the same data.
"""

from __future__ import annotations

import asyncio
import datetime
import decimal
import itertools
import logging
from typing import Any, Dict, List, Optional, Sequence, Set

from .base import (
    AdapterCapabilities,
    DatabaseAdapter,
    ExecResult,
    QueryResult,
    TransactionConnection,
)

try:
    import aiosqlite
except ImportError:
    aiosqlite = None  # type: ignore[assignment]

logger = logging.getLogger("tessera.db.backends.sqlite")

__all__ = ["SQLiteAdapter", "SQLiteTransaction"]

_memory_ids = itertools.count(1)


def _adapt_param(value: Any) -> Any:
    if isinstance(value, datetime.datetime):
        fmt = "%Y-%m-%d %H:%M:%S.%f" if value.microsecond else "%Y-%m-%d %H:%M:%S"
        return value.strftime(fmt)
    if isinstance(value, datetime.date):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, datetime.time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, decimal.Decimal):
        return str(value)
    return value


def _adapt_params(params: Optional[Sequence[Any]]) -> List[Any]:
    return [_adapt_param(v) for v in (params or ())]


async def _execute_on(conn: Any, sql: str, params: Optional[Sequence[Any]]) -> ExecResult:
    cursor = await conn.execute(sql, _adapt_params(params))
    try:
        return ExecResult(rowcount=cursor.rowcount, lastrowid=cursor.lastrowid)
    finally:
        await cursor.close()


async def _query_on(conn: Any, sql: str, params: Optional[Sequence[Any]]) -> QueryResult:
    cursor = await conn.execute(sql, _adapt_params(params))
    try:
        rows = await cursor.fetchall()
        cols = [d[0] for d in cursor.description] if cursor.description else []
        return QueryResult(columns=cols, rows=[tuple(r) for r in rows])
    finally:
        await cursor.close()


class SQLiteTransaction(TransactionConnection):
    """Transaction pinned to a connection of its own."""

    def __init__(self, adapter: "SQLiteAdapter", connection: Any):
        self._adapter = adapter
        self._connection = connection

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecResult:
        return await _execute_on(self._connection, sql, params)

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        return await _query_on(self._connection, sql, params)

    async def commit(self) -> None:
        try:
            await self._connection.execute("COMMIT")
        finally:
            await self._adapter._release(self)

    async def rollback(self) -> None:
        try:
            await self._connection.execute("ROLLBACK")
        finally:
            await self._adapter._release(self)


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite adapter using aiosqlite.

    Features:
    - WAL journal for file databases
    - Foreign key enforcement on every connection
    - datetime/date/time/Decimal parameters stored as text
    - One connection per open transaction
    """

    capabilities = AdapterCapabilities(
        supports_returning=False,
        supports_last_insert_id=True,
        param_style="qmark",
        name="sqlite",
    )

    def __init__(self):
        super().__init__()
        self._connection: Any = None
        self._connected = False
        self._lock = asyncio.Lock()
        self._db_path = ""
        self._uri = False
        self._transactions: Set[SQLiteTransaction] = set()

    async def _open(self) -> Any:
        conn = await aiosqlite.connect(self._db_path, isolation_level=None, uri=self._uri)
        await conn.execute("PRAGMA foreign_keys=ON")
        return conn

    async def connect(self, dsn: str, **options) -> None:
        if self._connected:
            return
        if aiosqlite is None:
            raise ImportError(
                "aiosqlite is required for SQLite backend. "
                "Install: pip install aiosqlite"
            )
        async with self._lock:
            if self._connected:
                return
            db_path = self._parse_dsn(dsn)
            if db_path == ":memory:":
                self._db_path = f"file:tessera-memory-{next(_memory_ids)}?mode=memory&cache=shared"
                self._uri = True
            else:
                self._db_path = db_path
                self._uri = db_path.startswith("file:")
            self._connection = await self._open()
            if "mode=memory" not in self._db_path:
                await self._connection.execute("PRAGMA journal_mode=WAL")
            self._connected = True
            logger.info(f"SQLite connected: {db_path}")

    async def disconnect(self) -> None:
        if not self._connected:
            return
        async with self._lock:
            for tx in list(self._transactions):
                logger.warning("closing SQLite connection of an unfinished transaction")
                await tx._connection.close()
            self._transactions.clear()
            if self._connection:
                await self._connection.close()
                self._connection = None
            self._connected = False
            logger.info("SQLite disconnected")

    def _require(self) -> None:
        if not self._connected:
            raise RuntimeError("Not connected")

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecResult:
        self._require()
        return await _execute_on(self._connection, sql, params)

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        self._require()
        return await _query_on(self._connection, sql, params)

    # ── Transactions ─────────────────────────────────────────────────

    async def begin(self, **options) -> SQLiteTransaction:
        """
        Open a connection and start a deferred transaction on it.

        ``immediate=True`` takes the write lock up front.
        """
        self._require()
        conn = await self._open()
        try:
            await conn.execute("BEGIN IMMEDIATE" if options.get("immediate") else "BEGIN")
        except BaseException:
            await conn.close()
            raise
        tx = SQLiteTransaction(self, conn)
        self._transactions.add(tx)
        return tx

    async def _release(self, tx: SQLiteTransaction) -> None:
        if tx in self._transactions:
            self._transactions.discard(tx)
            await tx._connection.close()

    # ── Introspection ────────────────────────────────────────────────

    def stats(self) -> Dict[str, Any]:
        base = 1 if self._connected else 0
        in_use = len(self._transactions)
        return {
            "max_open_connections": self.max_open_conns,
            "open_connections": base + in_use,
            "in_use": in_use,
            "idle": base,
        }

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def in_transaction(self) -> bool:
        return bool(self._transactions)

    @staticmethod
    def _parse_dsn(dsn: str) -> str:
        """Extract the file path from a sqlite DSN."""
        for prefix in ("sqlite3:///", "sqlite:///", "sqlite3://", "sqlite://"):
            if dsn.startswith(prefix):
                path = dsn[len(prefix):]
                return path or ":memory:"
        return dsn or ":memory:"
