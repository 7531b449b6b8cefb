"""
Tessera DB Backend — PostgreSQL adapter via asyncpg.

Provides async PostgreSQL support with connection pooling and transactions
on a dedicated pooled connection.

Requires asyncpg:
    pip install asyncpg
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

from .base import (
    AdapterCapabilities,
    DatabaseAdapter,
    ExecResult,
    QueryResult,
    TransactionConnection,
    mask_dsn,
)

logger = logging.getLogger("tessera.db.backends.postgres")

__all__ = ["PostgresAdapter", "PostgresTransaction", "parse_pg_dsn"]

try:
    import asyncpg
    _HAS_ASYNCPG = True
except ImportError:
    asyncpg = None  # type: ignore
    _HAS_ASYNCPG = False


def _rowcount(status: str) -> int:
    """``INSERT 0 3`` / ``UPDATE 2`` / ``DELETE 1`` → affected row count."""
    if not status:
        return 0
    last = status.rsplit(" ", 1)[-1]
    return int(last) if last.isdigit() else 0


async def _run_execute(conn: Any, sql: str, params: Optional[Sequence[Any]]) -> ExecResult:
    status = await conn.execute(sql, *(params or ()))
    return ExecResult(rowcount=_rowcount(status), lastrowid=None)


async def _run_query(conn: Any, sql: str, params: Optional[Sequence[Any]]) -> QueryResult:
    stmt = await conn.prepare(sql)
    columns = [attr.name for attr in stmt.get_attributes()]
    records = await stmt.fetch(*(params or ()))
    return QueryResult(columns=columns, rows=[tuple(r) for r in records])


class PostgresTransaction(TransactionConnection):
    """Transaction holding one connection acquired from the pool."""

    def __init__(self, adapter: "PostgresAdapter", conn: Any, txn: Any):
        self._adapter = adapter
        self._conn = conn
        self._txn = txn

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecResult:
        return await _run_execute(self._conn, sql, params)

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        return await _run_query(self._conn, sql, params)

    async def commit(self) -> None:
        try:
            await self._txn.commit()
        finally:
            await self._release()

    async def rollback(self) -> None:
        try:
            await self._txn.rollback()
        finally:
            await self._release()

    async def _release(self) -> None:
        if self._conn is not None:
            await self._adapter._pool.release(self._conn)
            self._conn = None


class PostgresAdapter(DatabaseAdapter):
    """
    PostgreSQL adapter using asyncpg with connection pooling.

    Statements arrive with ``$N`` placeholders already in place.
    Key/value DSNs (``user=a dbname=b sslmode=disable``) and URLs are both
    accepted.

    Requires:
        pip install asyncpg
    """

    capabilities = AdapterCapabilities(
        supports_returning=True,
        supports_last_insert_id=False,
        param_style="numeric",
        name="postgres",
    )

    def __init__(self):
        super().__init__()
        self._pool: Any = None
        self._connected = False

    async def connect(self, dsn: str, **options) -> None:
        if self._connected:
            return
        if not _HAS_ASYNCPG:
            raise ImportError(
                "asyncpg is required for PostgreSQL support.\n"
                "Install: pip install asyncpg"
            )

        kwargs = parse_pg_dsn(dsn)
        max_size = self.max_open_conns or 10
        kwargs.setdefault("min_size", min(self.max_idle_conns, max_size))
        kwargs.setdefault("max_size", max_size)
        if self.conn_max_lifetime:
            kwargs.setdefault("max_inactive_connection_lifetime", self.conn_max_lifetime)
        kwargs.update(options)
        self._pool = await asyncpg.create_pool(**kwargs)
        self._connected = True
        logger.info(f"PostgreSQL connected via asyncpg: {mask_dsn(dsn)}")

    async def disconnect(self) -> None:
        if not self._connected:
            return
        if self._pool:
            await self._pool.close()
            self._pool = None
        self._connected = False
        logger.info("PostgreSQL disconnected")

    def _require(self) -> None:
        if not self._connected:
            raise RuntimeError("Not connected to PostgreSQL")

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecResult:
        self._require()
        async with self._pool.acquire() as conn:
            return await _run_execute(conn, sql, params)

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        self._require()
        async with self._pool.acquire() as conn:
            return await _run_query(conn, sql, params)

    # ── Transactions ─────────────────────────────────────────────────

    async def begin(self, **options) -> PostgresTransaction:
        """Acquire a dedicated connection and start a transaction."""
        self._require()
        conn = await self._pool.acquire()
        try:
            txn = conn.transaction(
                isolation=options.get("isolation"),
                readonly=bool(options.get("read_only", False)),
            )
            await txn.start()
        except BaseException:
            await self._pool.release(conn)
            raise
        return PostgresTransaction(self, conn, txn)

    def stats(self) -> Dict[str, Any]:
        if self._pool is None:
            return {"max_open_connections": self.max_open_conns, "open_connections": 0, "in_use": 0, "idle": 0}
        size = self._pool.get_size()
        idle = self._pool.get_idle_size()
        return {
            "max_open_connections": self._pool.get_max_size(),
            "open_connections": size,
            "in_use": size - idle,
            "idle": idle,
        }

    @property
    def is_connected(self) -> bool:
        return self._connected and self._pool is not None


_PG_KEYS = {
    "user": "user",
    "password": "password",
    "dbname": "database",
    "host": "host",
    "port": "port",
}


def parse_pg_dsn(dsn: str) -> Dict[str, Any]:
    """
    Parse a PostgreSQL DSN into ``asyncpg.create_pool`` kwargs.

    URLs are passed through as ``dsn``; ``key=value`` strings are split into
    keyword arguments (``sslmode=disable`` turns SSL off).
    """
    if "://" in dsn:
        return {"dsn": dsn}
    kwargs: Dict[str, Any] = {}
    for part in dsn.split():
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        key = key.strip().lower()
        value = value.strip().strip("'")
        if key in _PG_KEYS:
            kwargs[_PG_KEYS[key]] = int(value) if key == "port" else value
        elif key == "sslmode":
            kwargs["ssl"] = value not in ("disable", "allow")
    return kwargs
