"""
Tessera DB Backend — Base Adapter Interface.

Every driver plugged into an alias implements ``DatabaseAdapter``. The SQL it
receives is already rendered in the dialect's own placeholder style
(``?`` for SQLite/MySQL, ``$1`` for PostgreSQL, ``:1`` for Oracle); adapters
only translate to what their Python driver expects.

- ``execute`` returns an ``ExecResult`` (affected rows, last insert id)
- ``query`` returns a ``QueryResult`` (column names, tuple rows)
- ``prepare`` returns a ``Statement`` bound to one SQL string
- ``begin`` returns a ``TransactionConnection`` pinned to one connection
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ...faults import LastInsertIdUnavailableFault, StmtClosedFault

logger = logging.getLogger("tessera.db.backends")

__all__ = [
    "AdapterCapabilities",
    "ExecResult",
    "QueryResult",
    "Executor",
    "Statement",
    "TransactionConnection",
    "DatabaseAdapter",
]


@dataclass
class AdapterCapabilities:
    """Describes what a specific backend supports."""

    supports_returning: bool = False
    supports_last_insert_id: bool = True
    param_style: str = "qmark"  # qmark (?) | format (%s) | numeric ($1)
    name: str = "base"


@dataclass
class ExecResult:
    """Outcome of a statement that returns no rows."""

    rowcount: int = 0
    lastrowid: Optional[int] = None

    def rows_affected(self) -> int:
        return self.rowcount

    def last_insert_id(self) -> int:
        if self.lastrowid is None:
            raise LastInsertIdUnavailableFault()
        return self.lastrowid


@dataclass
class QueryResult:
    """Rows of a SELECT, in column order."""

    columns: List[str] = field(default_factory=list)
    rows: List[Tuple[Any, ...]] = field(default_factory=list)

    def first(self) -> Optional[Tuple[Any, ...]]:
        return self.rows[0] if self.rows else None

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)


class Executor(ABC):
    """Anything SQL can be sent to: an adapter or a transaction connection."""

    @abstractmethod
    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecResult:
        """Execute a statement that returns no rows."""
        ...

    @abstractmethod
    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        """Execute a statement and return all rows."""
        ...

    async def query_row(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Tuple[Any, ...]]:
        """First row of a query, or None."""
        result = await self.query(sql, params)
        return result.first()

    async def prepare(self, sql: str) -> "Statement":
        """Bind ``sql`` to a reusable statement."""
        return Statement(self, sql)


class Statement:
    """
    A statement bound to one SQL string.

    The default implementation re-sends the SQL through its executor;
    adapters with native prepared statements may subclass it.
    """

    def __init__(self, executor: Executor, sql: str):
        self.executor = executor
        self.sql = sql
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _check(self) -> None:
        if self._closed:
            raise StmtClosedFault()

    async def execute(self, params: Optional[Sequence[Any]] = None) -> ExecResult:
        self._check()
        return await self.executor.execute(self.sql, params)

    async def query(self, params: Optional[Sequence[Any]] = None) -> QueryResult:
        self._check()
        return await self.executor.query(self.sql, params)

    async def query_row(self, params: Optional[Sequence[Any]] = None) -> Optional[Tuple[Any, ...]]:
        self._check()
        return await self.executor.query_row(self.sql, params)

    async def close(self) -> None:
        self._closed = True

    def __repr__(self) -> str:
        return f"<Statement closed={self._closed} sql={self.sql!r}>"


class TransactionConnection(Executor):
    """A connection that stays pinned until commit or rollback."""

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...


class DatabaseAdapter(Executor):
    """
    Abstract database adapter interface.

    Pool sizing options (``max_idle_conns``, ``max_open_conns``,
    ``conn_max_lifetime``) are read at connect time; changing them later
    applies where the driver allows it.
    """

    capabilities: AdapterCapabilities = AdapterCapabilities()

    def __init__(self) -> None:
        self.max_idle_conns: int = 2
        self.max_open_conns: int = 0
        self.conn_max_lifetime: float = 0

    @abstractmethod
    async def connect(self, dsn: str, **options) -> None:
        """Open the connection (or pool) described by ``dsn``."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close every connection."""
        ...

    async def ping(self) -> None:
        """Raise if the database is unreachable."""
        await self.query("SELECT 1")

    @abstractmethod
    async def begin(self, **options) -> TransactionConnection:
        """Start a transaction on a dedicated connection."""
        ...

    def set_max_idle_conns(self, n: int) -> None:
        self.max_idle_conns = n

    def set_max_open_conns(self, n: int) -> None:
        self.max_open_conns = n

    def set_conn_max_lifetime(self, seconds: float) -> None:
        self.conn_max_lifetime = seconds

    def stats(self) -> Dict[str, Any]:
        """Pool statistics."""
        return {"max_open_connections": self.max_open_conns}

    @property
    def is_connected(self) -> bool:
        return False

    @property
    def dialect(self) -> str:
        return self.capabilities.name


def mask_dsn(dsn: str) -> str:
    """Mask the password in a DSN for logging."""
    if "@" not in dsn:
        return dsn
    scheme = ""
    if "://" in dsn:
        scheme, dsn = dsn.split("://", 1)
        scheme += "://"
    pre, post = dsn.rsplit("@", 1)
    if ":" in pre:
        user = pre.split(":", 1)[0]
        return f"{scheme}{user}:***@{post}"
    return f"{scheme}{dsn}"
