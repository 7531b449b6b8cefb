"""
Tessera DB Backends Package — pluggable database adapters.

Provides a common adapter interface and implementations for:
- SQLite (default, via aiosqlite)
- PostgreSQL (via asyncpg)
- MySQL / TiDB (via aiomysql)
"""

from .base import (
    AdapterCapabilities,
    DatabaseAdapter,
    ExecResult,
    Executor,
    QueryResult,
    Statement,
    TransactionConnection,
)
from .sqlite import SQLiteAdapter
from .postgres import PostgresAdapter
from .mysql import MySQLAdapter

__all__ = [
    "AdapterCapabilities",
    "DatabaseAdapter",
    "ExecResult",
    "Executor",
    "QueryResult",
    "Statement",
    "TransactionConnection",
    "SQLiteAdapter",
    "PostgresAdapter",
    "MySQLAdapter",
]
