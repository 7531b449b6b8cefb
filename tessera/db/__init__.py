"""
Tessera DB - SQL generation and database access.

Provides:
- Condition / Order: query building blocks
- Dialects for MySQL, TiDB, SQLite, PostgreSQL, Oracle and DM
- Async adapters for SQLite, PostgreSQL and MySQL
- Aliases: registered databases with statement caching
- Query comments, the debug query log and schema sync
"""

from .alias import (
    DB,
    Alias,
    DriverType,
    TxDB,
    add_alias_with_adapter,
    add_alias_with_db,
    close_databases,
    get_db,
    get_db_alias,
    register_adapter,
    register_database,
    register_driver,
    reset_alias_cache,
    set_data_base_tz,
    set_max_idle_conns,
    set_max_open_conns,
)
from .comments import (
    QueryComments,
    add_query_comment,
    clear_query_comments,
    get_query_comments,
)
from .condition import EXPR_SEP, Condition
from .ddl import get_db_create_sql, get_db_drop_sql, sync_db
from .order import Order, Sort

__all__ = [
    "DB",
    "TxDB",
    "Alias",
    "DriverType",
    "register_driver",
    "register_adapter",
    "register_database",
    "add_alias_with_db",
    "add_alias_with_adapter",
    "close_databases",
    "get_db",
    "get_db_alias",
    "reset_alias_cache",
    "set_data_base_tz",
    "set_max_idle_conns",
    "set_max_open_conns",
    "QueryComments",
    "add_query_comment",
    "clear_query_comments",
    "get_query_comments",
    "Condition",
    "EXPR_SEP",
    "Order",
    "Sort",
    "get_db_create_sql",
    "get_db_drop_sql",
    "sync_db",
]
