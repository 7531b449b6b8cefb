"""
MySQL dialect.

Backtick quoting, ``?`` placeholders (translated to ``%s`` by the adapter),
``LAST_INSERT_ID`` for new ids, ``ON DUPLICATE KEY UPDATE`` upserts and
``USE/FORCE/IGNORE INDEX`` hints.
"""

from __future__ import annotations

from typing import Any

from .base import BaseDialect

__all__ = ["MySQLDialect", "MYSQL_OPERATORS", "MYSQL_TYPES"]

MYSQL_OPERATORS = {
    "exact": "= ?",
    "iexact": "LIKE ?",
    "strictexact": "= BINARY ?",
    "contains": "LIKE BINARY ?",
    "icontains": "LIKE ?",
    "gt": "> ?",
    "gte": ">= ?",
    "lt": "< ?",
    "lte": "<= ?",
    "eq": "= ?",
    "ne": "!= ?",
    "startswith": "LIKE BINARY ?",
    "endswith": "LIKE BINARY ?",
    "istartswith": "LIKE ?",
    "iendswith": "LIKE ?",
}

MYSQL_TYPES = {
    "auto": "AUTO_INCREMENT NOT NULL PRIMARY KEY",
    "pk": "NOT NULL PRIMARY KEY",
    "bool": "bool",
    "string": "varchar(%d)",
    "string-char": "char(%d)",
    "string-text": "longtext",
    "time.Time-date": "date",
    "time.Time": "datetime",
    "time.Time-clock": "time",
    "time.Time-precision": "datetime(%d)",
    "int8": "tinyint",
    "int16": "smallint",
    "int32": "integer",
    "int64": "bigint",
    "uint8": "tinyint unsigned",
    "uint16": "smallint unsigned",
    "uint32": "integer unsigned",
    "uint64": "bigint unsigned",
    "float64": "double precision",
    "float64-decimal": "numeric(%d, %d)",
    "json": "json",
    "jsonb": "json",
}


class MySQLDialect(BaseDialect):
    name = "mysql"
    quote = "`"
    operators = MYSQL_OPERATORS
    types = MYSQL_TYPES
    upsert_style = "mysql"
    supports_json = True

    def show_tables_query(self) -> str:
        return (
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_type = 'BASE TABLE' AND table_schema = DATABASE()"
        )

    def show_columns_query(self, table: str) -> str:
        return (
            "SELECT COLUMN_NAME, COLUMN_TYPE, IS_NULLABLE FROM information_schema.columns "
            f"WHERE table_schema = DATABASE() AND table_name = '{table}'"
        )

    async def index_exists(self, q: Any, table: str, name: str) -> bool:
        row = await q.query_row(
            "SELECT count(*) FROM information_schema.statistics "
            "WHERE table_schema = DATABASE() AND table_name = ? AND index_name = ?",
            [table, name],
        )
        return bool(row and row[0])
