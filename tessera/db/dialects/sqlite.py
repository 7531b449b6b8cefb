"""
SQLite dialect.

LIKE-based matching with an explicit ``ESCAPE '\\'`` clause, ``INDEXED BY``
hints, no UPDATE ... JOIN, no ``FOR UPDATE`` and no upserts.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Sequence, Tuple

from ...models.field_info import FieldInfo
from ...models.fields import FieldType
from .base import FORCE_INDEX, USE_INDEX, BaseDialect

logger = logging.getLogger("tessera.db.dialects.sqlite")

__all__ = ["SQLiteDialect", "SQLITE_OPERATORS", "SQLITE_TYPES"]

_LIKE = "LIKE ? ESCAPE '\\'"

SQLITE_OPERATORS = {
    "exact": "= ?",
    "iexact": _LIKE,
    "contains": _LIKE,
    "icontains": _LIKE,
    "gt": "> ?",
    "gte": ">= ?",
    "lt": "< ?",
    "lte": "<= ?",
    "eq": "= ?",
    "ne": "!= ?",
    "startswith": _LIKE,
    "endswith": _LIKE,
    "istartswith": _LIKE,
    "iendswith": _LIKE,
}

SQLITE_TYPES = {
    "auto": "integer NOT NULL PRIMARY KEY AUTOINCREMENT",
    "pk": "NOT NULL PRIMARY KEY",
    "bool": "bool",
    "string": "varchar(%d)",
    "string-char": "character(%d)",
    "string-text": "text",
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
    "float64": "real",
    "float64-decimal": "decimal",
}


class SQLiteDialect(BaseDialect):
    name = "sqlite3"
    quote = "`"
    operators = SQLITE_OPERATORS
    types = SQLITE_TYPES
    big_integer_as_integer = True
    auto_column_only = True
    supports_column_comment = False
    supports_for_update = False
    supports_time_precision = False

    def support_update_join(self) -> bool:
        return False

    def max_limit(self) -> int:
        return 9223372036854775807

    def generate_operator_left_col(self, fi: FieldInfo, operator: str, left_col: str) -> str:
        if fi.field_type == FieldType.DATE:
            return f"DATE({left_col})"
        return left_col

    def show_tables_query(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type = 'table'"

    def show_columns_query(self, table: str) -> str:
        return f"pragma table_info('{table}')"

    async def get_columns(self, q: Any, table: str) -> Dict[str, Tuple[str, str, str]]:
        result = await q.query(self.show_columns_query(table))
        columns: Dict[str, Tuple[str, str, str]] = {}
        for row in result.rows:
            name, typ, notnull = str(row[1]), str(row[2]), str(row[3])
            columns[name] = (name, typ, notnull)
        return columns

    async def index_exists(self, q: Any, table: str, name: str) -> bool:
        result = await q.query(f"PRAGMA index_list('{table}')")
        return any(row[1] == name for row in result.rows)

    def generate_specify_index(self, table_name: str, use_index: int, indexes: Sequence[str]) -> str:
        q = self.table_quote()
        s = ",".join(f"{q}{index}{q}" for index in indexes)
        if use_index in (USE_INDEX, FORCE_INDEX):
            return f" INDEXED BY {s} "
        logger.warning("SQLite does not support ignoring index, so that action is ignored")
        return ""
