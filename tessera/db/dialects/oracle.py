"""
Oracle dialect.

Double-quote identifiers, ``:N`` placeholders, upper-cased catalog lookups
and ``/*+ INDEX(...) */`` optimizer hints. Only plain comparisons are
available as filter operators. No adapter ships for Oracle; plug one in
with ``register_adapter``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Sequence, Tuple

from .base import FORCE_INDEX, IGNORE_INDEX, USE_INDEX, BaseDialect
from .postgres import replace_qmarks

logger = logging.getLogger("tessera.db.dialects.oracle")

__all__ = ["OracleDialect", "ORACLE_OPERATORS", "ORACLE_TYPES"]

ORACLE_OPERATORS = {
    "exact": "= ?",
    "gt": "> ?",
    "gte": ">= ?",
    "lt": "< ?",
    "lte": "<= ?",
    "eq": "= ?",
    "ne": "!= ?",
}

ORACLE_TYPES = {
    "pk": "NOT NULL PRIMARY KEY",
    "bool": "bool",
    "string": "VARCHAR2(%d)",
    "string-char": "CHAR(%d)",
    "string-text": "VARCHAR2(%d)",
    "time.Time-date": "DATE",
    "time.Time": "TIMESTAMP",
    "time.Time-clock": "TIMESTAMP",
    "time.Time-precision": "TIMESTAMP(%d)",
    "int8": "INTEGER",
    "int16": "INTEGER",
    "int32": "INTEGER",
    "int64": "INTEGER",
    "uint8": "INTEGER",
    "uint16": "INTEGER",
    "uint32": "INTEGER",
    "uint64": "INTEGER",
    "float64": "NUMBER",
    "float64-decimal": "NUMBER(%d, %d)",
}


class OracleDialect(BaseDialect):
    name = "oracle"
    quote = '"'
    operators = ORACLE_OPERATORS
    types = ORACLE_TYPES

    def replace_marks(self, query: str) -> str:
        return replace_qmarks(query, ":")

    def get_column_type(self, fi) -> str:
        col = super().get_column_type(fi)
        if "%d" in col:
            col = col % (fi.size or 4000)
        return col

    def show_tables_query(self) -> str:
        return "SELECT TABLE_NAME FROM USER_TABLES"

    def show_columns_query(self, table: str) -> str:
        return f"SELECT COLUMN_NAME FROM ALL_TAB_COLUMNS WHERE TABLE_NAME ='{table.upper()}'"

    async def get_columns(self, q: Any, table: str) -> Dict[str, Tuple[str, str, str]]:
        result = await q.query(self.show_columns_query(table))
        return {row[0]: (row[0], "", "") for row in result.rows}

    async def index_exists(self, q: Any, table: str, name: str) -> bool:
        row = await q.query_row(
            self.replace_marks(
                "SELECT COUNT(*) FROM USER_IND_COLUMNS, USER_INDEXES "
                "WHERE USER_IND_COLUMNS.INDEX_NAME = USER_INDEXES.INDEX_NAME "
                "AND USER_IND_COLUMNS.TABLE_NAME = ? AND USER_IND_COLUMNS.INDEX_NAME = ?"
            ),
            [table.upper(), name.upper()],
        )
        return bool(row and row[0])

    def generate_specify_index(self, table_name: str, use_index: int, indexes: Sequence[str]) -> str:
        q = self.table_quote()
        s = ",".join(f"{q}{index}{q}" for index in indexes)
        if use_index in (USE_INDEX, FORCE_INDEX):
            hint = "INDEX"
        elif use_index == IGNORE_INDEX:
            hint = "NO_INDEX"
        else:
            logger.warning("Not a valid specifying action, so that action is ignored")
            return ""
        return f" /*+ {hint}({table_name} {s})*/ "
