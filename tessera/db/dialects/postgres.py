"""
PostgreSQL dialect.

``$N`` placeholders, ``RETURNING`` for new ids, sequence resync after
explicit ids, ``ON CONFLICT`` upserts and ``UPPER(col::text)`` for the
case-insensitive operators. Index hints are not supported.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Tuple

from ...models.field_info import FieldInfo
from ...models.fields import IS_INTEGER_FIELD, IS_POSITIVE_INTEGER_FIELD
from ...models.model_info import ModelInfo
from .base import BaseDialect

logger = logging.getLogger("tessera.db.dialects.postgres")

__all__ = ["PostgresDialect", "POSTGRES_OPERATORS", "POSTGRES_TYPES"]

POSTGRES_OPERATORS = {
    "exact": "= ?",
    "iexact": "= UPPER(?)",
    "contains": "LIKE ?",
    "icontains": "LIKE UPPER(?)",
    "gt": "> ?",
    "gte": ">= ?",
    "lt": "< ?",
    "lte": "<= ?",
    "eq": "= ?",
    "ne": "!= ?",
    "startswith": "LIKE ?",
    "endswith": "LIKE ?",
    "istartswith": "LIKE UPPER(?)",
    "iendswith": "LIKE UPPER(?)",
}

POSTGRES_TYPES = {
    "auto": "serial NOT NULL PRIMARY KEY",
    "pk": "NOT NULL PRIMARY KEY",
    "bool": "bool",
    "string": "varchar(%d)",
    "string-char": "char(%d)",
    "string-text": "text",
    "time.Time-date": "date",
    "time.Time": "timestamp with time zone",
    "time.Time-clock": "time",
    "time.Time-precision": "timestamp(%d) with time zone",
    "int8": 'smallint CHECK("%COL%" >= -127 AND "%COL%" <= 128)',
    "int16": "smallint",
    "int32": "integer",
    "int64": "bigint",
    "uint8": 'smallint CHECK("%COL%" >= 0 AND "%COL%" <= 255)',
    "uint16": 'integer CHECK("%COL%" >= 0)',
    "uint32": 'bigint CHECK("%COL%" >= 0)',
    "uint64": 'bigint CHECK("%COL%" >= 0)',
    "float64": "double precision",
    "float64-decimal": "numeric(%d, %d)",
    "json": "json",
    "jsonb": "jsonb",
}

_UPPER_OPERATORS = frozenset({"iexact", "icontains", "istartswith", "iendswith"})
_TEXT_OPERATORS = frozenset({"contains", "startswith", "endswith"})


def replace_qmarks(query: str, prefix: str) -> str:
    """Number every ``?`` as ``{prefix}1``, ``{prefix}2``, ..."""
    parts = query.split("?")
    if len(parts) == 1:
        return query
    out = [parts[0]]
    for i, part in enumerate(parts[1:], start=1):
        out.append(f"{prefix}{i}")
        out.append(part)
    return "".join(out)


class PostgresDialect(BaseDialect):
    name = "postgres"
    quote = '"'
    operators = POSTGRES_OPERATORS
    types = POSTGRES_TYPES
    upsert_style = "postgres"
    supports_json = True
    unsized_varchar_as_text = True
    auto_column_only = True

    def support_update_join(self) -> bool:
        return False

    def max_limit(self) -> int:
        return 0

    def replace_marks(self, query: str) -> str:
        return replace_qmarks(query, "$")

    def has_returning_id(self, mi: ModelInfo, query: Optional[str] = None) -> Tuple[bool, Optional[str]]:
        fi = mi.fields.pk
        if fi is None or not (fi.field_type & (IS_INTEGER_FIELD | IS_POSITIVE_INTEGER_FIELD)):
            return False, query
        if query is not None:
            query = f'{query} RETURNING "{fi.column}"'
        return True, query

    async def setval(self, q: Any, mi: ModelInfo, auto_fields: Sequence[str]) -> None:
        if not auto_fields:
            return
        col = auto_fields[0]
        await q.execute(
            f"SELECT setval(pg_get_serial_sequence('{mi.table}', '{col}'), "
            f'(SELECT MAX("{col}") FROM "{mi.table}"));'
        )

    def generate_operator_left_col(self, fi: FieldInfo, operator: str, left_col: str) -> str:
        if operator in _TEXT_OPERATORS:
            return f"{left_col}::text"
        if operator in _UPPER_OPERATORS:
            return f"UPPER({left_col}::text)"
        return left_col

    def show_tables_query(self) -> str:
        return (
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_type = 'BASE TABLE' AND table_schema NOT IN ('pg_catalog', 'information_schema')"
        )

    def show_columns_query(self, table: str) -> str:
        return (
            "SELECT column_name, data_type, is_nullable FROM information_schema.columns "
            f"WHERE table_schema NOT IN ('pg_catalog', 'information_schema') AND table_name = '{table}'"
        )

    async def index_exists(self, q: Any, table: str, name: str) -> bool:
        row = await q.query_row(
            self.replace_marks("SELECT COUNT(*) FROM pg_indexes WHERE tablename = ? AND indexname = ?"),
            [table, name],
        )
        return bool(row and row[0])

    def generate_specify_index(self, table_name: str, use_index: int, indexes: Sequence[str]) -> str:
        logger.warning("PostgreSQL does not support specifying index, so that action is ignored")
        return ""
