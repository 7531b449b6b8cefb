"""
DM (Dameng) dialect.

Oracle-like catalog, ``?`` placeholders, LIKE matching as in SQLite and
``MERGE INTO`` upserts keyed on the primary key. No adapter ships for DM;
plug one in with ``register_adapter``.
"""

from __future__ import annotations

from typing import Any

from ...models.model_info import ModelInfo
from .base import BaseDialect
from .sqlite import SQLITE_OPERATORS

__all__ = ["DMDialect", "DM_TYPES"]

DM_TYPES = {
    "auto": "IDENTITY(1,1)",
    "pk": "NOT NULL PRIMARY KEY",
    "bool": "BIT",
    "string": "VARCHAR(%d)",
    "string-char": "character(%d)",
    "string-text": "TEXT",
    "time.Time-date": "DATE",
    "time.Time": "TIMESTAMP",
    "time.Time-clock": "TIME",
    "time.Time-precision": "TIMESTAMP(%d)",
    "int8": "TINYINT",
    "int16": "SMALLINT",
    "int32": "INTEGER",
    "int64": "BIGINT",
    "uint8": "TINYINT unsigned",
    "uint16": "SMALLINT unsigned",
    "uint32": "INTEGER unsigned",
    "uint64": "BIGINT unsigned",
    "float64": "REAL",
    "float64-decimal": "DECIMAL",
}


class DMDialect(BaseDialect):
    name = "dm"
    quote = '"'
    operators = SQLITE_OPERATORS
    types = DM_TYPES
    supports_for_update = False

    def max_limit(self) -> int:
        return 9223372036854775807

    def show_tables_query(self) -> str:
        return "SELECT TABLE_NAME FROM USER_TABLES WHERE TABLESPACE_NAME != 'TEMP'"

    def show_columns_query(self, table: str) -> str:
        return (
            "SELECT COLUMN_NAME,DATA_TYPE,NULLABLE FROM USER_TAB_COLUMNS "
            f"WHERE TABLE_NAME = '{table.upper()}'"
        )

    async def index_exists(self, q: Any, table: str, name: str) -> bool:
        row = await q.query_row(
            "SELECT COUNT(*) FROM USER_IND_COLUMNS WHERE TABLE_NAME = ? AND INDEX_NAME = ?",
            [table.upper(), name.upper()],
        )
        return bool(row and row[0])

    async def insert_or_update(self, q: Any, mi: ModelInfo, obj: Any, al: Any, *args: str) -> int:
        """
        Upsert through ``MERGE INTO`` matched on the primary key.

        ``col=value`` args replace the bound value of ``col`` with a literal.
        """
        args_map = self._args_map(args)
        Q = self.table_quote()
        names, values, _ = self.collect_values(mi, obj, mi.fields.dbcols, False, True, al.tz)
        pk = mi.fields.pk.column

        duals = []
        params = []
        inserts = []
        insert_values = []
        updates = []
        for name, value in zip(names, values):
            literal = args_map.get(name.lower())
            if literal:
                duals.append(f"'{literal}' {name}")
            else:
                duals.append(f"? {name}")
                params.append(value)
            if name != pk:
                inserts.append(f"{Q}{name}{Q}")
                insert_values.append(f"T2.{name}")
                updates.append(f"T1.{name} = T2.{name}")

        query = (
            f"MERGE INTO {Q}{mi.table}{Q} T1 "
            f"USING (SELECT {', '.join(duals)} FROM dual) T2 ON(T1.{pk} = T2.{pk}) "
            f"WHEN NOT MATCHED THEN INSERT ({', '.join(inserts)}) VALUES ({', '.join(insert_values)}) "
            f" WHEN MATCHED THEN UPDATE SET {', '.join(updates)}"
        )
        res = await q.execute(query, params)
        return res.lastrowid if res.lastrowid is not None else res.rows_affected()
