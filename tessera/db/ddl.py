"""
Schema generation and synchronization.

Builds ``CREATE TABLE`` / ``CREATE INDEX`` / ``DROP TABLE`` statements for
every registered model in the dialect of an alias, and ``sync_db`` applies
them: drops tables when forced, creates the missing ones and adds missing
columns and indexes to existing tables.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

from ..faults import ModelRegistrationFault
from ..models.field_info import FieldInfo
from ..models.fields import FieldType
from ..models.registry import model_cache
from ..models.utils import (
    get_table_engine,
    get_table_index,
    get_table_unique,
    is_applicable_table_for_db,
)
from .alias import Alias, DriverType, get_db_alias

logger = logging.getLogger("tessera.db.ddl")

__all__ = [
    "DbIndex",
    "get_column_default",
    "get_column_add_query",
    "get_db_create_sql",
    "get_db_drop_sql",
    "sync_db",
]

_NUMERIC_TYPES = (
    FieldType.BIT,
    FieldType.SMALL_INTEGER,
    FieldType.INTEGER,
    FieldType.BIG_INTEGER,
    FieldType.POSITIVE_BIT,
    FieldType.POSITIVE_SMALL_INTEGER,
    FieldType.POSITIVE_INTEGER,
    FieldType.POSITIVE_BIG_INTEGER,
    FieldType.FLOAT,
    FieldType.DECIMAL,
)


@dataclass
class DbIndex:
    table: str
    name: str
    sql: str


def get_column_default(fi: FieldInfo) -> str:
    """
    The ``DEFAULT`` clause of a column.

    Explicit ``default(...)`` tags win; otherwise NOT NULL numeric, bool and
    JSON columns get ``0``, ``FALSE`` and ``{}``.
    """
    if fi.rel or fi.reverse:
        return ""
    template = " DEFAULT '%s' "
    fallback = ""
    if fi.field_type in (FieldType.TIME, FieldType.DATE, FieldType.DATETIME, FieldType.TEXT):
        return ""
    if fi.field_type in _NUMERIC_TYPES:
        template = " DEFAULT %s "
        fallback = "0"
    elif fi.field_type == FieldType.BOOLEAN:
        template = " DEFAULT %s "
        fallback = "FALSE"
    elif fi.field_type in (FieldType.JSON, FieldType.JSONB):
        fallback = "{}"

    if fi.col_default:
        return template % (fi.initial if fi.initial is not None else "")
    if not fi.null:
        return template % fallback
    return ""


def get_column_add_query(al: Alias, fi: FieldInfo) -> str:
    Q = al.dbbaser.table_quote()
    typ = al.dbbaser.get_column_type(fi)
    if not fi.null:
        typ += " NOT NULL"
    return (
        f"ALTER TABLE {Q}{fi.mi.table}{Q} ADD COLUMN {Q}{fi.column}{Q} "
        f"{typ} {get_column_default(fi)}"
    )


def _columns_of(mi, names: List[str], what: str) -> List[str]:
    cols = []
    for name in names:
        fi = mi.fields.get_by_any(name)
        if fi is None or not fi.db_col:
            raise ModelRegistrationFault(
                mi.full_name,
                f"cannot found column `{name}` when parse {what} in `{mi.full_name}.Meta`",
            )
        cols.append(fi.column)
    return cols


def get_db_drop_sql(al: Alias) -> List[str]:
    """``DROP TABLE IF EXISTS`` for every registered model, in registration order."""
    if model_cache.empty():
        raise ModelRegistrationFault("<ddl>", "no Model found, need Register your model")
    Q = al.dbbaser.table_quote()
    return [f"DROP TABLE IF EXISTS {Q}{mi.table}{Q}" for mi in model_cache.all_ordered()]


def get_db_create_sql(al: Alias) -> Tuple[List[str], Dict[str, List[DbIndex]]]:
    """
    ``CREATE TABLE`` statements (one per model, in registration order) and
    the ``CREATE INDEX`` statements of each table.
    """
    if model_cache.empty():
        raise ModelRegistrationFault("<ddl>", "no Model found, need Register your model")

    base = al.dbbaser
    Q = base.table_quote()
    T = base.db_types()
    sep = f"{Q}, {Q}"
    queries: List[str] = []
    table_indexes: Dict[str, List[DbIndex]] = {}

    for mi in model_cache.all_ordered():
        line = "-" * 50
        sql = f"-- {line}\n--  Table Structure for `{mi.full_name}`\n-- {line}\n"
        sql += f"CREATE TABLE IF NOT EXISTS {Q}{mi.table}{Q} (\n"

        columns: List[str] = []
        sql_indexes: List[List[str]] = []
        comment_fields: List[FieldInfo] = []
        for fi in mi.fields.fields_db:
            column = f"    {Q}{fi.column}{Q} "
            col = base.get_column_type(fi)
            if fi.db_type:
                column += fi.db_type
            elif fi.auto:
                column += T["auto"] if base.auto_column_only else f"{col} {T['auto']}"
            elif fi.pk:
                column += f"{col} {T['pk']}"
            else:
                column += col
                if not fi.null:
                    column += " NOT NULL"
                column += get_column_default(fi)
                if fi.unique:
                    column += " UNIQUE"
                if fi.index:
                    sql_indexes.append([fi.column])
            column = column.replace("%COL%", fi.column)

            if fi.description and base.supports_column_comment:
                if al.driver == DriverType.POSTGRES:
                    comment_fields.append(fi)
                else:
                    column += f" COMMENT '{fi.description}'"
            columns.append(column)

        all_names = list(get_table_unique(mi.model)) if mi.model is not None else []
        if not mi.manual and mi.uniques:
            all_names.append(mi.uniques)
        for names in all_names:
            cols = _columns_of(mi, names, "UNIQUE")
            columns.append(f"    UNIQUE ({Q}{sep.join(cols)}{Q})")

        sql += ",\n".join(columns)
        sql += "\n)"
        if al.driver == DriverType.MYSQL:
            engine = get_table_engine(mi.model) if mi.model is not None else ""
            sql += f" ENGINE={engine or al.engine}"
        sql += ";"
        for fi in comment_fields:
            sql += f"\nCOMMENT ON COLUMN {Q}{mi.table}{Q}.{Q}{fi.column}{Q} is '{fi.description}';"
        queries.append(sql)

        if mi.model is not None:
            for names in get_table_index(mi.model):
                sql_indexes.append(_columns_of(mi, names, "INDEX"))

        for names in sql_indexes:
            name = f"{mi.table}_{'_'.join(names)}"
            index_sql = f"CREATE INDEX {Q}{name}{Q} ON {Q}{mi.table}{Q} ({Q}{sep.join(names)}{Q});"
            table_indexes.setdefault(mi.table, []).append(DbIndex(mi.table, name, index_sql))

    return queries, table_indexes


async def sync_db(
    alias_name: str = "default",
    force: bool = False,
    verbose: bool = False,
    rt_on_error: bool = True,
) -> None:
    """
    Create missing tables, columns and indexes on ``alias_name``.

    ``force`` drops every table first. With ``rt_on_error=False`` failing
    statements are logged and skipped instead of raised.
    """
    al = get_db_alias(alias_name)
    db = al.db
    base = al.dbbaser

    async def run(query: str) -> None:
        try:
            await db.execute(query)
        except Exception as exc:
            if rt_on_error:
                raise
            logger.error(f"    {exc}")
        if verbose:
            logger.info(f"    {query}")

    if force:
        drops = get_db_drop_sql(al)
        for mi, query in zip(model_cache.all_ordered(), drops):
            logger.info(f"drop table `{mi.table}`")
            await run(query)

    create_queries, indexes = get_db_create_sql(al)
    tables = await base.get_tables(db)

    for mi, create_sql in zip(model_cache.all_ordered(), create_queries):
        if not is_applicable_table_for_db(mi.model, al.name):
            logger.info(f"table `{mi.table}` is not applicable to database '{al.name}'")
            continue

        if tables.get(mi.table):
            logger.info(f"table `{mi.table}` already exists, skip")
            columns = await base.get_columns(db, mi.table)
            for fi in mi.fields.fields_db:
                if fi.column in columns:
                    continue
                logger.info(f"add column `{fi.full_name}` for table `{mi.table}`")
                await run(get_column_add_query(al, fi))
            for idx in indexes.get(mi.table, []):
                if not await base.index_exists(db, idx.table, idx.name):
                    logger.info(f"create index `{idx.name}` for table `{idx.table}`")
                    await run(idx.sql)
            continue

        logger.info(f"create table `{mi.table}`")
        for query in [create_sql] + [idx.sql for idx in indexes.get(mi.table, [])]:
            await run(query)
