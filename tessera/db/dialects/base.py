"""
Shared SQL generation and execution for every dialect.

``BaseDialect`` renders INSERT/UPDATE/DELETE/SELECT statements with ``?``
placeholders, hands them to ``replace_marks`` for the dialect's own marker
style, runs them against a querier (``DB``, ``TxDB`` or a decorator around
either) and maps the rows back onto model objects.

Dialects override class attributes (``operators``, ``types``, ``quote``) and
a handful of hooks:

- ``replace_marks`` / ``has_returning_id`` / ``setval`` for id retrieval
- ``generate_operator_left_col`` for per-dialect column wrapping
- ``show_tables_query`` / ``show_columns_query`` / ``index_exists``
- ``generate_specify_index`` for index hints

Hooks that have no meaningful default raise ``NotImplementFault``.
"""

from __future__ import annotations

import datetime
import decimal
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ...faults import (
    ArgsFault,
    FieldValueFault,
    InsertOrUpdateFault,
    LastInsertIdUnavailableFault,
    MissPKFault,
    NoRowsFault,
    NotImplementFault,
    QueryFault,
)
from ...models.base import analyze_annotation, zero_value
from ...models.field_info import FieldInfo
from ...models.fields import (
    FORMAT_DATE,
    FORMAT_DATETIME,
    FORMAT_TIME,
    FieldType,
    Fielder,
    IS_INTEGER_FIELD,
    IS_POSITIVE_INTEGER_FIELD,
    IS_REL_FIELD,
    OD_CASCADE,
    OD_DO_NOTHING,
    OD_SET_DEFAULT,
    OD_SET_NULL,
    str_to_bool,
)
from ...models.model_info import ModelInfo
from ... import settings
from ..condition import EXPR_SEP, Condition
from ..tables import DbTables
from ..utils import (
    COL_OPERATORS,
    ColValue,
    TIME_FIELD_TYPES,
    get_exist_pk,
    get_field_value,
    get_flat_params,
    narrow_time,
    set_field_value,
    to_aware,
)

logger = logging.getLogger("tessera.db.dialects")

__all__ = [
    "BaseDialect",
    "USE_INDEX",
    "FORCE_INDEX",
    "IGNORE_INDEX",
    "READ_MAPS",
    "READ_LISTS",
    "READ_FLAT",
]

# Index hint actions
USE_INDEX = 1
FORCE_INDEX = 2
IGNORE_INDEX = 3

# read_values container kinds
READ_MAPS = "maps"
READ_LISTS = "lists"
READ_FLAT = "flat"

_LIKE_OPERATORS = frozenset({
    "iexact", "contains", "icontains", "startswith", "endswith", "istartswith", "iendswith",
})

_ZERO_TIMES = ("00:00:00", "0000-00-00", "0000-00-00 00:00:00")


def _to_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class BaseDialect:
    """
    Default implementation shared by all dialects.

    Class attributes:
        name: dialect name used in messages
        quote: identifier quote character
        operators: operator token to SQL fragment (``None`` when unsupported)
        types: canonical type key to SQL column type
        upsert_style: ``"mysql"``, ``"postgres"`` or ``None`` (unsupported)
        supports_json: JSON/JSONB fields get native column types
        big_integer_as_integer: BigInteger columns use the ``int32`` type
        unsized_varchar_as_text: VarChar without ``size`` uses ``string-text``
        auto_column_only: the ``auto`` type replaces the column type in DDL
        supports_column_comment: ``COMMENT '…'`` is allowed in DDL
        supports_for_update: ``FOR UPDATE`` is emitted for locking reads
        supports_time_precision: DATETIME precision is rendered in DDL
    """

    name = "base"
    quote = "`"
    operators: Optional[Dict[str, str]] = None
    types: Dict[str, str] = {}
    upsert_style: Optional[str] = None
    supports_json = False
    big_integer_as_integer = False
    unsized_varchar_as_text = False
    auto_column_only = False
    supports_column_comment = True
    supports_for_update = True
    supports_time_precision = True

    # ── Dialect hooks ────────────────────────────────────────────────

    def table_quote(self) -> str:
        return self.quote

    def operator_sql(self, operator: str) -> str:
        if self.operators is None:
            raise NotImplementFault()
        sql = self.operators.get(operator)
        if not sql:
            raise QueryFault(
                "<dialect>", "where",
                f"operator `{operator}` is not supported by the {self.name} dialect",
            )
        return sql

    def db_types(self) -> Dict[str, str]:
        return self.types

    def support_update_join(self) -> bool:
        return True

    def max_limit(self) -> int:
        return 18446744073709551615

    def replace_marks(self, query: str) -> str:
        return query

    def has_returning_id(self, mi: ModelInfo, query: Optional[str] = None) -> Tuple[bool, Optional[str]]:
        """Whether inserts report the new id through a returned row."""
        return False, query

    async def setval(self, q: Any, mi: ModelInfo, auto_fields: Sequence[str]) -> None:
        """Resynchronize sequences after explicit auto values were inserted."""
        return None

    def time_to_db(self, value: datetime.datetime, tz: datetime.tzinfo) -> datetime.datetime:
        return to_aware(value, tz)

    def time_from_db(self, value: datetime.datetime, tz: datetime.tzinfo) -> datetime.datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=tz)
        return value.astimezone(settings.DEFAULT_TIME_LOC)

    def generate_operator_left_col(self, fi: FieldInfo, operator: str, left_col: str) -> str:
        return left_col

    def show_tables_query(self) -> str:
        raise NotImplementFault()

    def show_columns_query(self, table: str) -> str:
        raise NotImplementFault()

    async def index_exists(self, q: Any, table: str, name: str) -> bool:
        raise NotImplementFault()

    def generate_specify_index(self, table_name: str, use_index: int, indexes: Sequence[str]) -> str:
        q = self.table_quote()
        s = ",".join(f"{q}{index}{q}" for index in indexes)
        if use_index == USE_INDEX:
            way = "USE"
        elif use_index == FORCE_INDEX:
            way = "FORCE"
        elif use_index == IGNORE_INDEX:
            way = "IGNORE"
        else:
            logger.warning("Not a valid specifying action, so that action is ignored")
            return ""
        return f" {way} INDEX({s}) "

    # ── Column types ─────────────────────────────────────────────────

    def get_column_type(self, fi: FieldInfo) -> str:
        """SQL column type for ``fi``, with ``%COL%`` checks bound to its column."""
        if fi.db_type:
            return fi.db_type
        t = self.db_types()
        field_type = fi.field_type
        size = fi.size
        to_text = fi.to_text
        if field_type & (FieldType.REL_FOREIGN_KEY | FieldType.REL_ONE_TO_ONE):
            pk = fi.rel_model_info.fields.pk
            field_type = pk.field_type
            size = pk.size
            to_text = pk.to_text
        if field_type in (FieldType.JSON, FieldType.JSONB) and not self.supports_json:
            field_type = FieldType.VARCHAR
        if field_type == FieldType.BIG_INTEGER and self.big_integer_as_integer:
            field_type = FieldType.INTEGER

        if field_type == FieldType.BOOLEAN:
            col = t["bool"]
        elif field_type == FieldType.VARCHAR:
            if self.unsized_varchar_as_text and to_text:
                col = t["string-text"]
            else:
                col = t["string"] % size
        elif field_type == FieldType.CHAR:
            col = t["string-char"] % size
        elif field_type == FieldType.TEXT:
            col = t["string-text"]
        elif field_type == FieldType.TIME:
            col = t["time.Time-clock"]
        elif field_type == FieldType.DATE:
            col = t["time.Time-date"]
        elif field_type == FieldType.DATETIME:
            if fi.time_precision is None or not self.supports_time_precision:
                col = t["time.Time"]
            else:
                col = t["time.Time-precision"]
                if "%d" in col:
                    col = col % fi.time_precision
        elif field_type == FieldType.BIT:
            col = t["int8"]
        elif field_type == FieldType.SMALL_INTEGER:
            col = t["int16"]
        elif field_type == FieldType.INTEGER:
            col = t["int32"]
        elif field_type == FieldType.BIG_INTEGER:
            col = t["int64"]
        elif field_type == FieldType.POSITIVE_BIT:
            col = t["uint8"]
        elif field_type == FieldType.POSITIVE_SMALL_INTEGER:
            col = t["uint16"]
        elif field_type == FieldType.POSITIVE_INTEGER:
            col = t["uint32"]
        elif field_type == FieldType.POSITIVE_BIG_INTEGER:
            col = t["uint64"]
        elif field_type == FieldType.FLOAT:
            col = t["float64"]
        elif field_type == FieldType.DECIMAL:
            col = t["float64-decimal"]
            if "%d" in col:
                col = col % (fi.digits, fi.decimals)
        elif field_type == FieldType.JSON:
            col = t["json"]
        elif field_type == FieldType.JSONB:
            col = t["jsonb"]
        else:
            col = ""
        return col.replace("%COL%", fi.column)

    # ── Value collection ─────────────────────────────────────────────

    def collect_field_value(
        self, mi: ModelInfo, fi: FieldInfo, obj: Any, insert: bool, tz: datetime.tzinfo
    ) -> Any:
        """Read the bind value of ``fi`` from ``obj``."""
        if fi.pk:
            _, value, _ = get_exist_pk(mi, obj)
            return value

        raw = get_field_value(obj, fi)
        if fi.is_fielder or isinstance(raw, Fielder):
            value = raw.raw_value() if isinstance(raw, Fielder) else raw
            if isinstance(value, datetime.datetime):
                value = narrow_time(self.time_to_db(value, tz), fi.field_type)
        elif fi.field_type == FieldType.BOOLEAN:
            value = None if raw is None else bool(raw)
        elif fi.field_type in (
            FieldType.VARCHAR, FieldType.CHAR, FieldType.TEXT, FieldType.JSON, FieldType.JSONB
        ):
            value = None if raw is None else _to_str(raw)
        elif fi.field_type == FieldType.FLOAT:
            value = None if raw is None else float(raw)
        elif fi.field_type == FieldType.DECIMAL:
            value = raw if raw is None or isinstance(raw, decimal.Decimal) else float(raw)
        elif fi.field_type in TIME_FIELD_TYPES:
            value = raw
            if isinstance(value, datetime.datetime):
                value = narrow_time(self.time_to_db(value, tz), fi.field_type)
        elif fi.field_type & IS_INTEGER_FIELD:
            value = None if raw is None else int(raw)
        elif fi.field_type & IS_REL_FIELD:
            if raw is None:
                value = None
            elif isinstance(raw, (int, str)) and not isinstance(raw, bool):
                value = raw
            else:
                _, vu, ok = get_exist_pk(fi.rel_model_info, raw)
                value = vu if ok else None
            if not fi.null and value is None:
                raise QueryFault(mi.full_name, "collect", f"field `{fi.full_name}` cannot be NULL")
        else:
            value = raw

        if fi.field_type in TIME_FIELD_TYPES:
            if fi.auto_now or (fi.auto_now_add and insert):
                if not (insert and fi.auto_now_add and value is not None):
                    now = datetime.datetime.now(tz=settings.DEFAULT_TIME_LOC)
                    value = narrow_time(self.time_to_db(now, tz), fi.field_type)
                    set_field_value(obj, fi, narrow_time(now, fi.field_type))
        elif fi.field_type in (FieldType.JSON, FieldType.JSONB):
            if value is None or value == "":
                value = fi.initial if fi.col_default and fi.initial is not None else None
        return value

    def collect_values(
        self,
        mi: ModelInfo,
        obj: Any,
        cols: Sequence[str],
        skip_auto: bool,
        insert: bool,
        tz: datetime.tzinfo,
    ) -> Tuple[List[str], List[Any], List[str]]:
        """
        Collect ``(columns, values, auto_columns)`` of ``obj`` for ``cols``.

        On insert a zero auto field is left out so the database generates
        it; a non-zero one is kept and reported in ``auto_columns``.
        """
        names: List[str] = []
        values: List[Any] = []
        auto_fields: List[str] = []
        for column in cols:
            fi = mi.fields.get_by_any(column)
            if fi is None:
                raise QueryFault(
                    mi.full_name, "collect",
                    f"wrong db field/column name `{column}` for model `{mi.full_name}`",
                )
            if not fi.db_col or (fi.auto and skip_auto):
                continue
            value = self.collect_field_value(mi, fi, obj, insert, tz)
            if insert and fi.auto:
                if not value:
                    continue
                auto_fields.append(fi.column)
            names.append(fi.column)
            values.append(value)
        return names, values, auto_fields

    # ── Reading values back ──────────────────────────────────────────

    def _parse_time(self, fi: FieldInfo, s: str, tz: datetime.tzinfo) -> Any:
        precision = fi.time_precision
        if precision is not None and len(s) >= 20 + precision:
            parsed = datetime.datetime.strptime(s[:20 + precision], FORMAT_DATETIME + ".%f")
        elif len(s) >= 19:
            parsed = datetime.datetime.strptime(s[:19], FORMAT_DATETIME)
        elif len(s) >= 10:
            parsed = datetime.datetime.strptime(s[:10], FORMAT_DATE)
        elif len(s) >= 8:
            t = datetime.datetime.strptime(s[:8], FORMAT_TIME).time()
            return t if fi.field_type == FieldType.TIME else datetime.datetime.combine(
                datetime.date.min, t, tzinfo=tz
            )
        else:
            raise ValueError(f"unknown time format `{s}`")
        if fi.field_type == FieldType.DATE:
            return parsed.date()
        if fi.field_type == FieldType.TIME:
            return parsed.time()
        return self.time_from_db(parsed, tz)

    def convert_value_from_db(self, fi: FieldInfo, val: Any, tz: datetime.tzinfo) -> Any:
        """
        Convert a driver value to the Python type of ``fi``.

        Raises:
            FieldValueFault: the value cannot be converted
        """
        if val is None:
            return None
        if isinstance(val, (bytes, bytearray, memoryview)):
            val = bytes(val).decode()
        field_type = fi.field_type
        if field_type & IS_REL_FIELD:
            fi = fi.rel_model_info.fields.pk
            field_type = fi.field_type
        target = field_type.name.lower() if field_type else "unknown"
        try:
            if field_type == FieldType.BOOLEAN:
                if isinstance(val, bool):
                    return val
                if isinstance(val, int):
                    return val == 1
                return str_to_bool(_to_str(val))
            if field_type in (
                FieldType.VARCHAR, FieldType.CHAR, FieldType.TEXT, FieldType.JSON, FieldType.JSONB
            ):
                if isinstance(val, (dict, list)):
                    import json
                    return json.dumps(val)
                return _to_str(val)
            if field_type in TIME_FIELD_TYPES:
                if isinstance(val, datetime.datetime):
                    if field_type == FieldType.DATE:
                        return val.date()
                    if field_type == FieldType.TIME:
                        return val.time()
                    return self.time_from_db(val, tz)
                if isinstance(val, datetime.date):
                    return val
                if isinstance(val, datetime.time):
                    return val
                if isinstance(val, datetime.timedelta):
                    return (datetime.datetime.min + val).time()
                s = _to_str(val)
                try:
                    return self._parse_time(fi, s, tz)
                except ValueError:
                    if s in _ZERO_TIMES:
                        return None
                    raise
            if field_type & IS_INTEGER_FIELD:
                if isinstance(val, float) and not val.is_integer():
                    raise ValueError(f"{val} is not an integer")
                v = int(val) if not isinstance(val, str) else int(val.strip())
                if field_type & IS_POSITIVE_INTEGER_FIELD and v < 0:
                    raise ValueError(f"{v} is negative")
                return v
            if field_type == FieldType.FLOAT:
                return float(val)
            if field_type == FieldType.DECIMAL:
                if isinstance(val, decimal.Decimal):
                    return val
                return decimal.Decimal(_to_str(val))
        except (TypeError, ValueError, ArithmeticError) as exc:
            raise FieldValueFault(
                f"convert to `{target}` failed, field: {fi.full_name} err: {exc}"
            ) from exc
        return val

    def set_field_value(self, fi: FieldInfo, value: Any, obj: Any) -> None:
        """Store a converted database value on ``obj``."""
        if fi.is_fielder or isinstance(obj, dict):
            set_field_value(obj, fi, value)
            return
        if fi.field_type & IS_REL_FIELD:
            if value is None:
                set_field_value(obj, fi, None)
                return
            rmi = fi.rel_model_info
            rel = rmi.new_instance()
            self.set_field_value(rmi.fields.pk, value, rel)
            set_field_value(obj, fi, rel)
            return
        if value is None:
            value = zero_value(fi.annotation) if fi.annotation is not None else None
        elif fi.annotation is not None:
            base = analyze_annotation(fi.annotation).base
            if base is float and isinstance(value, decimal.Decimal):
                value = float(value)
            elif base is decimal.Decimal and isinstance(value, float):
                value = decimal.Decimal(str(value))
        set_field_value(obj, fi, value)

    def set_cols_values(
        self, mi: ModelInfo, obj: Any, cols: Sequence[str], values: Sequence[Any], tz: datetime.tzinfo
    ) -> None:
        for column, val in zip(cols, values):
            fi = mi.fields.get_by_column(column)
            try:
                value = self.convert_value_from_db(fi, val, tz)
                self.set_field_value(fi, value, obj)
            except FieldValueFault as exc:
                raise FieldValueFault(f"Raw value: `{val}` {exc.message}") from exc

    set_vals = set_cols_values

    # ── Single-object operations ─────────────────────────────────────

    def _where_of(
        self, mi: ModelInfo, obj: Any, cols: Sequence[str], tz: datetime.tzinfo
    ) -> Tuple[List[str], List[Any]]:
        if cols:
            where_cols, args, _ = self.collect_values(mi, obj, cols, False, False, tz)
            return where_cols, args
        pk_column, pk_value, ok = get_exist_pk(mi, obj)
        if not ok:
            raise MissPKFault()
        return [pk_column], [pk_value]

    async def read(
        self,
        q: Any,
        mi: ModelInfo,
        obj: Any,
        tz: datetime.tzinfo,
        cols: Sequence[str] = (),
        is_for_update: bool = False,
    ) -> None:
        """
        Load ``obj`` by primary key (or by ``cols``).

        Raises:
            MissPKFault: no ``cols`` and no primary key value
            NoRowsFault: nothing matched
        """
        where_cols, args = self._where_of(mi, obj, cols, tz)
        Q = self.table_quote()
        sels = f"{Q}, {Q}".join(mi.fields.dbcols)
        wheres = f"{Q} = ? AND {Q}".join(where_cols)
        for_update = ""
        if is_for_update:
            if self.supports_for_update:
                for_update = "FOR UPDATE"
            else:
                logger.warning(
                    f"{self.name} does not support SELECT FOR UPDATE query, "
                    f"isForUpdate param is ignored and always as false to do the work"
                )
        query = f"SELECT {Q}{sels}{Q} FROM {Q}{mi.table}{Q} WHERE {Q}{wheres}{Q} = ? {for_update}"
        query = self.replace_marks(query)
        row = await q.query_row(query, args)
        if row is None:
            raise NoRowsFault()
        self.set_cols_values(mi, obj, mi.fields.dbcols, row, tz)

    async def insert(self, q: Any, mi: ModelInfo, obj: Any, tz: datetime.tzinfo) -> int:
        """Insert ``obj``; returns the new id."""
        names, values, auto_fields = self.collect_values(mi, obj, mi.fields.dbcols, False, True, tz)
        id_ = await self.insert_value(q, mi, False, names, values)
        if auto_fields:
            await self.setval(q, mi, auto_fields)
        return id_

    def insert_value_sql(self, mi: ModelInfo, names: Sequence[str], rows: int = 1) -> str:
        Q = self.table_quote()
        qmarks = ", ".join("?" for _ in names)
        if rows > 1:
            qmarks = (qmarks + "), (") * (rows - 1) + qmarks
        columns = f"{Q}, {Q}".join(names)
        return f"INSERT INTO {Q}{mi.table}{Q} ({Q}{columns}{Q}) VALUES ({qmarks})"

    async def insert_value(
        self, q: Any, mi: ModelInfo, is_multi: bool, names: Sequence[str], values: Sequence[Any]
    ) -> int:
        """
        Run an INSERT of ``values`` (one or several rows of ``names``).

        Returns the affected row count for multi-row inserts, the new id
        otherwise.
        """
        rows = len(values) // len(names) if names else 1
        query = self.insert_value_sql(mi, names, rows if is_multi else 1)
        query = self.replace_marks(query)
        returning = False
        if not is_multi:
            returning, query = self.has_returning_id(mi, query)
        if not returning:
            res = await q.execute(query, list(values))
            if is_multi:
                return res.rows_affected()
            try:
                return res.last_insert_id()
            except LastInsertIdUnavailableFault:
                logger.debug(f"last insert id is unavailable: {query}")
                raise
        row = await q.query_row(query, list(values))
        return int(row[0]) if row else 0

    async def insert_multi(
        self, q: Any, mi: ModelInfo, objs: Sequence[Any], bulk: int, tz: datetime.tzinfo
    ) -> int:
        """
        Insert ``objs`` ``bulk`` rows per statement; returns affected rows.

        Raises:
            ArgsFault: objects yield different column sets
        """
        cnt = 0
        names: List[str] = []
        auto_fields: List[str] = []
        values: List[Any] = []
        length = len(objs)
        for i, obj in enumerate(objs, start=1):
            if i == 1:
                names, vus, auto_fields = self.collect_values(mi, obj, mi.fields.dbcols, False, True, tz)
            else:
                vus_names, vus, _ = self.collect_values(mi, obj, mi.fields.dbcols, False, True, tz)
                if vus_names != names:
                    raise ArgsFault()
            values.extend(vus)
            if i % bulk == 0 or i == length:
                cnt += await self.insert_value(q, mi, True, names, values)
                values = []
        if auto_fields:
            await self.setval(q, mi, auto_fields)
        return cnt

    async def prepare_insert(self, q: Any, mi: ModelInfo) -> Tuple[Any, str]:
        """Prepare an INSERT of every non-auto column; returns ``(stmt, query)``."""
        names = [fi.column for fi in mi.fields.fields_db if not fi.auto]
        query = self.replace_marks(self.insert_value_sql(mi, names))
        _, query = self.has_returning_id(mi, query)
        stmt = await q.prepare(query)
        return stmt, query

    async def insert_stmt(self, stmt: Any, mi: ModelInfo, obj: Any, tz: datetime.tzinfo) -> int:
        """Insert ``obj`` through a statement from ``prepare_insert``."""
        _, values, _ = self.collect_values(mi, obj, mi.fields.dbcols, True, True, tz)
        returning, _ = self.has_returning_id(mi)
        if returning:
            row = await stmt.query_row(values)
            return int(row[0]) if row else 0
        res = await stmt.execute(values)
        return res.last_insert_id()

    async def insert_or_update(self, q: Any, mi: ModelInfo, obj: Any, al: Any, *args: str) -> int:
        """
        Insert ``obj`` or update the conflicting row.

        ``args`` may name the conflict column (required on PostgreSQL) and
        ``col=expr`` overrides for the update part, e.g.
        ``insert_or_update(user, "name", "nums=nums+1")``.

        Raises:
            InsertOrUpdateFault: unsupported dialect or missing conflict column
        """
        style = self.upsert_style
        conflict = ""
        if style == "mysql":
            iou = "ON DUPLICATE KEY UPDATE"
        elif style == "postgres":
            if not args:
                raise InsertOrUpdateFault(
                    al.driver_name,
                    f"`{al.driver_name}` use InsertOrUpdate must have a conflict column",
                )
            conflict = args[0].lower()
            iou = f"ON CONFLICT ({conflict}) DO UPDATE SET"
        else:
            raise InsertOrUpdateFault(
                al.driver_name, f"`{al.driver_name}` nonsupport InsertOrUpdate"
            )

        args_map = self._args_map(args)
        Q = self.table_quote()
        names, values, _ = self.collect_values(mi, obj, mi.fields.dbcols, True, True, al.tz)
        update_values: List[Any] = []
        updates: List[str] = []
        conflict_value: Any = None
        has_conflict_value = False
        for i, name in enumerate(names):
            col = f"{Q}{name}{Q}"
            low = name.lower()
            value_str = args_map.get(low, "")
            if low == conflict:
                conflict_value = values[i]
                has_conflict_value = True
            if value_str:
                if style == "mysql":
                    updates.append(f"{col}={value_str}")
                elif has_conflict_value:
                    updates.append(
                        f"{col}=(select {value_str} from {mi.table} where {conflict} = ? )"
                    )
                    update_values.append(conflict_value)
                else:
                    raise InsertOrUpdateFault(
                        al.driver_name, f"`{conflict}` must be in front of `{name}` in your struct"
                    )
            else:
                updates.append(f"{col}=?")
                update_values.append(values[i])

        query = f"{self.insert_value_sql(mi, names)} {iou} {', '.join(updates)}"
        return await self._run_upsert(q, mi, query, values + update_values)

    @staticmethod
    def _args_map(args: Sequence[str]) -> Dict[str, str]:
        args_map: Dict[str, str] = {}
        for arg in args:
            kv = arg.split("=")
            if len(kv) == 2:
                args_map[kv[0].strip().lower()] = kv[1]
        return args_map

    async def _run_upsert(self, q: Any, mi: ModelInfo, query: str, values: Sequence[Any]) -> int:
        query = self.replace_marks(query)
        returning, query = self.has_returning_id(mi, query)
        if not returning:
            res = await q.execute(query, list(values))
            return res.last_insert_id()
        row = await q.query_row(query, list(values))
        return int(row[0]) if row else 0

    async def update(
        self, q: Any, mi: ModelInfo, obj: Any, tz: datetime.tzinfo, cols: Sequence[str] = ()
    ) -> int:
        """
        Update ``obj`` by primary key; returns affected rows.

        ``auto_now_add`` columns are never updated; ``auto_now`` columns are
        refreshed even when not listed in ``cols``.
        """
        pk_name, pk_value, ok = get_exist_pk(mi, obj)
        if not ok:
            raise MissPKFault()
        if not cols:
            cols = mi.fields.dbcols
        set_names, set_values, _ = self.collect_values(mi, obj, cols, True, False, tz)

        find_auto_now = False
        kept_names: List[str] = []
        kept_values: List[Any] = []
        for name, value in zip(set_names, set_values):
            fi = mi.fields.get_by_column(name)
            if fi.auto_now_add:
                continue
            if fi.auto_now:
                find_auto_now = True
            kept_names.append(name)
            kept_values.append(value)
        if not find_auto_now:
            now = datetime.datetime.now(tz=settings.DEFAULT_TIME_LOC)
            for col, fi in mi.fields.columns.items():
                if fi.auto_now:
                    kept_names.append(col)
                    kept_values.append(narrow_time(self.time_to_db(now, tz), fi.field_type))
        if not kept_names:
            raise ArgsFault()

        kept_values.append(pk_value)
        Q = self.table_quote()
        set_columns = f"{Q} = ?, {Q}".join(kept_names)
        query = f"UPDATE {Q}{mi.table}{Q} SET {Q}{set_columns}{Q} = ? WHERE {Q}{pk_name}{Q} = ?"
        query = self.replace_marks(query)
        res = await q.execute(query, kept_values)
        return res.rows_affected()

    async def delete(
        self, q: Any, mi: ModelInfo, obj: Any, tz: datetime.tzinfo, cols: Sequence[str] = ()
    ) -> int:
        """
        Delete ``obj`` by primary key (or by ``cols``) and apply the
        ``on_delete`` policy of every relation pointing at it.
        """
        where_cols, args = self._where_of(mi, obj, cols, tz)
        Q = self.table_quote()
        wheres = f"{Q} = ? AND {Q}".join(where_cols)
        query = f"DELETE FROM {Q}{mi.table}{Q} WHERE {Q}{wheres}{Q} = ?"
        query = self.replace_marks(query)
        res = await q.execute(query, args)
        num = res.rows_affected()
        if num > 0:
            pk = mi.fields.pk
            if pk is not None and pk.auto:
                set_field_value(obj, pk, 0)
            await self.delete_rels(q, mi, args, tz)
        return num

    async def delete_rels(self, q: Any, mi: ModelInfo, args: Sequence[Any], tz: datetime.tzinfo) -> None:
        """Cascade, null out or reset rows whose foreign keys point at ``args``."""
        for rfi in mi.fields.fields_reverse:
            fi = rfi.reverse_field_info
            if fi is None:
                continue
            if fi.on_delete == OD_CASCADE:
                cond = Condition().and_(f"{fi.name}__in", *args)
                await self.delete_batch(q, None, fi.mi, cond, tz)
            elif fi.on_delete in (OD_SET_DEFAULT, OD_SET_NULL):
                cond = Condition().and_(f"{fi.name}__in", *args)
                params = {fi.column: fi.initial if fi.on_delete == OD_SET_DEFAULT else None}
                await self.update_batch(q, None, fi.mi, cond, params, tz)
            elif fi.on_delete == OD_DO_NOTHING:
                pass

    # ── Batch operations ─────────────────────────────────────────────

    async def update_batch(
        self,
        q: Any,
        qs: Any,
        mi: ModelInfo,
        cond: Optional[Condition],
        params: Dict[str, Any],
        tz: datetime.tzinfo,
    ) -> int:
        """
        ``UPDATE`` every row matching ``cond``; values may be ``ColValue``
        expressions. Returns affected rows.
        """
        columns: List[str] = []
        values: List[Any] = []
        infos: List[FieldInfo] = []
        for col, val in params.items():
            fi = mi.fields.get_by_any(col)
            if fi is None or not fi.db_col:
                raise QueryFault(mi.full_name, "update", f"wrong field/column name `{col}`")
            columns.append(fi.column)
            values.append(val)
            infos.append(fi)
        if not columns:
            raise QueryFault(mi.full_name, "update", "update params cannot empty")

        tables = DbTables(mi, self)
        specify_indexes = ""
        if qs is not None:
            tables.parse_related(qs.related, qs.rel_depth)
            specify_indexes = tables.get_index_sql(mi.table, qs.use_index_kind, qs.indexes)
        where, args = tables.get_cond_sql(cond, False, tz)
        join = tables.get_join_sql()

        Q = self.table_quote()
        t0 = "T0." if self.support_update_join() else ""
        sets: List[str] = []
        for i, column in enumerate(columns):
            col = f"{t0}{Q}{column}{Q}"
            value = values[i]
            if isinstance(value, ColValue):
                sets.append(f"{col} = {col} {COL_OPERATORS[value.opt]} ?")
                value = value.value
            else:
                sets.append(f"{col} = ?")
            if value is not None and not isinstance(value, (list, tuple)):
                flat = get_flat_params(infos[i], [value], tz)
                value = flat[0] if flat else None
            values[i] = value
        values.extend(args)
        set_sql = ", ".join(sets) + " "

        if self.support_update_join():
            query = f"UPDATE {Q}{mi.table}{Q} T0 {specify_indexes}{join}SET {set_sql}{where}"
        else:
            pk = mi.fields.pk.column
            sup_query = f"SELECT T0.{Q}{pk}{Q} FROM {Q}{mi.table}{Q} T0 {specify_indexes}{join}{where}"
            query = f"UPDATE {Q}{mi.table}{Q} SET {set_sql}WHERE {Q}{pk}{Q} IN ( {sup_query} )"
        query = self.replace_marks(query)
        res = await q.execute(query, values)
        return res.rows_affected()

    async def delete_batch(
        self, q: Any, qs: Any, mi: ModelInfo, cond: Optional[Condition], tz: datetime.tzinfo
    ) -> int:
        """
        Delete every row matching ``cond``, then apply ``on_delete``
        policies to their dependents.

        Raises:
            QueryFault: ``cond`` is empty
        """
        tables = DbTables(mi, self, skip_end=True)
        specify_indexes = ""
        if qs is not None:
            tables.parse_related(qs.related, qs.rel_depth)
            specify_indexes = tables.get_index_sql(mi.table, qs.use_index_kind, qs.indexes)
        if cond is None or cond.is_empty():
            raise QueryFault(mi.full_name, "delete", "delete operation cannot execute without condition")

        Q = self.table_quote()
        where, args = tables.get_cond_sql(cond, False, tz)
        join = tables.get_join_sql()
        pk = mi.fields.pk
        query = f"SELECT T0.{Q}{pk.column}{Q} FROM {Q}{mi.table}{Q} T0 {specify_indexes}{join}{where}"
        query = self.replace_marks(query)
        result = await q.query(query, args)
        pk_values = [self.convert_value_from_db(pk, row[0], tz) for row in result.rows]
        if not pk_values:
            return 0

        marks = ", ".join("?" for _ in pk_values)
        query = f"DELETE FROM {Q}{mi.table}{Q} WHERE {Q}{pk.column}{Q} IN ({marks})"
        query = self.replace_marks(query)
        res = await q.execute(query, pk_values)
        num = res.rows_affected()
        if num > 0:
            await self.delete_rels(q, mi, pk_values, tz)
        return num

    async def read_batch(
        self,
        q: Any,
        qs: Any,
        mi: ModelInfo,
        cond: Optional[Condition],
        tz: datetime.tzinfo,
        cols: Sequence[str] = (),
    ) -> List[Any]:
        """
        Run the SELECT described by ``qs``/``cond`` and build model objects.

        Tables selected by ``related_sel`` are populated on the nested
        relation attributes, in join order.
        """
        Q = self.table_quote()
        if cols:
            has_rel = bool(qs.related) or qs.rel_depth > 0
            t_cols: List[str] = []
            for col in cols:
                fi = mi.fields.get_by_any(col)
                if fi is None:
                    raise QueryFault(mi.full_name, "all", f"wrong field/column name `{col}`")
                t_cols.append(fi.column)
            if has_rel:
                seen = set(t_cols)
                for fi in mi.fields.fields_db:
                    if fi.field_type & IS_REL_FIELD and fi.column not in seen:
                        t_cols.append(fi.column)
        else:
            t_cols = list(mi.fields.dbcols)

        sels = f"T0.{Q}" + f"{Q}, T0.{Q}".join(t_cols) + Q
        tables = DbTables(mi, self)
        tables.parse_related(qs.related, qs.rel_depth)
        where, args = tables.get_cond_sql(cond, False, tz)
        group_by = tables.get_group_sql(qs.groups)
        order_by = tables.get_order_sql(qs.orders)
        limit = tables.get_limit_sql(mi, qs.rows_offset, qs.rows_limit)
        join = tables.get_join_sql()
        specify_indexes = tables.get_index_sql(mi.table, qs.use_index_kind, qs.indexes)

        for tbl in tables.tables:
            if tbl.sel:
                sep = f"{Q}, {tbl.index}.{Q}"
                sels += f", {tbl.index}.{Q}{sep.join(tbl.mi.fields.dbcols)}{Q}"

        sql_select = "SELECT"
        if qs.is_distinct:
            sql_select += " DISTINCT"
        if qs.aggregate_sql:
            sels = qs.aggregate_sql
        query = (
            f"{sql_select} {sels} FROM {Q}{mi.table}{Q} T0 "
            f"{specify_indexes}{join}{where}{group_by}{order_by}{limit}"
        )
        if qs.is_for_update:
            if self.supports_for_update:
                query += " FOR UPDATE"
            else:
                logger.warning(
                    f"{self.name} does not support SELECT FOR UPDATE query, "
                    f"isForUpdate param is ignored and always as false to do the work"
                )
        query = self.replace_marks(query)
        result = await q.query(query, args)

        objs: List[Any] = []
        n_cols = len(t_cols)
        for row in result.rows:
            obj = mi.new_instance()
            self.set_cols_values(mi, obj, t_cols, row[:n_cols], tz)
            trefs = row[n_cols:]
            cache: Dict[str, Tuple[Any, ModelInfo]] = {}
            for tbl in tables.tables:
                if not tbl.sel:
                    continue
                last = obj
                mmi = mi
                path = ""
                for name in tbl.names:
                    path = f"{path}{EXPR_SEP}{name}" if path else name
                    if path in cache:
                        last, mmi = cache[path]
                        continue
                    fi = mmi.fields.get_by_name(name)
                    lastm = mmi
                    mmi = fi.rel_model_info
                    field = None
                    if last is not None:
                        field = get_field_value(last, fi)
                        if field is not None:
                            n = len(mmi.fields.dbcols)
                            self.set_cols_values(mmi, field, mmi.fields.dbcols, trefs[:n], tz)
                            for rfi in mmi.fields.fields_reverse:
                                if (
                                    rfi.in_model
                                    and rfi.field_type == FieldType.REL_REVERSE_ONE
                                    and rfi.reverse_field_info is not None
                                    and rfi.reverse_field_info.mi is lastm
                                ):
                                    set_field_value(field, rfi, last)
                    last = field
                    cache[path] = (field, mmi)
                trefs = trefs[len(mmi.fields.dbcols):]
            objs.append(obj)
        return objs

    async def count(self, q: Any, qs: Any, mi: ModelInfo, cond: Optional[Condition], tz: datetime.tzinfo) -> int:
        tables = DbTables(mi, self)
        tables.parse_related(qs.related, qs.rel_depth)
        where, args = tables.get_cond_sql(cond, False, tz)
        group_by = tables.get_group_sql(qs.groups)
        tables.get_order_sql(qs.orders)
        join = tables.get_join_sql()
        specify_indexes = tables.get_index_sql(mi.table, qs.use_index_kind, qs.indexes)

        Q = self.table_quote()
        query = f"SELECT COUNT(*) FROM {Q}{mi.table}{Q} T0 {specify_indexes}{join}{where}{group_by}"
        if group_by:
            query = f"SELECT COUNT(*) FROM ({query}) AS T"
        query = self.replace_marks(query)
        row = await q.query_row(query, args)
        return int(row[0]) if row else 0

    async def read_values(
        self,
        q: Any,
        qs: Any,
        mi: ModelInfo,
        cond: Optional[Condition],
        exprs: Sequence[str],
        kind: str,
        tz: datetime.tzinfo,
    ) -> List[Any]:
        """
        Read raw column values: a list of dicts (``READ_MAPS``), of lists
        (``READ_LISTS``) or one flat list (``READ_FLAT``).
        """
        if kind not in (READ_MAPS, READ_LISTS, READ_FLAT):
            raise QueryFault(mi.full_name, "values", f"unsupport read values type `{kind}`")
        tables = DbTables(mi, self)
        Q = self.table_quote()
        cols: List[str] = []
        infos: List[FieldInfo] = []
        if exprs:
            for ex in exprs:
                index, name, fi, suc = tables.parse_exprs(mi, ex.split(EXPR_SEP))
                if not suc:
                    raise QueryFault(mi.full_name, "values", f"unknown field/column name `{ex}`")
                cols.append(f"{index}.{Q}{fi.column}{Q} {Q}{name}{Q}")
                infos.append(fi)
        else:
            for fi in mi.fields.fields_db:
                cols.append(f"T0.{Q}{fi.column}{Q} {Q}{fi.name}{Q}")
                infos.append(fi)

        where, args = tables.get_cond_sql(cond, False, tz)
        group_by = tables.get_group_sql(qs.groups)
        order_by = tables.get_order_sql(qs.orders)
        limit = tables.get_limit_sql(mi, qs.rows_offset, qs.rows_limit)
        join = tables.get_join_sql()
        specify_indexes = tables.get_index_sql(mi.table, qs.use_index_kind, qs.indexes)

        sql_select = "SELECT"
        if qs.is_distinct:
            sql_select += " DISTINCT"
        query = (
            f"{sql_select} {', '.join(cols)} FROM {Q}{mi.table}{Q} T0 "
            f"{specify_indexes}{join}{where}{group_by}{order_by}{limit}"
        )
        query = self.replace_marks(query)
        result = await q.query(query, args)

        out: List[Any] = []
        columns = result.columns
        for row in result.rows:
            converted = []
            for fi, val in zip(infos, row):
                try:
                    converted.append(self.convert_value_from_db(fi, val, tz))
                except FieldValueFault as exc:
                    raise FieldValueFault(f"db value convert failed `{val}` {exc.message}") from exc
            if kind == READ_MAPS:
                out.append(dict(zip(columns, converted)))
            elif kind == READ_LISTS:
                out.append(converted)
            else:
                out.extend(converted)
        return out

    # ── Operators ────────────────────────────────────────────────────

    def generate_operator_sql(
        self, mi: ModelInfo, fi: FieldInfo, operator: str, args: Sequence[Any], tz: datetime.tzinfo
    ) -> Tuple[str, List[Any]]:
        """
        Render the right-hand side of a comparison and its parameters.

        Raises:
            QueryFault: wrong argument count, or a non-bool ``isnull`` argument
        """
        params = get_flat_params(fi, args, tz)
        if not params:
            raise QueryFault(mi.full_name, "where", f"operator `{operator}` need at least one args")
        arg = params[0]

        if operator == "in":
            return f"IN ({', '.join('?' for _ in params)})", params
        if operator == "between":
            if len(params) != 2:
                raise QueryFault(
                    mi.full_name, "where", f"operator `{operator}` need 2 args not {len(params)}"
                )
            return "BETWEEN ? AND ?", params
        if len(params) > 1:
            raise QueryFault(
                mi.full_name, "where", f"operator `{operator}` need 1 args not {len(params)}"
            )

        if operator == "isnull":
            if not isinstance(arg, bool):
                raise QueryFault(
                    mi.full_name, "where",
                    f"operator `{operator}` need a bool value not `{type(arg).__name__}`",
                )
            return ("IS NULL" if arg else "IS NOT NULL"), []

        if operator in ("exact", "strictexact") and arg is None:
            return "IS NULL", []

        sql = self.operator_sql(operator)
        if operator in _LIKE_OPERATORS:
            param = _to_str(arg).replace("%", "\\%")
            if operator in ("contains", "icontains"):
                param = f"%{param}%"
            elif operator in ("startswith", "istartswith"):
                param = f"{param}%"
            elif operator in ("endswith", "iendswith"):
                param = f"%{param}"
            params[0] = param
        return sql, params

    # ── Introspection ────────────────────────────────────────────────

    async def get_tables(self, q: Any) -> Dict[str, bool]:
        result = await q.query(self.show_tables_query())
        return {row[0]: True for row in result.rows if row and row[0]}

    async def get_columns(self, q: Any, table: str) -> Dict[str, Tuple[str, str, str]]:
        result = await q.query(self.show_columns_query(table))
        columns: Dict[str, Tuple[str, str, str]] = {}
        for row in result.rows:
            name, typ, null = (_to_str(v) if v is not None else "" for v in row[:3])
            columns[name] = (name, typ, null)
        return columns

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"
