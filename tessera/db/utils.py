"""
Shared helpers for SQL generation: primary key probing, argument
flattening and object attribute access.
"""

from __future__ import annotations

import datetime
import decimal
from typing import Any, List, Optional, Tuple

from ..faults import QueryFault
from ..models.base import Model
from ..models.field_info import FieldInfo
from ..models.fields import (
    FORMAT_DATE,
    FORMAT_DATETIME,
    FORMAT_TIME,
    FieldType,
    Fielder,
    IS_INTEGER_FIELD,
    IS_POSITIVE_INTEGER_FIELD,
    IS_REL_FIELD,
)
from ..models.model_info import ModelInfo
from ..models.registry import model_cache
from .. import settings

__all__ = [
    "OPERATORS",
    "TIME_FIELD_TYPES",
    "get_field_value",
    "set_field_value",
    "get_exist_pk",
    "get_flat_params",
    "to_aware",
    "parse_time_string",
    "narrow_time",
    "ColValue",
    "col_value",
    "COL_ADD",
    "COL_MINUS",
    "COL_MULTIPLY",
    "COL_EXCEPT",
    "COL_BIT_AND",
    "COL_BIT_RSHIFT",
    "COL_BIT_LSHIFT",
    "COL_BIT_XOR",
    "COL_BIT_OR",
]

OPERATORS = frozenset({
    "exact",
    "iexact",
    "strictexact",
    "contains",
    "icontains",
    "gt",
    "gte",
    "lt",
    "lte",
    "eq",
    "nq",
    "ne",
    "startswith",
    "endswith",
    "istartswith",
    "iendswith",
    "in",
    "between",
    "isnull",
})

TIME_FIELD_TYPES = (FieldType.TIME, FieldType.DATE, FieldType.DATETIME)


def get_field_value(obj: Any, fi: FieldInfo) -> Any:
    """Read the attribute for ``fi``; implicit through rows are dicts."""
    if isinstance(obj, dict):
        return obj.get(fi.name)
    return getattr(obj, fi.name, None)


def set_field_value(obj: Any, fi: FieldInfo, value: Any) -> None:
    """Write the attribute for ``fi``, going through the Fielder if there is one."""
    if isinstance(obj, dict):
        obj[fi.name] = value
        return
    if fi.is_fielder:
        current = getattr(obj, fi.name, None)
        if not isinstance(current, Fielder):
            current = fi.fielder_cls()
            setattr(obj, fi.name, current)
        if value is None:
            current.set(current.zero)
        else:
            current.set_raw(value)
        return
    setattr(obj, fi.name, value)


def get_exist_pk(mi: ModelInfo, obj: Any) -> Tuple[str, Any, bool]:
    """
    Return ``(column, value, exist)`` for the primary key of ``obj``.

    Unsigned integer keys exist when positive, signed ones whenever set,
    relation keys recurse into the related object, strings when non-empty.
    """
    fi = mi.fields.pk
    if fi is None:
        return "", None, False
    value = get_field_value(obj, fi) if obj is not None else None
    if isinstance(value, Fielder):
        value = value.raw_value()

    if fi.field_type & IS_POSITIVE_INTEGER_FIELD:
        value = int(value or 0)
        exist = value > 0
    elif fi.field_type & IS_INTEGER_FIELD:
        exist = value is not None
        value = int(value) if value is not None else 0
    elif fi.field_type & IS_REL_FIELD:
        _, value, exist = get_exist_pk(fi.rel_model_info, value)
    else:
        exist = value not in (None, "")
        value = "" if value is None else value
    return fi.column, value, exist


def to_aware(value: datetime.datetime, tz: datetime.tzinfo) -> datetime.datetime:
    """Naive datetimes are taken as ``settings.DEFAULT_TIME_LOC`` wall time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=settings.DEFAULT_TIME_LOC)
    return value.astimezone(tz)


def parse_time_string(value: str, field_type: Optional[FieldType], tz: datetime.tzinfo) -> Any:
    """
    Parse a date/time string by length: 19+ chars is a datetime, 10+ a
    date, anything shorter a time of day.
    """
    if len(value) >= 19:
        parsed = datetime.datetime.strptime(value[:19], FORMAT_DATETIME)
        parsed = parsed.replace(tzinfo=settings.DEFAULT_TIME_LOC).astimezone(tz)
    elif len(value) >= 10:
        parsed = datetime.datetime.strptime(value[:10], FORMAT_DATE).replace(tzinfo=tz)
    else:
        parsed = datetime.datetime.strptime(value[:8], FORMAT_TIME)
        parsed = datetime.datetime.combine(datetime.date.today(), parsed.time(), tzinfo=tz)
    return narrow_time(parsed, field_type)


def narrow_time(value: datetime.datetime, field_type: Optional[FieldType]) -> Any:
    if field_type == FieldType.DATE:
        return value.date()
    if field_type == FieldType.TIME:
        return value.timetz().replace(tzinfo=None)
    return value


def get_flat_params(fi: Optional[FieldInfo], args: Any, tz: datetime.tzinfo) -> List[Any]:
    """
    Flatten filter arguments into bind parameters.

    Nested lists are expanded (``None`` members dropped), time values are
    normalized to the field's time type in ``tz``, model objects become their
    primary key value.
    """
    params: List[Any] = []
    for arg in args:
        if arg is None:
            params.append(arg)
            continue
        if isinstance(arg, Fielder):
            arg = arg.raw_value()
        if isinstance(arg, (bytes, bytearray)):
            continue

        if isinstance(arg, str):
            if fi is not None and fi.field_type in TIME_FIELD_TYPES:
                try:
                    arg = parse_time_string(arg, fi.field_type, tz)
                except ValueError:
                    pass
        elif isinstance(arg, (bool, int, float, decimal.Decimal)):
            pass
        elif isinstance(arg, (list, tuple, set, frozenset)):
            inner = [v for v in arg if v is not None]
            if inner:
                params.extend(get_flat_params(fi, inner, tz))
            continue
        elif isinstance(arg, datetime.datetime):
            arg = narrow_time(to_aware(arg, tz), fi.field_type if fi is not None else None)
        elif isinstance(arg, (datetime.date, datetime.time)):
            pass
        elif isinstance(arg, Model):
            name = f"{type(arg).__module__}.{type(arg).__qualname__}"
            value = None
            mmi = model_cache.get_by_full_name(name)
            if mmi is not None:
                _, vu, exist = get_exist_pk(mmi, arg)
                if exist:
                    value = vu
            if value is None:
                raise QueryFault(
                    name, "flat_params",
                    f"need a valid args value, unknown table or value `{name}`",
                )
            arg = value
        params.append(arg)
    return params


# ── Column expressions for batch updates ─────────────────────────────

COL_ADD = 0
COL_MINUS = 1
COL_MULTIPLY = 2
COL_EXCEPT = 3
COL_BIT_AND = 4
COL_BIT_RSHIFT = 5
COL_BIT_LSHIFT = 6
COL_BIT_XOR = 7
COL_BIT_OR = 8

COL_OPERATORS = {
    COL_ADD: "+",
    COL_MINUS: "-",
    COL_MULTIPLY: "*",
    COL_EXCEPT: "/",
    COL_BIT_AND: "&",
    COL_BIT_RSHIFT: ">>",
    COL_BIT_LSHIFT: "<<",
    COL_BIT_XOR: "^",
    COL_BIT_OR: "|",
}


class ColValue:
    """``col = col <op> value`` in ``QuerySet.update``."""

    __slots__ = ("value", "opt")

    def __init__(self, opt: int, value: Any):
        self.opt = opt
        self.value = value

    def __repr__(self) -> str:
        return f"ColValue({COL_OPERATORS.get(self.opt, '?')} {self.value!r})"


def col_value(opt: int, value: Any) -> ColValue:
    """
    Build a column expression for ``QuerySet.update``::

        await qs.filter("id", 1).update(nums=col_value(COL_ADD, 100))

    Raises:
        QueryFault: unknown operator
    """
    if opt not in COL_OPERATORS:
        raise QueryFault("<col_value>", "update", f"unsupport operator `{opt}`")
    return ColValue(opt, value)
