"""
Tessera field types.

Two things live here:

- ``FieldType``: the semantic type flags every mapped attribute resolves to.
  The flag order matters, the integer and relation groups are contiguous
  ranges and are tested with bitwise ``&``.
- ``Fielder`` implementations: small value wrappers that can be used as an
  annotation to pin a column to a precise type (``IntegerField`` instead of
  the default ``BigInteger`` for ``int``), each converting raw driver values
  through ``set_raw``.
"""

from __future__ import annotations

import datetime
import enum
from abc import ABC, abstractmethod
from typing import Any

from ..faults import FieldValueFault

__all__ = [
    "FieldType",
    "IS_INTEGER_FIELD",
    "IS_POSITIVE_INTEGER_FIELD",
    "IS_REL_FIELD",
    "IS_FIELD_TYPE",
    "OD_CASCADE",
    "OD_SET_NULL",
    "OD_SET_DEFAULT",
    "OD_DO_NOTHING",
    "FORMAT_TIME",
    "FORMAT_DATE",
    "FORMAT_DATETIME",
    "Fielder",
    "BooleanField",
    "CharField",
    "TextField",
    "TimeField",
    "DateField",
    "DateTimeField",
    "FloatField",
    "SmallIntegerField",
    "IntegerField",
    "BigIntegerField",
    "PositiveSmallIntegerField",
    "PositiveIntegerField",
    "PositiveBigIntegerField",
    "JSONField",
    "JsonbField",
    "str_to_bool",
]


class FieldType(enum.IntFlag):
    BOOLEAN = 1 << 0
    VARCHAR = 1 << 1
    CHAR = 1 << 2
    TEXT = 1 << 3
    TIME = 1 << 4
    DATE = 1 << 5
    DATETIME = 1 << 6
    BIT = 1 << 7
    SMALL_INTEGER = 1 << 8
    INTEGER = 1 << 9
    BIG_INTEGER = 1 << 10
    POSITIVE_BIT = 1 << 11
    POSITIVE_SMALL_INTEGER = 1 << 12
    POSITIVE_INTEGER = 1 << 13
    POSITIVE_BIG_INTEGER = 1 << 14
    FLOAT = 1 << 15
    DECIMAL = 1 << 16
    JSON = 1 << 17
    JSONB = 1 << 18
    REL_FOREIGN_KEY = 1 << 19
    REL_ONE_TO_ONE = 1 << 20
    REL_MANY_TO_MANY = 1 << 21
    REL_REVERSE_ONE = 1 << 22
    REL_REVERSE_MANY = 1 << 23


IS_INTEGER_FIELD = (
    FieldType.BIT | FieldType.SMALL_INTEGER | FieldType.INTEGER | FieldType.BIG_INTEGER
    | FieldType.POSITIVE_BIT | FieldType.POSITIVE_SMALL_INTEGER
    | FieldType.POSITIVE_INTEGER | FieldType.POSITIVE_BIG_INTEGER
)
IS_POSITIVE_INTEGER_FIELD = (
    FieldType.POSITIVE_BIT | FieldType.POSITIVE_SMALL_INTEGER
    | FieldType.POSITIVE_INTEGER | FieldType.POSITIVE_BIG_INTEGER
)
IS_REL_FIELD = (
    FieldType.REL_FOREIGN_KEY | FieldType.REL_ONE_TO_ONE | FieldType.REL_MANY_TO_MANY
    | FieldType.REL_REVERSE_ONE | FieldType.REL_REVERSE_MANY
)
IS_FIELD_TYPE = FieldType((1 << 24) - 1)

# on_delete policies
OD_CASCADE = "cascade"
OD_SET_NULL = "set_null"
OD_SET_DEFAULT = "set_default"
OD_DO_NOTHING = "do_nothing"

FORMAT_TIME = "%H:%M:%S"
FORMAT_DATE = "%Y-%m-%d"
FORMAT_DATETIME = "%Y-%m-%d %H:%M:%S"

_TRUE_STRINGS = {"1", "t", "true", "y", "yes", "on"}
_FALSE_STRINGS = {"0", "f", "false", "n", "no", "off"}


def str_to_bool(value: str) -> bool:
    """Parse a bool the way tag defaults and text columns spell it."""
    low = value.strip().lower()
    if low in _TRUE_STRINGS:
        return True
    if low in _FALSE_STRINGS:
        return False
    raise ValueError(f"invalid bool value `{value}`")


# ============================================================================
# Fielder
# ============================================================================

class Fielder(ABC):
    """
    Custom field value wrapper.

    Subclasses declare ``zero`` and implement ``field_type`` and ``_coerce``.
    A Fielder cannot be a relation.
    """

    zero: Any = None

    def __init__(self, value: Any = None):
        self._value = self.zero
        if value is not None:
            self.set_raw(value)

    @abstractmethod
    def field_type(self) -> FieldType:
        ...

    @abstractmethod
    def _coerce(self, value: Any) -> Any:
        ...

    def value(self) -> Any:
        return self._value

    def set(self, value: Any) -> None:
        self._value = value

    def set_raw(self, value: Any) -> None:
        try:
            self._value = self._coerce(value)
        except (TypeError, ValueError, ArithmeticError) as exc:
            raise FieldValueFault(
                f"<{type(self).__name__}.SetRaw> unknown value `{value}`",
            ) from exc

    def raw_value(self) -> Any:
        return self._value

    def __str__(self) -> str:
        return "" if self._value is None else str(self._value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value!r})"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, Fielder):
            return type(self) is type(other) and self._value == other._value
        return self._value == other

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._value))


class BooleanField(Fielder):
    """A true/false field."""

    zero = False

    def field_type(self) -> FieldType:
        return FieldType.BOOLEAN

    def _coerce(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return str_to_bool(value)
        if isinstance(value, int):
            return value != 0
        raise TypeError(value)

    def __str__(self) -> str:
        return "true" if self._value else "false"


class _StringFielder(Fielder):
    zero = ""

    def _coerce(self, value: Any) -> str:
        if isinstance(value, bytes):
            return value.decode()
        if isinstance(value, str):
            return value
        raise TypeError(value)


class CharField(_StringFielder):
    """A string field, requires a ``size(N)`` tag to bound it."""

    def field_type(self) -> FieldType:
        return FieldType.VARCHAR


class TextField(_StringFielder):
    """A large text field."""

    def field_type(self) -> FieldType:
        return FieldType.TEXT


class JSONField(_StringFielder):
    """JSON text stored in a ``json`` column."""

    def field_type(self) -> FieldType:
        return FieldType.JSON


class JsonbField(_StringFielder):
    """JSON text stored in a ``jsonb`` column (PostgreSQL)."""

    def field_type(self) -> FieldType:
        return FieldType.JSONB


class TimeField(Fielder):
    """
    A time of day, like 10:00:00.

    Honors ``auto_now`` / ``auto_now_add`` tags.
    """

    def field_type(self) -> FieldType:
        return FieldType.TIME

    def _coerce(self, value: Any) -> datetime.time:
        if isinstance(value, datetime.datetime):
            return value.time()
        if isinstance(value, datetime.time):
            return value
        if isinstance(value, str):
            return datetime.datetime.strptime(value, FORMAT_TIME).time()
        raise TypeError(value)


class DateField(Fielder):
    """
    A date, like 2006-01-02.

    Honors ``auto_now`` / ``auto_now_add`` tags.
    """

    def field_type(self) -> FieldType:
        return FieldType.DATE

    def _coerce(self, value: Any) -> datetime.date:
        if isinstance(value, datetime.datetime):
            return value.date()
        if isinstance(value, datetime.date):
            return value
        if isinstance(value, str):
            return datetime.datetime.strptime(value, FORMAT_DATE).date()
        raise TypeError(value)


class DateTimeField(Fielder):
    """A date and time, like 2006-01-02 15:04:05."""

    def field_type(self) -> FieldType:
        return FieldType.DATETIME

    def _coerce(self, value: Any) -> datetime.datetime:
        if isinstance(value, datetime.datetime):
            return value
        if isinstance(value, str):
            return datetime.datetime.strptime(value, FORMAT_DATETIME)
        raise TypeError(value)


class FloatField(Fielder):
    """A floating-point number."""

    zero = 0.0

    def field_type(self) -> FieldType:
        return FieldType.FLOAT

    def _coerce(self, value: Any) -> float:
        if isinstance(value, bool):
            raise TypeError(value)
        return float(value)


class _IntFielder(Fielder):
    zero = 0
    bounds: tuple = (None, None)

    def _coerce(self, value: Any) -> int:
        if isinstance(value, bool):
            raise TypeError(value)
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError(value)
        v = int(value)
        low, high = self.bounds
        if (low is not None and v < low) or (high is not None and v > high):
            raise ValueError(f"{v} out of range")
        return v


class SmallIntegerField(_IntFielder):
    """-32768 to 32767"""

    bounds = (-(1 << 15), (1 << 15) - 1)

    def field_type(self) -> FieldType:
        return FieldType.SMALL_INTEGER


class IntegerField(_IntFielder):
    """-2147483648 to 2147483647"""

    bounds = (-(1 << 31), (1 << 31) - 1)

    def field_type(self) -> FieldType:
        return FieldType.INTEGER


class BigIntegerField(_IntFielder):
    """-9223372036854775808 to 9223372036854775807"""

    bounds = (-(1 << 63), (1 << 63) - 1)

    def field_type(self) -> FieldType:
        return FieldType.BIG_INTEGER


class PositiveSmallIntegerField(_IntFielder):
    """0 to 65535"""

    bounds = (0, (1 << 16) - 1)

    def field_type(self) -> FieldType:
        return FieldType.POSITIVE_SMALL_INTEGER


class PositiveIntegerField(_IntFielder):
    """0 to 4294967295"""

    bounds = (0, (1 << 32) - 1)

    def field_type(self) -> FieldType:
        return FieldType.POSITIVE_INTEGER


class PositiveBigIntegerField(_IntFielder):
    """0 to 18446744073709551615"""

    bounds = (0, (1 << 64) - 1)

    def field_type(self) -> FieldType:
        return FieldType.POSITIVE_BIG_INTEGER
