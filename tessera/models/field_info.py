"""
Per-attribute metadata (``FieldInfo``) and the per-model field collection
(``Fields``).

``new_field_info`` turns one annotated attribute plus its tag string into a
validated ``FieldInfo``; every tag rule that can reject a declaration lives
here and is reported as ``FieldDefinitionError`` so the model builder can
attach the model and attribute names.
"""

from __future__ import annotations

import datetime
import decimal
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .base import Model, analyze_annotation
from .fields import (
    FieldType,
    Fielder,
    IS_FIELD_TYPE,
    IS_INTEGER_FIELD,
    IS_REL_FIELD,
    OD_CASCADE,
    OD_DO_NOTHING,
    OD_SET_DEFAULT,
    OD_SET_NULL,
    str_to_bool,
)
from .utils import get_column_name, parse_tag

if TYPE_CHECKING:
    from .model_info import ModelInfo

__all__ = ["FieldInfo", "Fields", "FieldDefinitionError", "new_field_info"]


class FieldDefinitionError(Exception):
    """A single attribute declaration is invalid."""


class SkipField(Exception):
    """Attribute tagged ``-``."""


class FieldInfo:
    """Metadata of one mapped attribute."""

    def __init__(self) -> None:
        self.db_col = False
        self.in_model = False
        self.auto = False
        self.pk = False
        self.null = False
        self.index = False
        self.unique = False
        self.col_default = False
        self.to_text = False
        self.auto_now = False
        self.auto_now_add = False
        self.rel = False
        self.reverse = False
        self.is_fielder = False
        self.mi: Optional[ModelInfo] = None
        self.field_type: FieldType = FieldType(0)
        self.name = ""
        self.full_name = ""
        self.column = ""
        self.annotation: Any = None
        self.rel_cls: Optional[type] = None
        self.fielder_cls: Optional[type] = None
        self.initial: Optional[str] = None
        self.size = 0
        self.reverse_field = ""
        self.reverse_field_info: Optional[FieldInfo] = None
        self.reverse_field_info_two: Optional[FieldInfo] = None
        self.reverse_field_info_m2m: Optional[FieldInfo] = None
        self.rel_table = ""
        self.rel_through = ""
        self.rel_through_model_info: Optional[ModelInfo] = None
        self.rel_model_info: Optional[ModelInfo] = None
        self.digits = 0
        self.decimals = 0
        self.on_delete = ""
        self.description = ""
        self.time_precision: Optional[int] = None
        self.db_type = ""

    def __repr__(self) -> str:
        return f"<FieldInfo {self.full_name} column={self.column!r} type={self.field_type!r}>"


class Fields:
    """Field collection of one model, indexed by name, lower name and column."""

    def __init__(self) -> None:
        self.pk: Optional[FieldInfo] = None
        self.columns: Dict[str, FieldInfo] = {}
        self.fields: Dict[str, FieldInfo] = {}
        self.fields_low: Dict[str, FieldInfo] = {}
        self.fields_by_type: Dict[FieldType, List[FieldInfo]] = {}
        self.fields_rel: List[FieldInfo] = []
        self.fields_reverse: List[FieldInfo] = []
        self.fields_db: List[FieldInfo] = []
        self.orders: List[str] = []
        self.dbcols: List[str] = []

    def add(self, fi: FieldInfo) -> bool:
        if fi.name in self.fields or fi.column in self.columns:
            return False
        self.columns[fi.column] = fi
        self.fields[fi.name] = fi
        self.fields_low[fi.name.lower()] = fi
        self.fields_by_type.setdefault(fi.field_type, []).append(fi)
        self.orders.append(fi.column)
        if fi.db_col:
            self.dbcols.append(fi.column)
            self.fields_db.append(fi)
        if fi.rel:
            self.fields_rel.append(fi)
        if fi.reverse:
            self.fields_reverse.append(fi)
        return True

    def remove(self, fi: FieldInfo) -> None:
        """Undo ``add(fi)``."""
        if self.fields.get(fi.name) is not fi:
            return
        del self.columns[fi.column]
        del self.fields[fi.name]
        self.fields_low.pop(fi.name.lower(), None)
        self.fields_by_type[fi.field_type].remove(fi)
        self.orders.remove(fi.column)
        if fi.db_col:
            self.dbcols.remove(fi.column)
            self.fields_db.remove(fi)
        if fi.rel:
            self.fields_rel.remove(fi)
        if fi.reverse:
            self.fields_reverse.remove(fi)

    def get_by_name(self, name: str) -> Optional[FieldInfo]:
        return self.fields.get(name)

    def get_by_column(self, column: str) -> Optional[FieldInfo]:
        return self.columns.get(column)

    def get_by_any(self, name: str) -> Optional[FieldInfo]:
        """Look up by attribute name, then case-insensitively, then by column."""
        fi = self.fields.get(name)
        if fi is not None:
            return fi
        fi = self.fields_low.get(name.lower())
        if fi is not None:
            return fi
        return self.columns.get(name)


def _builtin_field_type(base: Any) -> FieldType:
    if base is bool:
        return FieldType.BOOLEAN
    if base is int:
        return FieldType.BIG_INTEGER
    if base is float:
        return FieldType.FLOAT
    if base is decimal.Decimal:
        return FieldType.DECIMAL
    if base is str:
        return FieldType.VARCHAR
    if base is datetime.datetime:
        return FieldType.DATETIME
    if base is datetime.date:
        return FieldType.DATE
    if base is datetime.time:
        return FieldType.TIME
    raise FieldDefinitionError(f"unsupport field type {base!r}, may be miss setting tag")


def _parse_int(value: str) -> int:
    return int(value.strip())


_INT_BOUNDS = {
    FieldType.BIT: (-(1 << 7), (1 << 7) - 1),
    FieldType.SMALL_INTEGER: (-(1 << 15), (1 << 15) - 1),
    FieldType.INTEGER: (-(1 << 31), (1 << 31) - 1),
    FieldType.BIG_INTEGER: (-(1 << 63), (1 << 63) - 1),
    FieldType.POSITIVE_BIT: (0, (1 << 8) - 1),
    FieldType.POSITIVE_SMALL_INTEGER: (0, (1 << 16) - 1),
    FieldType.POSITIVE_INTEGER: (0, (1 << 32) - 1),
    FieldType.POSITIVE_BIG_INTEGER: (0, (1 << 64) - 1),
}


def _check_default(field_type: FieldType, value: str) -> None:
    if field_type == FieldType.BOOLEAN:
        str_to_bool(value)
    elif field_type in (FieldType.FLOAT, FieldType.DECIMAL):
        float(value)
    elif field_type in _INT_BOUNDS:
        v = int(value)
        low, high = _INT_BOUNDS[field_type]
        if v < low or v > high:
            raise ValueError(f"value out of range")


def _rel_target(info: Any, many: bool) -> type:
    base = info.base
    if many:
        if not info.is_list:
            raise FieldDefinitionError("rel/reverse:many field must be list")
        if not (isinstance(base, type) and issubclass(base, Model)):
            raise FieldDefinitionError(f"rel/reverse:many list must be List[{getattr(base, '__name__', base)}]")
        return base
    if info.is_list or not (isinstance(base, type) and issubclass(base, Model)):
        raise FieldDefinitionError(f"rel/reverse:one field must be *{getattr(base, '__name__', base)}")
    return base


def new_field_info(mi: "ModelInfo", name: str, hint: Any, tag: str, m_name: str = "") -> FieldInfo:
    """
    Build a validated ``FieldInfo`` for one attribute.

    Raises:
        SkipField: the attribute is tagged ``-``
        FieldDefinitionError: the declaration is invalid
    """
    fi = FieldInfo()
    attrs, tags = parse_tag(tag)
    if attrs.get("-"):
        raise SkipField(name)

    digits = tags.get("digits", "")
    decimals = tags.get("decimals", "")
    size = tags.get("size", "")
    on_delete = tags.get("on_delete", "")
    precision = tags.get("precision", "")
    initial: Optional[str] = tags.get("default")

    info = analyze_annotation(hint)
    base = info.base
    field_type: FieldType

    if isinstance(base, type) and issubclass(base, Fielder) and not info.is_list:
        fi.is_fielder = True
        fi.fielder_cls = base
        field_type = base().field_type()
        if field_type & IS_REL_FIELD:
            raise FieldDefinitionError("unsupport type custom field")
    else:
        rel = tags.get("rel", "")
        reverse = tags.get("reverse", "")
        if rel:
            if rel == "fk":
                field_type = FieldType.REL_FOREIGN_KEY
            elif rel == "one":
                field_type = FieldType.REL_ONE_TO_ONE
            elif rel == "m2m":
                field_type = FieldType.REL_MANY_TO_MANY
                if tags.get("rel_table"):
                    fi.rel_table = tags["rel_table"]
                elif tags.get("rel_through"):
                    fi.rel_through = tags["rel_through"]
            else:
                raise FieldDefinitionError(
                    f"wrong tag format: `rel:\"{rel}\"`, rel only allow these value: fk, one, m2m"
                )
        elif reverse:
            if reverse == "one":
                field_type = FieldType.REL_REVERSE_ONE
            elif reverse == "many":
                field_type = FieldType.REL_REVERSE_MANY
                if tags.get("rel_table"):
                    fi.rel_table = tags["rel_table"]
                elif tags.get("rel_through"):
                    fi.rel_through = tags["rel_through"]
            else:
                raise FieldDefinitionError(
                    f"wrong tag format: `reverse:\"{reverse}\"`, reverse only allow these value: one, many"
                )
        else:
            if info.is_list:
                raise FieldDefinitionError(f"unsupport field type {hint!r}, may be miss setting tag")
            field_type = _builtin_field_type(base)
            typ = tags.get("type", "")
            if field_type == FieldType.VARCHAR:
                if typ == "char":
                    field_type = FieldType.CHAR
                elif typ == "text":
                    field_type = FieldType.TEXT
                elif typ == "json":
                    field_type = FieldType.JSON
                elif typ == "jsonb":
                    field_type = FieldType.JSONB
            if field_type == FieldType.FLOAT and (digits or decimals):
                field_type = FieldType.DECIMAL
            if field_type == FieldType.DATETIME and typ == "date":
                field_type = FieldType.DATE
            if field_type == FieldType.DATETIME and typ == "time":
                field_type = FieldType.TIME

    if field_type in (FieldType.REL_FOREIGN_KEY, FieldType.REL_ONE_TO_ONE, FieldType.REL_REVERSE_ONE):
        fi.rel_cls = _rel_target(info, many=False)
    elif field_type in (FieldType.REL_MANY_TO_MANY, FieldType.REL_REVERSE_MANY):
        fi.rel_cls = _rel_target(info, many=True)

    if not field_type & IS_FIELD_TYPE:
        raise FieldDefinitionError("wrong field type")

    fi.field_type = field_type
    fi.name = name
    fi.annotation = hint
    fi.column = get_column_name(field_type, name, tags.get("column", ""))
    fi.full_name = f"{mi.full_name}{m_name}.{name}"
    fi.description = tags.get("description", "")
    fi.db_type = tags.get("db_type", "")
    fi.null = attrs.get("null", False)
    fi.index = attrs.get("index", False)
    fi.auto = attrs.get("auto", False)
    fi.pk = attrs.get("pk", False)
    fi.unique = attrs.get("unique", False)
    fi.col_default = "default" in tags

    if field_type in (FieldType.REL_MANY_TO_MANY, FieldType.REL_REVERSE_MANY, FieldType.REL_REVERSE_ONE):
        fi.null = False
        fi.index = False
        fi.auto = False
        fi.pk = False
        fi.unique = False
    else:
        fi.db_col = True

    if field_type in (FieldType.REL_FOREIGN_KEY, FieldType.REL_ONE_TO_ONE, FieldType.REL_MANY_TO_MANY):
        fi.rel = True
        if field_type == FieldType.REL_ONE_TO_ONE:
            fi.unique = True
    elif field_type in (FieldType.REL_REVERSE_MANY, FieldType.REL_REVERSE_ONE):
        fi.reverse = True

    if fi.rel and fi.db_col:
        if on_delete in (OD_CASCADE, OD_DO_NOTHING):
            pass
        elif on_delete == OD_SET_DEFAULT:
            if initial is None:
                raise FieldDefinitionError("on_delete: set_default need set field a default value")
        elif on_delete == OD_SET_NULL:
            if not fi.null:
                raise FieldDefinitionError("on_delete: set_null need set field null")
        elif on_delete == "":
            on_delete = OD_CASCADE
        else:
            raise FieldDefinitionError(
                "on_delete value expected choice in `cascade,set_null,set_default,do_nothing`, "
                f"unknown `{on_delete}`"
            )
        fi.on_delete = on_delete

    if field_type in (FieldType.VARCHAR, FieldType.CHAR, FieldType.JSON, FieldType.JSONB):
        if size:
            try:
                fi.size = _parse_int(size)
            except ValueError:
                raise FieldDefinitionError(f"wrong size value `{size}`") from None
        else:
            fi.size = 255
            fi.to_text = True
    elif field_type == FieldType.TEXT:
        fi.index = False
        fi.unique = False
    elif field_type in (FieldType.TIME, FieldType.DATE, FieldType.DATETIME):
        if field_type == FieldType.DATETIME and precision:
            try:
                fi.time_precision = _parse_int(precision)
            except ValueError:
                raise FieldDefinitionError(f"convert {precision} to int error") from None
        if attrs.get("auto_now"):
            fi.auto_now = True
        elif attrs.get("auto_now_add"):
            fi.auto_now_add = True
    elif field_type == FieldType.DECIMAL:
        try:
            fi.digits = _parse_int(digits)
            fi.decimals = _parse_int(decimals)
        except ValueError:
            raise FieldDefinitionError(f"wrong digits/decimals value {digits}/{decimals}") from None

    if not field_type & IS_INTEGER_FIELD and fi.auto:
        raise FieldDefinitionError("non-integer type cannot set auto")

    if fi.auto or fi.pk:
        if fi.auto:
            fi.pk = True
        fi.null = False
        fi.index = False
        fi.unique = False

    if fi.unique:
        fi.index = False

    if fi.auto or fi.pk or fi.unique or field_type in (FieldType.TIME, FieldType.DATE, FieldType.DATETIME):
        initial = None

    if initial is not None:
        try:
            _check_default(field_type, initial)
        except ValueError as exc:
            raise FieldDefinitionError(f"wrong tag format: `default:\"{initial}\"`, {exc}") from None

    fi.initial = initial
    return fi
