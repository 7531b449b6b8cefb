"""
Per-model metadata (``ModelInfo``).
"""

from __future__ import annotations

from typing import Any, List, Optional

from ..faults import ModelRegistrationFault
from .base import declared_fields
from .field_info import FieldDefinitionError, FieldInfo, Fields, SkipField, new_field_info
from .fields import FieldType
from .utils import camel_string, get_full_name

__all__ = ["ModelInfo", "new_model_info", "new_m2m_model_info"]


class ModelInfo:
    """Metadata of one registered model (or implicit m2m through table)."""

    def __init__(self) -> None:
        self.manual = False
        self.is_through = False
        self.pkg = ""
        self.name = ""
        self.full_name = ""
        self.table = ""
        self.model: Optional[type] = None
        self.fields = Fields()
        self.uniques: List[str] = []

    def new_instance(self) -> Any:
        """Create an empty model object, or a dict row for an implicit through table."""
        if self.model is None:
            return {}
        return self.model()

    def __repr__(self) -> str:
        return f"<ModelInfo {self.full_name} table={self.table!r}>"


def new_model_info(cls: type) -> ModelInfo:
    """
    Build a ``ModelInfo`` from a model class.

    Raises:
        ModelRegistrationFault: any attribute is invalid, duplicated, or more
            than one primary key is declared
    """
    mi = ModelInfo()
    mi.model = cls
    mi.name = cls.__name__
    mi.pkg = cls.__module__
    mi.full_name = get_full_name(cls)

    try:
        fields = declared_fields(cls)
    except NameError as exc:
        raise ModelRegistrationFault(mi.full_name, f"cannot resolve annotations: {exc}") from exc

    for name, hint, tag in fields:
        m_name = _owner_path(cls, name)
        try:
            fi = new_field_info(mi, name, hint, tag, m_name)
        except SkipField:
            continue
        except FieldDefinitionError as exc:
            raise ModelRegistrationFault(
                mi.full_name, f"field: {mi.full_name}.{name}, {exc}"
            ) from None
        fi.mi = mi
        fi.in_model = True
        if not mi.fields.add(fi):
            raise ModelRegistrationFault(
                mi.full_name,
                f"field: {mi.full_name}.{name}, duplicate column name: {fi.column}",
            )
        if fi.pk:
            if mi.fields.pk is not None:
                raise ModelRegistrationFault(
                    mi.full_name,
                    f"field: {mi.full_name}.{name}, one model must have one pk field only",
                )
            mi.fields.pk = fi
    return mi


def _owner_path(cls: type, name: str) -> str:
    """``.Base`` when the attribute is declared on an inherited class."""
    for klass in cls.__mro__:
        if name in getattr(klass, "__annotations__", {}):
            if klass is cls:
                return ""
            return f".{klass.__name__}"
    return ""


def new_m2m_model_info(m1: ModelInfo, m2: ModelInfo) -> ModelInfo:
    """Implicit through model joining two tables."""
    mi = ModelInfo()
    mi.table = f"{m1.table}_{m2.table}s"
    mi.name = camel_string(mi.table)
    mi.pkg = m1.pkg
    mi.full_name = f"{m1.pkg}.{mi.name}"

    fa = FieldInfo()
    fa.field_type = FieldType.BIG_INTEGER
    fa.auto = True
    fa.pk = True
    fa.db_col = True
    fa.name = "id"
    fa.column = "id"
    fa.full_name = f"{mi.full_name}.{fa.name}"

    f1 = FieldInfo()
    f2 = FieldInfo()
    for f, m in ((f1, m1), (f2, m2)):
        f.db_col = True
        f.field_type = FieldType.REL_FOREIGN_KEY
        f.name = m.table
        f.full_name = f"{mi.full_name}.{f.name}"
        f.column = f"{m.table}_id"
        f.rel = True
        f.rel_table = m.table
        f.rel_model_info = m
        f.rel_cls = m.model
        f.on_delete = "cascade"
        f.mi = mi
    fa.mi = mi

    mi.fields.add(fa)
    mi.fields.add(f1)
    mi.fields.add(f2)
    mi.fields.pk = fa
    mi.uniques = [f1.column, f2.column]
    return mi
