"""
Model declaration surface.

Models are plain classes with annotated attributes; per-column metadata is
carried by a ``column("tag;tag(value)")`` marker, table options by an inner
``Meta`` class::

    class Post(Model):
        id: int = column("auto")
        title: str = column("size(200);index")
        user: Optional[User] = column("rel(fk)")
        tags: List[Tag] = column("rel(m2m)")

        class Meta:
            table = "blog_post"
"""

from __future__ import annotations

import datetime
import decimal
import sys
import types
import typing
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from .fields import Fielder

__all__ = [
    "Model",
    "ColumnSpec",
    "column",
    "AnnotationInfo",
    "analyze_annotation",
    "declared_fields",
    "zero_value",
]


class ColumnSpec:
    """Class-level marker holding the tag string of one attribute."""

    __slots__ = ("tag",)

    def __init__(self, tag: str = ""):
        self.tag = tag

    def __repr__(self) -> str:
        return f"column({self.tag!r})"


def column(tag: str = "") -> Any:
    """Attach ORM tags to an annotated attribute."""
    return ColumnSpec(tag)


class AnnotationInfo(typing.NamedTuple):
    """Decomposed attribute annotation."""

    base: Any
    optional: bool
    is_list: bool


def analyze_annotation(hint: Any) -> AnnotationInfo:
    """Strip ``Optional[...]`` / ``X | None`` and ``List[...]`` wrappers."""
    optional = False
    origin = typing.get_origin(hint)
    if origin is typing.Union or (sys.version_info >= (3, 10) and origin is types.UnionType):
        args = [a for a in typing.get_args(hint) if a is not type(None)]
        optional = len(args) != len(typing.get_args(hint))
        hint = args[0] if len(args) == 1 else hint
        origin = typing.get_origin(hint)
    if origin in (list, List):
        args = typing.get_args(hint)
        return AnnotationInfo(args[0] if args else Any, optional, True)
    return AnnotationInfo(hint, optional, False)


_FIELD_CACHE: Dict[type, List[Tuple[str, Any, str]]] = {}


def declared_fields(cls: type) -> List[Tuple[str, Any, str]]:
    """
    Return ``(name, annotation, tag)`` for every mapped attribute.

    Base class attributes come first. Private names, ``ClassVar``s and the
    ``Meta`` holder are skipped. Raises ``NameError`` when an annotation
    refers to a class that does not exist yet.
    """
    cached = _FIELD_CACHE.get(cls)
    if cached is not None:
        return cached

    hints = typing.get_type_hints(cls)
    result: List[Tuple[str, Any, str]] = []
    for name, hint in hints.items():
        if name.startswith("_") or name == "Meta":
            continue
        if typing.get_origin(hint) is ClassVar or hint is ClassVar:
            continue
        spec = getattr(cls, name, None)
        tag = spec.tag if isinstance(spec, ColumnSpec) else ""
        result.append((name, hint, tag))
    _FIELD_CACHE[cls] = result
    return result


def zero_value(hint: Any) -> Any:
    info = analyze_annotation(hint)
    if info.is_list:
        return []
    if info.optional:
        return None
    base = info.base
    if isinstance(base, type):
        if issubclass(base, Fielder):
            return base()
        if base is bool:
            return False
        if base is int:
            return 0
        if base is float:
            return 0.0
        if base is str:
            return ""
        if base is decimal.Decimal:
            return decimal.Decimal(0)
        if base in (datetime.datetime, datetime.date, datetime.time):
            return None
    return None


class Model:
    """
    Base class for mapped models.

    ``Model(**values)`` sets every mapped attribute to its zero value, then
    applies the keyword arguments.
    """

    def __init__(self, **kwargs: Any):
        fields = declared_fields(type(self))
        names = set()
        for name, hint, _ in fields:
            names.add(name)
            setattr(self, name, zero_value(hint))
        for key, value in kwargs.items():
            if key not in names:
                raise TypeError(
                    f"{type(self).__name__}() got an unexpected keyword argument '{key}'"
                )
            setattr(self, key, value)

    def __repr__(self) -> str:
        fields = declared_fields(type(self))
        parts = []
        for name, _, _ in fields[:3]:
            value = self.__dict__.get(name)
            if isinstance(value, (list, Model)):
                continue
            parts.append(f"{name}={value!r}")
        return f"<{type(self).__name__} {' '.join(parts)}>"
