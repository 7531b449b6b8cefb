"""
Helpers for deriving model metadata from classes and tag strings.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .fields import FieldType

logger = logging.getLogger("tessera.models")

__all__ = [
    "SUPPORT_TAG",
    "TAG_DELIMITER",
    "DEFAULT_NAME_STRATEGY",
    "SNAKE_ACRONYM_NAME_STRATEGY",
    "set_name_strategy",
    "get_name_strategy",
    "apply_name_strategy",
    "parse_tag",
    "snake_string",
    "snake_string_with_acronym",
    "camel_string",
    "get_full_name",
    "get_table_name",
    "get_table_engine",
    "get_table_index",
    "get_table_unique",
    "is_applicable_table_for_db",
    "get_column_name",
]

# 1 is an attribute flag, 2 is a tag taking a value
SUPPORT_TAG: Dict[str, int] = {
    "-": 1,
    "null": 1,
    "index": 1,
    "unique": 1,
    "pk": 1,
    "auto": 1,
    "auto_now": 1,
    "auto_now_add": 1,
    "size": 2,
    "column": 2,
    "default": 2,
    "rel": 2,
    "reverse": 2,
    "rel_table": 2,
    "rel_through": 2,
    "digits": 2,
    "decimals": 2,
    "on_delete": 2,
    "type": 2,
    "description": 2,
    "precision": 2,
    "db_type": 2,
}

TAG_DELIMITER = ";"

DEFAULT_NAME_STRATEGY = "snake_string"
SNAKE_ACRONYM_NAME_STRATEGY = "snake_string_with_acronym"


def snake_string(s: str) -> str:
    """XxYy to xx_yy, XxYY to xx_y_y."""
    data: List[str] = []
    seen = False
    for i, ch in enumerate(s):
        if i > 0 and "A" <= ch <= "Z" and seen:
            data.append("_")
        if ch != "_":
            seen = True
        data.append(ch)
    return "".join(data).lower()


def snake_string_with_acronym(s: str) -> str:
    """Keeps acronyms together: HTTPServer to http_server."""
    data: List[str] = []
    num = len(s)
    for i, ch in enumerate(s):
        before = i > 0 and "a" <= s[i - 1] <= "z"
        after = i + 1 < num and "a" <= s[i + 1] <= "z"
        if i > 0 and "A" <= ch <= "Z" and (before or after):
            data.append("_")
        data.append(ch)
    return "".join(data).lower()


def camel_string(s: str) -> str:
    """xx_yy to XxYy."""
    data: List[str] = []
    flag = True
    for ch in s:
        if ch == "_":
            flag = True
            continue
        if flag:
            if "a" <= ch <= "z":
                ch = ch.upper()
            flag = False
        data.append(ch)
    return "".join(data)


_NAME_STRATEGIES: Dict[str, Callable[[str], str]] = {
    DEFAULT_NAME_STRATEGY: snake_string,
    SNAKE_ACRONYM_NAME_STRATEGY: snake_string_with_acronym,
}
_name_strategy = DEFAULT_NAME_STRATEGY


def set_name_strategy(name: str) -> None:
    """Choose how attribute names become column names."""
    global _name_strategy
    if name not in _NAME_STRATEGIES:
        raise ValueError(f"unknown name strategy `{name}`")
    _name_strategy = name


def get_name_strategy() -> str:
    return _name_strategy


def apply_name_strategy(name: str) -> str:
    """Convert ``name`` with the current strategy (``UserProfile`` to ``user_profile``)."""
    return _NAME_STRATEGIES[_name_strategy](name)


def parse_tag(data: str) -> Tuple[Dict[str, bool], Dict[str, str]]:
    """
    Parse a ``"auto;size(100);column(x)"`` tag string.

    Returns:
        (attrs, tags): flag attributes and valued tags. Tag names are
        case-insensitive, values keep their case.
    """
    attrs: Dict[str, bool] = {}
    tags: Dict[str, str] = {}
    for raw in (data or "").split(TAG_DELIMITER):
        if not raw:
            continue
        v = raw.strip()
        t = v.lower()
        if SUPPORT_TAG.get(t) == 1:
            attrs[t] = True
            continue
        i = v.find("(")
        if i > 0 and v.find(")") == len(v) - 1:
            name = t[:i]
            if SUPPORT_TAG.get(name) == 2:
                tags[name] = v[i + 1:-1]
                continue
        logger.debug(f"unsupported orm tag `{v}`")
    return attrs, tags


def get_full_name(cls: type) -> str:
    """Module-qualified class name, the registry's identity for a model."""
    return f"{cls.__module__}.{cls.__qualname__}"


def _meta_attr(cls: type, name: str) -> Any:
    meta = cls.__dict__.get("Meta")
    if meta is None:
        return None
    return getattr(meta, name, None)


def get_table_name(cls: type) -> str:
    """``Meta.table`` when set, else the snake-cased class name."""
    table = _meta_attr(cls, "table")
    if isinstance(table, str) and table:
        return table
    return snake_string(cls.__name__)


def get_table_engine(cls: type) -> str:
    engine = _meta_attr(cls, "engine")
    return engine if isinstance(engine, str) else ""


def get_table_index(cls: type) -> List[List[str]]:
    index = _meta_attr(cls, "index")
    return [list(cols) for cols in index] if index else []


def get_table_unique(cls: type) -> List[List[str]]:
    unique = _meta_attr(cls, "unique")
    return [list(cols) for cols in unique] if unique else []


def is_applicable_table_for_db(cls: Optional[type], alias: str) -> bool:
    """``Meta.databases`` restricts DDL generation to the listed aliases."""
    if cls is None:
        return True
    databases = _meta_attr(cls, "databases")
    if databases is None:
        return True
    return alias in databases


def get_column_name(field_type: FieldType, name: str, column: str) -> str:
    result = column or _NAME_STRATEGIES[_name_strategy](name)
    if field_type in (FieldType.REL_FOREIGN_KEY, FieldType.REL_ONE_TO_ONE):
        if not column:
            result = result + "_id"
    elif field_type in (
        FieldType.REL_MANY_TO_MANY,
        FieldType.REL_REVERSE_MANY,
        FieldType.REL_REVERSE_ONE,
    ):
        result = name
    return result
