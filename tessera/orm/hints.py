"""
Hints: small key/value options passed to ``load_related`` and alias setup.

    await o.load_related(post, "tags", hints.limit(10), hints.order_by("-name"))
"""

from __future__ import annotations

from typing import Any, Dict, Iterable

from ..db.dialects import FORCE_INDEX, IGNORE_INDEX, USE_INDEX

__all__ = [
    "Hint",
    "KEY_MAX_IDLE_CONNECTIONS",
    "KEY_MAX_OPEN_CONNECTIONS",
    "KEY_CONN_MAX_LIFETIME",
    "KEY_MAX_STMT_CACHE_SIZE",
    "KEY_FORCE_INDEX",
    "KEY_USE_INDEX",
    "KEY_IGNORE_INDEX",
    "KEY_FOR_UPDATE",
    "KEY_LIMIT",
    "KEY_OFFSET",
    "KEY_ORDER_BY",
    "KEY_REL_DEPTH",
    "max_idle_connections",
    "max_open_connections",
    "conn_max_lifetime",
    "max_stmt_cache_size",
    "force_index",
    "use_index",
    "ignore_index",
    "for_update",
    "default_rel_depth",
    "rel_depth",
    "limit",
    "offset",
    "order_by",
    "to_options",
]

KEY_MAX_IDLE_CONNECTIONS = "max_idle_conns"
KEY_MAX_OPEN_CONNECTIONS = "max_open_conns"
KEY_CONN_MAX_LIFETIME = "conn_max_lifetime"
KEY_MAX_STMT_CACHE_SIZE = "max_stmt_cache_size"
KEY_FORCE_INDEX = FORCE_INDEX
KEY_USE_INDEX = USE_INDEX
KEY_IGNORE_INDEX = IGNORE_INDEX
KEY_FOR_UPDATE = "for_update"
KEY_LIMIT = "limit"
KEY_OFFSET = "offset"
KEY_ORDER_BY = "order_by"
KEY_REL_DEPTH = "rel_depth"


class Hint:
    __slots__ = ("key", "value")

    def __init__(self, key: Any, value: Any):
        self.key = key
        self.value = value

    def __repr__(self) -> str:
        return f"Hint({self.key!r}, {self.value!r})"


def max_idle_connections(n: int) -> Hint:
    return Hint(KEY_MAX_IDLE_CONNECTIONS, n)


def max_open_connections(n: int) -> Hint:
    return Hint(KEY_MAX_OPEN_CONNECTIONS, n)


def conn_max_lifetime(seconds: float) -> Hint:
    return Hint(KEY_CONN_MAX_LIFETIME, seconds)


def max_stmt_cache_size(n: int) -> Hint:
    return Hint(KEY_MAX_STMT_CACHE_SIZE, n)


def force_index(*indexes: str) -> Hint:
    return Hint(KEY_FORCE_INDEX, list(indexes))


def use_index(*indexes: str) -> Hint:
    return Hint(KEY_USE_INDEX, list(indexes))


def ignore_index(*indexes: str) -> Hint:
    return Hint(KEY_IGNORE_INDEX, list(indexes))


def for_update() -> Hint:
    return Hint(KEY_FOR_UPDATE, True)


def default_rel_depth() -> Hint:
    """Load relations up to ``settings.DEFAULT_RELS_DEPTH``."""
    return Hint(KEY_REL_DEPTH, True)


def rel_depth(depth: int) -> Hint:
    return Hint(KEY_REL_DEPTH, depth)


def limit(n: int) -> Hint:
    return Hint(KEY_LIMIT, n)


def offset(n: int) -> Hint:
    return Hint(KEY_OFFSET, n)


def order_by(expr: str) -> Hint:
    return Hint(KEY_ORDER_BY, expr)


def to_options(hints: Iterable[Hint]) -> Dict[Any, Any]:
    """Collapse hints into a dict; later hints override earlier ones."""
    return {h.key: h.value for h in hints}
