"""
Canned Ormer results for tests.

``start_mock()`` installs one ``OrmStub`` as a global filter chain. Every
Ormer created afterwards checks the stub's mocks in registration order;
the first mock whose condition matches the call answers it and the
database is never touched. Unmatched calls run as usual.

    stub = start_mock()
    stub.mock(mock_read("user", lambda u: setattr(u, "user_name", "slene")))
    stub.mock(mock_insert("user", 12))

    o = new_orm()
    user = User(id=1)
    await o.read(user)          # user.user_name == "slene"
    assert await o.insert(User()) == 12

    stub.clear()

A mock built with an ``error`` raises it instead of returning a value.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from ..db import register_database
from .filters import Filter, Invocation, add_global_filter_chain, global_filter_chains

logger = logging.getLogger("tessera.orm.mock")

__all__ = [
    "SimpleCondition",
    "QueryM2MCondition",
    "Mock",
    "OrmStub",
    "start_mock",
    "register_mock_db",
    "mock_table",
    "mock_method",
    "mock_read",
    "mock_read_for_update",
    "mock_read_or_create",
    "mock_insert",
    "mock_insert_multi",
    "mock_insert_or_update",
    "mock_update",
    "mock_delete",
    "mock_query_m2m",
    "mock_load_related",
    "mock_query_table",
    "mock_raw",
    "mock_db_stats",
    "mock_commit",
    "mock_rollback",
    "mock_rollback_unless_commit",
]


# ── Conditions ───────────────────────────────────────────────────────


class SimpleCondition:
    """Matches on table name and method; an empty value matches anything."""

    def __init__(self, table_name: str = "", method: str = ""):
        self.table_name = table_name
        self.method = method

    def match(self, inv: Invocation) -> bool:
        if self.table_name and self.table_name != inv.get_table_name():
            return False
        if self.method and self.method != inv.method:
            return False
        return True

    def __repr__(self) -> str:
        return f"<SimpleCondition table={self.table_name!r} method={self.method!r}>"


class QueryM2MCondition(SimpleCondition):
    """Matches ``query_m2m``/``load_related`` on one relation name."""

    def __init__(self, table_name: str, name: str, method: str = "query_m2m"):
        super().__init__(table_name, method)
        self.name = name

    def match(self, inv: Invocation) -> bool:
        return super().match(inv) and len(inv.args) > 1 and inv.args[1] == self.name


# ── Mocks ────────────────────────────────────────────────────────────


class Mock:
    """
    A canned answer.

    ``cb`` runs first with the invocation (to fill the model passed in,
    say); then ``error`` is raised if set, else ``result`` returned.
    """

    def __init__(
        self,
        cond: SimpleCondition,
        result: Any = None,
        error: Optional[BaseException] = None,
        cb: Optional[Callable[[Invocation], None]] = None,
    ):
        self.cond = cond
        self.result = result
        self.error = error
        self.cb = cb

    def answer(self, inv: Invocation) -> Any:
        if self.cb is not None:
            self.cb(inv)
        if self.error is not None:
            raise self.error
        return self.result


class OrmStub:
    """Filter answering matching calls from its mocks."""

    def __init__(self) -> None:
        self.mocks: List[Mock] = []

    def mock(self, m: Mock) -> None:
        self.mocks.append(m)

    def clear(self) -> None:
        self.mocks = []

    def filter_chain(self, next_filter: Filter) -> Filter:
        def mock_filter(inv: Invocation) -> Any:
            for m in self.mocks:
                if m.cond.match(inv):
                    logger.debug(f"mocked `{inv.method}` on `{inv.get_table_name()}`")
                    return m.answer(inv)
            return next_filter(inv)

        return mock_filter

    __call__ = filter_chain


_stub: Optional[OrmStub] = None


def start_mock() -> OrmStub:
    """The process-wide stub, installed as a global filter chain."""
    global _stub
    if _stub is None:
        _stub = OrmStub()
    if _stub.filter_chain not in global_filter_chains:
        add_global_filter_chain(_stub.filter_chain)
    return _stub


async def register_mock_db(name: str = "default") -> Any:
    """Register ``name`` on an in-memory SQLite database so ``new_orm`` works."""
    return await register_database(name, "sqlite3", ":memory:")


# ── Builders ─────────────────────────────────────────────────────────


def _on_first_arg(cb: Optional[Callable[[Any], None]]) -> Optional[Callable[[Invocation], None]]:
    if cb is None:
        return None
    return lambda inv: cb(inv.args[0])


def mock_table(table_name: str, result: Any = None) -> Mock:
    """Any call on ``table_name``."""
    return Mock(SimpleCondition(table_name, ""), result)


def mock_method(method: str, result: Any = None) -> Mock:
    """Any ``method`` call, whatever the table."""
    return Mock(SimpleCondition("", method), result)


def mock_read(table_name: str, cb: Optional[Callable[[Any], None]] = None,
              error: Optional[BaseException] = None) -> Mock:
    """``read``; ``cb`` receives the model to fill."""
    return Mock(SimpleCondition(table_name, "read"), None, error, _on_first_arg(cb))


def mock_read_for_update(table_name: str, cb: Optional[Callable[[Any], None]] = None,
                         error: Optional[BaseException] = None) -> Mock:
    return Mock(SimpleCondition(table_name, "read_for_update"), None, error, _on_first_arg(cb))


def mock_read_or_create(table_name: str, cb: Optional[Callable[[Any], None]] = None,
                        created: bool = False, id_: int = 0,
                        error: Optional[BaseException] = None) -> Mock:
    return Mock(SimpleCondition(table_name, "read_or_create"), (created, id_), error, _on_first_arg(cb))


def mock_insert(table_name: str, id_: int, error: Optional[BaseException] = None) -> Mock:
    return Mock(SimpleCondition(table_name, "insert"), id_, error)


def mock_insert_multi(table_name: str, cnt: int, error: Optional[BaseException] = None) -> Mock:
    return Mock(SimpleCondition(table_name, "insert_multi"), cnt, error)


def mock_insert_or_update(table_name: str, id_: int, error: Optional[BaseException] = None) -> Mock:
    return Mock(SimpleCondition(table_name, "insert_or_update"), id_, error)


def mock_update(table_name: str, affected: int, error: Optional[BaseException] = None) -> Mock:
    return Mock(SimpleCondition(table_name, "update"), affected, error)


def mock_delete(table_name: str, affected: int, error: Optional[BaseException] = None) -> Mock:
    return Mock(SimpleCondition(table_name, "delete"), affected, error)


def mock_query_m2m(table_name: str, name: str, result: Any) -> Mock:
    """``query_m2m(md, name)`` returns ``result``."""
    return Mock(QueryM2MCondition(table_name, name), result)


def mock_load_related(table_name: str, name: str, rows: int,
                      error: Optional[BaseException] = None) -> Mock:
    return Mock(QueryM2MCondition(table_name, name, "load_related"), rows, error)


def mock_query_table(table_name: str, qs: Any) -> Mock:
    return Mock(SimpleCondition(table_name, "query_table"), qs)


def mock_raw(rs: Any) -> Mock:
    return Mock(SimpleCondition("", "raw"), rs)


def mock_db_stats(stats: Any) -> Mock:
    return Mock(SimpleCondition("", "db_stats"), stats)


def mock_commit(error: Optional[BaseException] = None) -> Mock:
    return Mock(SimpleCondition("", "commit"), None, error)


def mock_rollback(error: Optional[BaseException] = None) -> Mock:
    return Mock(SimpleCondition("", "rollback"), None, error)


def mock_rollback_unless_commit(error: Optional[BaseException] = None) -> Mock:
    return Mock(SimpleCondition("", "rollback_unless_commit"), None, error)
