"""
Ormer that touches no database.

Every operation returns its zero value: ``None`` for reads, ``0`` for
counts and ids, ``(False, 0)`` for ``read_or_create``. Subclass it to fake
the few methods a test cares about, or put it under a
``FilterOrmDecorator`` so mocks answer every call.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

__all__ = ["DoNothingOrm", "DoNothingTxOrm"]


class DoNothingOrm:
    alias: Any = None
    db: Any = None

    async def read(self, md: Any, *cols: str) -> None:
        return None

    async def read_for_update(self, md: Any, *cols: str) -> None:
        return None

    async def read_or_create(self, md: Any, col1: str, *cols: str) -> Tuple[bool, int]:
        return False, 0

    async def insert(self, md: Any) -> int:
        return 0

    async def insert_multi(self, bulk: int, mds: Any) -> int:
        return 0

    async def insert_or_update(self, md: Any, *col_conflict_and_args: str) -> int:
        return 0

    async def update(self, md: Any, *cols: str) -> int:
        return 0

    async def delete(self, md: Any, *cols: str) -> int:
        return 0

    def query_m2m(self, md: Any, name: str) -> Any:
        return None

    async def load_related(self, md: Any, name: str, *hint_args: Any) -> int:
        return 0

    def query_table(self, ptr_struct_or_table_name: Any) -> Any:
        return None

    def raw(self, query: str, *args: Any) -> Any:
        return None

    def driver(self) -> Any:
        return None

    def db_stats(self) -> Optional[Dict[str, Any]]:
        return None

    async def begin(self, **options: Any) -> "DoNothingTxOrm":
        return DoNothingTxOrm()

    async def begin_with_opts(self, options: Optional[Dict[str, Any]] = None) -> "DoNothingTxOrm":
        return DoNothingTxOrm()

    async def do_tx(self, task: Callable[[Any], Awaitable[Any]], **options: Any) -> Any:
        """Does not run ``task``."""
        return None

    async def do_tx_with_opts(
        self, options: Optional[Dict[str, Any]], task: Callable[[Any], Awaitable[Any]]
    ) -> Any:
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class DoNothingTxOrm(DoNothingOrm):
    async def begin(self, **options: Any) -> "DoNothingTxOrm":
        return self

    async def commit(self) -> None:
        return None

    async def rollback(self) -> None:
        return None

    async def rollback_unless_commit(self) -> None:
        return None
