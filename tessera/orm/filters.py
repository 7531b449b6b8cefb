"""
Filter chains around Ormer and TxOrmer calls.

A filter chain builder takes the next ``Filter`` and returns a new one. A
``Filter`` receives an ``Invocation`` describing the call and returns its
result, normally by calling ``next_filter(inv)``. For async operations
``next_filter(inv)`` returns an awaitable; a filter may return it as is, or wrap it
in its own coroutine to act after the call.

    def log_calls(next_filter):
        def log_filter(inv):
            logger.info(f"{inv.method} on {inv.get_table_name()}")
            return next_filter(inv)
        return log_filter

    add_global_filter_chain(log_calls)
    o = new_orm()        # every call now goes through log_calls

The first registered builder is the outermost filter.
"""

from __future__ import annotations

import datetime
import decimal
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..faults import FieldValueFault
from ..models.base import analyze_annotation, zero_value
from ..models.field_info import FieldInfo
from ..models.fields import FORMAT_DATE, FORMAT_DATETIME, FORMAT_TIME, Fielder, str_to_bool
from ..models.model_info import ModelInfo
from ..models.registry import model_cache
from ..models.utils import apply_name_strategy, get_full_name
from ..db.utils import get_field_value, set_field_value
from .queryset import QuerySet

logger = logging.getLogger("tessera.orm.filters")

__all__ = [
    "Invocation",
    "Filter",
    "FilterChain",
    "FilterOrmDecorator",
    "FilterTxOrmDecorator",
    "DefaultValueFilterChainBuilder",
    "add_global_filter_chain",
    "clear_global_filter_chains",
    "global_filter_chains",
]


@dataclass
class Invocation:
    """One intercepted Ormer/TxOrmer call."""

    method: str
    args: Tuple[Any, ...]
    f: Callable[[], Any]
    md: Any = None
    mi: Optional[ModelInfo] = None
    in_tx: bool = False
    tx_start_time: Optional[float] = None
    tx_name: str = ""

    def get_table_name(self) -> str:
        return self.mi.table if self.mi is not None else ""

    def get_pk_field_name(self) -> str:
        if self.mi is not None and self.mi.fields.pk is not None:
            return self.mi.fields.pk.name
        return ""

    def execute(self) -> Any:
        return self.f()


Filter = Callable[[Invocation], Any]
FilterChain = Callable[[Filter], Filter]

global_filter_chains: List[FilterChain] = []


def add_global_filter_chain(*chains: FilterChain) -> None:
    """Filters applied to every Ormer created afterwards."""
    global_filter_chains.extend(chains)


def clear_global_filter_chains() -> None:
    global_filter_chains.clear()


def _root_filter(inv: Invocation) -> Any:
    return inv.execute()


def _mi_of(md: Any) -> Optional[ModelInfo]:
    if md is None or isinstance(md, (str, list, tuple)):
        return None
    return model_cache.get_by_md(md)


class FilterOrmDecorator:
    """
    Ormer whose every method is routed through the filter chain.

    Built by ``new_orm()`` when global filter chains exist, or directly
    with ``FilterOrmDecorator(ormer, *chains)``.
    """

    def __init__(self, delegate: Any, *chains: FilterChain, root: Optional[Filter] = None):
        self.ormer = delegate
        self.in_tx = False
        self.tx_start_time: Optional[float] = None
        self.tx_name = ""
        if root is None:
            root = _root_filter
            for chain in reversed(chains):
                root = chain(root)
        self.root = root

    @property
    def alias(self) -> Any:
        return self.ormer.alias

    @property
    def db(self) -> Any:
        return self.ormer.db

    def _invocation(self, method: str, args: Tuple[Any, ...], f: Callable[[], Any], md: Any = None,
                    mi: Optional[ModelInfo] = None) -> Invocation:
        return Invocation(
            method=method,
            args=args,
            f=f,
            md=md,
            mi=mi if mi is not None else _mi_of(md),
            in_tx=self.in_tx,
            tx_start_time=self.tx_start_time,
            tx_name=self.tx_name,
        )

    def _call(self, inv: Invocation) -> Any:
        return self.root(inv)

    async def _acall(self, inv: Invocation) -> Any:
        res = self.root(inv)
        if inspect.isawaitable(res):
            res = await res
        return res

    # ── Single objects ───────────────────────────────────────────────

    async def read(self, md: Any, *cols: str) -> None:
        inv = self._invocation("read", (md, cols), lambda: self.ormer.read(md, *cols), md)
        return await self._acall(inv)

    async def read_for_update(self, md: Any, *cols: str) -> None:
        inv = self._invocation(
            "read_for_update", (md, cols), lambda: self.ormer.read_for_update(md, *cols), md
        )
        return await self._acall(inv)

    async def read_or_create(self, md: Any, col1: str, *cols: str) -> Tuple[bool, int]:
        inv = self._invocation(
            "read_or_create", (md, col1, cols),
            lambda: self.ormer.read_or_create(md, col1, *cols), md,
        )
        return await self._acall(inv)

    async def insert(self, md: Any) -> int:
        inv = self._invocation("insert", (md,), lambda: self.ormer.insert(md), md)
        return await self._acall(inv)

    async def insert_multi(self, bulk: int, mds: Any) -> int:
        md = mds[0] if isinstance(mds, (list, tuple)) and mds else None
        inv = self._invocation(
            "insert_multi", (bulk, mds), lambda: self.ormer.insert_multi(bulk, mds), md
        )
        return await self._acall(inv)

    async def insert_or_update(self, md: Any, *col_conflict_and_args: str) -> int:
        inv = self._invocation(
            "insert_or_update", (md, col_conflict_and_args),
            lambda: self.ormer.insert_or_update(md, *col_conflict_and_args), md,
        )
        return await self._acall(inv)

    async def update(self, md: Any, *cols: str) -> int:
        inv = self._invocation("update", (md, cols), lambda: self.ormer.update(md, *cols), md)
        return await self._acall(inv)

    async def delete(self, md: Any, *cols: str) -> int:
        inv = self._invocation("delete", (md, cols), lambda: self.ormer.delete(md, *cols), md)
        return await self._acall(inv)

    # ── Relations and queries ────────────────────────────────────────

    def query_m2m(self, md: Any, name: str) -> Any:
        inv = self._invocation("query_m2m", (md, name), lambda: self.ormer.query_m2m(md, name), md)
        return self._call(inv)

    async def load_related(self, md: Any, name: str, *hint_args: Any) -> int:
        inv = self._invocation(
            "load_related", (md, name, hint_args),
            lambda: self.ormer.load_related(md, name, *hint_args), md,
        )
        return await self._acall(inv)

    def query_table(self, ptr_struct_or_table_name: Any) -> QuerySet:
        md = None
        mi = None
        if isinstance(ptr_struct_or_table_name, str):
            mi = model_cache.get(apply_name_strategy(ptr_struct_or_table_name))
        else:
            md = ptr_struct_or_table_name
            cls = md if isinstance(md, type) else type(md)
            mi = model_cache.get_by_full_name(get_full_name(cls))
        inv = self._invocation(
            "query_table", (ptr_struct_or_table_name,),
            lambda: self.ormer.query_table(ptr_struct_or_table_name), md, mi,
        )
        return self._call(inv)

    def raw(self, query: str, *args: Any) -> Any:
        inv = self._invocation("raw", (query, args), lambda: self.ormer.raw(query, *args))
        return self._call(inv)

    def driver(self) -> Any:
        return self._call(self._invocation("driver", (), self.ormer.driver))

    def db_stats(self) -> Any:
        return self._call(self._invocation("db_stats", (), self.ormer.db_stats))

    # ── Transactions ─────────────────────────────────────────────────

    async def begin(self, tx_name: str = "", **options: Any) -> "FilterTxOrmDecorator":
        """Start a transaction; ``tx_name`` is reported on its invocations."""

        async def begin_tx() -> FilterTxOrmDecorator:
            tx = await self.ormer.begin(**options)
            return FilterTxOrmDecorator(tx, self.root, tx_name)

        inv = self._invocation("begin", (options,), begin_tx)
        inv.tx_name = tx_name
        return await self._acall(inv)

    async def begin_with_opts(self, options: Optional[Dict[str, Any]] = None) -> "FilterTxOrmDecorator":
        return await self.begin(**(options or {}))

    async def do_tx(self, task: Callable[[Any], Any], tx_name: str = "", **options: Any) -> Any:
        """``Ormer.do_tx`` with the transaction itself going through the filters."""

        async def run() -> Any:
            tx = await self.begin(tx_name, **options)
            try:
                result = await task(tx)
            except BaseException:
                try:
                    await tx.rollback()
                except Exception as exc:
                    logger.error(f"rollback tx failed: {exc}")
                raise
            await tx.commit()
            return result

        inv = self._invocation("do_tx", (options, task), run)
        inv.tx_name = tx_name
        return await self._acall(inv)

    async def do_tx_with_opts(self, options: Optional[Dict[str, Any]], task: Callable[[Any], Any]) -> Any:
        return await self.do_tx(task, **(options or {}))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.ormer!r}>"


class FilterTxOrmDecorator(FilterOrmDecorator):
    """TxOrmer whose calls, including commit and rollback, go through the filters."""

    def __init__(self, delegate: Any, root: Filter, tx_name: str = ""):
        super().__init__(delegate, root=root)
        self.in_tx = True
        self.tx_start_time = time.time()
        self.tx_name = tx_name

    async def begin(self, tx_name: str = "", **options: Any) -> Any:
        return await self.ormer.begin(**options)

    async def commit(self) -> None:
        return await self._acall(self._invocation("commit", (), self.ormer.commit))

    async def rollback(self) -> None:
        return await self._acall(self._invocation("rollback", (), self.ormer.rollback))

    async def rollback_unless_commit(self) -> None:
        return await self._acall(
            self._invocation("rollback_unless_commit", (), self.ormer.rollback_unless_commit)
        )


# ── Default values ───────────────────────────────────────────────────


def _parse_default(fi: FieldInfo, raw: str) -> Any:
    base = analyze_annotation(fi.annotation).base if fi.annotation is not None else str
    if base is bool:
        return str_to_bool(raw)
    if base is int:
        return int(raw)
    if base is float:
        return float(raw)
    if base is decimal.Decimal:
        return decimal.Decimal(raw)
    if base is datetime.datetime:
        return datetime.datetime.strptime(raw, FORMAT_DATETIME)
    if base is datetime.date:
        return datetime.datetime.strptime(raw, FORMAT_DATE).date()
    if base is datetime.time:
        return datetime.datetime.strptime(raw, FORMAT_TIME).time()
    return raw


def _is_zero(fi: FieldInfo, value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, Fielder):
        return value == type(value)()
    if fi.annotation is None:
        return value in ("", 0)
    return value == zero_value(fi.annotation)


class DefaultValueFilterChainBuilder:
    """
    Fill zero-valued fields from their ``default(...)`` tag before inserts.

    Applies to ``insert`` and ``insert_multi``; to ``insert_or_update``
    (objects without a primary key value only) when
    ``include_insert_or_update`` is set.

        add_global_filter_chain(DefaultValueFilterChainBuilder().filter_chain)
    """

    def __init__(self, include_insert_or_update: bool = False):
        self.include_insert_or_update = include_insert_or_update

    def filter_chain(self, next_filter: Filter) -> Filter:
        def default_value_filter(inv: Invocation) -> Any:
            if inv.method == "insert":
                self.set_default_value(inv.args[0])
            elif inv.method == "insert_multi":
                for md in inv.args[1] or ():
                    self.set_default_value(md)
            elif inv.method == "insert_or_update" and self.include_insert_or_update:
                md = inv.args[0]
                pk = inv.mi.fields.pk if inv.mi is not None else None
                if md is not None and pk is not None and _is_zero(pk, get_field_value(md, pk)):
                    self.set_default_value(md)
            return next_filter(inv)

        return default_value_filter

    __call__ = filter_chain

    def set_default_value(self, md: Any) -> None:
        mi = _mi_of(md)
        if mi is None:
            return
        for fi in mi.fields.fields_db:
            if not fi.col_default or fi.initial is None or fi.pk or fi.rel:
                continue
            if not _is_zero(fi, get_field_value(md, fi)):
                continue
            try:
                value = fi.initial if fi.is_fielder else _parse_default(fi, fi.initial)
                set_field_value(md, fi, value)
            except (TypeError, ValueError, ArithmeticError, FieldValueFault) as exc:
                logger.error(f"set default value for `{fi.full_name}` failed: {exc}")
