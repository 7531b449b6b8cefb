"""
Ormer: the object-level API over one database alias.

Provides:
- Ormer: single-object CRUD, relation loading, query sets, raw SQL and
  transactions on a registered alias
- TxOrmer: the same data operations bound to one open transaction
- new_orm / new_orm_using_db / new_orm_with_db constructors

Usage:
    o = new_orm()
    user = User(name="slene")
    await o.insert(user)
    await o.load_related(user, "posts", hints.order_by("-id"))

    async def task(tx):
        await tx.update(user, "name")

    await o.do_tx(task)
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional, Tuple

from .. import settings
from ..db.alias import Alias, DriverType, data_base_cache, new_alias_with_db
from ..db.backends import DatabaseAdapter
from ..db.condition import EXPR_SEP, Condition
from ..db.order import Order
from ..db.query_log import QueryLogger
from ..db.utils import get_exist_pk, get_field_value, set_field_value
from ..faults import (
    ArgsFault,
    DatabaseConnectionFault,
    FieldNotFoundFault,
    MissPKFault,
    ModelNotFoundFault,
    NoRowsFault,
    QueryFault,
    TxHasBeganFault,
)
from ..models.field_info import FieldInfo
from ..models.fields import FieldType
from ..models.model_info import ModelInfo
from ..models.registry import bootstrap, model_cache
from ..models.utils import apply_name_strategy, get_full_name
from . import hints
from .querym2m import QueryM2M
from .queryset import QuerySet
from .raw import RawSet

logger = logging.getLogger("tessera.orm")

__all__ = [
    "Driver",
    "Ormer",
    "TxOrmer",
    "new_orm",
    "new_orm_using_db",
    "new_orm_with_db",
]

_SINGLE_RELATIONS = (
    FieldType.REL_ONE_TO_ONE,
    FieldType.REL_FOREIGN_KEY,
    FieldType.REL_REVERSE_ONE,
)


class Driver(NamedTuple):
    """Driver name and database type of an alias."""

    name: str
    type: DriverType


class _OrmBase:
    """Operations shared by ``Ormer`` and ``TxOrmer``."""

    def __init__(self, alias: Alias, db: Any):
        self.alias = alias
        self.db = db

    # ── Lookups ──────────────────────────────────────────────────────

    def _get_mi(self, md: Any) -> ModelInfo:
        if isinstance(md, type):
            raise QueryFault(
                md.__name__, "lookup",
                f"<Ormer> cannot use model class `{get_full_name(md)}`, need an instance",
            )
        mi = model_cache.get_by_md(md)
        if mi is None:
            raise ModelNotFoundFault(get_full_name(type(md)))
        return mi

    @staticmethod
    def _get_field_info(mi: ModelInfo, name: str) -> FieldInfo:
        fi = mi.fields.get_by_any(name)
        if fi is None:
            raise FieldNotFoundFault(name, mi.full_name)
        return fi

    @staticmethod
    def _set_pk(mi: ModelInfo, md: Any, id_: int) -> None:
        pk = mi.fields.pk
        if pk is not None and pk.auto:
            set_field_value(md, pk, id_)

    # ── Single objects ───────────────────────────────────────────────

    async def read(self, md: Any, *cols: str) -> None:
        """
        Load ``md`` by primary key, or by the values of ``cols``.

        Raises:
            NoRowsFault: nothing matched
            MissPKFault: no ``cols`` and no primary key value
        """
        mi = self._get_mi(md)
        await self.alias.dbbaser.read(self.db, mi, md, self.alias.tz, cols, False)

    async def read_for_update(self, md: Any, *cols: str) -> None:
        """``read`` with ``SELECT ... FOR UPDATE`` where the dialect supports it."""
        mi = self._get_mi(md)
        await self.alias.dbbaser.read(self.db, mi, md, self.alias.tz, cols, True)

    async def read_or_create(self, md: Any, col1: str, *cols: str) -> Tuple[bool, int]:
        """
        Read ``md`` by the given columns, inserting it when no row matches.

        Returns ``(created, id)``.
        """
        mi = self._get_mi(md)
        try:
            await self.alias.dbbaser.read(
                self.db, mi, md, self.alias.tz, (col1,) + cols, False
            )
        except NoRowsFault:
            id_ = await self.insert(md)
            return True, id_

        pk = mi.fields.pk
        value = get_field_value(md, pk)
        if pk.rel:
            return await self.read_or_create(value, pk.rel_model_info.fields.pk.name)
        _, id_, _ = get_exist_pk(mi, md)
        return False, id_

    async def insert(self, md: Any) -> int:
        """Insert ``md``; the new id is written back to an auto primary key."""
        mi = self._get_mi(md)
        id_ = await self.alias.dbbaser.insert(self.db, mi, md, self.alias.tz)
        self._set_pk(mi, md, id_)
        return id_

    async def insert_multi(self, bulk: int, mds: Any) -> int:
        """
        Insert a list of objects of one model, ``bulk`` rows per statement.

        With ``bulk <= 1`` objects are inserted one by one and get their
        ids back. Returns the number of inserted rows.

        Raises:
            ArgsFault: ``mds`` is not a non-empty list
        """
        if not isinstance(mds, (list, tuple)) or not mds:
            raise ArgsFault()
        if bulk <= 1:
            cnt = 0
            for md in mds:
                mi = self._get_mi(md)
                id_ = await self.alias.dbbaser.insert(self.db, mi, md, self.alias.tz)
                self._set_pk(mi, md, id_)
                cnt += 1
            return cnt
        mi = self._get_mi(mds[0])
        return await self.alias.dbbaser.insert_multi(self.db, mi, mds, bulk, self.alias.tz)

    async def insert_or_update(self, md: Any, *col_conflict_and_args: str) -> int:
        """
        Upsert ``md``.

        The first argument names the conflict column (required on
        PostgreSQL); ``"col=expr"`` arguments override the update values.
        """
        mi = self._get_mi(md)
        id_ = await self.alias.dbbaser.insert_or_update(
            self.db, mi, md, self.alias, *col_conflict_and_args
        )
        self._set_pk(mi, md, id_)
        return id_

    async def update(self, md: Any, *cols: str) -> int:
        """Update ``md`` by primary key (only ``cols`` if given); returns affected rows."""
        mi = self._get_mi(md)
        return await self.alias.dbbaser.update(self.db, mi, md, self.alias.tz, cols)

    async def delete(self, md: Any, *cols: str) -> int:
        """Delete ``md`` by primary key (or by ``cols``); returns affected rows."""
        mi = self._get_mi(md)
        return await self.alias.dbbaser.delete(self.db, mi, md, self.alias.tz, cols)

    # ── Relations ────────────────────────────────────────────────────

    def query_m2m(self, md: Any, name: str) -> QueryM2M:
        """
        Manage the m2m field ``name`` of ``md``.

        Raises:
            QueryFault: ``name`` is not a m2m field (or a reverse m2m)
        """
        mi = self._get_mi(md)
        fi = self._get_field_info(mi, name)
        is_m2m = fi.field_type == FieldType.REL_MANY_TO_MANY or (
            fi.field_type == FieldType.REL_REVERSE_MANY
            and fi.reverse_field_info is not None
            and fi.reverse_field_info.mi.is_through
        )
        if not is_m2m:
            raise QueryFault(
                mi.full_name, "query_m2m",
                f"<Ormer.QueryM2M> model `{mi.full_name}` . name `{name}` is not a m2m field",
            )
        return QueryM2M(self, mi, fi, md, QuerySet(self, fi.rel_through_model_info))

    def _get_rel_qs(self, md: Any, fi: FieldInfo) -> QuerySet:
        if fi.field_type == FieldType.REL_MANY_TO_MANY:
            expr = f"{fi.reverse_field_info_m2m.column}{EXPR_SEP}{fi.reverse_field_info.column}"
        else:
            expr = fi.reverse_field_info.column
        return QuerySet(self, fi.rel_model_info, Condition().and_(expr, md))

    def _get_reverse_qs(self, md: Any, fi: FieldInfo) -> QuerySet:
        if fi.field_type == FieldType.REL_REVERSE_MANY and fi.reverse_field_info.mi.is_through:
            expr = f"{fi.reverse_field_info_m2m.column}{EXPR_SEP}{fi.reverse_field_info.column}"
            return QuerySet(self, fi.rel_model_info, Condition().and_(expr, md))
        return QuerySet(
            self, fi.reverse_field_info.mi, Condition().and_(fi.reverse_field_info.column, md)
        )

    def _query_related(self, md: Any, name: str) -> Tuple[ModelInfo, FieldInfo, QuerySet]:
        mi = self._get_mi(md)
        fi = self._get_field_info(mi, name)
        _, _, exist = get_exist_pk(mi, md)
        if not exist:
            raise MissPKFault()

        qs: Optional[QuerySet] = None
        if fi.in_model:
            if fi.field_type in (
                FieldType.REL_ONE_TO_ONE, FieldType.REL_FOREIGN_KEY, FieldType.REL_MANY_TO_MANY
            ):
                qs = self._get_rel_qs(md, fi)
            elif fi.field_type in (FieldType.REL_REVERSE_ONE, FieldType.REL_REVERSE_MANY):
                qs = self._get_reverse_qs(md, fi)
        if qs is None:
            raise QueryFault(
                mi.full_name, "load_related",
                f"<Ormer> name `{name}` for model `{mi.full_name}` is not an available rel/reverse field",
            )
        return mi, fi, qs

    async def load_related(self, md: Any, name: str, *hint_args: hints.Hint) -> int:
        """
        Load the relation ``name`` of ``md`` into its attribute.

        Hints: ``rel_depth``/``default_rel_depth``, ``limit``, ``offset``
        and ``order_by``. Single relations load one object; many relations
        load a list. Returns the number of loaded objects.
        """
        _, fi, qs = self._query_related(md, name)
        options = hints.to_options(hint_args)

        rel_depth = 0
        depth = options.get(hints.KEY_REL_DEPTH)
        if isinstance(depth, bool):
            if depth:
                rel_depth = settings.DEFAULT_RELS_DEPTH
        elif isinstance(depth, int):
            rel_depth = depth
        limit = int(options.get(hints.KEY_LIMIT, 0))
        offset = int(options.get(hints.KEY_OFFSET, 0))
        order = options.get(hints.KEY_ORDER_BY, "")

        single = fi.field_type in _SINGLE_RELATIONS
        if single:
            limit, offset = 1, 0
        qs.rows_limit = limit
        qs.rows_offset = offset
        qs.rel_depth = rel_depth
        if order:
            qs.orders = Order.parse(order)

        if single:
            obj = await qs.one()
            set_field_value(md, fi, obj)
            return 1
        objs = await qs.all()
        set_field_value(md, fi, objs)
        return len(objs)

    # ── Queries ──────────────────────────────────────────────────────

    def query_table(self, ptr_struct_or_table_name: Any) -> QuerySet:
        """
        QuerySet over a table, given its name (converted with the name
        strategy) or a model class/instance.

        Raises:
            QueryFault: the table is not registered
        """
        mi: Optional[ModelInfo]
        if isinstance(ptr_struct_or_table_name, str):
            name = apply_name_strategy(ptr_struct_or_table_name)
            mi = model_cache.get(name)
        else:
            cls = ptr_struct_or_table_name
            if not isinstance(cls, type):
                cls = type(cls)
            name = get_full_name(cls)
            mi = model_cache.get_by_full_name(name)
        if mi is None:
            raise QueryFault(
                name, "query_table", f"<Ormer.QueryTable> table name: `{name}` not exists"
            )
        return QuerySet(self, mi)

    def raw(self, query: str, *args: Any) -> RawSet:
        return RawSet(self, query, args)

    def driver(self) -> Driver:
        return Driver(self.alias.driver_name, self.alias.driver)

    def db_stats(self) -> Optional[Dict[str, Any]]:
        """Connection pool statistics; ``None`` inside a transaction."""
        stats = getattr(self.db, "stats", None)
        return stats() if callable(stats) else None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} alias={self.alias.name!r}>"


class Ormer(_OrmBase):
    """ORM bound to a registered alias."""

    async def begin(self, **options: Any) -> "TxOrmer":
        """Start a transaction; ``options`` go to the adapter."""
        tx = await self.db.begin(**options)
        return TxOrmer(self.alias, tx)

    async def begin_with_opts(self, options: Optional[Dict[str, Any]] = None) -> "TxOrmer":
        return await self.begin(**(options or {}))

    async def do_tx(self, task: Callable[["TxOrmer"], Awaitable[Any]], **options: Any) -> Any:
        """
        Run ``task`` in a transaction.

        Commits when ``task`` returns; rolls back and re-raises when it
        raises. Returns the result of ``task``.
        """
        tx = await self.begin(**options)
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

    async def do_tx_with_opts(
        self, options: Optional[Dict[str, Any]], task: Callable[["TxOrmer"], Awaitable[Any]]
    ) -> Any:
        return await self.do_tx(task, **(options or {}))


class TxOrmer(_OrmBase):
    """ORM bound to one open transaction."""

    async def begin(self, **options: Any) -> "TxOrmer":
        raise TxHasBeganFault()

    async def commit(self) -> None:
        """
        Raises:
            TxDoneFault: the transaction already finished
        """
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    async def rollback_unless_commit(self) -> None:
        """Roll back unless ``commit``/``rollback`` already ran."""
        await self.db.rollback_unless_commit()


# ── Constructors ─────────────────────────────────────────────────────


def _new_db_with_alias(al: Alias) -> Any:
    from .filters import FilterOrmDecorator, global_filter_chains

    db = QueryLogger(al.db, al.name) if settings.DEBUG else al.db
    o = Ormer(al, db)
    if global_filter_chains:
        return FilterOrmDecorator(o, *global_filter_chains)
    return o


def new_orm() -> Ormer:
    """Bootstrap the model registry and return an Ormer on ``default``."""
    bootstrap()
    return new_orm_using_db("default")


def new_orm_using_db(alias_name: str) -> Ormer:
    """
    Ormer on a registered alias.

    Raises:
        DatabaseConnectionFault: the alias is unknown
    """
    al = data_base_cache.get(alias_name)
    if al is None:
        raise DatabaseConnectionFault(alias_name, f"<Ormer.Using> unknown db alias name `{alias_name}`")
    return _new_db_with_alias(al)


async def new_orm_with_db(
    driver_name: str,
    alias_name: str,
    adapter: DatabaseAdapter,
    *hint_args: hints.Hint,
    **options: Any,
) -> Ormer:
    """
    Ormer on a connected adapter that is not added to the alias registry.

    Connection options may be passed as hints or keywords.
    """
    opts = hints.to_options(hint_args)
    opts.update(options)
    al = await new_alias_with_db(alias_name, driver_name, adapter, opts)
    return _new_db_with_alias(al)
