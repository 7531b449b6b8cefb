"""
QuerySet: chainable, copy-on-write query over one table.

Every chain method returns a NEW QuerySet, and terminal methods (``all``,
``one``, ``count``, ``update``, ...) are async and execute through the
dialect of the Ormer the set was created from.

Usage:
    qs = o.query_table("user")
    users = await qs.filter("profile__age__gt", 18).order_by("-id").limit(10).all()
    n = await qs.filter("name__istartswith", "sl").count()
    await qs.filter("id", 3).update({"nums": col_value(COL_ADD, 100)})
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from .. import settings
from ..db.condition import Condition
from ..db.dialects import (
    FORCE_INDEX,
    IGNORE_INDEX,
    READ_FLAT,
    READ_LISTS,
    READ_MAPS,
    USE_INDEX,
)
from ..db.order import Order
from ..db.utils import (
    COL_ADD,
    COL_BIT_AND,
    COL_BIT_LSHIFT,
    COL_BIT_OR,
    COL_BIT_RSHIFT,
    COL_BIT_XOR,
    COL_EXCEPT,
    COL_MINUS,
    COL_MULTIPLY,
    ColValue,
    col_value,
)
from ..faults import MultiRowsFault, NoRowsFault, NotImplementFault, QueryFault
from ..models.model_info import ModelInfo

if TYPE_CHECKING:
    from .inserter import Inserter

__all__ = [
    "QuerySet",
    "ColValue",
    "col_value",
    "COL_ADD",
    "COL_MINUS",
    "COL_MULTIPLY",
    "COL_EXCEPT",
    "COL_BIT_AND",
    "COL_BIT_RSHIFT",
    "COL_BIT_LSHIFT",
    "COL_BIT_XOR",
    "COL_BIT_OR",
]


class QuerySet:
    """
    Query over the table of ``mi``, bound to an Ormer (or TxOrmer).

    The dialect reads the public attributes directly when rendering SQL.
    """

    def __init__(self, orm: Any, mi: ModelInfo, cond: Optional[Condition] = None):
        self.orm = orm
        self.mi = mi
        self.cond = cond
        self.related: List[str] = []
        self.rel_depth = 0
        self.rows_limit = 0
        self.rows_offset = 0
        self.groups: List[str] = []
        self.orders: List[Order] = []
        self.is_distinct = False
        self.is_for_update = False
        self.use_index_kind = 0
        self.indexes: List[str] = []
        self.aggregate_sql = ""

    def _clone(self) -> QuerySet:
        c = copy.copy(self)
        c.related = self.related.copy()
        c.groups = self.groups.copy()
        c.orders = self.orders.copy()
        c.indexes = self.indexes.copy()
        return c

    # ── Chain methods ────────────────────────────────────────────────

    def filter(self, expr: str, *args: Any) -> QuerySet:
        """AND a condition: ``filter("profile__age__gte", 18)``."""
        c = self._clone()
        c.cond = (c.cond or Condition()).and_(expr, *args)
        return c

    def filter_raw(self, expr: str, sql: str) -> QuerySet:
        """AND a raw SQL fragment on the column of ``expr``."""
        c = self._clone()
        c.cond = (c.cond or Condition()).raw(expr, sql)
        return c

    def exclude(self, expr: str, *args: Any) -> QuerySet:
        c = self._clone()
        c.cond = (c.cond or Condition()).and_not(expr, *args)
        return c

    def set_cond(self, cond: Optional[Condition]) -> QuerySet:
        c = self._clone()
        c.cond = cond
        return c

    def get_cond(self) -> Optional[Condition]:
        return self.cond

    def limit(self, limit: int, offset: Optional[int] = None) -> QuerySet:
        """Row limit (``-1`` for none) and optional offset."""
        c = self._clone()
        c.rows_limit = int(limit)
        if offset is not None:
            c.rows_offset = int(offset)
        return c

    def offset(self, offset: int) -> QuerySet:
        c = self._clone()
        c.rows_offset = int(offset)
        return c

    def group_by(self, *exprs: str) -> QuerySet:
        c = self._clone()
        c.groups = list(exprs)
        return c

    def order_by(self, *exprs: str) -> QuerySet:
        """Order by expressions; a leading ``-`` sorts descending."""
        c = self._clone()
        c.orders = Order.parse(*exprs)
        return c

    def order_clauses(self, *orders: Order) -> QuerySet:
        """Order by prebuilt ``Order`` objects (raw expressions allowed)."""
        c = self._clone()
        c.orders = list(orders)
        return c

    def _specify_index(self, kind: int, indexes: Sequence[str]) -> QuerySet:
        c = self._clone()
        c.use_index_kind = kind
        c.indexes = list(indexes)
        return c

    def force_index(self, *indexes: str) -> QuerySet:
        return self._specify_index(FORCE_INDEX, indexes)

    def use_index(self, *indexes: str) -> QuerySet:
        return self._specify_index(USE_INDEX, indexes)

    def ignore_index(self, *indexes: str) -> QuerySet:
        return self._specify_index(IGNORE_INDEX, indexes)

    def related_sel(self, *params: Any) -> QuerySet:
        """
        Join related tables and load them into the results.

        No arguments follows every relation ``settings.DEFAULT_RELS_DEPTH``
        levels deep; strings name relation paths (``"user__profile"``); an
        int sets the depth.

        Raises:
            QueryFault: an argument is neither a string nor an int
        """
        c = self._clone()
        if not params:
            c.rel_depth = settings.DEFAULT_RELS_DEPTH
            return c
        for p in params:
            if isinstance(p, str):
                c.related.append(p)
            elif isinstance(p, int) and not isinstance(p, bool):
                c.rel_depth = p
            else:
                raise QueryFault(
                    self.mi.full_name, "related_sel",
                    f"wrong param kind: {type(p).__name__}",
                )
        return c

    def distinct(self) -> QuerySet:
        c = self._clone()
        c.is_distinct = True
        return c

    def for_update(self) -> QuerySet:
        c = self._clone()
        c.is_for_update = True
        return c

    def aggregate(self, func_sql: str) -> QuerySet:
        """Replace the selected columns with ``func_sql`` (e.g. ``"SUM(nums) AS total"``)."""
        c = self._clone()
        c.aggregate_sql = func_sql
        return c

    # ── Terminal methods ─────────────────────────────────────────────

    @property
    def _dialect(self):
        return self.orm.alias.dbbaser

    @property
    def _tz(self):
        return self.orm.alias.tz

    async def count(self) -> int:
        return await self._dialect.count(self.orm.db, self, self.mi, self.cond, self._tz)

    async def exist(self) -> bool:
        return await self.count() > 0

    async def update(self, values: Dict[str, Any]) -> int:
        """Update matching rows; values may be ``ColValue`` expressions."""
        return await self._dialect.update_batch(
            self.orm.db, self, self.mi, self.cond, values, self._tz
        )

    async def delete(self) -> int:
        """Delete matching rows; an empty condition is refused."""
        return await self._dialect.delete_batch(self.orm.db, self, self.mi, self.cond, self._tz)

    async def prepare_insert(self) -> "Inserter":
        from .inserter import Inserter

        return await Inserter.create(self.orm, self.mi)

    async def all(self, *cols: str) -> List[Any]:
        """Load every matching row as a model object, optionally only ``cols``."""
        return await self._dialect.read_batch(
            self.orm.db, self, self.mi, self.cond, self._tz, cols
        )

    async def one(self, *cols: str) -> Any:
        """
        Load exactly one matching row.

        Raises:
            NoRowsFault: nothing matched
            MultiRowsFault: more than one row came back
        """
        c = self._clone()
        c.rows_limit = 2
        objs = await c.all(*cols)
        if len(objs) > 1:
            raise MultiRowsFault()
        if not objs:
            raise NoRowsFault()
        return objs[0]

    async def values(self, *exprs: str) -> List[Dict[str, Any]]:
        """Rows as dicts keyed by field name (or by expression)."""
        return await self._dialect.read_values(
            self.orm.db, self, self.mi, self.cond, exprs, READ_MAPS, self._tz
        )

    async def values_list(self, *exprs: str) -> List[List[Any]]:
        return await self._dialect.read_values(
            self.orm.db, self, self.mi, self.cond, exprs, READ_LISTS, self._tz
        )

    async def values_flat(self, expr: str) -> List[Any]:
        """One column of every matching row."""
        return await self._dialect.read_values(
            self.orm.db, self, self.mi, self.cond, [expr], READ_FLAT, self._tz
        )

    async def row_to_map(self, key_col: str, value_col: str) -> Dict[Any, Any]:
        raise NotImplementFault()

    async def rows_to_struct(self, obj: Any, key_col: str, value_col: str) -> int:
        raise NotImplementFault()

    def __repr__(self) -> str:
        return f"<QuerySet {self.mi.table!r} cond={self.cond!r}>"
