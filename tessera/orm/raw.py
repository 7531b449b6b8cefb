"""
RawSet: hand-written SQL with ``?`` placeholders.

Placeholders are rewritten to the dialect's marker style and arguments are
flattened like filter arguments (lists expand, model objects become their
primary key).

    r = o.raw("SELECT id, name FROM user WHERE name = ?", "slene")
    user = await r.query_row(User)
    rows = await r.values()
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..db.backends import ExecResult, QueryResult
from ..db.utils import get_flat_params
from ..faults import NoRowsFault, QueryFault, StmtClosedFault
from ..models.model_info import ModelInfo
from ..models.registry import model_cache

__all__ = ["RawSet", "RawPreparer"]


class RawPreparer:
    """Prepared raw statement; ``exec`` may be called many times."""

    def __init__(self, rs: "RawSet", stmt: Any):
        self.rs = rs
        self.stmt = stmt
        self.closed = False

    async def exec(self, *args: Any) -> ExecResult:
        if self.closed:
            raise StmtClosedFault()
        flat = get_flat_params(None, args, self.rs.orm.alias.tz)
        return await self.stmt.execute(flat)

    async def close(self) -> None:
        if self.closed:
            raise StmtClosedFault()
        self.closed = True
        await self.stmt.close()


class RawSet:
    def __init__(self, orm: Any, query: str, args: Sequence[Any] = ()):
        self.orm = orm
        self.query = query
        self.args = list(args)

    def set_args(self, *args: Any) -> "RawSet":
        """A copy of this RawSet bound to new arguments."""
        return RawSet(self.orm, self.query, args)

    def _sql(self) -> Tuple[str, List[Any]]:
        query = self.orm.alias.dbbaser.replace_marks(self.query)
        return query, get_flat_params(None, self.args, self.orm.alias.tz)

    async def _select(self) -> QueryResult:
        query, args = self._sql()
        return await self.orm.db.query(query, args)

    async def exec(self) -> ExecResult:
        query, args = self._sql()
        return await self.orm.db.execute(query, args)

    # ── Mapping rows onto models ─────────────────────────────────────

    @staticmethod
    def _model_info(container: Any) -> ModelInfo:
        mi = model_cache.get_by_md(container)
        if mi is None:
            name = container.__name__ if isinstance(container, type) else type(container).__name__
            raise QueryFault(name, "raw", f"<RawSeter> unsupported container `{name}`")
        return mi

    def _fill(self, mi: ModelInfo, obj: Any, columns: Sequence[str], row: Sequence[Any]) -> Any:
        dialect = self.orm.alias.dbbaser
        tz = self.orm.alias.tz
        for col, val in zip(columns, row):
            fi = mi.fields.get_by_column(col) or mi.fields.get_by_any(col)
            if fi is None or not fi.db_col:
                continue
            dialect.set_field_value(fi, dialect.convert_value_from_db(fi, val, tz), obj)
        return obj

    async def query_row(self, container: Any = None) -> Any:
        """
        The first row: a tuple, or filled into ``container`` (a model
        object, or a model class to instantiate).

        Raises:
            NoRowsFault: the query returned nothing
        """
        result = await self._select()
        row = result.first()
        if row is None:
            raise NoRowsFault()
        if container is None:
            return row
        mi = self._model_info(container)
        obj = mi.new_instance() if isinstance(container, type) else container
        return self._fill(mi, obj, result.columns, row)

    async def query_rows(self, container: Any = None) -> List[Any]:
        """Every row, as tuples or as objects of the model class ``container``."""
        result = await self._select()
        if container is None:
            return list(result.rows)
        mi = self._model_info(container)
        return [self._fill(mi, mi.new_instance(), result.columns, row) for row in result.rows]

    # ── Raw value access ─────────────────────────────────────────────

    @staticmethod
    def _indexes(result: QueryResult, cols: Sequence[str]) -> List[int]:
        if not cols:
            return list(range(len(result.columns)))
        indexes = []
        for col in cols:
            if col not in result.columns:
                raise QueryFault("<RawSeter>", "values", f"unknown column `{col}` in result set")
            indexes.append(result.columns.index(col))
        return indexes

    async def values(self, *cols: str) -> List[Dict[str, Any]]:
        result = await self._select()
        idx = self._indexes(result, cols)
        return [{result.columns[i]: row[i] for i in idx} for row in result.rows]

    async def values_list(self, *cols: str) -> List[List[Any]]:
        result = await self._select()
        idx = self._indexes(result, cols)
        return [[row[i] for i in idx] for row in result.rows]

    async def values_flat(self, col: Optional[str] = None) -> List[Any]:
        """One column of every row; the first column when ``col`` is omitted."""
        result = await self._select()
        i = self._indexes(result, [col])[0] if col else 0
        return [row[i] for row in result.rows]

    async def row_to_map(self, key_col: str, value_col: str) -> Dict[Any, Any]:
        """
        Map ``key_col`` to ``value_col`` over every row, e.g. for a
        key/value options table.
        """
        result = await self._select()
        ki, vi = self._indexes(result, [key_col, value_col])
        return {row[ki]: row[vi] for row in result.rows}

    async def prepare(self) -> RawPreparer:
        query = self.orm.alias.dbbaser.replace_marks(self.query)
        stmt = await self.orm.db.prepare(query)
        return RawPreparer(self, stmt)

    def __repr__(self) -> str:
        return f"<RawSet {self.query!r}>"
