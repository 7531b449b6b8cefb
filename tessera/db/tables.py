"""
Join resolver.

``DbTables`` turns field expressions such as ``"user__profile__age"`` into
table aliases (``T0`` for the queried model, ``T1``… for joined tables) and
renders the JOIN, WHERE, GROUP BY, ORDER BY, LIMIT and index-hint fragments
of a SELECT.
"""

from __future__ import annotations

import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from ..faults import QueryFault
from ..models.field_info import FieldInfo
from ..models.fields import FieldType
from ..models.model_info import ModelInfo
from .. import settings
from .condition import EXPR_SEP, Condition
from .order import Order
from .utils import OPERATORS

if TYPE_CHECKING:
    from .dialects.base import BaseDialect

__all__ = ["DbTable", "DbTables"]

EXPR_DOT = "."


class DbTable:
    """One joined table."""

    __slots__ = ("id", "index", "name", "names", "sel", "inner", "mi", "fi", "jtl")

    def __init__(self, id: int, names: List[str], inner: bool, mi: ModelInfo, fi: FieldInfo):
        self.id = id
        self.index = f"T{id}"
        self.name = EXPR_SEP.join(names)
        self.names = list(names)
        self.sel = False
        self.inner = inner
        self.mi = mi
        self.fi = fi
        self.jtl: Optional[DbTable] = None

    def __repr__(self) -> str:
        return f"<DbTable {self.index} {self.name!r} inner={self.inner} sel={self.sel}>"


def _unknown(mi: ModelInfo, operation: str, expr: str) -> QueryFault:
    return QueryFault(mi.full_name, operation, f"unknown field/column name `{expr}`")


class DbTables:
    """Tables joined by one query, keyed by their relation path."""

    def __init__(self, mi: ModelInfo, base: "BaseDialect", skip_end: bool = False):
        self.tables_m: Dict[str, DbTable] = {}
        self.tables: List[DbTable] = []
        self.mi = mi
        self.base = base
        self.skip_end = skip_end

    # ── Table bookkeeping ────────────────────────────────────────────────

    def set(self, names: List[str], mi: ModelInfo, fi: FieldInfo, inner: bool) -> DbTable:
        """Insert or overwrite the table for ``names``."""
        name = EXPR_SEP.join(names)
        jt = self.tables_m.get(name)
        if jt is not None:
            jt.name = name
            jt.mi = mi
            jt.fi = fi
            jt.inner = inner
            return jt
        jt = DbTable(len(self.tables) + 1, names, inner, mi, fi)
        self.tables_m[name] = jt
        self.tables.append(jt)
        return jt

    def add(self, names: List[str], mi: ModelInfo, fi: FieldInfo, inner: bool) -> Tuple[DbTable, bool]:
        """Insert the table for ``names`` unless present; returns ``(table, created)``."""
        name = EXPR_SEP.join(names)
        jt = self.tables_m.get(name)
        if jt is not None:
            return jt, False
        jt = DbTable(len(self.tables) + 1, names, inner, mi, fi)
        self.tables_m[name] = jt
        self.tables.append(jt)
        return jt, True

    def get(self, name: str) -> Optional[DbTable]:
        return self.tables_m.get(name)

    # ── Related selection ────────────────────────────────────────────────

    def loop_depth(self, depth: int, prefix: str, fi: FieldInfo, related: List[str]) -> List[str]:
        """Collect relation paths below ``fi`` down to ``depth`` levels."""
        if depth < 0 or fi.field_type == FieldType.REL_MANY_TO_MANY:
            return related
        prefix = fi.name if not prefix else prefix + EXPR_SEP + fi.name
        related.append(prefix)
        depth -= 1
        for rfi in fi.rel_model_info.fields.fields_rel:
            related = self.loop_depth(depth, prefix, rfi, related)
        return related

    def parse_related(self, rels: Sequence[str], depth: int) -> None:
        """
        Register joins for ``related_sel``.

        Explicit paths are always selected. Without explicit paths every
        relation is followed ``depth`` levels deep.
        """
        rels_num = len(rels)
        related = list(rels)
        rel_depth = depth
        if rels_num != 0:
            rel_depth = 0
        rel_depth -= 1
        for fi in self.mi.fields.fields_rel:
            related = self.loop_depth(rel_depth, "", fi, related)

        for i, path in enumerate(related):
            names: List[str] = []
            mmi = self.mi
            cancel = True
            jtl: Optional[DbTable] = None
            inner = True
            for ex in path.split(EXPR_SEP):
                fi = mmi.fields.get_by_any(ex)
                if fi is None or not fi.rel or fi.field_type == FieldType.REL_MANY_TO_MANY:
                    raise QueryFault(self.mi.full_name, "related_sel", f"unknown model/table name `{ex}`")
                names.append(fi.name)
                mmi = fi.rel_model_info
                if fi.null or self.skip_end:
                    inner = False
                jt = self.set(names, mmi, fi, inner)
                jt.jtl = jtl
                if fi.reverse:
                    cancel = False
                if cancel:
                    jt.sel = depth > 0
                    if i < rels_num:
                        jt.sel = True
                jtl = jt

    def get_join_sql(self) -> str:
        q = self.base.table_quote()
        join = ""
        for jt in self.tables:
            join += "INNER JOIN " if jt.inner else "LEFT OUTER JOIN "
            t1 = jt.jtl.index if jt.jtl is not None else "T0"
            t2 = jt.index
            table = jt.mi.table
            fi = jt.fi
            c1 = c2 = ""
            if (
                fi.field_type in (FieldType.REL_MANY_TO_MANY, FieldType.REL_REVERSE_MANY)
                or (fi.reverse and fi.reverse_field_info.field_type == FieldType.REL_MANY_TO_MANY)
            ):
                c1 = fi.mi.fields.pk.column
                for ffi in jt.mi.fields.fields_rel:
                    if fi.mi is ffi.rel_model_info:
                        c2 = ffi.column
                        break
            else:
                c1 = fi.column
                c2 = fi.rel_model_info.fields.pk.column
                if fi.reverse:
                    c1 = jt.mi.fields.pk.column
                    c2 = fi.reverse_field_info.column
            join += f"{q}{table}{q} {t2} ON {t2}.{q}{c2}{q} = {t1}.{q}{c1}{q} "
        return join

    # ── Expressions ──────────────────────────────────────────────────────

    def parse_exprs(
        self, mi: ModelInfo, exprs: Sequence[str]
    ) -> Tuple[str, str, Optional[FieldInfo], bool]:
        """
        Resolve a split field expression.

        Returns ``(table_alias, qualified_name, field_info, success)``, adding
        the joins the path needs. With ``skip_end`` a trailing primary key
        after a relation resolves to the relation column itself instead of
        joining the related table.
        """
        jtl: Optional[DbTable] = None
        fi: Optional[FieldInfo] = None
        fi_n: Optional[FieldInfo] = None
        mmi = mi
        num = len(exprs) - 1
        names: List[str] = []
        inner = True
        index = ""
        name = ""
        info: Optional[FieldInfo] = None

        for i, ex in enumerate(exprs):
            ok = False
            if fi_n is not None:
                fi = fi_n
                ok = True
                fi_n = None
            if i == 0:
                fi = mmi.fields.get_by_any(ex)
                ok = fi is not None
            if not ok:
                return "", "", None, False

            is_rel = fi.rel or fi.reverse
            names.append(fi.name)
            if fi.rel:
                mmi = fi.rel_model_info
                if fi.field_type == FieldType.REL_MANY_TO_MANY:
                    mmi = fi.rel_through_model_info
            elif fi.reverse:
                mmi = fi.reverse_field_info.mi

            ok_n = False
            if i < num:
                fi_n = mmi.fields.get_by_any(exprs[i + 1])
                ok_n = fi_n is not None

            jump_end = False
            if is_rel and (not fi.mi.is_through or num != i):
                if fi.null or self.skip_end:
                    inner = False
                if (self.skip_end and ok_n) or not self.skip_end:
                    if self.skip_end and ok_n and fi_n.pk:
                        jump_end = True
                    else:
                        jt, _ = self.add(names, mmi, fi, inner)
                        jt.jtl = jtl
                        jtl = jt

            if num != i and not jump_end:
                continue

            index = "T0" if i == 0 or jtl is None else jtl.index
            info = fi
            name = fi.name if jtl is None else jtl.name + EXPR_SEP + fi.name
            if fi.reverse and fi.reverse_field_info.field_type in (
                FieldType.REL_ONE_TO_ONE,
                FieldType.REL_FOREIGN_KEY,
            ):
                if jtl is not None:
                    index = jtl.index
                info = fi.reverse_field_info.mi.fields.pk
                name = info.name
            break

        return index, name, info, bool(index) and info is not None

    def get_cond_sql(
        self, cond: Optional[Condition], sub: bool, tz: datetime.tzinfo
    ) -> Tuple[str, List[Any]]:
        """Render ``cond`` as a WHERE clause (without the keyword when ``sub``)."""
        where = ""
        params: List[Any] = []
        if cond is None or cond.is_empty():
            return where, params

        q = self.base.table_quote()
        mi = self.mi
        for i, p in enumerate(cond.params):
            if i > 0:
                where += "OR " if p.is_or else "AND "
            if p.is_not:
                where += "NOT "
            if p.is_cond:
                w, ps = self.get_cond_sql(p.cond, True, tz)
                if w:
                    w = f"( {w}) "
                where += w
                params.extend(ps)
                continue

            exprs = list(p.exprs)
            operator = ""
            if exprs[-1] in OPERATORS:
                operator = exprs[-1]
                exprs = exprs[:-1]

            index, _, fi, suc = self.parse_exprs(mi, exprs)
            if not suc:
                raise _unknown(mi, "where", EXPR_SEP.join(p.exprs))
            if not operator:
                operator = "exact"

            args: List[Any] = []
            if p.is_raw:
                oper_sql = p.sql
            else:
                oper_sql, args = self.base.generate_operator_sql(mi, fi, operator, p.args, tz)

            left_col = f"{index}.{q}{fi.column}{q}"
            left_col = self.base.generate_operator_left_col(fi, operator, left_col)
            where += f"{left_col} {oper_sql} "
            params.extend(args)

        if not sub and where:
            where = "WHERE " + where
        return where, params

    def get_group_sql(self, groups: Sequence[str]) -> str:
        if not groups:
            return ""
        q = self.base.table_quote()
        group_sqls = []
        for group in groups:
            exprs = group.split(EXPR_SEP)
            index, _, fi, suc = self.parse_exprs(self.mi, exprs)
            if not suc:
                raise _unknown(self.mi, "group_by", EXPR_SEP.join(exprs))
            group_sqls.append(f"{index}.{q}{fi.column}{q}")
        return f"GROUP BY {', '.join(group_sqls)} "

    def get_order_sql(self, orders: Sequence[Order]) -> str:
        if not orders:
            return ""
        q = self.base.table_quote()
        order_sqls = []
        for order in orders:
            clause = order.column.split(EXPR_DOT)
            if order.raw:
                if len(clause) == 2:
                    order_sqls.append(f"{clause[0]}.{q}{clause[1]}{q} {order.sort_string()}")
                elif len(clause) == 1:
                    order_sqls.append(f"{q}{clause[0]}{q} {order.sort_string()}")
                else:
                    raise _unknown(self.mi, "order_by", EXPR_SEP.join(clause))
            else:
                exprs = order.column.split(EXPR_SEP)
                index, _, fi, suc = self.parse_exprs(self.mi, exprs)
                if not suc:
                    raise _unknown(self.mi, "order_by", order.column)
                order_sqls.append(f"{index}.{q}{fi.column}{q} {order.sort_string()}")
        return f"ORDER BY {', '.join(order_sqls)} "

    def get_limit_sql(self, mi: ModelInfo, offset: int, limit: int) -> str:
        if limit == 0:
            limit = settings.DEFAULT_ROWS_LIMIT
        if limit < 0:
            if offset > 0:
                max_limit = self.base.max_limit()
                if max_limit == 0:
                    return f"OFFSET {offset}"
                return f"LIMIT {max_limit} OFFSET {offset}"
            return ""
        if offset <= 0:
            return f"LIMIT {limit}"
        return f"LIMIT {limit} OFFSET {offset}"

    def get_index_sql(self, table_name: str, use_index: int, indexes: Sequence[str]) -> str:
        if not indexes:
            return ""
        return self.base.generate_specify_index(table_name, use_index, indexes)
