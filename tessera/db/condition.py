"""
WHERE-clause condition tree.

A ``Condition`` is an ordered list of clauses. Each clause is a field
expression with arguments (``"user__age__gt", 18``), a raw SQL fragment, or a
nested condition, flagged as AND/OR and optionally negated. Every builder
method returns a new ``Condition``; the receiver is never modified.

    cond = Condition().and_("age__gt", 18).or_("status__in", 1, 2)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from ..faults import ConditionFault

__all__ = ["EXPR_SEP", "CondValue", "Condition"]

EXPR_SEP = "__"


@dataclass(frozen=True)
class CondValue:
    """One clause of a condition."""

    exprs: Tuple[str, ...] = ()
    args: Tuple[Any, ...] = ()
    cond: Optional["Condition"] = None
    is_or: bool = False
    is_not: bool = False
    is_cond: bool = False
    is_raw: bool = False
    sql: str = ""


class Condition:
    """Immutable WHERE condition builder."""

    __slots__ = ("_params",)

    def __init__(self, params: Optional[List[CondValue]] = None):
        self._params: Tuple[CondValue, ...] = tuple(params or ())

    @property
    def params(self) -> Tuple[CondValue, ...]:
        return self._params

    def _with(self, value: CondValue) -> "Condition":
        return Condition(list(self._params) + [value])

    @staticmethod
    def _check(method: str, expr: str, args: tuple) -> None:
        if not expr or not args:
            raise ConditionFault(method, f"<Condition.{method}> args cannot empty")

    def raw(self, expr: str, sql: str) -> "Condition":
        """Attach a raw SQL fragment for ``expr``."""
        if not sql:
            raise ConditionFault("Raw", "<Condition.Raw> sql cannot empty")
        return self._with(CondValue(exprs=tuple(expr.split(EXPR_SEP)), sql=sql, is_raw=True))

    def and_(self, expr: str, *args: Any) -> "Condition":
        self._check("And", expr, args)
        return self._with(CondValue(exprs=tuple(expr.split(EXPR_SEP)), args=args))

    def and_not(self, expr: str, *args: Any) -> "Condition":
        self._check("AndNot", expr, args)
        return self._with(CondValue(exprs=tuple(expr.split(EXPR_SEP)), args=args, is_not=True))

    def or_(self, expr: str, *args: Any) -> "Condition":
        self._check("Or", expr, args)
        return self._with(CondValue(exprs=tuple(expr.split(EXPR_SEP)), args=args, is_or=True))

    def or_not(self, expr: str, *args: Any) -> "Condition":
        self._check("OrNot", expr, args)
        return self._with(
            CondValue(exprs=tuple(expr.split(EXPR_SEP)), args=args, is_not=True, is_or=True)
        )

    def _sub(self, method: str, cond: Optional["Condition"], is_or: bool, is_not: bool) -> "Condition":
        if cond is self:
            raise ConditionFault(method, f"<Condition.{method}> cannot use self as sub cond")
        if cond is None:
            return self.clone()
        return self._with(CondValue(cond=cond, is_cond=True, is_or=is_or, is_not=is_not))

    def and_cond(self, cond: Optional["Condition"]) -> "Condition":
        return self._sub("AndCond", cond, False, False)

    def and_not_cond(self, cond: Optional["Condition"]) -> "Condition":
        return self._sub("AndNotCond", cond, False, True)

    def or_cond(self, cond: Optional["Condition"]) -> "Condition":
        return self._sub("OrCond", cond, True, False)

    def or_not_cond(self, cond: Optional["Condition"]) -> "Condition":
        return self._sub("OrNotCond", cond, True, True)

    def is_empty(self) -> bool:
        return not self._params

    def clone(self) -> "Condition":
        return Condition(list(self._params))

    def __len__(self) -> int:
        return len(self._params)

    def __repr__(self) -> str:
        return f"<Condition clauses={len(self._params)}>"
