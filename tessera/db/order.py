"""
ORDER BY clauses.

``Order.parse("-created", "name")`` understands the ``-`` prefix for
descending order; ``Order(column, sort, raw=True)`` passes ``T1.col`` style
column references through untouched by the expression resolver.
"""

from __future__ import annotations

import enum
from typing import List

__all__ = ["Sort", "Order"]


class Sort(enum.Enum):
    NONE = ""
    ASCENDING = "ASC"
    DESCENDING = "DESC"


class Order:
    __slots__ = ("column", "sort", "raw")

    def __init__(self, column: str, sort: Sort = Sort.NONE, raw: bool = False):
        self.column = column
        self.sort = sort
        self.raw = raw

    @classmethod
    def parse(cls, *expressions: str) -> List["Order"]:
        orders = []
        for expr in expressions:
            if expr.startswith("-"):
                orders.append(cls(expr[1:], Sort.DESCENDING))
            else:
                orders.append(cls(expr, Sort.ASCENDING))
        return orders

    def sort_string(self) -> str:
        return self.sort.value

    def __repr__(self) -> str:
        return f"Order({self.column!r}, {self.sort.name}, raw={self.raw})"
