"""TiDB dialect: MySQL wire protocol and SQL, reported under its own name."""

from __future__ import annotations

from .mysql import MySQLDialect

__all__ = ["TiDBDialect"]


class TiDBDialect(MySQLDialect):
    name = "tidb"
