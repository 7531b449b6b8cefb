"""
Tessera SQL dialects.

One ``BaseDialect`` subclass per supported database; the alias layer picks
the instance matching the registered driver type.
"""

from .base import (
    FORCE_INDEX,
    IGNORE_INDEX,
    READ_FLAT,
    READ_LISTS,
    READ_MAPS,
    USE_INDEX,
    BaseDialect,
)
from .dm import DMDialect
from .mysql import MySQLDialect
from .oracle import OracleDialect
from .postgres import PostgresDialect
from .sqlite import SQLiteDialect
from .tidb import TiDBDialect

__all__ = [
    "BaseDialect",
    "MySQLDialect",
    "TiDBDialect",
    "SQLiteDialect",
    "PostgresDialect",
    "OracleDialect",
    "DMDialect",
    "USE_INDEX",
    "FORCE_INDEX",
    "IGNORE_INDEX",
    "READ_MAPS",
    "READ_LISTS",
    "READ_FLAT",
]
