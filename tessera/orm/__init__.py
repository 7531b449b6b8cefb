"""
Tessera ORM - the object-level API.

Provides:
- Ormer / TxOrmer: CRUD, relation loading and transactions
- QuerySet: chainable queries with copy-on-write semantics
- QueryM2M, RawSet, Inserter
- Hints for load_related and connection options
- Filter chains around every Ormer call, with Prometheus, OpenTelemetry
  and mock builders
- DoNothingOrm for hand-written fakes
"""

from . import hints, mock
from .do_nothing import DoNothingOrm, DoNothingTxOrm
from .filters import (
    DefaultValueFilterChainBuilder,
    Filter,
    FilterChain,
    FilterOrmDecorator,
    FilterTxOrmDecorator,
    Invocation,
    add_global_filter_chain,
    clear_global_filter_chains,
)
from .inserter import Inserter
from .metrics import PrometheusFilterChainBuilder
from .ormer import Driver, Ormer, TxOrmer, new_orm, new_orm_using_db, new_orm_with_db
from .querym2m import QueryM2M
from .queryset import (
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
    QuerySet,
    col_value,
)
from .raw import RawPreparer, RawSet
from .tracing import OpenTelemetryFilterChainBuilder

__all__ = [
    "hints",
    "Ormer",
    "TxOrmer",
    "Driver",
    "new_orm",
    "new_orm_using_db",
    "new_orm_with_db",
    "QuerySet",
    "QueryM2M",
    "RawSet",
    "RawPreparer",
    "Inserter",
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
    "Invocation",
    "Filter",
    "FilterChain",
    "FilterOrmDecorator",
    "FilterTxOrmDecorator",
    "DefaultValueFilterChainBuilder",
    "add_global_filter_chain",
    "clear_global_filter_chains",
    "PrometheusFilterChainBuilder",
    "OpenTelemetryFilterChainBuilder",
    "mock",
    "DoNothingOrm",
    "DoNothingTxOrm",
]
