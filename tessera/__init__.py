"""
Tessera - async object-relational mapper

Complete integration of:
- Models: annotated model classes, tag parsing, relation bootstrap
- DB: dialect SQL generation, async adapters, aliases, statement cache
- ORM: Ormer/QuerySet façade with transactions and filter chains
- Faults: structured error handling with fault domains
- Config: layered YAML/environment configuration
"""

__version__ = "0.1.0"

from . import settings
from .config import OrmConfig
from .db import (
    Condition,
    DriverType,
    Order,
    add_query_comment,
    clear_query_comments,
    close_databases,
    register_database,
    register_driver,
    sync_db,
)
from .faults import (
    Fault,
    MissPKFault,
    MultiRowsFault,
    NoRowsFault,
    QueryFault,
    TxDoneFault,
)
from .models import (
    Model,
    bootstrap,
    column,
    register_model,
    register_model_with_prefix,
    register_model_with_suffix,
)
from .orm import (
    Ormer,
    QuerySet,
    TxOrmer,
    add_global_filter_chain,
    col_value,
    hints,
    new_orm,
    new_orm_using_db,
    new_orm_with_db,
)

__all__ = [
    "__version__",
    "settings",
    "OrmConfig",
    "Condition",
    "DriverType",
    "Order",
    "add_query_comment",
    "clear_query_comments",
    "close_databases",
    "register_database",
    "register_driver",
    "sync_db",
    "Fault",
    "MissPKFault",
    "MultiRowsFault",
    "NoRowsFault",
    "QueryFault",
    "TxDoneFault",
    "Model",
    "bootstrap",
    "column",
    "register_model",
    "register_model_with_prefix",
    "register_model_with_suffix",
    "Ormer",
    "QuerySet",
    "TxOrmer",
    "add_global_filter_chain",
    "col_value",
    "hints",
    "new_orm",
    "new_orm_using_db",
    "new_orm_with_db",
]
