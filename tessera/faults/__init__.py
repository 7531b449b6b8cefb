"""
Tessera Faults - structured error taxonomy for the ORM.
"""

from .core import Fault, FaultDomain, Severity, DOMAIN_DEFAULTS
from .domains import (
    ConfigFault,
    ConfigInvalidFault,
    DriverFault,
    ModelFault,
    ModelRegistrationFault,
    ModelNotFoundFault,
    FieldNotFoundFault,
    FieldValueFault,
    QueryFault,
    ConditionFault,
    InsertOrUpdateFault,
    NoRowsFault,
    MultiRowsFault,
    MissPKFault,
    ArgsFault,
    NotImplementFault,
    LastInsertIdUnavailableFault,
    TxDoneFault,
    TxHasBeganFault,
    StmtClosedFault,
    DatabaseConnectionFault,
)

__all__ = [
    "Fault",
    "FaultDomain",
    "Severity",
    "DOMAIN_DEFAULTS",
    "ConfigFault",
    "ConfigInvalidFault",
    "DriverFault",
    "ModelFault",
    "ModelRegistrationFault",
    "ModelNotFoundFault",
    "FieldNotFoundFault",
    "FieldValueFault",
    "QueryFault",
    "ConditionFault",
    "InsertOrUpdateFault",
    "NoRowsFault",
    "MultiRowsFault",
    "MissPKFault",
    "ArgsFault",
    "NotImplementFault",
    "LastInsertIdUnavailableFault",
    "TxDoneFault",
    "TxHasBeganFault",
    "StmtClosedFault",
    "DatabaseConnectionFault",
]
