"""
Tessera Faults - Domain-specific fault types.

Provides concrete fault classes for each domain:
- CONFIG faults (settings, drivers)
- MODEL faults (registration, tags, bootstrap, lookups)
- QUERY faults (sentinels, SQL building, conditions)
- DATABASE faults (aliases, connections, transactions, statements)
"""

from typing import Any, Optional
from .core import Fault, FaultDomain, Severity


# ============================================================================
# CONFIG Faults
# ============================================================================

class ConfigFault(Fault):
    """Base class for configuration faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.FATAL,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.CONFIG,
            severity=severity,
            retryable=False,
            public=False,
            metadata=metadata,
        )


class ConfigInvalidFault(ConfigFault):
    """Configuration value is invalid."""

    def __init__(self, key: str, reason: str, **kwargs):
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Configuration key '{key}' is invalid: {reason}",
            metadata={"key": key, "reason": reason, **kwargs.get("metadata", {})},
        )


class DriverFault(ConfigFault):
    """Driver name registration conflict or unknown driver."""

    def __init__(self, driver: str, reason: str, **kwargs):
        super().__init__(
            code="DRIVER_INVALID",
            message=reason,
            metadata={"driver": driver, **kwargs.get("metadata", {})},
        )


# ============================================================================
# MODEL Faults (registry / metadata)
# ============================================================================

class ModelFault(Fault):
    """Base class for model metadata faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        retryable: bool = False,
        public: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.MODEL,
            severity=severity,
            retryable=retryable,
            public=public,
            metadata=metadata,
        )


class ModelRegistrationFault(ModelFault):
    """Model registration or bootstrap failed."""

    def __init__(self, model_name: str, reason: str, **kwargs):
        super().__init__(
            code="MODEL_REGISTRATION_FAILED",
            message=f"Failed to register model '{model_name}': {reason}",
            severity=Severity.FATAL,
            metadata={"model": model_name, "reason": reason, **kwargs.get("metadata", {})},
        )
        self.reason = reason


class ModelNotFoundFault(ModelFault):
    """Model not found in the registry."""

    def __init__(self, model_name: str, **kwargs):
        super().__init__(
            code="MODEL_NOT_FOUND",
            message=(
                f"<Ormer> table: `{model_name}` not found, "
                f"make sure it was registered with `register_model()`"
            ),
            metadata={"model": model_name, **kwargs.get("metadata", {})},
        )


class FieldNotFoundFault(ModelFault):
    """Field name is unknown for a model."""

    def __init__(self, field: str, model_name: str, **kwargs):
        super().__init__(
            code="FIELD_NOT_FOUND",
            message=f"<Ormer> cannot find field `{field}` for model `{model_name}`",
            metadata={"field": field, "model": model_name, **kwargs.get("metadata", {})},
        )


class FieldValueFault(ModelFault):
    """A value could not be converted to or from a field type."""

    def __init__(self, reason: str, **kwargs):
        super().__init__(
            code="FIELD_VALUE_INVALID",
            message=reason,
            metadata={**kwargs.get("metadata", {})},
        )


# ============================================================================
# QUERY Faults
# ============================================================================

class QueryFault(Fault):
    """SQL building failed (unknown field, bad operator, wrong args)."""

    def __init__(self, model: str, operation: str, reason: str, **kwargs):
        super().__init__(
            code=kwargs.pop("code", "QUERY_FAILED"),
            message=reason,
            domain=FaultDomain.QUERY,
            metadata={"model": model, "operation": operation, **kwargs.get("metadata", {})},
        )
        self.reason = reason


class ConditionFault(QueryFault):
    """Condition builder misuse."""

    def __init__(self, method: str, reason: str, **kwargs):
        super().__init__(
            model="<condition>",
            operation=method,
            reason=reason,
            code="CONDITION_INVALID",
            **kwargs,
        )


class InsertOrUpdateFault(QueryFault):
    """InsertOrUpdate is unsupported or misused for a dialect."""

    def __init__(self, driver: str, reason: str, **kwargs):
        super().__init__(
            model="<insert_or_update>",
            operation="insert_or_update",
            reason=reason,
            code="INSERT_OR_UPDATE_UNSUPPORTED",
            metadata={"driver": driver, **kwargs.get("metadata", {})},
        )


class _SentinelFault(Fault):
    """Fixed-message faults callers branch on."""

    domain = FaultDomain.QUERY

    def __init__(self, message: Optional[str] = None, **kwargs):
        super().__init__(
            code=self.code,
            message=message or self.message,
            domain=self.domain,
            metadata=kwargs.get("metadata"),
        )


class NoRowsFault(_SentinelFault):
    """Zero rows matched where one was expected."""

    code = "NO_ROWS"
    message = "<QuerySeter> no row found"


class MultiRowsFault(_SentinelFault):
    """More than one row matched where one was expected."""

    code = "MULTI_ROWS"
    message = "<QuerySeter> return multi rows"


class MissPKFault(_SentinelFault):
    """No primary key value (and no explicit columns) on the object."""

    code = "MISSING_PK"
    message = "missed pk value"


class ArgsFault(_SentinelFault):
    """Empty or mismatched arguments."""

    code = "ARGS_ERROR"
    message = "<Ormer> args error may be empty"


class NotImplementFault(_SentinelFault):
    """Dialect hook with no meaningful behavior."""

    code = "NOT_IMPLEMENTED"
    message = "have not implement"


class LastInsertIdUnavailableFault(_SentinelFault):
    """The driver cannot report the last insert id."""

    code = "LAST_INSERT_ID_UNAVAILABLE"
    message = "last insert id is unavailable"


# ============================================================================
# DATABASE Faults
# ============================================================================

class TxDoneFault(_SentinelFault):
    """Commit/rollback on a finished transaction."""

    domain = FaultDomain.DATABASE
    code = "TX_DONE"
    message = "<TxOrmer.Commit/Rollback> transaction already done"


class TxHasBeganFault(_SentinelFault):
    """Begin on an ormer that is already inside a transaction."""

    domain = FaultDomain.DATABASE
    code = "TX_HAS_BEGAN"
    message = "<Ormer.Begin> transaction already begin"


class StmtClosedFault(_SentinelFault):
    """Use of a prepared statement after close."""

    domain = FaultDomain.DATABASE
    code = "STMT_CLOSED"
    message = "<QuerySeter> stmt already closed"


class DatabaseConnectionFault(Fault):
    """Alias registration, ping or lookup failed."""

    def __init__(self, alias: str, reason: str, **kwargs):
        super().__init__(
            code="DB_CONNECTION_FAILED",
            message=reason,
            domain=FaultDomain.DATABASE,
            severity=Severity.FATAL,
            retryable=kwargs.get("retryable", False),
            metadata={"alias": alias, **kwargs.get("metadata", {})},
        )
