"""
QueryKit Faults - Domain-specific fault types.

Provides concrete fault classes for each domain:
- CONFIG faults
- BUILDER faults (validation, compilation)
- DRIVER faults (execution errors classified per backend, timeouts)
- TRANSACTION faults
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
            code=kwargs.pop("code", "CONFIG_INVALID"),
            message=f"Configuration key '{key}' is invalid: {reason}",
            metadata={"key": key, "reason": reason, **kwargs.get("metadata", {})},
        )
        self.key = key
        self.reason = reason


class UnsupportedDriverFault(ConfigInvalidFault):
    """Requested driver type has no implementation."""

    def __init__(self, driver: Any, supported: Optional[list[str]] = None, **kwargs):
        supported = supported or []
        reason = f"unsupported driver {driver!r}"
        if supported:
            reason += f" (expected one of: {', '.join(supported)})"
        super().__init__(
            "driver",
            reason,
            code="UNSUPPORTED_DRIVER",
            metadata={"driver": driver, "supported": supported, **kwargs.get("metadata", {})},
        )
        self.driver = driver


# ============================================================================
# BUILDER Faults
# ============================================================================

class BuilderFault(Fault):
    """Base class for query builder faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.BUILDER,
            severity=severity,
            retryable=False,
            public=False,
            metadata=metadata,
        )


class ValidationFault(BuilderFault):
    """Malformed builder input, rejected before any SQL is produced."""

    def __init__(self, reason: str, *, field: Optional[str] = None, **kwargs):
        super().__init__(
            code="QUERY_VALIDATION",
            message=reason,
            metadata={"field": field, **kwargs.get("metadata", {})},
        )
        self.reason = reason
        self.field = field


class CompilationFault(BuilderFault):
    """Builder state cannot be turned into a statement."""

    def __init__(self, reason: str, **kwargs):
        super().__init__(
            code="QUERY_COMPILATION",
            message=reason,
            metadata=kwargs.get("metadata", {}),
        )
        self.reason = reason


# ============================================================================
# DRIVER Faults
# ============================================================================

class DriverFault(Fault):
    """Base class for backend execution faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        retryable: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.DRIVER,
            severity=severity,
            retryable=retryable,
            public=False,
            metadata=metadata,
        )


class QueryExecutionFault(DriverFault):
    """
    A statement failed inside the backend.

    ``kind`` is the driver-independent category; ``backend_code`` keeps the
    native errno or SQLSTATE so callers can still branch on it.
    """

    kind = "unknown"
    fault_code = "QUERY_FAILED"
    default_retryable = False

    def __init__(
        self,
        driver: str,
        reason: str,
        *,
        backend_code: Any = None,
        sql: Optional[str] = None,
        column: Optional[str] = None,
        value: Any = None,
        constraint: Optional[str] = None,
        kind: Optional[str] = None,
        **kwargs,
    ):
        if kind is not None:
            self.kind = kind
        super().__init__(
            code=self.fault_code,
            message=f"{driver} query failed ({self.kind}): {reason}",
            retryable=self.default_retryable,
            metadata={
                "kind": self.kind,
                "driver": driver,
                "backend_code": backend_code,
                "sql": sql,
                "column": column,
                "value": value,
                "constraint": constraint,
                **kwargs.get("metadata", {}),
            },
        )
        self.driver = driver
        self.reason = reason
        self.backend_code = backend_code
        self.sql = sql
        self.column = column
        self.value = value
        self.constraint = constraint


class ObjectNotFoundFault(QueryExecutionFault):
    """Missing table, column, database or schema."""

    kind = "object_not_found"
    fault_code = "OBJECT_NOT_FOUND"


class ConstraintViolationFault(QueryExecutionFault):
    """Unique, foreign key, not-null or check constraint violated."""

    kind = "constraint_violation"
    fault_code = "CONSTRAINT_VIOLATION"


class SQLSyntaxFault(QueryExecutionFault):
    kind = "syntax_error"
    fault_code = "SQL_SYNTAX"


class PermissionDeniedFault(QueryExecutionFault):
    """Authentication failed or the user lacks a privilege."""

    kind = "permission_denied"
    fault_code = "PERMISSION_DENIED"


class ConnectionLostFault(QueryExecutionFault):
    """Connection refused, dropped, or the server ran out of slots."""

    kind = "connection"
    fault_code = "CONNECTION_LOST"
    default_retryable = True


class LockTimeoutFault(QueryExecutionFault):
    """Lock wait timeout or deadlock."""

    kind = "lock_timeout"
    fault_code = "LOCK_TIMEOUT"
    default_retryable = True


class DataRangeFault(QueryExecutionFault):
    """Value too long or out of range for its column."""

    kind = "data_range"
    fault_code = "DATA_RANGE"


class QueryTimeoutFault(DriverFault):
    """Statement exceeded the configured query timeout."""

    def __init__(self, timeout_ms: float, sql: Optional[str] = None, **kwargs):
        super().__init__(
            code="QUERY_TIMEOUT",
            message=f"Query exceeded timeout of {timeout_ms}ms",
            severity=Severity.WARN,
            retryable=True,
            metadata={"timeout_ms": timeout_ms, "sql": sql, **kwargs.get("metadata", {})},
        )
        self.timeout_ms = timeout_ms
        self.sql = sql


# ============================================================================
# TRANSACTION Faults
# ============================================================================

class TransactionStateFault(Fault):
    """Transaction call made in the wrong state (e.g. commit with none open)."""

    def __init__(self, operation: str, reason: str, **kwargs):
        super().__init__(
            code="TRANSACTION_STATE",
            message=f"Cannot {operation} transaction: {reason}",
            domain=FaultDomain.TRANSACTION,
            metadata={"operation": operation, "reason": reason, **kwargs.get("metadata", {})},
        )
        self.operation = operation
        self.reason = reason
