"""
QueryKit Faults - structured errors for configuration, building,
execution and transactions.
"""

from .core import Fault, FaultDomain, Severity, DOMAIN_DEFAULTS
from .domains import (
    ConfigFault,
    ConfigInvalidFault,
    UnsupportedDriverFault,
    BuilderFault,
    ValidationFault,
    CompilationFault,
    DriverFault,
    QueryExecutionFault,
    ObjectNotFoundFault,
    ConstraintViolationFault,
    SQLSyntaxFault,
    PermissionDeniedFault,
    ConnectionLostFault,
    LockTimeoutFault,
    DataRangeFault,
    QueryTimeoutFault,
    TransactionStateFault,
)

__all__ = [
    "Fault",
    "FaultDomain",
    "Severity",
    "DOMAIN_DEFAULTS",
    "ConfigFault",
    "ConfigInvalidFault",
    "UnsupportedDriverFault",
    "BuilderFault",
    "ValidationFault",
    "CompilationFault",
    "DriverFault",
    "QueryExecutionFault",
    "ObjectNotFoundFault",
    "ConstraintViolationFault",
    "SQLSyntaxFault",
    "PermissionDeniedFault",
    "ConnectionLostFault",
    "LockTimeoutFault",
    "DataRangeFault",
    "QueryTimeoutFault",
    "TransactionStateFault",
]
