"""
QueryKit - fluent SQL query builder for MySQL, MariaDB and PostgreSQL.

Quick start:
    from querykit import QueryBuilder

    qb = QueryBuilder(transport, "postgres")
    users = await qb.from_table("users").where("active", True).get()

The transport is any object exposing ``async execute(sql, params)``;
``querykit.db`` ships adapters for asyncpg and aiomysql.
"""

from .builder import QueryBuilder, QueryExecutor, ExecutedQuery, BuilderState
from .cache import BoundedCache
from .config import BuilderConfig
from .db import Database, AsyncpgTransport, AiomysqlTransport
from .drivers import Driver, DriverCapabilities, MySQLDriver, MariaDBDriver, PostgresDriver, create_driver
from .faults import (
    Fault,
    FaultDomain,
    Severity,
    ConfigInvalidFault,
    UnsupportedDriverFault,
    ValidationFault,
    CompilationFault,
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

__version__ = "0.1.0"

__all__ = [
    "QueryBuilder",
    "QueryExecutor",
    "ExecutedQuery",
    "BuilderState",
    "BoundedCache",
    "BuilderConfig",
    "Database",
    "AsyncpgTransport",
    "AiomysqlTransport",
    "Driver",
    "DriverCapabilities",
    "MySQLDriver",
    "MariaDBDriver",
    "PostgresDriver",
    "create_driver",
    "Fault",
    "FaultDomain",
    "Severity",
    "ConfigInvalidFault",
    "UnsupportedDriverFault",
    "ValidationFault",
    "CompilationFault",
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
