"""
QueryKit Drivers — MySQL.

Backtick quoting, ``LIMIT offset, count`` pagination, ``RAND()``,
``ON DUPLICATE KEY UPDATE`` upserts and errno-based error classification.
Works with exceptions raised by aiomysql/PyMySQL (``args == (errno, msg)``)
as well as transports that expose ``errno`` or a symbolic ``code``.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .base import Driver, DriverCapabilities
from ..faults import (
    ObjectNotFoundFault,
    ConstraintViolationFault,
    SQLSyntaxFault,
    PermissionDeniedFault,
    ConnectionLostFault,
    LockTimeoutFault,
    DataRangeFault,
    ValidationFault,
)

logger = logging.getLogger("querykit.drivers.mysql")

__all__ = ["MySQLDriver"]

# Largest LIMIT MySQL accepts; used when only an offset is requested.
MAX_LIMIT = 18446744073709551615

_ERRORS = {
    1146: ObjectNotFoundFault,       # ER_NO_SUCH_TABLE
    1054: ObjectNotFoundFault,       # ER_BAD_FIELD_ERROR
    1049: ObjectNotFoundFault,       # ER_BAD_DB_ERROR
    1062: ConstraintViolationFault,  # ER_DUP_ENTRY
    1452: ConstraintViolationFault,  # ER_NO_REFERENCED_ROW_2
    1451: ConstraintViolationFault,  # ER_ROW_IS_REFERENCED_2
    1048: ConstraintViolationFault,  # ER_BAD_NULL_ERROR
    3819: ConstraintViolationFault,  # ER_CHECK_CONSTRAINT_VIOLATED
    1064: SQLSyntaxFault,            # ER_PARSE_ERROR
    1045: PermissionDeniedFault,     # ER_ACCESS_DENIED_ERROR
    1044: PermissionDeniedFault,     # ER_DBACCESS_DENIED_ERROR
    1142: PermissionDeniedFault,     # ER_TABLEACCESS_DENIED_ERROR
    1040: ConnectionLostFault,       # ER_CON_COUNT_ERROR
    2003: ConnectionLostFault,       # CR_CONN_HOST_ERROR
    2006: ConnectionLostFault,       # CR_SERVER_GONE_ERROR
    2013: ConnectionLostFault,       # CR_SERVER_LOST
    1205: LockTimeoutFault,          # ER_LOCK_WAIT_TIMEOUT
    1213: LockTimeoutFault,          # ER_LOCK_DEADLOCK
    1406: DataRangeFault,            # ER_DATA_TOO_LONG
    1264: DataRangeFault,            # ER_WARN_DATA_OUT_OF_RANGE
}

_SYMBOLIC = {
    "ER_NO_SUCH_TABLE": 1146,
    "ER_BAD_FIELD_ERROR": 1054,
    "ER_BAD_DB_ERROR": 1049,
    "ER_DUP_ENTRY": 1062,
    "ER_NO_REFERENCED_ROW_2": 1452,
    "ER_ROW_IS_REFERENCED_2": 1451,
    "ER_BAD_NULL_ERROR": 1048,
    "ER_CHECK_CONSTRAINT_VIOLATED": 3819,
    "ER_PARSE_ERROR": 1064,
    "ER_ACCESS_DENIED_ERROR": 1045,
    "ER_DBACCESS_DENIED_ERROR": 1044,
    "ER_TABLEACCESS_DENIED_ERROR": 1142,
    "ER_CON_COUNT_ERROR": 1040,
    "ECONNREFUSED": 2003,
    "PROTOCOL_CONNECTION_LOST": 2013,
    "ER_LOCK_WAIT_TIMEOUT": 1205,
    "ER_LOCK_DEADLOCK": 1213,
    "ER_DATA_TOO_LONG": 1406,
    "ER_WARN_DATA_OUT_OF_RANGE": 1264,
}

_DETAIL_PATTERNS = [
    re.compile(r"Duplicate entry '(?P<value>.*)' for key '(?P<constraint>[^']+)'"),
    re.compile(r"Unknown column '(?P<column>[^']+)'"),
    re.compile(r"Column '(?P<column>[^']+)' cannot be null"),
    re.compile(r"Data too long for column '(?P<column>[^']+)'"),
    re.compile(r"Out of range value for column '(?P<column>[^']+)'"),
    re.compile(r"CONSTRAINT `(?P<constraint>[^`]+)` FOREIGN KEY \(`(?P<column>[^`]+)`\)"),
    re.compile(r"Check constraint '(?P<constraint>[^']+)' is violated"),
    re.compile(r"Table '(?P<table>[^']+)' doesn't exist"),
]


class MySQLDriver(Driver):
    """MySQL 5.7+/8.x driver."""

    capabilities = DriverCapabilities(
        supports_cte=False,
        supports_returning=False,
        supports_full_join=False,
        supports_replace=True,
        param_style="qmark",
        max_identifier_length=64,
        name="mysql",
    )
    quote_char = "`"
    error_map = _ERRORS

    begin_statement = "START TRANSACTION"

    def validate_identifier_part(self, part: str, full_name: str) -> None:
        super().validate_identifier_part(part, full_name)
        if part != part.rstrip(" "):
            raise ValidationFault(
                f"Malformed identifier {full_name!r}: names cannot end with a space",
                field=full_name,
            )

    def render_bool(self, value: bool) -> str:
        return "1" if value else "0"

    def render_datetime(self, value: datetime) -> str:
        return value.strftime("%Y-%m-%d %H:%M:%S")

    def quote_string(self, value: str) -> str:
        escaped = value.replace("\\", "\\\\").replace("\x00", "\\0").replace("'", "''")
        return f"'{escaped}'"

    def get_limit_syntax(self, limit: Optional[int], offset: int = 0) -> str:
        offset = self.validate_count(offset or 0, "offset")
        if limit is None:
            return f"LIMIT {offset}, {MAX_LIMIT}"
        limit = self.validate_count(limit, "limit")
        if offset > 0:
            return f"LIMIT {offset}, {limit}"
        return f"LIMIT {limit}"

    def get_random_function(self) -> str:
        return "RAND()"

    def upsert_clause(self, columns: Sequence[str], conflict_columns: Optional[Sequence[str]] = None) -> str:
        # conflict_columns ignored: MySQL resolves conflicts on any unique key.
        updates = ", ".join(
            f"{self.escape_identifier(c)} = VALUES({self.escape_identifier(c)})" for c in columns
        )
        return f" ON DUPLICATE KEY UPDATE {updates}"

    def schema_predicate(self) -> Tuple[str, List[Any]]:
        return "table_schema = DATABASE()", []

    def error_code(self, exc: BaseException) -> Tuple[Any, str]:
        errno = getattr(exc, "errno", None)
        message = str(exc)
        args = getattr(exc, "args", ())
        if errno is None and args and isinstance(args[0], int):
            errno = args[0]
            if len(args) > 1:
                message = str(args[1])
        if errno is None:
            code = getattr(exc, "code", None)
            errno = _SYMBOLIC.get(code, code)
        return errno, message

    def error_details(self, exc: BaseException, message: str) -> Dict[str, Any]:
        details: Dict[str, Any] = {}
        for pattern in _DETAIL_PATTERNS:
            match = pattern.search(message)
            if match:
                details.update({k: v for k, v in match.groupdict().items() if v is not None})
        return details
