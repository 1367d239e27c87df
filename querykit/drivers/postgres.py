"""
QueryKit Drivers — PostgreSQL.

Double-quote identifiers, ``LIMIT n OFFSET m`` pagination, ``RANDOM()``,
``?`` → ``$N`` placeholder conversion, schema qualification of bare table
names, ``ON CONFLICT`` upserts, ``RETURNING *`` on writes, CTE support and
SQLSTATE-based error classification (asyncpg ``sqlstate`` / psycopg
``pgcode`` / node-style ``code``).
"""

from __future__ import annotations

import logging
import re
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

logger = logging.getLogger("querykit.drivers.postgres")

__all__ = ["PostgresDriver"]

_ERRORS = {
    "42P01": ObjectNotFoundFault,       # undefined_table
    "42703": ObjectNotFoundFault,       # undefined_column
    "42883": ObjectNotFoundFault,       # undefined_function
    "3F000": ObjectNotFoundFault,       # invalid_schema_name
    "3D000": ObjectNotFoundFault,       # invalid_catalog_name
    "23505": ConstraintViolationFault,  # unique_violation
    "23503": ConstraintViolationFault,  # foreign_key_violation
    "23502": ConstraintViolationFault,  # not_null_violation
    "23514": ConstraintViolationFault,  # check_violation
    "42601": SQLSyntaxFault,            # syntax_error
    "28P01": PermissionDeniedFault,     # invalid_password
    "28000": PermissionDeniedFault,     # invalid_authorization_specification
    "42501": PermissionDeniedFault,     # insufficient_privilege
    "08006": ConnectionLostFault,       # connection_failure
    "08001": ConnectionLostFault,       # sqlclient_unable_to_establish_sqlconnection
    "08003": ConnectionLostFault,       # connection_does_not_exist
    "57P01": ConnectionLostFault,       # admin_shutdown
    "55P03": LockTimeoutFault,          # lock_not_available
    "40P01": LockTimeoutFault,          # deadlock_detected
    "57014": LockTimeoutFault,          # query_canceled (statement_timeout)
    "22001": DataRangeFault,            # string_data_right_truncation
    "22003": DataRangeFault,            # numeric_value_out_of_range
}

# SQLSTATE class fallbacks
_CLASSES = {
    "23": ConstraintViolationFault,
    "08": ConnectionLostFault,
    "28": PermissionDeniedFault,
    "40": LockTimeoutFault,
    "22": DataRangeFault,
}

_KEY_DETAIL_RE = re.compile(r"Key \((?P<column>[^)]+)\)=\((?P<value>.*?)\)")
_MESSAGE_PATTERNS = [
    re.compile(r'column "(?P<column>[^"]+)"'),
    re.compile(r'relation "(?P<table>[^"]+)" does not exist'),
    re.compile(r'constraint "(?P<constraint>[^"]+)"'),
]


class PostgresDriver(Driver):
    """PostgreSQL 11+ driver."""

    capabilities = DriverCapabilities(
        supports_cte=True,
        supports_returning=True,
        supports_full_join=True,
        supports_replace=False,
        param_style="numeric",
        max_identifier_length=63,
        name="postgres",
    )
    quote_char = '"'
    error_map = _ERRORS

    @property
    def schema(self) -> str:
        return self.config.search_path

    def get_limit_syntax(self, limit: Optional[int], offset: int = 0) -> str:
        offset = self.validate_count(offset or 0, "offset")
        if limit is None:
            return f"OFFSET {offset}"
        limit = self.validate_count(limit, "limit")
        return f"LIMIT {limit} OFFSET {offset}"

    def get_random_function(self) -> str:
        return "RANDOM()"

    def render_bytes(self, value: bytes) -> str:
        return f"'\\x{value.hex()}'::bytea"

    def convert_placeholders(self, sql: str) -> str:
        """
        Convert ``?`` placeholders to ``$1, $2, ...`` for asyncpg.

        Skips ``?`` inside single-quoted strings and double-quoted
        identifiers; doubled quotes inside either are kept intact.
        """
        result: List[str] = []
        param_idx = 0
        quote: Optional[str] = None
        i = 0
        while i < len(sql):
            ch = sql[i]
            if quote is None and ch in ("'", '"'):
                quote = ch
                result.append(ch)
            elif quote is not None and ch == quote:
                if i + 1 < len(sql) and sql[i + 1] == quote:
                    result.append(ch * 2)
                    i += 2
                    continue
                quote = None
                result.append(ch)
            elif ch == "?" and quote is None:
                param_idx += 1
                result.append(f"${param_idx}")
            else:
                result.append(ch)
            i += 1
        return "".join(result)

    def qualify_table(self, table: str) -> str:
        """Prefix bare table names with the configured schema."""
        if self.is_raw_table(table):
            return table
        if "." in table:
            return self.escape_identifier(table)
        return f"{self.escape_identifier(self.schema)}.{self.escape_identifier(table)}"

    def upsert_clause(self, columns: Sequence[str], conflict_columns: Optional[Sequence[str]] = None) -> str:
        if not conflict_columns:
            raise ValidationFault(
                "PostgreSQL upsert requires at least one conflict column",
                field="conflict_columns",
            )
        target = ", ".join(self.escape_identifier(c) for c in conflict_columns)
        updates = [c for c in columns if c not in conflict_columns]
        if not updates:
            return f" ON CONFLICT ({target}) DO NOTHING"
        assignments = ", ".join(
            f"{self.escape_identifier(c)} = EXCLUDED.{self.escape_identifier(c)}" for c in updates
        )
        return f" ON CONFLICT ({target}) DO UPDATE SET {assignments}"

    def schema_predicate(self) -> Tuple[str, List[Any]]:
        return "table_schema = ?", [self.schema]

    def schema_exists_query(self) -> Tuple[str, List[Any]]:
        return (
            "SELECT COUNT(*) AS count FROM information_schema.schemata WHERE schema_name = ?",
            [self.schema],
        )

    def error_code(self, exc: BaseException) -> Tuple[Any, str]:
        code = (
            getattr(exc, "sqlstate", None)
            or getattr(exc, "pgcode", None)
            or getattr(exc, "code", None)
        )
        return code, str(exc)

    def fallback_error_class(self, code: Any, exc: BaseException) -> type:
        if isinstance(code, str) and code[:2] in _CLASSES:
            return _CLASSES[code[:2]]
        return super().fallback_error_class(code, exc)

    def error_details(self, exc: BaseException, message: str) -> Dict[str, Any]:
        details: Dict[str, Any] = {}
        for pattern in _MESSAGE_PATTERNS:
            match = pattern.search(message)
            if match:
                details.update(match.groupdict())

        detail = getattr(exc, "detail", None)
        if detail:
            match = _KEY_DETAIL_RE.search(str(detail))
            if match:
                details.update(match.groupdict())

        for attr, key in (("column_name", "column"), ("constraint_name", "constraint"), ("table_name", "table")):
            value = getattr(exc, attr, None)
            if value:
                details[key] = value
        details["schema"] = self.schema
        return details
