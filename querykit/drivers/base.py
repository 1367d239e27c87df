"""
QueryKit Drivers — Base driver contract.

Every backend variant implements this interface. The ``QueryBuilder`` holds
exactly one driver and asks it for everything that differs between
backends:
- Identifier quoting and literal rendering
- Pagination syntax and the random-ordering function
- Placeholder style (``?`` vs ``$1``)
- Upsert and RETURNING syntax
- Transaction control statements
- Classification of native errors into the fault taxonomy

The builder never branches on driver identity; it only reads
``capabilities`` and calls these methods.
"""

from __future__ import annotations

import json
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..cache import BoundedCache
from ..config import BuilderConfig
from ..faults import (
    Fault,
    QueryExecutionFault,
    ConnectionLostFault,
    ValidationFault,
)

logger = logging.getLogger("querykit.drivers")

__all__ = ["Driver", "DriverCapabilities"]


@dataclass(frozen=True)
class DriverCapabilities:
    """Describes what a specific backend supports."""

    supports_cte: bool = False
    supports_returning: bool = False
    supports_full_join: bool = False
    supports_replace: bool = False
    param_style: str = "qmark"  # qmark (?) | numeric ($1)
    max_identifier_length: int = 64
    name: str = "base"


class Driver(ABC):
    """
    Abstract driver.

    A driver owns its configuration and a handle to the transport (any object
    exposing ``async execute(sql, params)``). It holds no per-query state.
    """

    capabilities: DriverCapabilities = DriverCapabilities()
    quote_char: str = '"'
    identifier_cache_size: int = 1000

    def __init__(self, transport: Any, config: Optional[BuilderConfig] = None):
        self.transport = transport
        self.config = config or BuilderConfig()
        self._identifier_cache = BoundedCache(self.identifier_cache_size)

    @property
    def name(self) -> str:
        return self.capabilities.name

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} transport={type(self.transport).__name__}>"

    # ── Identifiers & literals ───────────────────────────────────────

    def escape_identifier(self, name: str) -> str:
        """
        Quote a table or column name, one dotted part at a time.

        ``users.id`` -> ``"users"."id"``; a trailing ``*`` part is kept bare
        (``u.*`` -> ``"u".*``). Embedded quote characters are doubled.
        """
        if not isinstance(name, str) or not name.strip():
            raise ValidationFault("Identifier must be a non-empty string", field=repr(name))

        cached = self._identifier_cache.get(name)
        if cached is not None:
            return cached

        parts = name.split(".")
        escaped: List[str] = []
        for index, part in enumerate(parts):
            if part == "*" and index == len(parts) - 1:
                escaped.append("*")
                continue
            self.validate_identifier_part(part, name)
            q = self.quote_char
            escaped.append(f"{q}{part.replace(q, q + q)}{q}")

        result = ".".join(escaped)
        self._identifier_cache.put(name, result)
        return result

    def validate_identifier_part(self, part: str, full_name: str) -> None:
        if not part:
            raise ValidationFault(f"Malformed identifier {full_name!r}: empty name part", field=full_name)
        if any(ch in part for ch in ("\x00", "\n", "\r")):
            raise ValidationFault(f"Malformed identifier {full_name!r}: control character", field=full_name)
        limit = self.capabilities.max_identifier_length
        if len(part) > limit:
            raise ValidationFault(
                f"Identifier {part!r} exceeds {limit} characters for {self.name}",
                field=full_name,
            )

    def escape_value(self, value: Any) -> str:
        """Render ``value`` as a SQL literal (diagnostics and DDL helpers only)."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return self.render_bool(value)
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            if not math.isfinite(value):
                raise ValidationFault(f"Cannot render non-finite number {value!r} as a literal")
            return repr(value)
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, datetime):
            return self.quote_string(self.render_datetime(value))
        if isinstance(value, (date, time)):
            return self.quote_string(value.isoformat())
        if isinstance(value, (bytes, bytearray, memoryview)):
            return self.render_bytes(bytes(value))
        if isinstance(value, (dict, list, tuple)):
            return self.quote_string(json.dumps(value, default=str))
        return self.quote_string(str(value))

    def render_bool(self, value: bool) -> str:
        return "TRUE" if value else "FALSE"

    def render_datetime(self, value: datetime) -> str:
        return value.isoformat(sep=" ")

    def render_bytes(self, value: bytes) -> str:
        return f"X'{value.hex()}'"

    def quote_string(self, value: str) -> str:
        return "'" + value.replace("'", "''") + "'"

    # ── Clause syntax ────────────────────────────────────────────────

    @abstractmethod
    def get_limit_syntax(self, limit: Optional[int], offset: int = 0) -> str:
        """Pagination clause; ``limit=None`` means offset only."""
        ...

    @abstractmethod
    def get_random_function(self) -> str:
        ...

    def convert_placeholders(self, sql: str) -> str:
        """Translate ``?`` markers to the native style. Identity by default."""
        return sql

    def is_raw_table(self, table: str) -> bool:
        return " " in table or "(" in table

    def qualify_table(self, table: str) -> str:
        """Escaped table reference for FROM/JOIN; raw expressions pass through."""
        if self.is_raw_table(table):
            return table
        return self.escape_identifier(table)

    def returning_clause(self) -> str:
        return " RETURNING *" if self.capabilities.supports_returning else ""

    @abstractmethod
    def upsert_clause(self, columns: Sequence[str], conflict_columns: Optional[Sequence[str]] = None) -> str:
        ...

    @staticmethod
    def validate_count(value: Any, label: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationFault(f"{label} must be a non-negative integer, got {value!r}", field=label)
        return value

    # ── Transactions ─────────────────────────────────────────────────

    begin_statement = "BEGIN"
    commit_statement = "COMMIT"
    rollback_statement = "ROLLBACK"

    async def begin_transaction(self) -> None:
        await self.execute(self.begin_statement)

    async def commit_transaction(self) -> None:
        await self.execute(self.commit_statement)

    async def rollback_transaction(self) -> None:
        await self.execute(self.rollback_statement)

    # ── Execution ────────────────────────────────────────────────────

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        """
        Send one statement to the transport.

        Returns a list of row dicts for result sets; write summaries returned
        by the transport as a mapping are passed through unchanged. Native
        exceptions are classified into ``QueryExecutionFault`` subclasses.
        """
        bound = list(params or [])
        native_sql = self.convert_placeholders(sql)
        logger.debug(f"[{self.name}] {native_sql} params={bound!r}")
        try:
            result = await self.transport.execute(native_sql, bound)
        except Fault:
            raise
        except Exception as exc:
            raise self.classify_error(exc, native_sql) from exc
        return self.normalize_result(result)

    def normalize_result(self, result: Any) -> Any:
        if result is None:
            return []
        if isinstance(result, Mapping):
            return dict(result)
        rows = getattr(result, "rows", result)
        if isinstance(rows, (str, bytes, int, float)):
            return rows
        return [row if isinstance(row, dict) else dict(row) for row in rows]

    # ── Error classification ─────────────────────────────────────────

    error_map: Dict[Any, type] = {}

    def classify_error(self, exc: BaseException, sql: Optional[str] = None) -> QueryExecutionFault:
        """Map a native exception onto the fault taxonomy."""
        code, message = self.error_code(exc)
        fault_cls = self.error_map.get(code) or self.fallback_error_class(code, exc)
        details = self.error_details(exc, message)
        return fault_cls(
            self.name,
            message,
            backend_code=code,
            sql=sql,
            column=details.pop("column", None),
            value=details.pop("value", None),
            constraint=details.pop("constraint", None),
            metadata=details,
        )

    def error_code(self, exc: BaseException) -> Tuple[Any, str]:
        return getattr(exc, "code", None), str(exc)

    def fallback_error_class(self, code: Any, exc: BaseException) -> type:
        if isinstance(exc, (ConnectionError, OSError)):
            return ConnectionLostFault
        return QueryExecutionFault

    def error_details(self, exc: BaseException, message: str) -> Dict[str, Any]:
        return {}

    # ── Introspection SQL ────────────────────────────────────────────

    @abstractmethod
    def schema_predicate(self) -> Tuple[str, List[Any]]:
        """``table_schema`` filter for information_schema queries."""
        ...

    def table_exists_query(self, table: str) -> Tuple[str, List[Any]]:
        predicate, params = self.schema_predicate()
        return (
            "SELECT COUNT(*) AS count FROM information_schema.tables "
            f"WHERE {predicate} AND table_name = ?",
            params + [table],
        )

    def list_tables_query(self) -> Tuple[str, List[Any]]:
        predicate, params = self.schema_predicate()
        return (
            "SELECT table_name AS table_name FROM information_schema.tables "
            f"WHERE {predicate} AND table_type = 'BASE TABLE' ORDER BY table_name",
            params,
        )

    def describe_table_query(self, table: str) -> Tuple[str, List[Any]]:
        predicate, params = self.schema_predicate()
        return (
            "SELECT column_name AS column_name, data_type AS data_type, "
            "is_nullable AS is_nullable, column_default AS column_default, "
            "character_maximum_length AS character_maximum_length "
            "FROM information_schema.columns "
            f"WHERE {predicate} AND table_name = ? ORDER BY ordinal_position",
            params + [table],
        )
