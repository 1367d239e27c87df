"""
QueryKit Database — thin facade over a transport and a builder family.

Provides:
- ``builder()``: a fresh ``QueryBuilder`` per logical query, all sharing
  one driver, compiled-query cache and transaction state
- Shortcuts for one-off reads/writes and raw SQL
- Introspection (tables, columns, PostgreSQL schema helpers)
- Script execution and a health check
- Simple operation counters

Usage:
    transport = await AsyncpgTransport.connect("postgresql://app@localhost/app")
    db = Database(transport, "postgres", {"schema": "app"})

    users = await db.table("users").where("active", True).get()
    await db.transaction(lambda qb: qb.insert("audit", {"event": "login"}))
"""

from __future__ import annotations

import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from ..builder import QueryBuilder
from ..config import BuilderConfig
from ..faults import Fault, ValidationFault

logger = logging.getLogger("querykit.db")

__all__ = ["Database"]


class Database:
    """Facade bundling a transport, a driver type and a config."""

    def __init__(
        self,
        transport: Any,
        driver: str = "mysql",
        config: Union[BuilderConfig, Mapping[str, Any], None] = None,
    ):
        self.config = BuilderConfig.coerce(config)
        self.transport = transport
        self._root = QueryBuilder(transport, driver, self.config)
        self.metrics: Dict[str, Any] = {
            "queries": 0,
            "errors": 0,
            "transactions_committed": 0,
            "transactions_rolled_back": 0,
            "last_error": None,
        }

    @property
    def driver(self):
        return self._root.driver

    @property
    def in_transaction(self) -> bool:
        return self._root.in_transaction

    def builder(self) -> QueryBuilder:
        """Fresh builder; use one per concurrent caller."""
        return self._root.new_query()

    def table(self, name: str, alias: Optional[str] = None) -> QueryBuilder:
        return self.builder().from_table(name, alias)

    async def _track(self, operation: Any) -> Any:
        self.metrics["queries"] += 1
        try:
            return await operation
        except Fault as fault:
            self._record_error(fault)
            raise

    def _record_error(self, fault: Fault) -> None:
        self.metrics["errors"] += 1
        self.metrics["last_error"] = {
            "code": fault.code,
            "message": fault.message,
            "timestamp": time.time(),
        }

    # ── Shortcuts ────────────────────────────────────────────────────

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        return await self._track(self.builder().query(sql, params))

    async def insert(self, table: str, data: Any) -> Any:
        return await self._track(self.builder().insert(table, data))

    async def insert_or_update(self, table: str, data: Any, conflict_columns: Any = None) -> Any:
        return await self._track(self.builder().insert_or_update(table, data, conflict_columns))

    async def update(self, table: str, data: Mapping[str, Any], where: Any = None) -> Any:
        return await self._track(self.builder().update(table, data, where))

    async def delete(self, table: str, where: Any = None) -> Any:
        return await self._track(self.builder().delete(table, where))

    async def transaction(self, callback: Callable[[QueryBuilder], Any]) -> Any:
        """Run ``callback(builder)`` in a transaction (see ``QueryBuilder.transaction``)."""
        outermost = not self._root.in_transaction
        try:
            result = await self._root.executor.transaction(callback, self.builder())
        except Exception as exc:
            if outermost:
                self.metrics["transactions_rolled_back"] += 1
            if isinstance(exc, Fault):
                self._record_error(exc)
            raise
        if outermost:
            self.metrics["transactions_committed"] += 1
        return result

    async def run_operations(self, operations: Sequence[Any]) -> List[Any]:
        """
        Execute a list of operations in one transaction.

        Each item is either a callable taking a builder, or a mapping with
        ``type`` in query/insert/update/delete plus its arguments.
        """
        async def unit(qb: QueryBuilder) -> List[Any]:
            results = []
            for op in operations:
                if callable(op):
                    outcome = op(qb.new_query())
                    if inspect.isawaitable(outcome):
                        outcome = await outcome
                    results.append(outcome)
                    continue
                kind = op.get("type") if isinstance(op, Mapping) else None
                sub = qb.new_query()
                if kind == "query":
                    results.append(await sub.query(op["sql"], op.get("params")))
                elif kind == "insert":
                    results.append(await sub.insert(op["table"], op["data"]))
                elif kind == "update":
                    results.append(await sub.update(op["table"], op["data"], op.get("where")))
                elif kind == "delete":
                    results.append(await sub.delete(op["table"], op.get("where")))
                else:
                    raise ValidationFault(f"Unsupported operation type: {kind!r}", field="type")
            return results

        return await self.transaction(unit)

    async def execute_script(self, script: str) -> List[Any]:
        """Run ``;``-separated statements in one transaction."""
        statements = [s.strip() for s in script.split(";") if s.strip()]

        async def unit(qb: QueryBuilder) -> List[Any]:
            return [await qb.query(statement) for statement in statements]

        return await self.transaction(unit)

    # ── Introspection ────────────────────────────────────────────────

    async def table_exists(self, table: str) -> bool:
        sql, params = self.driver.table_exists_query(table)
        rows = await self.query(sql, params)
        return bool(rows) and int(rows[0].get("count") or 0) > 0

    async def list_tables(self) -> List[str]:
        sql, params = self.driver.list_tables_query()
        rows = await self.query(sql, params)
        return [row["table_name"] for row in rows]

    async def describe_table(self, table: str) -> List[Dict[str, Any]]:
        sql, params = self.driver.describe_table_query(table)
        return await self.query(sql, params)

    async def schema_exists(self) -> bool:
        """PostgreSQL schema check; other backends have no separate schemas."""
        if not hasattr(self.driver, "schema_exists_query"):
            return True
        sql, params = self.driver.schema_exists_query()
        rows = await self.query(sql, params)
        return bool(rows) and int(rows[0].get("count") or 0) > 0

    async def create_schema_if_not_exists(self) -> bool:
        if not hasattr(self.driver, "schema_exists_query"):
            return True
        schema = self.driver.escape_identifier(self.driver.schema)
        await self.query(f"CREATE SCHEMA IF NOT EXISTS {schema}")
        return True

    # ── Diagnostics ──────────────────────────────────────────────────

    async def health_check(self) -> Dict[str, Any]:
        """Run ``SELECT 1``; reports status instead of raising on backend faults."""
        started = time.perf_counter()
        try:
            await self.query("SELECT 1 AS health_check")
        except Fault as fault:
            logger.warning(f"Health check failed: {fault}")
            return {"status": "unhealthy", "error": fault.message, "code": fault.code, "timestamp": time.time()}
        return {
            "status": "healthy",
            "duration_ms": (time.perf_counter() - started) * 1000,
            "timestamp": time.time(),
        }

    def get_last_query(self):
        return self._root.get_last_query()

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.metrics,
            "driver": self.driver.name,
            "in_transaction": self.in_transaction,
            "transaction_depth": self._root.transaction_depth,
            "query_cache": self._root.cache.stats(),
            "config": self.config.to_dict(),
        }
