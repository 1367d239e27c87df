"""
Execution façade — timing, client-side timeout, last-query record and the
depth-counted transaction state machine.

One executor is shared by a builder and everything spawned from it
(``new_query()``, ``clone()``, grouped/sub-builders). Transaction depth is
tracked per asyncio task, so concurrent callers sharing an executor each
get their own BEGIN and COMMIT/ROLLBACK.

Nesting:
    await qb.transaction(outer)      # BEGIN
        await qb.transaction(inner)  # runs inline, no statement
    # COMMIT, or a single ROLLBACK if anything raised
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence

from ..config import BuilderConfig
from ..faults import QueryTimeoutFault, TransactionStateFault

logger = logging.getLogger("querykit.executor")

__all__ = ["QueryExecutor", "ExecutedQuery"]


@dataclass
class ExecutedQuery:
    """Record of the most recent statement sent to the driver."""

    sql: str
    params: List[Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "sql": self.sql,
            "params": list(self.params),
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
        }


def _consume_abandoned(task: "asyncio.Future") -> None:
    # Retrieve the outcome so an abandoned failure is not reported as unhandled.
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"Abandoned query finished with {task.exception()!r}")


class QueryExecutor:
    """Runs statements through a driver and tracks transaction depth per task."""

    def __init__(self, driver: Any, config: Optional[BuilderConfig] = None):
        self.driver = driver
        self.config = config or BuilderConfig()
        self.last_query: Optional[ExecutedQuery] = None
        # Entries vanish when their task is garbage collected.
        self._depths: "weakref.WeakKeyDictionary[Any, int]" = weakref.WeakKeyDictionary()

    def _owner(self) -> Any:
        try:
            task = asyncio.current_task()
        except RuntimeError:
            task = None
        return task if task is not None else self

    @property
    def transaction_depth(self) -> int:
        """Depth of the calling task's transaction; 0 when none is open."""
        return self._depths.get(self._owner(), 0)

    @property
    def in_transaction(self) -> bool:
        return self.transaction_depth > 0

    def _set_depth(self, depth: int) -> None:
        owner = self._owner()
        if depth > 0:
            self._depths[owner] = depth
        else:
            self._depths.pop(owner, None)

    async def run(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        """Execute one statement, enforcing ``query_timeout``."""
        bound = list(params or [])
        record = ExecutedQuery(sql=sql, params=bound)
        self.last_query = record
        started = time.perf_counter()
        try:
            timeout = self.config.timeout_seconds
            if timeout is None:
                return await self.driver.execute(sql, bound)

            task = asyncio.ensure_future(self.driver.execute(sql, bound))
            try:
                return await asyncio.wait_for(asyncio.shield(task), timeout)
            except asyncio.TimeoutError:
                task.add_done_callback(_consume_abandoned)
                logger.warning(f"Query abandoned after {self.config.query_timeout}ms: {sql}")
                raise QueryTimeoutFault(self.config.query_timeout, sql) from None
        finally:
            record.duration_ms = (time.perf_counter() - started) * 1000
            logger.debug(f"Executed in {record.duration_ms:.2f}ms: {sql}")

    # ── Transactions ─────────────────────────────────────────────────

    async def begin(self) -> None:
        if self.in_transaction:
            raise TransactionStateFault("begin", "a transaction is already active")
        await self.driver.begin_transaction()
        self._set_depth(1)
        logger.debug("Transaction started")

    async def commit(self) -> None:
        if not self.in_transaction:
            raise TransactionStateFault("commit", "no active transaction")
        try:
            await self.driver.commit_transaction()
        finally:
            self._set_depth(0)
        logger.debug("Transaction committed")

    async def rollback(self) -> None:
        if not self.in_transaction:
            raise TransactionStateFault("rollback", "no active transaction")
        try:
            await self.driver.rollback_transaction()
        finally:
            self._set_depth(0)
        logger.debug("Transaction rolled back")

    async def transaction(self, callback: Callable[..., Any], *args: Any) -> Any:
        """
        Run ``callback(*args)`` inside a transaction.

        Only the outermost call in a task issues BEGIN and COMMIT/ROLLBACK;
        nested calls from the same task run their callback directly. Other
        tasks are independent and open their own transaction. The original
        exception always propagates, even when the rollback itself fails.
        """
        outermost = not self.in_transaction
        if outermost:
            await self.begin()
        else:
            self._set_depth(self.transaction_depth + 1)

        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                result = await result
        except BaseException as exc:
            if outermost and self.in_transaction:
                try:
                    await self.rollback()
                except Exception as rollback_exc:
                    logger.error(f"Rollback failed after {exc!r}: {rollback_exc!r}")
            raise
        finally:
            if not outermost and self.transaction_depth > 1:
                self._set_depth(self.transaction_depth - 1)

        if outermost and self.in_transaction:
            await self.commit()
        return result
