"""
QueryKit Query Builder — fluent, parameterized, multi-backend SQL.

Chain methods accumulate clauses on an owned ``BuilderState``; terminal
methods compile, execute through the driver and reset the state, on
success and on failure alike. All user values are bound as ``?``
parameters; the PostgreSQL driver renumbers them to ``$N`` just before
execution.

Usage:
    from querykit import QueryBuilder

    qb = QueryBuilder(transport, "mysql")
    rows = await (
        qb.select(["id", "name"])
        .from_table("users")
        .where("active", 1)
        .where(lambda q: q.where("age", 18, ">=").or_where("verified", True))
        .order_by("name")
        .limit(10)
        .get()
    )
    # SELECT `id`, `name` FROM `users` WHERE `active` = ?
    #   AND (`age` >= ? OR `verified` = ?) ORDER BY `name` ASC LIMIT 10
"""

from __future__ import annotations

import inspect
import logging
import re
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..cache import BoundedCache
from ..config import BuilderConfig
from ..drivers import Driver, create_driver
from ..faults import CompilationFault, ValidationFault
from .conditions import (
    UNSET,
    OPERATORS,
    Equality,
    Grouped,
    MappingEquality,
    Raw,
    count_placeholders,
    inline_placeholders,
    normalize_operator,
    parse_condition,
)
from .executor import ExecutedQuery, QueryExecutor
from .state import BuilderState

logger = logging.getLogger("querykit.builder")

__all__ = ["QueryBuilder", "JOIN_TYPES"]

JOIN_TYPES = ("INNER", "LEFT", "RIGHT", "FULL", "CROSS")
_DIRECTIONS = ("ASC", "DESC")
_SUBQUERY_OPERATORS = OPERATORS | {"IN", "NOT IN"}
_IDENTIFIER_RE = re.compile(r"^[^\W\d]\w*(\.[^\W\d]\w*)*(\.\*)?$")

SubqueryArg = Union["QueryBuilder", Callable[["QueryBuilder"], Any]]


def _is_raw(expr: str) -> bool:
    """Anything that is not a plain (dotted) identifier is an expression."""
    return not _IDENTIFIER_RE.match(expr)


class QueryBuilder:
    """
    Fluent SQL builder bound to one driver.

    Args:
        transport: object exposing ``async execute(sql, params)``
        driver_type: ``"mysql"``, ``"mariadb"`` or ``"postgres"``
        config: ``BuilderConfig``, a mapping of options, or None
    """

    def __init__(
        self,
        transport: Any,
        driver_type: str = "mysql",
        config: Union[BuilderConfig, Mapping[str, Any], None] = None,
        *,
        driver: Optional[Driver] = None,
        executor: Optional[QueryExecutor] = None,
        cache: Optional[BoundedCache] = None,
        is_subquery: bool = False,
    ):
        self.config = BuilderConfig.coerce(config)
        self.transport = transport
        self.driver = driver or create_driver(driver_type, transport, self.config)
        self.cache = cache if cache is not None else BoundedCache(self.config.max_query_cache)
        self.executor = executor or QueryExecutor(self.driver, self.config)
        self.state = BuilderState(is_subquery=is_subquery)

    def __repr__(self) -> str:
        return f"<QueryBuilder driver={self.driver.name} from={self.state.from_table or None!r}>"

    # ── Lifecycle ────────────────────────────────────────────────────

    def new_query(self, *, is_subquery: bool = False) -> "QueryBuilder":
        """Fresh, empty builder sharing driver, config, cache and executor."""
        return QueryBuilder(
            self.transport,
            config=self.config,
            driver=self.driver,
            executor=self.executor,
            cache=self.cache,
            is_subquery=is_subquery,
        )

    def clone(self) -> "QueryBuilder":
        """Independent copy of the current state."""
        copy = self.new_query(is_subquery=self.state.is_subquery)
        copy.state = self.state.copy()
        return copy

    def reset(self) -> "QueryBuilder":
        self.state = BuilderState(is_subquery=self.state.is_subquery)
        return self

    @property
    def params(self) -> List[Any]:
        return self.state.bindings()

    bindings = params

    @property
    def is_subquery(self) -> bool:
        return self.state.is_subquery

    @property
    def in_transaction(self) -> bool:
        return self.executor.in_transaction

    @property
    def transaction_depth(self) -> int:
        return self.executor.transaction_depth

    # ── Helpers ──────────────────────────────────────────────────────

    def _check_ceiling(self, count: int, limit: int, label: str) -> None:
        if self.config.validation and count > limit:
            raise ValidationFault(f"Too many {label}: maximum is {limit}", field=label)

    def _column(self, expr: str) -> str:
        """Escape plain identifiers; pass expressions like ``COUNT(id)`` through."""
        if not isinstance(expr, str) or not expr.strip():
            raise ValidationFault("Column expression must be a non-empty string", field=repr(expr))
        if expr == "*" or _is_raw(expr):
            return expr
        return self.driver.escape_identifier(expr)

    def _table_ref(self, table: str, alias: Optional[str] = None) -> str:
        if not isinstance(table, str) or not table.strip():
            raise ValidationFault("Table name must be a non-empty string", field="table")
        # CTE names are never schema-qualified
        if table in self.state.cte_names:
            ref = self.driver.escape_identifier(table)
        else:
            ref = self.driver.qualify_table(table)
        if alias:
            ref += f" AS {self.driver.escape_identifier(alias)}"
        return ref

    def _compile_subquery(self, query: SubqueryArg) -> Tuple[str, List[Any]]:
        if isinstance(query, QueryBuilder):
            sub = query
        elif callable(query):
            sub = self.new_query(is_subquery=True)
            result = query(sub)
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                raise ValidationFault("Subquery callbacks must be synchronous")
            if isinstance(result, QueryBuilder):
                sub = result
        else:
            raise ValidationFault(
                f"Subquery must be a QueryBuilder or a callable, got {type(query).__name__}"
            )
        return sub.build_select_query(), sub.params

    def _clauses(self, section: str) -> List[str]:
        return getattr(self.state, f"{section}_clauses")

    def _append(self, section: str, fragment: str, params: Sequence[Any], connector: str) -> None:
        """Append a fragment; only non-first fragments get a connector."""
        clauses = self._clauses(section)
        if section == "where":
            self._check_ceiling(len(clauses) + 1, self.config.max_where_conditions, "WHERE conditions")
        prefix = f"{connector} " if clauses else ""
        clauses.append(prefix + fragment)
        getattr(self.state, f"{section}_params").extend(params)

    def _comparison(self, section: str, column: str, value: Any, operator: str) -> Tuple[str, List[Any]]:
        col = self.driver.escape_identifier(column) if section == "where" else self._column(column)
        if value is None:
            if operator == "=":
                return f"{col} IS NULL", []
            if operator in ("!=", "<>"):
                return f"{col} IS NOT NULL", []
            raise ValidationFault(f"Cannot compare NULL with operator {operator!r}", field=column)
        if isinstance(value, QueryBuilder):
            sql, params = self._compile_subquery(value)
            return f"{col} {operator} ({sql})", params
        return f"{col} {operator} ?", [value]

    def _condition(self, section: str, condition: Any, connector: str) -> "QueryBuilder":
        # OR with nothing before it is meaningless; it degrades to AND.
        if connector == "OR" and not self._clauses(section):
            connector = "AND"

        if isinstance(condition, Equality):
            fragment, params = self._comparison(section, condition.field, condition.value, condition.operator)
            self._append(section, fragment, params, connector)

        elif isinstance(condition, MappingEquality):
            if connector == "OR":
                parts: List[str] = []
                params: List[Any] = []
                for column, value in condition.mapping.items():
                    fragment, values = self._comparison(section, column, value, "=")
                    parts.append(fragment)
                    params.extend(values)
                self._append(section, f"({' AND '.join(parts)})", params, "OR")
            else:
                for column, value in condition.mapping.items():
                    fragment, values = self._comparison(section, column, value, "=")
                    self._append(section, fragment, values, "AND")

        elif isinstance(condition, Grouped):
            sub = self.new_query(is_subquery=True)
            result = condition.callback(sub)
            if isinstance(result, QueryBuilder):
                sub = result
            inner = getattr(sub.state, f"{section}_clauses")
            if inner:
                inner_params = getattr(sub.state, f"{section}_params")
                self._append(section, f"({' '.join(inner)})", inner_params, connector)

        elif isinstance(condition, Raw):
            bindings = list(condition.bindings)
            expected = count_placeholders(condition.expression)
            if expected != len(bindings):
                raise ValidationFault(
                    f"Raw condition has {expected} placeholder(s) but {len(bindings)} binding(s)",
                    field=condition.expression,
                )
            self._append(section, condition.expression, bindings, connector)

        return self

    # ── SELECT ───────────────────────────────────────────────────────

    def select(self, fields: Union[str, Sequence[str], Mapping[str, str]] = "*") -> "QueryBuilder":
        """
        Set the select list (replaces any previous one).

        Accepts ``"*"``, one expression, a sequence of expressions, or a
        mapping of ``expression -> alias``.
        """
        if isinstance(fields, str):
            items = [self._column(fields)]
        elif isinstance(fields, Mapping):
            items = [
                f"{self._column(expr)} AS {self.driver.escape_identifier(alias)}"
                for expr, alias in fields.items()
            ]
        elif isinstance(fields, Sequence):
            items = [self._column(f) for f in fields]
        else:
            raise ValidationFault(f"Unsupported select fields {fields!r}", field="select")
        if not items:
            raise ValidationFault("Select list must not be empty", field="select")
        self._check_ceiling(len(items), self.config.max_select_fields, "SELECT fields")
        self.state.select_fields = items
        return self

    def select_raw(self, expression: str) -> "QueryBuilder":
        if not isinstance(expression, str) or not expression.strip():
            raise ValidationFault("Raw select expression must not be empty", field="select")
        self.state.select_fields = [expression]
        return self

    def _aggregate(self, function: str, field: str, alias: Optional[str]) -> "QueryBuilder":
        expr = f"{function}({self._column(field)})"
        if alias:
            expr += f" AS {self.driver.escape_identifier(alias)}"
        self.state.select_fields = [expr]
        return self

    def select_max(self, field: str, alias: Optional[str] = None) -> "QueryBuilder":
        return self._aggregate("MAX", field, alias)

    def select_min(self, field: str, alias: Optional[str] = None) -> "QueryBuilder":
        return self._aggregate("MIN", field, alias)

    def select_avg(self, field: str, alias: Optional[str] = None) -> "QueryBuilder":
        return self._aggregate("AVG", field, alias)

    def select_sum(self, field: str, alias: Optional[str] = None) -> "QueryBuilder":
        return self._aggregate("SUM", field, alias)

    def select_count(self, field: str = "*", alias: Optional[str] = None) -> "QueryBuilder":
        return self._aggregate("COUNT", field, alias)

    def distinct(self) -> "QueryBuilder":
        self.state.distinct_flag = True
        return self

    # ── FROM ─────────────────────────────────────────────────────────

    def from_table(self, table: str, alias: Optional[str] = None) -> "QueryBuilder":
        """Set the FROM table; the driver applies schema qualification."""
        self.state.from_table = self._table_ref(table, alias)
        self.state.from_params = []
        return self

    def from_subquery(self, query: SubqueryArg, alias: str) -> "QueryBuilder":
        sql, params = self._compile_subquery(query)
        self.state.from_table = f"({sql}) AS {self.driver.escape_identifier(alias)}"
        self.state.from_params = list(params)
        return self

    # ── JOIN ─────────────────────────────────────────────────────────

    def _join_type(self, join_type: str) -> str:
        jt = join_type.upper().strip() if isinstance(join_type, str) else join_type
        if jt not in JOIN_TYPES:
            raise ValidationFault(
                f"Invalid join type {join_type!r} (expected one of: {', '.join(JOIN_TYPES)})",
                field="join_type",
            )
        if jt == "FULL" and not self.driver.capabilities.supports_full_join:
            raise ValidationFault(f"FULL JOIN is not supported by {self.driver.name}", field="join_type")
        return jt

    def _add_join(self, fragment: str, params: Sequence[Any]) -> None:
        self._check_ceiling(len(self.state.join_clauses) + 1, self.config.max_joins, "JOINs")
        self.state.join_clauses.append(fragment)
        self.state.join_params.extend(params)

    def join(
        self,
        table: str,
        condition: Optional[str] = None,
        alias: Optional[str] = None,
        join_type: str = "INNER",
    ) -> "QueryBuilder":
        """
        Add a JOIN. ``condition`` is a raw, unparameterized expression
        such as ``"u.id = o.user_id"``.
        """
        jt = self._join_type(join_type)
        ref = self._table_ref(table, alias)
        if jt == "CROSS":
            self._add_join(f"CROSS JOIN {ref}", [])
            return self
        if not condition or not str(condition).strip():
            raise ValidationFault(f"{jt} JOIN requires a condition", field="condition")
        self._add_join(f"{jt} JOIN {ref} ON {condition}", [])
        return self

    def left_join(self, table: str, condition: str, alias: Optional[str] = None) -> "QueryBuilder":
        return self.join(table, condition, alias, "LEFT")

    def right_join(self, table: str, condition: str, alias: Optional[str] = None) -> "QueryBuilder":
        return self.join(table, condition, alias, "RIGHT")

    def full_join(self, table: str, condition: str, alias: Optional[str] = None) -> "QueryBuilder":
        return self.join(table, condition, alias, "FULL")

    def cross_join(self, table: str, alias: Optional[str] = None) -> "QueryBuilder":
        return self.join(table, None, alias, "CROSS")

    def join_subquery(
        self,
        query: SubqueryArg,
        alias: str,
        condition: Optional[str] = None,
        join_type: str = "INNER",
    ) -> "QueryBuilder":
        jt = self._join_type(join_type)
        sql, params = self._compile_subquery(query)
        ref = f"({sql}) AS {self.driver.escape_identifier(alias)}"
        if jt == "CROSS":
            self._add_join(f"CROSS JOIN {ref}", params)
            return self
        if not condition:
            raise ValidationFault(f"{jt} JOIN requires a condition", field="condition")
        self._add_join(f"{jt} JOIN {ref} ON {condition}", params)
        return self

    # ── WHERE ────────────────────────────────────────────────────────

    def where(self, field: Any, value: Any = UNSET, operator: str = "=") -> "QueryBuilder":
        """
        Add an AND condition.

            where("age", 18, ">")               `age` > ?
            where({"a": 1, "b": 2})             `a` = ? AND `b` = ?
            where(lambda q: q.where(...))       ( ... )
            where("deleted_at IS NULL")         raw, no bindings
            where("email", None)                `email` IS NULL
        """
        return self._condition("where", parse_condition(field, value, operator), "AND")

    def or_where(self, field: Any, value: Any = UNSET, operator: str = "=") -> "QueryBuilder":
        return self._condition("where", parse_condition(field, value, operator), "OR")

    def where_raw(self, sql: str, bindings: Optional[Sequence[Any]] = None) -> "QueryBuilder":
        return self._condition("where", Raw(sql, tuple(bindings or ())), "AND")

    def or_where_raw(self, sql: str, bindings: Optional[Sequence[Any]] = None) -> "QueryBuilder":
        return self._condition("where", Raw(sql, tuple(bindings or ())), "OR")

    def _where_fragment(self, fragment: str, params: Sequence[Any], connector: str) -> "QueryBuilder":
        if connector == "OR" and not self.state.where_clauses:
            connector = "AND"
        self._append("where", fragment, params, connector)
        return self

    def _in(self, field: str, values: Any, negate: bool, connector: str) -> "QueryBuilder":
        col = self.driver.escape_identifier(field)
        keyword = "NOT IN" if negate else "IN"
        if isinstance(values, QueryBuilder) or callable(values):
            sql, params = self._compile_subquery(values)
            return self._where_fragment(f"{col} {keyword} ({sql})", params, connector)
        if isinstance(values, (str, bytes, Mapping)) or not isinstance(values, (Sequence, set, frozenset)):
            raise ValidationFault(f"where_{keyword.lower().replace(' ', '_')} requires a non-empty sequence", field=field)
        values = list(values)
        if not values:
            raise ValidationFault(f"where_{keyword.lower().replace(' ', '_')} requires a non-empty sequence", field=field)
        placeholders = ", ".join("?" for _ in values)
        return self._where_fragment(f"{col} {keyword} ({placeholders})", values, connector)

    def where_in(self, field: str, values: Any) -> "QueryBuilder":
        return self._in(field, values, False, "AND")

    def where_not_in(self, field: str, values: Any) -> "QueryBuilder":
        return self._in(field, values, True, "AND")

    def or_where_in(self, field: str, values: Any) -> "QueryBuilder":
        return self._in(field, values, False, "OR")

    def or_where_not_in(self, field: str, values: Any) -> "QueryBuilder":
        return self._in(field, values, True, "OR")

    def where_like(self, field: str, pattern: Any) -> "QueryBuilder":
        return self._where_fragment(f"{self.driver.escape_identifier(field)} LIKE ?", [pattern], "AND")

    def or_where_like(self, field: str, pattern: Any) -> "QueryBuilder":
        return self._where_fragment(f"{self.driver.escape_identifier(field)} LIKE ?", [pattern], "OR")

    def where_not_like(self, field: str, pattern: Any) -> "QueryBuilder":
        return self._where_fragment(f"{self.driver.escape_identifier(field)} NOT LIKE ?", [pattern], "AND")

    def or_where_not_like(self, field: str, pattern: Any) -> "QueryBuilder":
        return self._where_fragment(f"{self.driver.escape_identifier(field)} NOT LIKE ?", [pattern], "OR")

    def _between(self, field: str, start: Any, end: Any, negate: bool, connector: str) -> "QueryBuilder":
        if start is None or end is None:
            raise ValidationFault("BETWEEN requires two non-null bounds", field=field)
        keyword = "NOT BETWEEN" if negate else "BETWEEN"
        col = self.driver.escape_identifier(field)
        return self._where_fragment(f"{col} {keyword} ? AND ?", [start, end], connector)

    def where_between(self, field: str, start: Any, end: Any) -> "QueryBuilder":
        return self._between(field, start, end, False, "AND")

    def where_not_between(self, field: str, start: Any, end: Any) -> "QueryBuilder":
        return self._between(field, start, end, True, "AND")

    def or_where_between(self, field: str, start: Any, end: Any) -> "QueryBuilder":
        return self._between(field, start, end, False, "OR")

    def where_null(self, field: str) -> "QueryBuilder":
        return self._where_fragment(f"{self.driver.escape_identifier(field)} IS NULL", [], "AND")

    def where_not_null(self, field: str) -> "QueryBuilder":
        return self._where_fragment(f"{self.driver.escape_identifier(field)} IS NOT NULL", [], "AND")

    def or_where_null(self, field: str) -> "QueryBuilder":
        return self._where_fragment(f"{self.driver.escape_identifier(field)} IS NULL", [], "OR")

    def or_where_not_null(self, field: str) -> "QueryBuilder":
        return self._where_fragment(f"{self.driver.escape_identifier(field)} IS NOT NULL", [], "OR")

    def where_subquery(self, field: str, operator: str, query: SubqueryArg) -> "QueryBuilder":
        op = normalize_operator(operator, _SUBQUERY_OPERATORS)
        sql, params = self._compile_subquery(query)
        return self._where_fragment(f"{self.driver.escape_identifier(field)} {op} ({sql})", params, "AND")

    def _exists(self, query: SubqueryArg, negate: bool, connector: str) -> "QueryBuilder":
        sql, params = self._compile_subquery(query)
        keyword = "NOT EXISTS" if negate else "EXISTS"
        return self._where_fragment(f"{keyword} ({sql})", params, connector)

    def where_exists(self, query: SubqueryArg) -> "QueryBuilder":
        return self._exists(query, False, "AND")

    def where_not_exists(self, query: SubqueryArg) -> "QueryBuilder":
        return self._exists(query, True, "AND")

    def or_where_exists(self, query: SubqueryArg) -> "QueryBuilder":
        return self._exists(query, False, "OR")

    def or_where_not_exists(self, query: SubqueryArg) -> "QueryBuilder":
        return self._exists(query, True, "OR")

    # ── GROUP BY / HAVING ────────────────────────────────────────────

    def group_by(self, fields: Union[str, Sequence[str]]) -> "QueryBuilder":
        items = [fields] if isinstance(fields, str) else list(fields)
        if not items:
            raise ValidationFault("group_by requires at least one field", field="group_by")
        compiled = [self._column(f) for f in items]
        self._check_ceiling(
            len(self.state.group_by_fields) + len(compiled),
            self.config.max_group_by_fields,
            "GROUP BY fields",
        )
        self.state.group_by_fields.extend(compiled)
        return self

    def group_by_raw(self, expression: str) -> "QueryBuilder":
        self._check_ceiling(len(self.state.group_by_fields) + 1, self.config.max_group_by_fields, "GROUP BY fields")
        self.state.group_by_fields.append(expression)
        return self

    def having(self, field: Any, value: Any = UNSET, operator: str = "=") -> "QueryBuilder":
        return self._condition("having", parse_condition(field, value, operator), "AND")

    def or_having(self, field: Any, value: Any = UNSET, operator: str = "=") -> "QueryBuilder":
        return self._condition("having", parse_condition(field, value, operator), "OR")

    def having_raw(self, sql: str, bindings: Optional[Sequence[Any]] = None) -> "QueryBuilder":
        return self._condition("having", Raw(sql, tuple(bindings or ())), "AND")

    # ── ORDER BY ─────────────────────────────────────────────────────

    def _add_order(self, fragment: str) -> "QueryBuilder":
        self._check_ceiling(len(self.state.order_by_fields) + 1, self.config.max_order_by_fields, "ORDER BY fields")
        self.state.order_by_fields.append(fragment)
        return self

    def order_by(self, field: str, direction: str = "ASC") -> "QueryBuilder":
        dir_ = direction.upper().strip() if isinstance(direction, str) else direction
        if dir_ not in _DIRECTIONS:
            raise ValidationFault(f"Sort direction must be ASC or DESC, got {direction!r}", field="direction")
        return self._add_order(f"{self._column(field)} {dir_}")

    def order_by_desc(self, field: str) -> "QueryBuilder":
        return self.order_by(field, "DESC")

    def order_by_raw(self, expression: str) -> "QueryBuilder":
        return self._add_order(expression)

    def order_by_random(self) -> "QueryBuilder":
        return self._add_order(self.driver.get_random_function())

    # ── LIMIT / OFFSET ───────────────────────────────────────────────

    def limit(self, count: int, offset: Optional[int] = None) -> "QueryBuilder":
        self.state.limit_value = self.driver.validate_count(count, "limit")
        if offset is not None:
            self.state.offset_value = self.driver.validate_count(offset, "offset")
        return self

    def offset(self, count: int) -> "QueryBuilder":
        self.state.offset_value = self.driver.validate_count(count, "offset")
        return self

    def paginate(self, page: int, per_page: int) -> "QueryBuilder":
        for label, value in (("page", page), ("per_page", per_page)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValidationFault(f"{label} must be a positive integer, got {value!r}", field=label)
        return self.limit(per_page, (page - 1) * per_page)

    # ── CTE / UNION ──────────────────────────────────────────────────

    def _add_cte(self, name: str, query: SubqueryArg, columns: Optional[Sequence[str]], recursive: bool) -> "QueryBuilder":
        if not self.driver.capabilities.supports_cte:
            raise ValidationFault(f"Common table expressions are not supported by {self.driver.name}", field="with")
        sql, params = self._compile_subquery(query)
        head = self.driver.escape_identifier(name)
        if columns:
            head += " (" + ", ".join(self.driver.escape_identifier(c) for c in columns) + ")"
        self.state.cte_queries.append(f"{head} AS ({sql})")
        self.state.cte_params.extend(params)
        self.state.cte_names.append(name)
        qualified = self.driver.qualify_table(name)
        current = self.state.from_table
        if current == qualified or current.startswith(qualified + " AS "):
            self.state.from_table = self.driver.escape_identifier(name) + current[len(qualified):]
        if recursive:
            self.state.recursive_cte = True
        return self

    def with_(self, name: str, query: SubqueryArg, columns: Optional[Sequence[str]] = None) -> "QueryBuilder":
        return self._add_cte(name, query, columns, False)

    def with_recursive(self, name: str, query: SubqueryArg, columns: Optional[Sequence[str]] = None) -> "QueryBuilder":
        return self._add_cte(name, query, columns, True)

    def union(self, query: SubqueryArg) -> "QueryBuilder":
        sql, params = self._compile_subquery(query)
        self.state.union_clauses.append(f"UNION ({sql})")
        self.state.union_params.extend(params)
        return self

    def union_all(self, query: SubqueryArg) -> "QueryBuilder":
        sql, params = self._compile_subquery(query)
        self.state.union_clauses.append(f"UNION ALL ({sql})")
        self.state.union_params.extend(params)
        return self

    # ── SET ──────────────────────────────────────────────────────────

    def set(self, field: Union[str, Mapping[str, Any]], value: Any = UNSET) -> "QueryBuilder":
        data = dict(self.state.update_data or {})
        if isinstance(field, Mapping):
            data.update(field)
        elif isinstance(field, str) and value is not UNSET:
            data[field] = value
        else:
            raise ValidationFault("set() takes a mapping or a field and a value", field="set")
        self.state.update_data = data
        return self

    # ── Compilation ──────────────────────────────────────────────────

    def build_select_query(self) -> str:
        """Compile the accumulated state into a SELECT statement."""
        state = self.state
        if not state.from_table:
            raise CompilationFault("SELECT requires a FROM table")

        key = state.cache_key(self.driver.name)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        parts: List[str] = []
        if state.cte_queries:
            keyword = "WITH RECURSIVE" if state.recursive_cte else "WITH"
            parts.append(f"{keyword} {', '.join(state.cte_queries)}")
        distinct = "DISTINCT " if state.distinct_flag else ""
        parts.append(f"SELECT {distinct}{', '.join(state.select_fields)}")
        parts.append(f"FROM {state.from_table}")
        parts.extend(state.join_clauses)
        if state.where_clauses:
            parts.append("WHERE " + " ".join(state.where_clauses))
        if state.group_by_fields:
            parts.append("GROUP BY " + ", ".join(state.group_by_fields))
        if state.having_clauses:
            parts.append("HAVING " + " ".join(state.having_clauses))
        if state.order_by_fields:
            parts.append("ORDER BY " + ", ".join(state.order_by_fields))
        if state.limit_value is not None or state.offset_value:
            parts.append(self.driver.get_limit_syntax(state.limit_value, state.offset_value or 0))
        parts.extend(state.union_clauses)

        sql = " ".join(parts)
        self.cache.put(key, sql)
        return sql

    def get_compiled_select(self) -> str:
        """Compiled SELECT for diagnostics; does not execute or reset."""
        return self.build_select_query()

    def to_debug_sql(self) -> str:
        """Compiled SELECT with bound values inlined as literals. Never executed."""
        return inline_placeholders(self.build_select_query(), self.params, self.driver.escape_value)

    def get_last_query(self) -> Optional[ExecutedQuery]:
        return self.executor.last_query

    # ── Execution: reads ─────────────────────────────────────────────

    def _ensure_executable(self) -> None:
        if self.state.is_subquery:
            raise CompilationFault("Subquery builders cannot be executed directly")

    async def _fetch(self) -> List[Dict[str, Any]]:
        self._ensure_executable()
        sql = self.build_select_query()
        return await self.executor.run(sql, self.params)

    async def get(self) -> List[Dict[str, Any]]:
        """Execute the SELECT and return all rows."""
        try:
            return await self._fetch()
        finally:
            self.reset()

    async def get_where(
        self,
        table: str,
        where: Any = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        try:
            self.from_table(table)
            if where:
                self.where(where)
            if limit is not None:
                self.limit(limit, offset)
            return await self._fetch()
        finally:
            self.reset()

    async def first(self) -> Optional[Dict[str, Any]]:
        """First row, or None when nothing matches."""
        try:
            self.limit(1)
            rows = await self._fetch()
            return rows[0] if rows else None
        finally:
            self.reset()

    async def count(self, field: str = "*") -> int:
        """
        Row count for the current query.

        Compiled on a clone with ORDER BY and LIMIT removed, so the select
        list of this builder is left untouched until the reset.
        """
        try:
            self._ensure_executable()
            counter = self.clone()
            target = self._column(field)
            if counter.state.distinct_flag and target != "*":
                target = f"DISTINCT {target}"
            counter.state.distinct_flag = False
            counter.state.select_fields = [f"COUNT({target}) AS count"]
            counter.state.order_by_fields = []
            counter.state.limit_value = None
            counter.state.offset_value = None
            rows = await counter._fetch()
            if not rows:
                return 0
            row = rows[0]
            return int(row["count"] if "count" in row else next(iter(row.values())))
        finally:
            self.reset()

    async def exists(self) -> bool:
        try:
            self._ensure_executable()
            check = self.clone()
            check.state.select_fields = ["1"]
            check.state.distinct_flag = False
            check.state.order_by_fields = []
            check.state.limit_value = 1
            check.state.offset_value = None
            rows = await check._fetch()
            return bool(rows)
        finally:
            self.reset()

    async def chunk(self, size: int, callback: Callable[[List[Dict[str, Any]], int], Any]) -> int:
        """
        Walk the result set ``size`` rows at a time.

        ``callback(rows, page)`` may be sync or async. Only a literal
        ``False`` stops early; ``None``, ``0`` and other falsy returns keep
        going, so callbacks without a return statement walk every page.
        Iteration also stops on an empty or short page.
        Returns the number of rows processed.
        """
        try:
            if isinstance(size, bool) or not isinstance(size, int) or size < 1:
                raise ValidationFault(f"Chunk size must be a positive integer, got {size!r}", field="size")
            self._ensure_executable()
            base = self.clone()
            total = 0
            page = 1
            while True:
                pager = base.clone()
                pager.state.limit_value = size
                pager.state.offset_value = (page - 1) * size
                rows = await pager._fetch()
                if not rows:
                    break
                total += len(rows)
                outcome = callback(rows, page)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                if outcome is False or len(rows) < size:
                    break
                page += 1
            return total
        finally:
            self.reset()

    # ── Execution: writes ────────────────────────────────────────────

    def _rows(self, data: Any) -> Tuple[List[str], List[List[Any]]]:
        """Validate one mapping or a batch; all rows must share key order."""
        rows = [data] if isinstance(data, Mapping) else data
        if not isinstance(rows, Sequence) or isinstance(rows, (str, bytes)) or not rows:
            raise ValidationFault("Insert data must be a mapping or a non-empty sequence of mappings", field="data")
        columns: Optional[List[str]] = None
        values: List[List[Any]] = []
        for index, row in enumerate(rows):
            if not isinstance(row, Mapping) or not row:
                raise ValidationFault(f"Row {index} must be a non-empty mapping", field="data")
            keys = list(row.keys())
            if columns is None:
                columns = keys
            elif keys != columns:
                raise ValidationFault(
                    f"Row {index} fields {keys} do not match {columns}; batch rows must share identical fields",
                    field="data",
                )
            values.append(list(row.values()))
        return columns, values

    def _insert_sql(self, verb: str, table: str, columns: List[str], rows: List[List[Any]]) -> Tuple[str, List[Any]]:
        cols = ",".join(self.driver.escape_identifier(c) for c in columns)
        group = "(" + ",".join("?" for _ in columns) + ")"
        sql = f"{verb} {self.driver.escape_identifier(table)} ({cols}) VALUES {','.join(group for _ in rows)}"
        params = [value for row in rows for value in row]
        return sql, params

    def _write_target(self, table: Optional[str]) -> str:
        if table:
            return self.driver.escape_identifier(table)
        if self.state.from_table:
            return self.state.from_table
        raise CompilationFault("Write statement requires a table")

    def _where_sql(self) -> Tuple[str, List[Any]]:
        if not self.state.where_clauses:
            return "", []
        return " WHERE " + " ".join(self.state.where_clauses), list(self.state.where_params)

    async def insert(self, table: str, data: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]) -> Any:
        """Insert one row; a sequence of rows is delegated to ``insert_batch``."""
        if not isinstance(data, Mapping):
            return await self.insert_batch(table, data)
        try:
            self._ensure_executable()
            columns, rows = self._rows(data)
            sql, params = self._insert_sql("INSERT INTO", table, columns, rows)
            return await self.executor.run(sql + self.driver.returning_clause(), params)
        finally:
            self.reset()

    async def insert_batch(self, table: str, rows: Sequence[Mapping[str, Any]]) -> Any:
        try:
            self._ensure_executable()
            if isinstance(rows, Mapping):
                raise ValidationFault("insert_batch expects a sequence of mappings", field="data")
            columns, values = self._rows(rows)
            sql, params = self._insert_sql("INSERT INTO", table, columns, values)
            return await self.executor.run(sql + self.driver.returning_clause(), params)
        finally:
            self.reset()

    async def insert_or_update(
        self,
        table: str,
        data: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]],
        conflict_columns: Union[str, Sequence[str], None] = None,
    ) -> Any:
        """
        Upsert. MySQL/MariaDB update every column on a duplicate key and
        ignore ``conflict_columns``; PostgreSQL requires them.
        """
        try:
            self._ensure_executable()
            if isinstance(conflict_columns, str):
                conflict_columns = [conflict_columns]
            columns, rows = self._rows(data)
            sql, params = self._insert_sql("INSERT INTO", table, columns, rows)
            sql += self.driver.upsert_clause(columns, conflict_columns)
            return await self.executor.run(sql + self.driver.returning_clause(), params)
        finally:
            self.reset()

    async def replace(self, table: str, data: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]) -> Any:
        """``REPLACE INTO`` (MySQL family only)."""
        try:
            self._ensure_executable()
            if not self.driver.capabilities.supports_replace:
                raise ValidationFault(f"REPLACE is not supported by {self.driver.name}", field="replace")
            columns, rows = self._rows(data)
            sql, params = self._insert_sql("REPLACE INTO", table, columns, rows)
            return await self.executor.run(sql, params)
        finally:
            self.reset()

    async def update(
        self,
        table: Optional[str] = None,
        data: Optional[Mapping[str, Any]] = None,
        where: Any = None,
    ) -> Any:
        """UPDATE using ``data`` (or values from ``set()``) and the WHERE state."""
        try:
            self._ensure_executable()
            payload = data if data is not None else self.state.update_data
            if not payload:
                raise ValidationFault("UPDATE requires data", field="data")
            if where:
                self.where(where)
            target = self._write_target(table)
            assignments = ", ".join(f"{self.driver.escape_identifier(c)} = ?" for c in payload)
            where_sql, where_params = self._where_sql()
            sql = f"UPDATE {target} SET {assignments}{where_sql}{self.driver.returning_clause()}"
            return await self.executor.run(sql, list(payload.values()) + where_params)
        finally:
            self.reset()

    async def _step(self, table: str, field: str, amount: Any, where: Any, sign: str) -> Any:
        try:
            self._ensure_executable()
            if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
                raise ValidationFault(f"Amount must be numeric, got {amount!r}", field=field)
            if where:
                self.where(where)
            target = self._write_target(table)
            col = self.driver.escape_identifier(field)
            where_sql, where_params = self._where_sql()
            sql = f"UPDATE {target} SET {col} = {col} {sign} ?{where_sql}{self.driver.returning_clause()}"
            return await self.executor.run(sql, [amount] + where_params)
        finally:
            self.reset()

    async def increment(self, table: str, field: str, amount: Any = 1, where: Any = None) -> Any:
        return await self._step(table, field, amount, where, "+")

    async def decrement(self, table: str, field: str, amount: Any = 1, where: Any = None) -> Any:
        return await self._step(table, field, amount, where, "-")

    async def delete(self, table: Optional[str] = None, where: Any = None) -> Any:
        try:
            self._ensure_executable()
            if where:
                self.where(where)
            target = self._write_target(table)
            where_sql, where_params = self._where_sql()
            sql = f"DELETE FROM {target}{where_sql}{self.driver.returning_clause()}"
            return await self.executor.run(sql, where_params)
        finally:
            self.reset()

    async def empty_table(self, table: str) -> Any:
        try:
            self._ensure_executable()
            return await self.executor.run(f"TRUNCATE TABLE {self.driver.escape_identifier(table)}")
        finally:
            self.reset()

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        """Run hand-written SQL with ``?`` placeholders. Builder state is left alone."""
        return await self.executor.run(sql, params)

    # ── Transactions ─────────────────────────────────────────────────

    async def transaction(self, callback: Callable[["QueryBuilder"], Any]) -> Any:
        """Run ``callback(builder)`` atomically; see ``QueryExecutor.transaction``."""
        return await self.executor.transaction(callback, self)

    async def begin_transaction(self) -> None:
        await self.executor.begin()

    async def commit_transaction(self) -> None:
        await self.executor.commit()

    async def rollback_transaction(self) -> None:
        await self.executor.rollback()
