"""
QueryKit Builder — fluent query construction, compilation and execution.
"""

from .conditions import UNSET, Equality, MappingEquality, Grouped, Raw, parse_condition
from .executor import ExecutedQuery, QueryExecutor
from .query import JOIN_TYPES, QueryBuilder
from .state import BuilderState

__all__ = [
    "UNSET",
    "Equality",
    "MappingEquality",
    "Grouped",
    "Raw",
    "parse_condition",
    "ExecutedQuery",
    "QueryExecutor",
    "JOIN_TYPES",
    "QueryBuilder",
    "BuilderState",
]
