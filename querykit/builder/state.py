"""
Builder state — everything one in-progress query has accumulated.

Bind values are kept per SQL section rather than in a single list, and
concatenated in text order (CTE, FROM, JOIN, WHERE, HAVING, UNION) when
read. A subquery compiled into a JOIN after the WHERE clause was started
therefore still lands its parameters before the WHERE parameters.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

__all__ = ["BuilderState"]

_PARAM_SECTIONS = ("cte", "from", "join", "where", "having", "union")


@dataclass
class BuilderState:
    select_fields: List[str] = field(default_factory=lambda: ["*"])
    from_table: str = ""
    join_clauses: List[str] = field(default_factory=list)
    where_clauses: List[str] = field(default_factory=list)
    having_clauses: List[str] = field(default_factory=list)
    group_by_fields: List[str] = field(default_factory=list)
    order_by_fields: List[str] = field(default_factory=list)
    limit_value: Optional[int] = None
    offset_value: Optional[int] = None
    distinct_flag: bool = False
    update_data: Optional[Dict[str, Any]] = None
    cte_queries: List[str] = field(default_factory=list)
    cte_names: List[str] = field(default_factory=list)
    recursive_cte: bool = False
    union_clauses: List[str] = field(default_factory=list)
    is_subquery: bool = False

    cte_params: List[Any] = field(default_factory=list)
    from_params: List[Any] = field(default_factory=list)
    join_params: List[Any] = field(default_factory=list)
    where_params: List[Any] = field(default_factory=list)
    having_params: List[Any] = field(default_factory=list)
    union_params: List[Any] = field(default_factory=list)

    def bindings(self) -> List[Any]:
        """All bind values in placeholder order."""
        params: List[Any] = []
        for section in _PARAM_SECTIONS:
            params.extend(getattr(self, f"{section}_params"))
        return params

    def copy(self) -> "BuilderState":
        """Structural copy; no list or dict is shared with the original."""
        return BuilderState(
            select_fields=list(self.select_fields),
            from_table=self.from_table,
            join_clauses=list(self.join_clauses),
            where_clauses=list(self.where_clauses),
            having_clauses=list(self.having_clauses),
            group_by_fields=list(self.group_by_fields),
            order_by_fields=list(self.order_by_fields),
            limit_value=self.limit_value,
            offset_value=self.offset_value,
            distinct_flag=self.distinct_flag,
            update_data=dict(self.update_data) if self.update_data is not None else None,
            cte_queries=list(self.cte_queries),
            cte_names=list(self.cte_names),
            recursive_cte=self.recursive_cte,
            union_clauses=list(self.union_clauses),
            is_subquery=self.is_subquery,
            cte_params=list(self.cte_params),
            from_params=list(self.from_params),
            join_params=list(self.join_params),
            where_params=list(self.where_params),
            having_params=list(self.having_params),
            union_params=list(self.union_params),
        )

    def is_empty(self) -> bool:
        return self == BuilderState(is_subquery=self.is_subquery)

    def cache_key(self, driver_name: str) -> str:
        """
        Canonical digest of everything that affects the SELECT text.

        Bind values are left out: they never change the SQL, only the
        parameter list.
        """
        payload = {
            "driver": driver_name,
            "select": self.select_fields,
            "from": self.from_table,
            "joins": self.join_clauses,
            "where": self.where_clauses,
            "having": self.having_clauses,
            "group_by": self.group_by_fields,
            "order_by": self.order_by_fields,
            "limit": self.limit_value,
            "offset": self.offset_value,
            "distinct": self.distinct_flag,
            "ctes": self.cte_queries,
            "recursive": self.recursive_cte,
            "unions": self.union_clauses,
        }
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
