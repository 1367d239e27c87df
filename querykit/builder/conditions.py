"""
Condition inputs for WHERE / HAVING.

``where`` and ``having`` accept a column name, a mapping, a callback or a
raw SQL string. ``parse_condition`` turns those shapes into one of four
tagged variants once, at the API boundary, so the compiler only ever
switches on the variant type:

    Equality("age", 18, ">")      -> `age` > ?
    MappingEquality({"a": 1})     -> `a` = ?   (one fragment per entry)
    Grouped(lambda q: ...)        -> ( ... )   (built on a separate builder)
    Raw("a = ? OR b = ?", (1, 2)) -> a = ? OR b = ?
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence, Tuple

from ..faults import ValidationFault

__all__ = [
    "UNSET",
    "OPERATORS",
    "Equality",
    "MappingEquality",
    "Grouped",
    "Raw",
    "parse_condition",
    "normalize_operator",
    "count_placeholders",
    "inline_placeholders",
]


class _Unset:
    """Marker for 'argument not passed' (``None`` is a real value: IS NULL)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

OPERATORS = frozenset({
    "=", "!=", "<>", "<", "<=", ">", ">=",
    "LIKE", "NOT LIKE", "ILIKE", "NOT ILIKE",
})


@dataclass(frozen=True)
class Equality:
    field: str
    value: Any
    operator: str = "="


@dataclass(frozen=True)
class MappingEquality:
    mapping: Mapping[str, Any]


@dataclass(frozen=True)
class Grouped:
    callback: Callable[[Any], Any]


@dataclass(frozen=True)
class Raw:
    expression: str
    bindings: Tuple[Any, ...] = field(default_factory=tuple)


Condition = Any  # Equality | MappingEquality | Grouped | Raw


def normalize_operator(operator: Any, allowed: frozenset = OPERATORS) -> str:
    if not isinstance(operator, str):
        raise ValidationFault(f"Operator must be a string, got {operator!r}", field="operator")
    op = " ".join(operator.split()).upper()
    if op not in allowed:
        raise ValidationFault(
            f"Unsupported operator {operator!r} (expected one of: {', '.join(sorted(allowed))})",
            field="operator",
        )
    return op


def parse_condition(target: Any, value: Any = UNSET, operator: str = "=") -> Condition:
    """Dispatch the accepted argument shapes to a condition variant."""
    if isinstance(target, Mapping):
        if not target:
            raise ValidationFault("Condition mapping must not be empty")
        return MappingEquality(dict(target))
    if isinstance(target, str):
        if not target.strip():
            raise ValidationFault("Condition must not be empty")
        if value is UNSET:
            return Raw(target)
        return Equality(target, value, normalize_operator(operator))
    if callable(target):
        return Grouped(target)
    raise ValidationFault(f"Unsupported condition type {type(target).__name__}")


def _scan(sql: str) -> Iterator[Tuple[int, bool]]:
    """Yield ``(index, is_placeholder)`` for every character of ``sql``."""
    quote: Optional[str] = None
    i = 0
    while i < len(sql):
        ch = sql[i]
        if quote is None and ch in ("'", '"', "`"):
            quote = ch
        elif quote is not None and ch == quote:
            if i + 1 < len(sql) and sql[i + 1] == quote:
                yield i, False
                i += 1
            else:
                quote = None
        yield i, ch == "?" and quote is None
        i += 1


def count_placeholders(sql: str) -> int:
    """Number of ``?`` markers outside quoted strings and identifiers."""
    return sum(1 for _, is_placeholder in _scan(sql) if is_placeholder)


def inline_placeholders(sql: str, params: Sequence[Any], render: Callable[[Any], str]) -> str:
    """Replace each ``?`` marker, left to right, with ``render(param)``."""
    values = iter(params)
    out = []
    for index, is_placeholder in _scan(sql):
        if is_placeholder:
            try:
                out.append(render(next(values)))
            except StopIteration:
                raise ValidationFault("More placeholders than bound values") from None
        else:
            out.append(sql[index])
    return "".join(out)
