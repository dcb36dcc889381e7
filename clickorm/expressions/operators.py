"""Comparison, membership and logical operators."""

from typing import Any, Optional

from .sql import SQL, sql


def eq(left: Any, right: Any) -> SQL:
    return sql("{} = {}", left, right)


def ne(left: Any, right: Any) -> SQL:
    return sql("{} != {}", left, right)


def gt(left: Any, right: Any) -> SQL:
    return sql("{} > {}", left, right)


def gte(left: Any, right: Any) -> SQL:
    return sql("{} >= {}", left, right)


def lt(left: Any, right: Any) -> SQL:
    return sql("{} < {}", left, right)


def lte(left: Any, right: Any) -> SQL:
    return sql("{} <= {}", left, right)


def in_array(column: Any, values: Any) -> SQL:
    """``column IN values``; an empty list short-circuits to ``1=0``."""
    if isinstance(values, (list, tuple)) and not values:
        return sql("1=0")
    return sql("{} IN {}", column, values)


def not_in_array(column: Any, values: Any) -> SQL:
    """``column NOT IN values``; an empty list short-circuits to ``1=1``."""
    if isinstance(values, (list, tuple)) and not values:
        return sql("1=1")
    return sql("{} NOT IN {}", column, values)


def between(column: Any, low: Any, high: Any) -> SQL:
    return sql("{} BETWEEN {} AND {}", column, low, high)


def not_between(column: Any, low: Any, high: Any) -> SQL:
    return sql("{} NOT BETWEEN {} AND {}", column, low, high)


def has(column: Any, value: Any) -> SQL:
    return sql("has({}, {})", column, value)


def has_all(column: Any, values: Any) -> SQL:
    return sql("hasAll({}, {})", column, values)


def has_any(column: Any, values: Any) -> SQL:
    return sql("hasAny({}, {})", column, values)


def is_null(column: Any) -> SQL:
    return sql("{} IS NULL", column)


def is_not_null(column: Any) -> SQL:
    return sql("{} IS NOT NULL", column)


def not_(expression: Any) -> SQL:
    return sql("NOT ({})", expression)


def _combine(keyword: str, expressions: tuple[Any, ...]) -> Optional[SQL]:
    """Parenthesize and combine; falsy entries (None, False) are dropped."""
    kept = [e for e in expressions if e is not None and e is not False]
    if not kept:
        return None
    if len(kept) == 1:
        return kept[0]
    chunks = ["("] + [f") {keyword} ("] * (len(kept) - 1) + [")"]
    return SQL.from_parts(chunks, kept)


def and_(*expressions: Any) -> Optional[SQL]:
    """``(a) AND (b) ...``; ``None`` when nothing is left to combine."""
    return _combine("AND", expressions)


def or_(*expressions: Any) -> Optional[SQL]:
    """``(a) OR (b) ...``; ``None`` when nothing is left to combine."""
    return _combine("OR", expressions)


def asc(expression: Any):
    from ..query import OrderBy
    return OrderBy(expression=expression, direction="ASC")


def desc(expression: Any):
    from ..query import OrderBy
    return OrderBy(expression=expression, direction="DESC")


__all__ = [
    "eq", "ne", "gt", "gte", "lt", "lte",
    "in_array", "not_in_array", "between", "not_between",
    "has", "has_all", "has_any", "is_null", "is_not_null",
    "not_", "and_", "or_", "asc", "desc",
]
