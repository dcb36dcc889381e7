"""SQL expression trees for ClickHouse queries.

An expression is an ordered list of literal text chunks interleaved with
slots. Each slot is tagged once, at construction, as a column reference, a
nested expression, a literal value or raw SQL text. Expressions expose two
traversals kept in lock-step: ``render`` (SQL with ``{p_N:Type}`` placeholders
plus the parameter map) and ``walk`` (a structural signature plus the literal
values, in the same order), which is what makes template caching sound.
"""

from ._bases import UNDEFINED, Expression, RenderContext, Slot, SlotKind, Visitor
from .literals import UUID_PATTERN, format_datetime, infer_type, serialize_literal
from .operators import (
    and_,
    asc,
    between,
    desc,
    eq,
    gt,
    gte,
    has,
    has_all,
    has_any,
    in_array,
    is_not_null,
    is_null,
    lt,
    lte,
    ne,
    not_,
    not_between,
    not_in_array,
    or_,
)
from .sql import SQL, fn, join, raw, sql

__all__ = [
    "UNDEFINED",
    "Expression",
    "RenderContext",
    "Slot",
    "SlotKind",
    "Visitor",
    "SQL",
    "sql",
    "raw",
    "join",
    "fn",
    "UUID_PATTERN",
    "infer_type",
    "format_datetime",
    "serialize_literal",
    "eq",
    "ne",
    "gt",
    "gte",
    "lt",
    "lte",
    "in_array",
    "not_in_array",
    "between",
    "not_between",
    "has",
    "has_all",
    "has_any",
    "is_null",
    "is_not_null",
    "not_",
    "and_",
    "or_",
    "asc",
    "desc",
]
