"""Fluent description of a SELECT query.

A ``Query`` is an immutable-by-convention pydantic model: every builder
method returns a modified copy (``clone_query_with``), so a query can be
extended from several places without interference. The model holds structure
only; compilation lives in ``clickorm.compiler`` and execution in
``clickorm.prepared``.
"""

from __future__ import annotations

import itertools
from typing import Any, Callable, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, PrivateAttr

from .column import Column
from .expressions import Expression, and_, eq
from .table import Table, derived_table

Direction = Literal["ASC", "DESC"]

_STANDARD_JOINS = ("INNER", "LEFT", "RIGHT", "FULL")
JOIN_TYPES: frozenset[str] = frozenset(
    ["CROSS"]
    + list(_STANDARD_JOINS)
    + [f"{strictness} {kind}" for strictness, kind in itertools.product(("ANY", "ALL"), _STANDARD_JOINS)]
    + [f"GLOBAL {kind}" for kind in _STANDARD_JOINS]
    + [f"GLOBAL {strictness} {kind}" for strictness, kind in itertools.product(("ANY", "ALL"), _STANDARD_JOINS)]
    + [f"{side} {special}" for side, special in itertools.product(("LEFT", "INNER"), ("SEMI", "ANTI", "ASOF"))]
    + [f"GLOBAL {side} {special}" for side, special in itertools.product(("LEFT", "INNER"), ("SEMI", "ANTI", "ASOF"))]
    + ["ASOF"]
)
"""Every join keyword accepted by ``Query.join`` (CROSS, ANY/ALL, GLOBAL, SEMI/ANTI/ASOF)."""


class OrderBy(BaseModel):
    """One ORDER BY item."""

    model_config = {"arbitrary_types_allowed": True}

    expression: Any
    """Column or Expression."""
    direction: Direction = "ASC"


class Join(BaseModel):
    """One JOIN clause; CROSS joins carry no ON condition."""

    model_config = {"arbitrary_types_allowed": True}

    type: str
    table: str
    on: Optional[Expression] = None


class ArrayJoin(BaseModel):
    """One ARRAY JOIN item, optionally aliased."""

    model_config = {"arbitrary_types_allowed": True}

    expression: Any
    """Column or Expression."""
    alias: Optional[str] = None


class CommonTableExpression(BaseModel):
    """``name AS (query)`` in the WITH clause."""

    name: str
    query: Query


class Sample(BaseModel):
    ratio: Union[int, float]
    offset: Optional[Union[int, float]] = None


SelectionCallback = Callable[[Any], Mapping[str, Any]]


class Query(BaseModel):
    """Structure of a SELECT: table, clauses, settings and accumulated suggestions.

    Attributes mirror the clauses in emission order. Builder methods never
    mutate the instance they are called on.
    """

    model_config = {"arbitrary_types_allowed": True}

    table: Optional[Table] = None
    """Root table (or derived table). Required before compilation."""
    ctes: list[CommonTableExpression] = Field(default_factory=list)
    selection: Optional[dict[str, Any]] = None
    """Output alias -> Column | Expression. ``None`` means ``SELECT *``."""
    selection_callback: Optional[SelectionCallback] = Field(default=None, exclude=True)
    """Deferred ``select(lambda c: {...})`` waiting for ``from_()``."""
    distinct_rows: bool = False
    use_final: bool = False
    joins: list[Join] = Field(default_factory=list)
    array_joins: list[ArrayJoin] = Field(default_factory=list)
    prewhere_expression: Optional[Expression] = None
    where_expression: Optional[Expression] = None
    group_by_items: list[Any] = Field(default_factory=list)
    having_expression: Optional[Expression] = None
    order_by_items: list[OrderBy] = Field(default_factory=list)
    limit_value: Optional[int] = None
    offset_value: Optional[int] = None
    sample_value: Optional[Sample] = None
    settings_map: Optional[dict[str, Any]] = None
    window_map: dict[str, str] = Field(default_factory=dict)
    suggestions: list[str] = Field(default_factory=list)
    """Human-readable optimization hints gathered while building."""

    _database: Any = PrivateAttr(default=None)

    def clone_query_with(self, **changes: Any) -> Query:
        """Return a new Query with the same state except for the given overrides."""
        unknown = set(changes) - set(type(self).model_fields)
        if unknown:
            raise AttributeError(f"Unknown Query attribute(s): {', '.join(sorted(unknown))}")
        return self.model_copy(update=changes)

    # --- SELECT / FROM ---

    def select(self, fields: Mapping[str, Any] | SelectionCallback | None = None) -> Query:
        """Set the selection: a mapping alias -> column/expression, or a callable
        receiving the table's column namespace. No argument keeps ``SELECT *``."""
        if fields is None:
            return self
        if callable(fields):
            if self.table is None:
                return self.clone_query_with(selection_callback=fields)
            return self.clone_query_with(selection=dict(fields(self.table.c)), selection_callback=None)
        if not isinstance(fields, Mapping):
            raise TypeError(f"select requires a mapping or a callable; got {type(fields)}")
        return self.clone_query_with(selection=dict(fields), selection_callback=None)

    def from_(self, source: Table | Query, alias: str = "subquery") -> Query:
        """Set the root table, or select from a subquery under ``alias``."""
        if isinstance(source, Query):
            table, use_final = derived_table(source, alias), False
        elif isinstance(source, Table):
            table, use_final = source, source.options.default_final
        else:
            raise TypeError(f"from_ requires a Table or a Query; got {type(source)}")
        changes: dict[str, Any] = {"table": table, "use_final": use_final}
        if self.selection_callback is not None:
            changes["selection"] = dict(self.selection_callback(table.c))
            changes["selection_callback"] = None
        return self.clone_query_with(**changes)

    def distinct(self) -> Query:
        return self.clone_query_with(distinct_rows=True)

    def final(self) -> Query:
        """Read merged rows (``FROM t FINAL``)."""
        if self.table is not None and self.table.is_subquery:
            raise ValueError("FINAL does not apply to derived tables")
        return self.clone_query_with(use_final=True)

    def with_cte(self, name: str, query: Query) -> Query:
        """Add ``name AS (query)`` to the WITH clause."""
        return self.clone_query_with(ctes=self.ctes + [CommonTableExpression(name=name, query=query)])

    # --- JOINs ---

    def join(self, type: str, table: Table | str, on: Optional[Expression] = None) -> Query:
        """Add a JOIN of the given type (see ``JOIN_TYPES``)."""
        normalized = " ".join(type.upper().split())
        if normalized not in JOIN_TYPES:
            raise ValueError(f"Unsupported join type: {type!r}")
        if normalized == "CROSS":
            if on is not None:
                raise ValueError("CROSS JOIN does not take an ON condition")
        elif on is None:
            raise ValueError(f"{normalized} JOIN requires an ON condition")
        table_name = table.name if isinstance(table, Table) else table
        return self.clone_query_with(joins=self.joins + [Join(type=normalized, table=table_name, on=on)])

    def inner_join(self, table: Table | str, on: Expression) -> Query:
        return self.join("INNER", table, on)

    def left_join(self, table: Table | str, on: Expression) -> Query:
        return self.join("LEFT", table, on)

    def right_join(self, table: Table | str, on: Expression) -> Query:
        return self.join("RIGHT", table, on)

    def full_join(self, table: Table | str, on: Expression) -> Query:
        return self.join("FULL", table, on)

    def cross_join(self, table: Table | str) -> Query:
        """Cartesian product; use with care on large tables."""
        return self.join("CROSS", table)

    def global_join(self, type: str, table: Table | str, on: Expression) -> Query:
        """GLOBAL join: the right table is broadcast to every shard."""
        return self.join(f"GLOBAL {type}", table, on)

    def global_left_join(self, table: Table | str, on: Expression) -> Query:
        return self.global_join("LEFT", table, on)

    def any_join(self, type: str, table: Table | str, on: Expression) -> Query:
        """ANY join: at most one matching right row per key."""
        return self.join(f"ANY {type}", table, on)

    def any_left_join(self, table: Table | str, on: Expression) -> Query:
        return self.any_join("LEFT", table, on)

    def global_any_join(self, type: str, table: Table | str, on: Expression) -> Query:
        return self.join(f"GLOBAL ANY {type}", table, on)

    def semi_join(self, table: Table | str, on: Expression) -> Query:
        return self.join("LEFT SEMI", table, on)

    def anti_join(self, table: Table | str, on: Expression) -> Query:
        return self.join("LEFT ANTI", table, on)

    def asof_join(self, table: Table | str, on: Expression) -> Query:
        return self.join("ASOF", table, on)

    def array_join(self, *items: Column | Expression) -> Query:
        """Expand array columns into one row per element."""
        added = [ArrayJoin(expression=item) for item in items]
        return self.clone_query_with(array_joins=self.array_joins + added)

    def array_join_as(self, item: Column | Expression, alias: str) -> Query:
        return self.clone_query_with(array_joins=self.array_joins + [ArrayJoin(expression=item, alias=alias)])

    # --- filters ---

    def prewhere(self, expression: Expression) -> Query:
        return self.clone_query_with(prewhere_expression=expression)

    def where(self, condition: Expression | Mapping[str, Any] | None) -> Query:
        """Set the WHERE condition: an expression, or ``{column_key: value}`` pairs ANDed with ``=``."""
        if condition is None:
            return self
        if isinstance(condition, Expression):
            return self.clone_query_with(where_expression=condition)
        if not isinstance(condition, Mapping):
            raise TypeError(f"where requires an Expression or a mapping; got {type(condition)}")
        if self.table is None:
            raise ValueError("Call from_() before filtering with a mapping")
        comparisons = []
        for key, value in condition.items():
            column = self.table.get_column(key, None)
            if column is None:
                raise ValueError(f"`{key}` is not a column of `{self.table.name}`")
            comparisons.append(eq(column, value))
        return self.clone_query_with(where_expression=and_(*comparisons))

    def having(self, expression: Expression) -> Query:
        return self.clone_query_with(having_expression=expression)

    # --- grouping, ordering, paging ---

    def group_by(self, *items: Column | Expression) -> Query:
        return self.clone_query_with(group_by_items=list(items))

    def order_by(self, item: Column | Expression | OrderBy, direction: Direction = "ASC") -> Query:
        """Append an ORDER BY item. Ordering by a column outside the table's
        physical ORDER BY key adds a suggestion."""
        if isinstance(item, OrderBy):
            order = item
        elif isinstance(item, (Column, Expression)):
            if direction not in ("ASC", "DESC"):
                raise ValueError(f"Order direction must be 'ASC' or 'DESC'; got {direction!r}")
            order = OrderBy(expression=item, direction=direction)
        else:
            raise TypeError(f"order_by requires a Column, Expression or OrderBy; got {type(item)}")
        suggestions = self.suggestions
        column = order.expression
        if self.table is not None and isinstance(column, Column):
            physical = self.table.options.order_by
            if physical and column.name not in physical:
                suggestions = suggestions + [
                    f"Ordering by {column.name} not in physical ORDER BY; may be inefficient."
                ]
        return self.clone_query_with(order_by_items=self.order_by_items + [order], suggestions=suggestions)

    def limit(self, limit: int) -> Query:
        return self.clone_query_with(limit_value=limit)

    def offset(self, offset: int) -> Query:
        return self.clone_query_with(offset_value=offset)

    def sample(self, ratio: int | float, offset: int | float | None = None) -> Query:
        return self.clone_query_with(sample_value=Sample(ratio=ratio, offset=offset))

    def settings(self, settings: Mapping[str, Any]) -> Query:
        """Replace the SETTINGS map."""
        return self.clone_query_with(settings_map=dict(settings))

    def window(self, name: str, definition: str) -> Query:
        """Declare a named window (``WINDOW name AS (definition)``)."""
        return self.clone_query_with(window_map={**self.window_map, name: definition})

    # --- compilation / execution shortcuts ---

    def bind(self, database: Any) -> Query:
        """Copy of this query executed through ``database`` when awaited."""
        clone = self.model_copy()
        clone._database = database
        return clone

    def to_sql(self) -> tuple[str, dict[str, Any], list[str]]:
        """``(sql, params, suggestions)``, through the bound database's cache when there is one."""
        if self._database is not None:
            return self._database.to_sql(self)
        from .compiler import SQLCompiler
        compiled = SQLCompiler().compile(self)
        return compiled.sql, compiled.params, compiled.suggestions

    async def fetch(self) -> list[dict[str, Any]]:
        """Execute through the bound database and return the rows."""
        if self._database is None:
            raise ValueError("Query is not bound to a database; use Database.select() or Query.bind()")
        return await self._database.prepare(self)

    def __await__(self):
        return self.fetch().__await__()


CommonTableExpression.model_rebuild()
Query.model_rebuild()

__all__ = [
    "Query",
    "OrderBy",
    "Join",
    "ArrayJoin",
    "CommonTableExpression",
    "Sample",
    "JOIN_TYPES",
]
