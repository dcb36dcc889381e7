"""Full compilation of a ``Query`` into ClickHouse SQL.

Clauses are emitted in a fixed order (WITH, SELECT, FROM, JOIN, ARRAY JOIN,
PREWHERE, WHERE, GROUP BY, HAVING, ORDER BY, LIMIT, SAMPLE, WINDOW, SETTINGS)
and joined by single spaces; empty clauses are omitted. Every literal is bound
as a named ``{p_N:Type}`` parameter, numbered by one counter shared by the
whole statement, including inlined CTEs and derived tables.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from .column import Column
from .errors import CompilationError
from .expressions import UNDEFINED, Expression, RenderContext
from .query import Query
from .table import Table

logger = logging.getLogger("clickorm")

PROJECTION_SETTING = "optimize_use_projections"
_PARAMETER_REFERENCE = re.compile(r"\{(p_\d+):")


class CompiledQuery(BaseModel):
    """Result of a full compilation."""

    sql: str
    params: dict[str, Any] = Field(default_factory=dict)
    """Parameter name -> serialized value, in placeholder order."""
    column_names: list[str] = Field(default_factory=list)
    column_types: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)

    @property
    def param_names(self) -> list[str]:
        return list(self.params)


# --- select alias resolution ---

def _to_camel_case(alias: str) -> str:
    return re.sub(r"_([a-z])", lambda match: match.group(1).upper(), alias)


def _to_snake_case(alias: str) -> str:
    return re.sub(r"([A-Z])", r"_\1", alias).lower()


def _resolve_direct(table: Table, alias: str) -> Optional[Column]:
    return table.get_column(alias, None)


def _resolve_camel_case(table: Table, alias: str) -> Optional[Column]:
    converted = _to_camel_case(alias)
    if converted == alias:
        return None
    return table.get_column(converted, None)


def _resolve_snake_case(table: Table, alias: str) -> Optional[Column]:
    converted = _to_snake_case(alias)
    if converted == alias:
        return None
    return table.get_column(converted, None)


def _resolve_case_insensitive(table: Table, alias: str) -> Optional[Column]:
    lowered = alias.lower()
    for key, column in table.columns.items():
        if key.lower() == lowered or column.name.lower() == lowered:
            return column
    return None


ALIAS_RESOLUTION_STRATEGIES: tuple[tuple[str, Callable[[Table, str], Optional[Column]]], ...] = (
    ("direct", _resolve_direct),
    ("camel_case", _resolve_camel_case),
    ("snake_case", _resolve_snake_case),
    ("case_insensitive", _resolve_case_insensitive),
)
"""Tried in order when a selected value is neither a column nor an expression."""


def resolve_alias(table: Table, alias: str) -> Optional[Column]:
    for name, strategy in ALIAS_RESOLUTION_STRATEGIES:
        column = strategy(table, alias)
        if column is not None:
            logger.debug("Resolved select alias %r with the %s strategy", alias, name)
            return column
    return None


def resolve_selected(table: Table, alias: str, item: Any) -> Column | Expression:
    """The column or expression selected under ``alias``; raises ``CompilationError`` when unresolvable."""
    if isinstance(item, (Column, Expression)):
        return item
    column = resolve_alias(table, alias)
    if column is not None:
        return column
    available = ", ".join(f"{key} (column: {column.name})" for key, column in table.columns.items())
    if item is UNDEFINED or item is None:
        problem = f'Field "{alias}" in SELECT is undefined.'
    else:
        problem = f'Field "{alias}" in SELECT must be a Column or an Expression; got {type(item).__name__}.'
    raise CompilationError(
        f"{problem} No column of `{table.name}` matches this alias.\n"
        f"  - Available columns (key -> column): {available or 'none'}\n"
        f"  - Example: select({{\"{alias}\": {table.name}.<column>}})"
    )


def format_setting(value: Any) -> str:
    """SETTINGS value as SQL text."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace("'", "\\'")
        return f"'{escaped}'"
    return str(value)


def output_name(alias: str, item: Column | Expression) -> str:
    return item.alias or alias


class SQLCompiler:
    """Stateless compiler; each ``compile`` call owns its parameter counter."""

    def compile(self, query: Query) -> CompiledQuery:
        table = query.table
        if table is None:
            raise CompilationError("from_() is required: the query has no root table")
        context = RenderContext(table=table)
        suggestions = list(query.suggestions)

        with_sql = self._compile_ctes(query, context)
        select_sql, column_names, column_types = self._compile_selection(query, table, context)
        from_sql = self._compile_from(query, table, context)
        parts = [
            with_sql,
            f"SELECT {'DISTINCT ' if query.distinct_rows else ''}{select_sql}",
            f"FROM {from_sql}",
            self._compile_expression_clause("PREWHERE", query.prewhere_expression, context),
            self._compile_expression_clause("WHERE", query.where_expression, context),
            self._compile_group_by(query, context),
            self._compile_expression_clause("HAVING", query.having_expression, context),
            self._compile_order_by(query, context),
            self._compile_limit(query),
            self._compile_sample(query),
            self._compile_windows(query),
            self._compile_settings(query, table, suggestions),
        ]
        return CompiledQuery(
            sql=" ".join(part for part in parts if part),
            params=context.params,
            column_names=column_names,
            column_types=column_types,
            suggestions=suggestions,
        )

    # --- helpers ---

    def render_item(self, item: Column | Expression, context: RenderContext) -> str:
        if isinstance(item, Column):
            return context.format_column(item)
        if isinstance(item, Expression):
            return item.render(context)
        raise CompilationError(f"Expected a Column or an Expression; got {type(item).__name__}")

    def inline_subquery(self, subquery: Query, context: RenderContext) -> str:
        """Compile ``subquery`` and renumber its parameters into ``context``'s sequence."""
        compiled = self.compile(subquery)
        renamed: dict[str, str] = {}
        for name, value in compiled.params.items():
            renamed[name] = context.next_param_name()
            context.params[renamed[name]] = value
        return _PARAMETER_REFERENCE.sub(lambda match: "{" + renamed.get(match.group(1), match.group(1)) + ":", compiled.sql)

    # --- clauses ---

    def _compile_ctes(self, query: Query, context: RenderContext) -> str:
        if not query.ctes:
            return ""
        parts = [f"{cte.name} AS ({self.inline_subquery(cte.query, context)})" for cte in query.ctes]
        return "WITH " + ", ".join(parts)

    def _compile_selection(self, query: Query, table: Table, context: RenderContext) -> tuple[str, list[str], list[str]]:
        if query.selection_callback is not None:
            raise CompilationError("from_() is required before a callable selection can be resolved")
        column_names: list[str] = []
        column_types: list[str] = []
        if not query.selection:
            for column in table.columns.values():
                column_names.append(column.name)
                column_types.append(column.type)
            return "*", column_names, column_types
        items = []
        for alias, value in query.selection.items():
            item = resolve_selected(table, alias, value)
            name = output_name(alias, item)
            column_names.append(name)
            column_types.append(item.type or "String")
            items.append(f"{self.render_item(item, context)} AS `{name}`")
        return ", ".join(items), column_names, column_types

    def _compile_from(self, query: Query, table: Table, context: RenderContext) -> str:
        if table.is_subquery:
            from_sql = f"({self.inline_subquery(table.subquery, context)}) AS `{table.name}`"
        else:
            from_sql = f"`{table.name}`"
            if query.use_final:
                from_sql += " FINAL"
        for join in query.joins:
            if join.type == "CROSS" or join.on is None:
                from_sql += f" {join.type} JOIN `{join.table}`"
            else:
                from_sql += f" {join.type} JOIN `{join.table}` ON {join.on.render(context)}"
        if query.array_joins:
            items = []
            for array_join in query.array_joins:
                item_sql = self.render_item(array_join.expression, context)
                items.append(f"{item_sql} AS `{array_join.alias}`" if array_join.alias else item_sql)
            from_sql += " ARRAY JOIN " + ", ".join(items)
        return from_sql

    def _compile_expression_clause(self, keyword: str, expression: Optional[Expression], context: RenderContext) -> str:
        if expression is None:
            return ""
        return f"{keyword} {expression.render(context)}"

    def _compile_group_by(self, query: Query, context: RenderContext) -> str:
        if not query.group_by_items:
            return ""
        return "GROUP BY " + ", ".join(self.render_item(item, context) for item in query.group_by_items)

    def _compile_order_by(self, query: Query, context: RenderContext) -> str:
        if not query.order_by_items:
            return ""
        parts = []
        for order in query.order_by_items:
            item_sql = self.render_item(order.expression, context)
            upper = item_sql.strip().upper()
            if upper.endswith(" ASC") or upper.endswith(" DESC"):
                parts.append(item_sql)
            else:
                parts.append(f"{item_sql} {order.direction}")
        return "ORDER BY " + ", ".join(parts)

    def _compile_limit(self, query: Query) -> str:
        if query.limit_value is None:
            return ""
        if query.offset_value is None:
            return f"LIMIT {query.limit_value}"
        return f"LIMIT {query.limit_value} OFFSET {query.offset_value}"

    def _compile_sample(self, query: Query) -> str:
        sample = query.sample_value
        if sample is None:
            return ""
        if sample.offset is None:
            return f"SAMPLE {sample.ratio}"
        return f"SAMPLE {sample.ratio} OFFSET {sample.offset}"

    def _compile_windows(self, query: Query) -> str:
        if not query.window_map:
            return ""
        return "WINDOW " + ", ".join(f"{name} AS ({query.window_map[name]})" for name in sorted(query.window_map))

    def _compile_settings(self, query: Query, table: Table, suggestions: list[str]) -> str:
        settings = dict(query.settings_map or {})
        if table.options.projections and PROJECTION_SETTING not in settings:
            settings[PROJECTION_SETTING] = 1
            suggestions.append(
                f"Table `{table.name}` declares projections "
                f"({', '.join(table.options.projections)}); enabled '{PROJECTION_SETTING} = 1' "
                "so ClickHouse can read from a matching projection."
            )
        if not settings:
            return ""
        return "SETTINGS " + ", ".join(f"{key} = {format_setting(settings[key])}" for key in sorted(settings))


__all__ = [
    "SQLCompiler",
    "CompiledQuery",
    "ALIAS_RESOLUTION_STRATEGIES",
    "resolve_alias",
    "resolve_selected",
    "format_setting",
    "PROJECTION_SETTING",
]
