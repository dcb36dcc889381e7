"""Structural fingerprints of queries, used as template cache keys.

The key depends on structure only; literal values are collected separately,
in exactly the order full compilation numbers its parameters. Two queries
that differ only by literal values share a key, a compiled template and a
parameter-name list.
"""

from __future__ import annotations

from typing import Any, NamedTuple, Optional

from .column import Column
from .compiler import SQLCompiler, format_setting
from .expressions import Expression, Visitor
from .query import Query


class Fingerprint(NamedTuple):
    key: str
    values: list[Any]


def _item_signature(item: Any, visitor: Visitor) -> str:
    if isinstance(item, Column):
        return f"COL:{item.signature}"
    if isinstance(item, Expression):
        return f"EXPR:{item.walk(visitor)}"
    return f"RAW:{item!r}"


class FingerprintGenerator:
    """Walks a ``Query`` clause by clause, in compilation order.

    CTEs and derived tables are compiled (not walked) to obtain their SQL and
    parameter values; compilation being deterministic, compiling them again
    on a cache miss yields the same text.
    """

    def __init__(self, compiler: Optional[SQLCompiler] = None) -> None:
        self.compiler = compiler or SQLCompiler()

    def fingerprint(self, query: Query) -> Fingerprint:
        values: list[Any] = []

        def visitor(value: Any, clickhouse_type: str) -> None:
            values.append(value)

        key = "SELECT"

        if query.ctes:
            key += "|CTES:"
            for cte in query.ctes:
                compiled = self.compiler.compile(cte.query)
                key += f"({cte.name}:{compiled.sql})"
                values.extend(compiled.params.values())

        if query.selection_callback is not None:
            key += "|SEL:DEFERRED"
        elif query.selection:
            key += "|SEL:"
            if query.distinct_rows:
                key += "DISTINCT:"
            for alias, item in query.selection.items():
                key += f"{alias}={_item_signature(item, visitor)}"
                if isinstance(item, (Column, Expression)):
                    if item.alias:
                        key += f"AS:{item.alias}"
                    if item.type:
                        key += f"TYPE:{item.type}"
                key += ";"
        else:
            key += "|SEL:DISTINCT:*" if query.distinct_rows else "|SEL:*"

        table = query.table
        if table is not None:
            if table.is_subquery:
                compiled = self.compiler.compile(table.subquery)
                key += f"|FROM:SUB({compiled.sql})AS:{table.name}"
                values.extend(compiled.params.values())
            else:
                key += f"|FROM:{table.name}"
                if query.use_final:
                    key += ":FINAL"
                # declared projections switch the projection setting on
                if table.options.projections:
                    key += f":PROJECTIONS:{','.join(table.options.projections)}"

        if query.joins:
            key += "|JOINS:"
            for join in query.joins:
                key += f"{join.type}:{join.table}"
                if join.on is not None:
                    key += f"ON:{join.on.walk(visitor)}"
                key += ";"

        if query.array_joins:
            key += "|AJOINS:"
            for array_join in query.array_joins:
                key += _item_signature(array_join.expression, visitor)
                if array_join.alias:
                    key += f"AS:{array_join.alias}"
                key += ";"

        if query.prewhere_expression is not None:
            key += f"|PREWHERE:{query.prewhere_expression.walk(visitor)}"

        if query.where_expression is not None:
            key += f"|WHERE:{query.where_expression.walk(visitor)}"

        if query.group_by_items:
            key += "|GROUP:" + "".join(f"{_item_signature(item, visitor)};" for item in query.group_by_items)

        if query.having_expression is not None:
            key += f"|HAVING:{query.having_expression.walk(visitor)}"

        if query.order_by_items:
            key += "|ORDER:"
            for order in query.order_by_items:
                key += f"{_item_signature(order.expression, visitor)}:{order.direction};"

        if query.limit_value is not None:
            key += f"|LIMIT:{query.limit_value}"
        if query.offset_value is not None:
            key += f"|OFFSET:{query.offset_value}"

        if query.sample_value is not None:
            key += f"|SAMPLE:{query.sample_value.ratio}:{query.sample_value.offset}"

        if query.settings_map:
            key += "|SETTINGS:" + "".join(
                f"{name}={format_setting(query.settings_map[name])};" for name in sorted(query.settings_map)
            )

        if query.window_map:
            key += "|WINDOWS:" + "".join(f"{name}={query.window_map[name]};" for name in sorted(query.window_map))

        return Fingerprint(key=key, values=values)


__all__ = ["Fingerprint", "FingerprintGenerator"]
