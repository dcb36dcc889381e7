"""Relational queries: fetch rows of a table together with their related rows.

``find_many`` compiles the requested relation tree into a single SELECT:

- every table level contributes its columns under a prefix chaining the
  relation names (``profile_``, ``profile__badges_``...);
- ``one`` relations are LEFT JOINed and selected inline;
- top-level ``many`` relations are aggregated server-side into
  ``groupUniqArray(tuple(...))`` (``groupUniqArrayIf`` with a filter), so root
  rows are not multiplied; the query is then grouped by every inline column;
- deeper ``many`` relations cannot be aggregated and fall back to joins that
  multiply rows; results are then merged by the root's primary key.

Flat rows are rebuilt into nested dicts with the same prefix scheme.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .column import Column
from .errors import CompilationError
from .expressions import Expression, and_, join, sql
from .prepared import PreparedQueryFactory
from .query import Query
from .relations import Relation
from .table import Table

logger = logging.getLogger("clickorm")

JoinStrategy = Literal["auto", "standard", "global", "any", "global_any"]
MAX_RELATION_DEPTH = 10

Where = Union[Expression, Callable[[Any], Expression], None]


class FindOptions(BaseModel):
    """Options of ``find_many`` / ``find_first``, and of each entry of a ``with_`` tree."""

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True, extra="forbid")

    where: Any = None
    """Expression, or callable receiving the table's column namespace."""
    limit: Optional[int] = None
    offset: Optional[int] = None
    with_: Optional[dict[str, Any]] = Field(default=None, alias="with")
    """Relation name -> ``True`` or nested options."""
    join_strategy: JoinStrategy = "auto"
    """Root call only; rejected inside a ``with_`` entry."""


class RelationNode(BaseModel):
    """One requested relation, resolved against the declared relations."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    relation: Relation
    options: FindOptions
    prefix: str
    """Prefix of this relation's columns in the flat row."""
    aggregated: bool
    """Fetched as an array of tuples rather than joined inline."""
    children: tuple[RelationNode, ...] = ()

    @property
    def table(self) -> Table:
        return self.relation.table

    @property
    def uses_fallback(self) -> bool:
        """True when this node or a descendant is a row-multiplying ``many`` join."""
        if self.relation.kind == "many" and not self.aggregated:
            return True
        return any(child.uses_fallback for child in self.children)


RelationNode.model_rebuild()


def child_prefix(prefix: str, name: str) -> str:
    return f"{prefix}_{name}_" if prefix else f"{name}_"


def resolve_where(where: Where, table: Table) -> Optional[Expression]:
    if where is None:
        return None
    if callable(where) and not isinstance(where, Expression):
        return where(table.c)
    return where


def resolve_join_type(strategy: str, source: Table, target: Table) -> str:
    """LEFT join variant for a relation: GLOBAL for distributed tables, ANY when requested."""
    use_global = strategy in ("global", "global_any") or (
        strategy == "auto" and (source.is_distributed or target.is_distributed)
    )
    use_any = strategy in ("any", "global_any")
    if use_global and use_any:
        return "GLOBAL ANY LEFT"
    if use_global:
        return "GLOBAL LEFT"
    if use_any:
        return "ANY LEFT"
    return "LEFT"


def _as_options(value: Any) -> FindOptions:
    if isinstance(value, FindOptions):
        return value
    if isinstance(value, Mapping):
        return FindOptions.model_validate(dict(value))
    return FindOptions()


def plan_relations(table: Table, with_: Optional[Mapping[str, Any]], prefix: str = "", depth: int = 0) -> tuple[RelationNode, ...]:
    """Resolve a ``with_`` tree into relation nodes.

    Unknown relation names and relations without join fields are skipped with
    a warning; so are relations nested under an aggregated ``many``.
    """
    if not with_:
        return ()
    if depth >= MAX_RELATION_DEPTH:
        raise CompilationError(
            f"Relation tree under `{table.name}` is deeper than {MAX_RELATION_DEPTH} levels; "
            "check for cyclic relation declarations"
        )
    nodes = []
    for name, value in with_.items():
        if not value:
            continue
        relation = table.relations.get(name)
        if relation is None:
            logger.warning("Table `%s` has no relation `%s`; skipped", table.name, name)
            continue
        if relation.join_condition() is None:
            logger.warning("Relation `%s` of `%s` declares no join fields; skipped", name, table.name)
            continue
        options = _as_options(value)
        if "join_strategy" in options.model_fields_set:
            raise CompilationError(
                f"Relation `{name}` of `{table.name}` sets join_strategy; "
                "only the root find_many / find_first call chooses the join strategy"
            )
        aggregated = relation.kind == "many" and not prefix
        node_prefix = child_prefix(prefix, name)
        if aggregated and options.with_:
            logger.warning(
                "Relations nested under aggregated relation `%s` of `%s` are not supported; skipped: %s",
                name, table.name, ", ".join(options.with_),
            )
            children = ()
        else:
            children = plan_relations(relation.table, options.with_, node_prefix, depth + 1)
        nodes.append(RelationNode(
            name=name,
            relation=relation,
            options=options,
            prefix=node_prefix,
            aggregated=aggregated,
            children=children,
        ))
    return tuple(nodes)


class _Plan:
    def __init__(self) -> None:
        self.selection: dict[str, Any] = {}
        self.joins: list[tuple[str, Table, Expression]] = []
        self.aggregates = False


def _collect(plan: _Plan, table: Table, nodes: tuple[RelationNode, ...], prefix: str, strategy: str) -> None:
    for key, column in table.columns.items():
        plan.selection[f"{prefix}{key}"] = column
    for node in nodes:
        condition = node.relation.join_condition()
        where = resolve_where(node.options.where, node.table)
        if node.aggregated:
            plan.aggregates = True
            columns = join(list(node.table.columns.values()))
            if where is None:
                plan.selection[node.name] = sql("groupUniqArray(tuple({}))", columns)
            else:
                plan.selection[node.name] = sql("groupUniqArrayIf(tuple({}), {})", columns, where)
        elif where is not None:
            condition = and_(condition, where)
        plan.joins.append((resolve_join_type(strategy, table, node.table), node.table, condition))
        if not node.aggregated:
            _collect(plan, node.table, node.children, node.prefix, strategy)


def build_query(table: Table, nodes: tuple[RelationNode, ...], options: FindOptions) -> Query:
    """The single SELECT fetching ``table`` rows and every requested relation."""
    plan = _Plan()
    _collect(plan, table, nodes, "", options.join_strategy)
    query = Query().from_(table)
    for join_type, target, condition in plan.joins:
        query = query.join(join_type, target, condition)
    query = query.select(plan.selection)
    if plan.aggregates:
        query = query.group_by(*[item for item in plan.selection.values() if isinstance(item, Column)])
    if plan.joins:
        query = query.settings({"join_use_nulls": 1})
    where = resolve_where(options.where, table)
    if where is not None:
        query = query.where(where)
    if options.limit:
        query = query.limit(options.limit)
    if options.offset:
        query = query.offset(options.offset)
    return query


# --- reconstruction ---

def _own_columns_null(obj: dict[str, Any], table: Table) -> bool:
    return all(obj.get(key) is None for key in table.columns)


def _paginate(items: list[Any], options: FindOptions) -> list[Any]:
    if options.offset:
        items = items[options.offset:]
    if options.limit:
        items = items[:options.limit]
    return items


def _deserialize_tuples(raw: Any, node: RelationNode) -> list[dict[str, Any]]:
    keys = list(node.table.columns)
    items: list[dict[str, Any]] = []
    for values in raw or ():
        item = dict(zip(keys, values))
        if all(value is None for value in item.values()):
            continue
        if item not in items:
            items.append(item)
    return _paginate(items, node.options)


def reconstruct(row: Mapping[str, Any], table: Table, nodes: tuple[RelationNode, ...], prefix: str = "") -> dict[str, Any]:
    """Nested object for one flat row."""
    result = {key: row.get(f"{prefix}{key}") for key in table.columns}
    for node in nodes:
        if node.aggregated:
            result[node.name] = _deserialize_tuples(row.get(node.name), node)
            continue
        related = reconstruct(row, node.table, node.children, node.prefix)
        empty = _own_columns_null(related, node.table)
        if node.relation.kind == "one":
            result[node.name] = None if empty else related
        else:
            result[node.name] = [] if empty else [related]
    return result


# --- de-duplication ---

def _identity_part(value: Any) -> str:
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return str(int(value.timestamp() * 1000))
    if isinstance(value, datetime.date):
        midnight = datetime.datetime(value.year, value.month, value.day, tzinfo=datetime.timezone.utc)
        return str(int(midnight.timestamp() * 1000))
    return str(value)


def identity_key(obj: Mapping[str, Any], table: Table) -> str:
    """Composite primary key of ``obj`` as text; dates as epoch milliseconds."""
    return "|".join(_identity_part(obj.get(key)) for key in table.primary_key_keys)


def _same_row(a: Mapping[str, Any], b: Mapping[str, Any], table: Table) -> bool:
    return all(a.get(key) == b.get(key) for key in table.columns)


def merge_into(existing: dict[str, Any], incoming: dict[str, Any], nodes: tuple[RelationNode, ...]) -> None:
    """Union ``incoming``'s relations into ``existing`` (same row of the same table)."""
    for node in nodes:
        if node.relation.kind == "one":
            if existing.get(node.name) is None:
                existing[node.name] = incoming.get(node.name)
            elif incoming.get(node.name) is not None:
                merge_into(existing[node.name], incoming[node.name], node.children)
            continue
        collection = existing.setdefault(node.name, [])
        for item in incoming.get(node.name) or ():
            match = next((other for other in collection if _same_row(other, item, node.table)), None)
            if match is None:
                collection.append(item)
            elif match != item:
                merge_into(match, item, node.children)
        if node.options.limit:
            existing[node.name] = collection[:node.options.limit]


def merge_by_identity(objects: list[dict[str, Any]], table: Table, nodes: tuple[RelationNode, ...]) -> list[dict[str, Any]]:
    """Merge objects sharing a primary key, keeping first-seen order."""
    grouped: dict[str, dict[str, Any]] = {}
    for obj in objects:
        key = identity_key(obj, table)
        if key in grouped:
            merge_into(grouped[key], obj, nodes)
        else:
            grouped[key] = obj
    logger.info("Merged %d rows of `%s` into %d objects", len(objects), table.name, len(grouped))
    return list(grouped.values())


class RelationalEngine:
    """``find_many`` / ``find_first`` for one root table."""

    def __init__(self, table: Table, factory: PreparedQueryFactory, client: Any) -> None:
        self.table = table
        self.factory = factory
        self.client = client

    def build(self, where: Where = None, limit: Optional[int] = None, offset: Optional[int] = None,
              with_: Optional[Mapping[str, Any]] = None,
              join_strategy: JoinStrategy = "auto") -> tuple[Query, tuple[RelationNode, ...], FindOptions]:
        options = FindOptions(where=where, limit=limit, offset=offset, with_=with_, join_strategy=join_strategy)
        nodes = plan_relations(self.table, with_)
        return build_query(self.table, nodes, options), nodes, options

    async def find_many(self, where: Where = None, limit: Optional[int] = None, offset: Optional[int] = None,
                        with_: Optional[Mapping[str, Any]] = None,
                        join_strategy: JoinStrategy = "auto") -> list[dict[str, Any]]:
        """Rows of the table, each with the relations requested in ``with_``.

        Example:
            await db.query.users.find_many(
                where=lambda c: eq(c.active, True),
                with_={"posts": {"limit": 5}, "profile": True},
            )
        """
        query, nodes, _ = self.build(where, limit, offset, with_, join_strategy)
        rows = await self.factory.prepare(query, self.client).execute()
        objects = [reconstruct(row, self.table, nodes) for row in rows]
        if any(node.uses_fallback for node in nodes):
            objects = merge_by_identity(objects, self.table, nodes)
        return objects

    async def find_first(self, where: Where = None, offset: Optional[int] = None,
                         with_: Optional[Mapping[str, Any]] = None,
                         join_strategy: JoinStrategy = "auto") -> Optional[dict[str, Any]]:
        """First matching object, or ``None``."""
        objects = await self.find_many(where=where, limit=1, offset=offset, with_=with_,
                                       join_strategy=join_strategy)
        return objects[0] if objects else None


class RelationalAPI:
    """One ``RelationalEngine`` per schema entry: ``db.query.users.find_many(...)``."""

    def __init__(self, schema: Mapping[str, Table], factory: PreparedQueryFactory, client: Any) -> None:
        self._engines = {key: RelationalEngine(table, factory, client) for key, table in schema.items()}

    def __getattr__(self, key: str) -> RelationalEngine:
        if key.startswith("_"):
            raise AttributeError(key)
        try:
            return self._engines[key]
        except KeyError:
            raise AttributeError(f"No table `{key}` in schema (declared: {', '.join(self._engines) or 'none'})") from None

    def __getitem__(self, key: str) -> RelationalEngine:
        return self._engines[key]

    def __contains__(self, key: object) -> bool:
        return key in self._engines

    def __iter__(self):
        return iter(self._engines)


__all__ = [
    "RelationalEngine",
    "RelationalAPI",
    "FindOptions",
    "RelationNode",
    "JoinStrategy",
    "plan_relations",
    "build_query",
    "reconstruct",
    "merge_by_identity",
    "identity_key",
    "resolve_join_type",
]
