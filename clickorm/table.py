"""Table descriptors: name, columns, relations and engine-level options."""

from __future__ import annotations

from typing import Any, Iterator, Mapping, Optional

from pydantic import BaseModel, Field as PydanticField

from .column import Column
from .errors import RelationResolutionError
from .expressions import UNDEFINED


class TableOptions(BaseModel):
    """Engine-level options that influence how queries against a table are compiled."""

    primary_key: tuple[str, ...] = ()
    """Primary key columns (property keys or column names); first column when empty."""
    order_by: tuple[str, ...] = ()
    """Physical ORDER BY key of the table (used for ordering suggestions)."""
    on_cluster: Optional[str] = None
    shard_key: tuple[str, ...] = ()
    projections: tuple[str, ...] = ()
    """Names of the projections declared on the table."""
    default_final: bool = False
    """Apply ``FINAL`` to every SELECT reading this table."""
    append_only: bool = True
    """Append-only tables refuse ``ALTER TABLE ... DELETE``."""


class ColumnNamespace:
    """Attribute access to a table's columns (``users.c.name``), including names
    that clash with ``Table`` fields."""

    __slots__ = ("_columns",)

    def __init__(self, columns: Mapping[str, Column]) -> None:
        self._columns = columns

    def __getattr__(self, name: str) -> Column:
        try:
            return self._columns[name]
        except KeyError:
            raise AttributeError(name) from None

    def __getitem__(self, name: str) -> Column:
        return self._columns[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._columns)

    def __contains__(self, name: object) -> bool:
        return name in self._columns

    def __len__(self) -> int:
        return len(self._columns)


class Table(BaseModel):
    """A ClickHouse table (or a derived table wrapping a subquery).

    ``columns`` maps property keys to ``Column`` objects; keys may differ from
    the stored column names (e.g. ``userId`` -> ``user_id``). Columns are also
    reachable as attributes: ``users.email``.
    """

    model_config = {"arbitrary_types_allowed": True}

    name: str
    columns: dict[str, Column] = PydanticField(default_factory=dict)
    relations: dict[str, Any] = PydanticField(default_factory=dict)
    """Relation name -> ``Relation`` (see ``clickorm.relations``)."""
    options: TableOptions = PydanticField(default_factory=TableOptions)
    subquery: Any = None
    """For derived tables: the ``Query`` this table selects from."""

    def __getattr__(self, name: str):
        if name.startswith("_"):
            return super().__getattr__(name)
        columns = self.__dict__.get("columns") or {}
        if name in columns:
            return columns[name]
        raise AttributeError(f"Table `{self.__dict__.get('name')}` has no column `{name}`")

    @property
    def c(self) -> ColumnNamespace:
        """Column namespace (``users.c.email``)."""
        return ColumnNamespace(self.columns)

    @property
    def is_subquery(self) -> bool:
        return self.subquery is not None

    @property
    def is_distributed(self) -> bool:
        """True when the table is declared on a cluster or sharded."""
        return bool(self.options.on_cluster or self.options.shard_key)

    def get_column(self, key: str, default: Any = UNDEFINED) -> Column | Any:
        """Column by property key, then by stored column name; ``default`` otherwise."""
        if key in self.columns:
            return self.columns[key]
        for column in self.columns.values():
            if column.name == key:
                return column
        return default

    def get_relation(self, name: str):
        """Relation by name; raises ``RelationResolutionError`` listing the declared ones."""
        try:
            return self.relations[name]
        except KeyError:
            declared = ", ".join(self.relations) or "none"
            raise RelationResolutionError(
                f"Table `{self.name}` has no relation `{name}` (declared: {declared})"
            ) from None

    @property
    def primary_key_keys(self) -> list[str]:
        """Property keys of the primary key columns (first column when none is declared)."""
        keys = []
        for entry in self.options.primary_key:
            if entry in self.columns:
                keys.append(entry)
                continue
            for key, column in self.columns.items():
                if column.name == entry:
                    keys.append(key)
                    break
            else:
                raise ValueError(f"Primary key `{entry}` is not a column of `{self.name}`")
        if not keys and self.columns:
            keys.append(next(iter(self.columns)))
        return keys

    def __repr__(self) -> str:
        return f"Table({self.name}: {', '.join(self.columns)})"


def table(name: str, columns: Mapping[str, Column | str], **options: Any) -> Table:
    """Declare a table.

    ``columns`` maps property keys to either a ``Column`` or a bare ClickHouse
    type string (the key is then used as the column name). Keyword arguments
    are ``TableOptions`` fields; string values for tuple options are wrapped.

    Example:
        users = table("users", {"id": "UInt64", "email": "String"},
                      primary_key="id", projections=("by_email",))
    """
    resolved: dict[str, Column] = {}
    for key, spec in columns.items():
        if isinstance(spec, Column):
            resolved[key] = spec if spec.table_name == name else spec.with_table(name)
        elif isinstance(spec, str):
            resolved[key] = Column(
                name=key,
                type=spec,
                table_name=name,
                nullable=spec.startswith("Nullable("),
            )
        else:
            raise TypeError(f"Column `{key}` of `{name}` must be a Column or a type string; got {type(spec)}")
    for option in ("primary_key", "order_by", "shard_key", "projections"):
        if isinstance(options.get(option), str):
            options[option] = (options[option],)
    return Table(name=name, columns=resolved, options=TableOptions(**options))


def derived_table(query: Any, alias: str = "subquery") -> Table:
    """Wrap a ``Query`` as a table usable in FROM (``(SELECT ...) AS `alias```).

    Columns mirror the subquery's selection; selected expressions without a
    declared type are typed ``String``. FINAL never applies to derived tables.
    """
    columns: dict[str, Column] = {}
    if query.selection:
        for key, item in query.selection.items():
            if isinstance(item, Column):
                columns[key] = Column(name=key, type=item.type, nullable=item.nullable, table_name=alias)
            else:
                columns[key] = Column(name=key, type=getattr(item, "type", None) or "String", table_name=alias)
    elif query.table is not None:
        for key, column in query.table.columns.items():
            columns[key] = Column(name=key, type=column.type, nullable=column.nullable, table_name=alias)
    return Table(name=alias, columns=columns, subquery=query)


__all__ = ["Table", "TableOptions", "ColumnNamespace", "table", "derived_table"]
