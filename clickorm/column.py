"""Column descriptors for ClickHouse tables.

A ``Column`` is pure metadata: the column name as stored in the database, the
name of the table owning it, its ClickHouse type string (``UInt64``,
``Nullable(String)``, ``Array(UUID)``...) and whether it accepts NULL. Columns
are leaves of expression trees; they render as backtick-quoted identifiers
and give literal values compared against them a typing context.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict


class Column(BaseModel):
    """Metadata for a single table column."""

    model_config = ConfigDict(frozen=True)

    name: str
    """Column name in the database (e.g. ``user_id``)."""
    type: str
    """ClickHouse type string (e.g. ``UInt64``, ``DateTime``)."""
    table_name: Optional[str] = None
    """Owning table; ``None`` for free-standing columns (e.g. ARRAY JOIN aliases)."""
    nullable: bool = False
    alias: Optional[str] = None
    """Output name when selected (set with ``as_``)."""

    @property
    def sql(self) -> str:
        """Qualified identifier (e.g. ``\\`users\\`.\\`email\\```)."""
        if self.table_name:
            return f"`{self.table_name}`.`{self.name}`"
        return f"`{self.name}`"

    @property
    def sql_unqualified(self) -> str:
        """Identifier without the table prefix (ALTER TABLE mutations reject qualified names)."""
        return f"`{self.name}`"

    @property
    def signature(self) -> str:
        """Structural signature used by fingerprinting (``table.column``)."""
        if self.table_name:
            return f"{self.table_name}.{self.name}"
        return self.name

    def with_table(self, table_name: Optional[str]) -> Column:
        """Return a copy of this column owned by another table (used by derived tables)."""
        return self.model_copy(update={"table_name": table_name})

    def as_(self, alias: str) -> Column:
        """Copy of this column selected under ``alias``."""
        return self.model_copy(update={"alias": alias})

    def asc(self):
        """Order by this column ascending (for use in ``order_by(...)``)."""
        from .query import OrderBy
        return OrderBy(expression=self, direction="ASC")

    def desc(self):
        """Order by this column descending (for use in ``order_by(...)``)."""
        from .query import OrderBy
        return OrderBy(expression=self, direction="DESC")

    def __repr__(self) -> str:
        return f"Column({self.signature}: {self.type})"


__all__ = ["Column"]
