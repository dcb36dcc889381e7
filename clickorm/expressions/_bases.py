"""Base expression types: slots, render context and the ``Expression`` contract."""

from __future__ import annotations

import enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict

from ..column import Column
from ..errors import CompilationError
from .literals import serialize_literal

Visitor = Callable[[Any, str], None]
"""Receives ``(serialized_value, clickhouse_type)`` for each literal met by ``walk``."""

COMMON_COLUMN_NAMES = ("name", "email", "id", "userId", "user_id", "firstName", "lastName")


class _Undefined:
    """Marker for a value that was never supplied (e.g. a missing column lookup)."""

    _instance: Optional[_Undefined] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED = _Undefined()


class SlotKind(str, enum.Enum):
    """What a slot between two text chunks holds."""

    COLUMN = "column"
    EXPRESSION = "expression"
    LITERAL = "literal"
    RAW = "raw"


class Slot(BaseModel):
    """One value position in an expression, tagged once at construction."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: SlotKind
    value: Any

    @classmethod
    def of(cls, value: Any) -> Slot:
        """Tag an argument: columns and expressions keep their identity, anything else is a literal."""
        if isinstance(value, Slot):
            return value
        if isinstance(value, Column):
            return cls(kind=SlotKind.COLUMN, value=value)
        if isinstance(value, Expression):
            return cls(kind=SlotKind.EXPRESSION, value=value)
        return cls(kind=SlotKind.LITERAL, value=value)

    @classmethod
    def raw(cls, text: str) -> Slot:
        """Trusted SQL text, inserted as-is (never bound)."""
        if not isinstance(text, str):
            raise TypeError(f"Raw SQL must be a string; got {type(text)}")
        return cls(kind=SlotKind.RAW, value=text)


class RenderContext:
    """Mutable state of one rendering pass.

    Owns the parameter counter (``p_1``, ``p_2``...) shared by every clause of
    a compilation, and the parameter map filled in rendering order.
    """

    def __init__(self, table: Any = None, ignore_table_prefix: bool = False) -> None:
        self.table = table
        self.ignore_table_prefix = ignore_table_prefix
        self.params: dict[str, Any] = {}
        self._counter = 0

    def next_param_name(self) -> str:
        self._counter += 1
        return f"p_{self._counter}"

    def bind(self, value: Any, clickhouse_type: str) -> str:
        """Register a literal and return its placeholder (``{p_N:Type}``)."""
        name = self.next_param_name()
        self.params[name] = serialize_literal(value)
        return f"{{{name}:{clickhouse_type}}}"

    def format_column(self, column: Column) -> str:
        if self.ignore_table_prefix:
            return column.sql_unqualified
        return column.sql

    def undefined_error(self, position: int, sql_so_far: str) -> CompilationError:
        """Descriptive error for an undefined literal, listing candidate columns when a table is known."""
        context = f" (parameter {position} in expression)" if position > 0 else ""
        message = (
            f"Cannot use an undefined value in SQL expression{context}. "
            "A table column is probably undefined (e.g. a misspelled column name, "
            "or camelCase vs snake_case)."
        )
        columns = getattr(self.table, "columns", None)
        if columns:
            names = list(columns)
            suggested = [name for name in COMMON_COLUMN_NAMES if name in names][:3]
            if suggested:
                message += f"\nSuggested columns: {', '.join(suggested)}"
            message += f"\nAvailable columns: {', '.join(names[:10])}"
            if len(names) > 10:
                message += "..."
        message += f"\nSQL context: ...{sql_so_far[-50:]}"
        return CompilationError(message)


class Expression(BaseModel):
    """Base type for SQL expression nodes.

    Two traversals must stay in lock-step: ``render`` emits SQL with
    ``{p_N:Type}`` placeholders (filling the context's parameter map), and
    ``walk`` emits a structural signature while handing literal values to a
    visitor. Both visit slots in the same order.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    alias: Optional[str] = None
    """Output column name when selected (set with ``as_``)."""
    type: Optional[str] = None
    """Declared ClickHouse result type, if known."""

    def render(self, context: RenderContext) -> str:
        """SQL fragment for this expression; literals are bound into ``context``."""
        raise NotImplementedError("Subclasses must implement `render`")

    def walk(self, visitor: Visitor) -> str:
        """Structural signature; literal values are passed to ``visitor`` in order."""
        raise NotImplementedError("Subclasses must implement `walk`")

    def as_(self, alias: str) -> Expression:
        """Copy of this expression selected under ``alias``."""
        return self.model_copy(update={"alias": alias})

    def typed(self, clickhouse_type: str) -> Expression:
        """Copy of this expression with a declared result type."""
        return self.model_copy(update={"type": clickhouse_type})

    def to_sql(self, table: Any = None, ignore_table_prefix: bool = False) -> tuple[str, dict[str, Any]]:
        """Render standalone: ``(sql, params)`` with numbering starting at ``p_1``."""
        context = RenderContext(table=table, ignore_table_prefix=ignore_table_prefix)
        return self.render(context), context.params

    @property
    def sql(self) -> str:
        """SQL fragment rendered standalone."""
        return self.to_sql()[0]

    @property
    def values(self) -> tuple[Any, ...]:
        """Bound values, in placeholder order."""
        return tuple(self.to_sql()[1].values())

    def asc(self):
        """Order by this expression ascending."""
        from ..query import OrderBy
        return OrderBy(expression=self, direction="ASC")

    def desc(self):
        """Order by this expression descending."""
        from ..query import OrderBy
        return OrderBy(expression=self, direction="DESC")
