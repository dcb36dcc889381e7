"""The ``SQL`` expression: literal text chunks interleaved with tagged slots."""

from __future__ import annotations

from typing import Any, Iterable, Optional

from pydantic import model_validator

from ..column import Column
from ._bases import UNDEFINED, Expression, RenderContext, Slot, SlotKind, Visitor
from .literals import infer_type, serialize_literal

PLACEHOLDER = "{}"


class SQL(Expression):
    """``chunks[0] slot[0] chunks[1] slot[1] ... chunks[-1]``.

    A literal that directly follows a column (``eq(users.id, 5)``) is typed
    from that column.
    """

    chunks: tuple[str, ...] = ("",)
    slots: tuple[Slot, ...] = ()

    @model_validator(mode="after")
    def _check_shape(self) -> SQL:
        if len(self.chunks) != len(self.slots) + 1:
            raise ValueError(
                f"SQL needs exactly one more chunk than slots; got {len(self.chunks)} chunks "
                f"and {len(self.slots)} slots"
            )
        return self

    @classmethod
    def from_parts(cls, chunks: Iterable[str], arguments: Iterable[Any]) -> SQL:
        return cls(chunks=tuple(chunks), slots=tuple(map(Slot.of, arguments)))

    def render(self, context: RenderContext) -> str:
        parts: list[str] = []
        last_column: Optional[Column] = None
        for position, slot in enumerate(self.slots):
            parts.append(self.chunks[position])
            if slot.kind is SlotKind.COLUMN:
                parts.append(context.format_column(slot.value))
                last_column = slot.value
                continue
            if slot.kind is SlotKind.EXPRESSION:
                parts.append(slot.value.render(context))
            elif slot.kind is SlotKind.RAW:
                parts.append(slot.value)
            else:
                if slot.value is UNDEFINED:
                    raise context.undefined_error(position, "".join(parts))
                parts.append(context.bind(slot.value, infer_type(slot.value, last_column)))
            last_column = None
        parts.append(self.chunks[-1])
        return "".join(parts)

    def walk(self, visitor: Visitor) -> str:
        parts: list[str] = []
        last_column: Optional[Column] = None
        for position, slot in enumerate(self.slots):
            parts.append(self.chunks[position])
            if slot.kind is SlotKind.COLUMN:
                parts.append(slot.value.signature)
                last_column = slot.value
                continue
            if slot.kind is SlotKind.EXPRESSION:
                parts.append(slot.value.walk(visitor))
            elif slot.kind is SlotKind.RAW:
                parts.append(slot.value)
            elif slot.value is UNDEFINED:
                # reported by the full compilation, with candidate columns
                parts.append("{:UNDEFINED}")
            else:
                clickhouse_type = infer_type(slot.value, last_column)
                visitor(serialize_literal(slot.value), clickhouse_type)
                parts.append(f"{{:{clickhouse_type}}}")
            last_column = None
        parts.append(self.chunks[-1])
        return "".join(parts)


def sql(template: str, *arguments: Any) -> SQL:
    """Build an expression from a template where each ``{}`` is a slot.

    Example:
        sql("{} = {}", users.id, 5)   # `users`.`id` = {p_1:UInt64}
    """
    chunks = template.split(PLACEHOLDER)
    if len(chunks) != len(arguments) + 1:
        raise ValueError(
            f"Template has {len(chunks) - 1} placeholders but {len(arguments)} arguments were given"
        )
    return SQL.from_parts(chunks, arguments)


def raw(text: str) -> SQL:
    """Trusted SQL fragment inserted without binding. Values are NOT escaped."""
    return SQL(chunks=("", ""), slots=(Slot.raw(text),))


def join(items: Iterable[Any], separator: str | Expression = ", ") -> SQL:
    """Join columns, expressions or literals with a separator."""
    items = list(items)
    if not items:
        return SQL()
    separator_slot = Slot.raw(separator) if isinstance(separator, str) else Slot.of(separator)
    chunks: list[str] = [""]
    slots: list[Slot] = []
    for index, item in enumerate(items):
        slots.append(Slot.of(item))
        if index < len(items) - 1:
            slots.append(separator_slot)
            chunks.extend(("", ""))
        else:
            chunks.append("")
    return SQL(chunks=tuple(chunks), slots=tuple(slots))


def fn(name: str, *arguments: Any) -> SQL:
    """Call any ClickHouse function: ``fn("length", users.tags)``."""
    if not name:
        raise ValueError("Function name must not be empty")
    if not arguments:
        return SQL(chunks=(f"{name}()",))
    chunks = [f"{name}("] + [", "] * (len(arguments) - 1) + [")"]
    return SQL.from_parts(chunks, arguments)


__all__ = ["SQL", "sql", "raw", "join", "fn"]
