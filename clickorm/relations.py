"""Relation declarations between tables (one-to-one / one-to-many)."""

from __future__ import annotations

from typing import Any, Callable, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from .column import Column
from .expressions import SQL, and_, eq
from .table import Table

RelationKind = Literal["one", "many"]


class Relation(BaseModel):
    """A declared relation from one table to ``table``.

    ``fields`` are columns of the declaring table, ``references`` the matching
    columns of the target; pairs are compared for equality and ANDed.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: RelationKind
    table: Table
    fields: tuple[Column, ...] = ()
    references: tuple[Column, ...] = ()

    @property
    def name(self) -> str:
        """Name of the target table."""
        return self.table.name

    def join_condition(self) -> Optional[SQL]:
        """ON condition for joining the target, or ``None`` when no field pairs are declared."""
        if not self.fields or not self.references:
            return None
        if len(self.fields) != len(self.references):
            raise ValueError(
                f"Relation to `{self.table.name}` has {len(self.fields)} fields "
                f"but {len(self.references)} references"
            )
        pairs = [eq(field, reference) for field, reference in zip(self.fields, self.references)]
        return and_(*pairs)


class RelationHelpers:
    """Passed to the ``relations()`` callback to declare relations."""

    @staticmethod
    def one(target: Table, fields: Sequence[Column], references: Sequence[Column]) -> Relation:
        return Relation(kind="one", table=target, fields=tuple(fields), references=tuple(references))

    @staticmethod
    def many(target: Table, fields: Sequence[Column] = (), references: Sequence[Column] = ()) -> Relation:
        return Relation(kind="many", table=target, fields=tuple(fields), references=tuple(references))


def relations(table: Table, callback: Callable[[RelationHelpers], dict[str, Relation]]) -> dict[str, Relation]:
    """Declare the relations of ``table`` and install them on it.

    Example:
        relations(users, lambda r: {
            "posts": r.many(posts, fields=[users.id], references=[posts.user_id]),
            "profile": r.one(profiles, fields=[users.id], references=[profiles.user_id]),
        })
    """
    declared: dict[str, Any] = callback(RelationHelpers())
    for name, relation in declared.items():
        if not isinstance(relation, Relation):
            raise TypeError(f"Relation `{name}` of `{table.name}` must be built with one() or many(); got {type(relation)}")
    table.relations = dict(declared)
    return declared


__all__ = ["Relation", "RelationHelpers", "RelationKind", "relations"]
