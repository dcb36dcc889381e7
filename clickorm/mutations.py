"""``ALTER TABLE ... DELETE`` / ``ALTER TABLE ... UPDATE`` builders.

ClickHouse rejects table-qualified column names in mutations, so conditions
and assignments render with bare identifiers. Mutations always need a WHERE
clause and are refused on tables declared append-only.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from .expressions import Expression, RenderContext, sql
from .prepared import MutationQuery
from .table import Table


class _MutationBuilder:
    verb = ""

    def __init__(self, table: Table, client: Any) -> None:
        self.table = table
        self._client = client
        self._where: Optional[Expression] = None
        self._mutation: Optional[MutationQuery] = None

    def where(self, expression: Expression) -> _MutationBuilder:
        self._where = expression
        self._mutation = None
        return self

    def _check(self) -> None:
        if self.table.options.append_only:
            raise ValueError(
                f"{self.verb} is blocked for append-only table `{self.table.name}`; "
                "declare it with append_only=False to allow mutations"
            )
        if self._where is None:
            raise ValueError(f"{self.verb} requires a WHERE clause")

    def _render(self, context: RenderContext) -> str:
        raise NotImplementedError

    def to_sql(self) -> tuple[str, dict[str, Any]]:
        self._check()
        context = RenderContext(table=self.table, ignore_table_prefix=True)
        statement = self._render(context)
        return statement, context.params

    def build(self) -> MutationQuery:
        if self._mutation is None:
            statement, params = self.to_sql()
            self._mutation = MutationQuery(statement, params, self._client, self.table.name)
        return self._mutation

    async def execute(self) -> None:
        await self.build().execute()

    async def wait(self, poll_interval_ms: int = 500, timeout_ms: int = 60_000) -> None:
        await self.build().wait(poll_interval_ms=poll_interval_ms, timeout_ms=timeout_ms)

    def __await__(self):
        return self.execute().__await__()


class DeleteQuery(_MutationBuilder):
    """``await db.delete(events).where(eq(events.id, 3))``"""

    verb = "DELETE"

    def _render(self, context: RenderContext) -> str:
        return f"ALTER TABLE `{self.table.name}` DELETE WHERE {self._where.render(context)}"


class UpdateQuery(_MutationBuilder):
    """``await db.update(events).set({"status": "done"}).where(eq(events.id, 3))``"""

    verb = "UPDATE"

    def __init__(self, table: Table, client: Any) -> None:
        super().__init__(table, client)
        self._assignments: dict[str, Any] = {}

    def set(self, values: Mapping[str, Any]) -> UpdateQuery:
        for key in values:
            if self.table.get_column(key, None) is None:
                raise ValueError(f"`{key}` is not a column of `{self.table.name}`")
        self._assignments = dict(values)
        self._mutation = None
        return self

    def _check(self) -> None:
        super()._check()
        if not self._assignments:
            raise ValueError("UPDATE requires at least one column to set")

    def _render(self, context: RenderContext) -> str:
        assignments = ", ".join(
            sql("{} = {}", self.table.get_column(key), value).render(context)
            for key, value in self._assignments.items()
        )
        return f"ALTER TABLE `{self.table.name}` UPDATE {assignments} WHERE {self._where.render(context)}"


__all__ = ["DeleteQuery", "UpdateQuery"]
