"""Binding cached templates to values and a client, and executing them.

``PreparedQueryFactory`` turns a ``Query`` into an ``ExecutableQuery``:
fingerprint, look the template up in the ``TemplateCache``, compile on a miss,
then zip the template's parameter names with the fingerprint's values. The
client is only attached to the short-lived executable object, never to the
cached template, so one template can serve several clients (e.g. replicas).

The client is duck-typed on the asynchronous ``clickhouse-connect`` client:
``await client.query(sql, parameters=...)`` and
``await client.command(sql, parameters=...)``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional, Sequence

from .cache import CompiledTemplate, TemplateCache
from .compiler import SQLCompiler
from .errors import CompilationError, MutationFailed, MutationWaitTimeout
from .fingerprint import FingerprintGenerator
from .query import Query

logger = logging.getLogger("clickorm")

LATEST_MUTATION_SQL = (
    "SELECT mutation_id FROM system.mutations "
    "WHERE database = currentDatabase() AND table = {table:String} "
    "ORDER BY create_time DESC LIMIT 1"
)
MUTATION_STATUS_SQL = (
    "SELECT is_done, latest_failed_part, latest_fail_reason FROM system.mutations "
    "WHERE database = currentDatabase() AND table = {table:String} AND mutation_id = {mid:String}"
)


async def fetch_rows(client: Any, sql: str, params: dict[str, Any]) -> list[dict[str, Any]]:
    """Run a SELECT and return rows as dicts (column name -> value)."""
    result = await client.query(sql, parameters=params)
    named_results = getattr(result, "named_results", None)
    if callable(named_results):
        return [dict(row) for row in named_results()]
    return [dict(row) for row in result]


class ExecutableQuery:
    """SQL text and bound parameters, ready to run on one client.

    Awaiting the object executes it: ``rows = await db.select(...).from_(t)``.
    """

    def __init__(self, sql: str, params: dict[str, Any], client: Any,
                 template: Optional[CompiledTemplate] = None) -> None:
        self.sql = sql
        self.params = params
        self.template = template
        self._client = client

    @property
    def suggestions(self) -> list[str]:
        return list(self.template.suggestions) if self.template else []

    @property
    def column_names(self) -> list[str]:
        return list(self.template.column_names) if self.template else []

    def to_sql(self) -> tuple[str, dict[str, Any]]:
        return self.sql, dict(self.params)

    async def execute(self) -> list[dict[str, Any]]:
        start = time.perf_counter()
        try:
            rows = await fetch_rows(self._client, self.sql, self.params)
        except Exception:
            logger.error("Query failed: %s", self.sql)
            raise
        logger.debug("%s -- %s (%d rows in %.1f ms)", self.sql, self.params, len(rows),
                     (time.perf_counter() - start) * 1000)
        return rows

    def __await__(self):
        return self.execute().__await__()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.sql!r}, {self.params!r})"


class MutationQuery(ExecutableQuery):
    """An ``ALTER TABLE ... DELETE/UPDATE`` statement.

    ClickHouse runs mutations asynchronously: ``execute()`` resolves once the
    statement is accepted, ``wait()`` polls ``system.mutations`` until it is
    done. A wait that times out leaves the remote mutation running.
    """

    def __init__(self, sql: str, params: dict[str, Any], client: Any, table_name: str) -> None:
        super().__init__(sql, params, client)
        self.table_name = table_name
        self.mutation_id: Optional[str] = None
        self.executed = False

    async def execute(self) -> None:
        start = time.perf_counter()
        try:
            await self._client.command(self.sql, parameters=self.params)
        except Exception:
            logger.error("Mutation failed: %s", self.sql)
            raise
        self.executed = True
        logger.debug("%s -- %s (%.1f ms)", self.sql, self.params, (time.perf_counter() - start) * 1000)
        rows = await fetch_rows(self._client, LATEST_MUTATION_SQL, {"table": self.table_name})
        self.mutation_id = rows[0].get("mutation_id") if rows else None

    async def wait(self, poll_interval_ms: int = 500, timeout_ms: int = 60_000) -> None:
        """Wait for the mutation to complete, sending it first if needed.

        Raises:
            MutationFailed: the server reported a failure reason.
            MutationWaitTimeout: not done after ``timeout_ms``.
        """
        if not self.executed:
            await self.execute()
        if self.mutation_id is None:
            return
        start = time.monotonic()
        parameters = {"table": self.table_name, "mid": self.mutation_id}
        while True:
            rows = await fetch_rows(self._client, MUTATION_STATUS_SQL, parameters)
            if not rows:
                return
            status = rows[0]
            logger.debug("Mutation %s on %s: %s", self.mutation_id, self.table_name, status)
            if status.get("latest_fail_reason"):
                raise MutationFailed(f"Mutation {self.mutation_id} failed: {status['latest_fail_reason']}")
            if status.get("is_done") in (1, True):
                return
            if (time.monotonic() - start) * 1000 > timeout_ms:
                raise MutationWaitTimeout(f"Mutation {self.mutation_id} not completed after {timeout_ms}ms")
            await asyncio.sleep(poll_interval_ms / 1000)


class PreparedQueryFactory:
    """Compiles queries through a shared ``TemplateCache`` and binds them to clients."""

    def __init__(self, cache: TemplateCache, compiler: Optional[SQLCompiler] = None,
                 fingerprinter: Optional[FingerprintGenerator] = None) -> None:
        self.cache = cache
        self.compiler = compiler or SQLCompiler()
        self.fingerprinter = fingerprinter or FingerprintGenerator(self.compiler)

    def template_for(self, query: Query) -> tuple[CompiledTemplate, list[Any]]:
        """The cached template for ``query``'s structure, and ``query``'s literal values."""
        key, values = self.fingerprinter.fingerprint(query)
        template = self.cache.get(key)
        if template is None:
            compiled = self.compiler.compile(query)
            if len(compiled.params) != len(values):
                raise CompilationError(
                    f"Fingerprint collected {len(values)} values but compilation produced "
                    f"{len(compiled.params)} parameters"
                )
            template = CompiledTemplate(
                sql=compiled.sql,
                param_names=tuple(compiled.param_names),
                column_names=tuple(compiled.column_names),
                column_types=tuple(compiled.column_types),
                suggestions=tuple(compiled.suggestions),
            )
            for suggestion in template.suggestions:
                logger.info("%s", suggestion)
            self.cache.put(key, template)
        return template, values

    def bind(self, template: CompiledTemplate, values: Sequence[Any], client: Any) -> ExecutableQuery:
        if len(values) != len(template.param_names):
            raise CompilationError(
                f"Template expects {len(template.param_names)} values; got {len(values)}"
            )
        return ExecutableQuery(template.sql, dict(zip(template.param_names, values)), client, template)

    def prepare(self, query: Query, client: Any) -> ExecutableQuery:
        template, values = self.template_for(query)
        return self.bind(template, values, client)

    def to_sql(self, query: Query) -> tuple[str, dict[str, Any], list[str]]:
        """``(sql, params, suggestions)`` for ``query``, through the cache."""
        template, values = self.template_for(query)
        return template.sql, dict(zip(template.param_names, values)), list(template.suggestions)


__all__ = ["PreparedQueryFactory", "ExecutableQuery", "MutationQuery", "fetch_rows"]
