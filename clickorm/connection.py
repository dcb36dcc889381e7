from __future__ import annotations

from typing import Any, Mapping, Optional

from .cache import DEFAULT_CAPACITY, TemplateCache
from .mutations import DeleteQuery, UpdateQuery
from .prepared import ExecutableQuery, PreparedQueryFactory
from .query import Query
from .relational import RelationalAPI
from .table import Table


class Database:
    """A client handle plus the template cache and relational API built around it.

    ``client`` is an asynchronous ClickHouse client (see ``clickorm.prepared``).
    ``schema`` maps keys to tables for ``db.query.<key>.find_many(...)``.
    """

    def __init__(self, client: Any, schema: Optional[Mapping[str, Table]] = None,
                 cache: Optional[TemplateCache] = None, cache_capacity: int = DEFAULT_CAPACITY) -> None:
        self.client = client
        self.schema = dict(schema or {})
        self.cache = cache if cache is not None else TemplateCache(cache_capacity)
        self.factory = PreparedQueryFactory(self.cache)
        self.query = RelationalAPI(self.schema, self.factory, client)

    def select(self, fields: Any = None) -> Query:
        """Start a SELECT executed on this database when awaited."""
        return Query().select(fields).bind(self)

    def prepare(self, query: Query) -> ExecutableQuery:
        return self.factory.prepare(query, self.client)

    def to_sql(self, query: Query) -> tuple[str, dict[str, Any], list[str]]:
        return self.factory.to_sql(query)

    def delete(self, table: Table) -> DeleteQuery:
        return DeleteQuery(table, self.client)

    def update(self, table: Table) -> UpdateQuery:
        return UpdateQuery(table, self.client)

    def with_client(self, client: Any) -> Database:
        """Same schema and template cache, another client (e.g. a read replica)."""
        return Database(client, self.schema, cache=self.cache)

    def clear_cache(self) -> None:
        self.cache.clear()


_databases: dict[str, Database] = {}


def connect(client: Any, name: str = "default", schema: Optional[Mapping[str, Table]] = None,
            cache: Optional[TemplateCache] = None, cache_capacity: int = DEFAULT_CAPACITY) -> Database:
    database = Database(client, schema, cache=cache, cache_capacity=cache_capacity)
    _databases[name] = database
    return database


def get_database(name: str = "default") -> Database:
    try:
        return _databases[name]
    except KeyError as error:
        raise ValueError(f"No connection configured with name=`{name}`") from error
