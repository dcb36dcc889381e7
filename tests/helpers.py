"""Shared test helpers: a sample schema and a recording stand-in for the async ClickHouse client."""

import asyncio
from typing import Any, Iterable

from clickorm.column import Column
from clickorm.relations import relations
from clickorm.table import table


def make_schema() -> dict:
    """users -< posts, users - profile, profile -< badges, profile -< links, plus standalone tables."""
    users = table("users", {"id": "UInt64", "email": "String", "created_at": "DateTime"},
                  primary_key="id", order_by="id")
    posts = table("posts", {"id": "UInt64", "user_id": "UInt64", "title": "String"}, primary_key="id")
    profiles = table("profiles", {"id": "UInt64", "user_id": "UInt64", "bio": "String"})
    badges = table("badges", {"id": "UInt64", "profile_id": "UInt64", "label": "String"})
    links = table("links", {"id": "UInt64", "profile_id": "UInt64", "url": "String"})
    events = table("events", {"id": "UInt64", "user_id": "UInt64", "kind": "String",
                              "score": "Float64", "tags": "Array(String)"},
                   on_cluster="main", append_only=False)
    metrics = table("metrics", {"id": "UInt64", "value": "Float64"}, projections="by_value")
    accounts = table("accounts", {"userId": Column(name="uid", type="UInt64"),
                                  "display_name": "String", "Region": "String"})

    relations(users, lambda r: {
        "posts": r.many(posts, fields=[users.id], references=[posts.user_id]),
        "profile": r.one(profiles, fields=[users.id], references=[profiles.user_id]),
        "events": r.many(events, fields=[users.id], references=[events.user_id]),
    })
    relations(profiles, lambda r: {
        "badges": r.many(badges, fields=[profiles.id], references=[badges.profile_id]),
        "links": r.many(links, fields=[profiles.id], references=[links.profile_id]),
    })
    return {
        "users": users,
        "posts": posts,
        "profiles": profiles,
        "badges": badges,
        "links": links,
        "events": events,
        "metrics": metrics,
        "accounts": accounts,
    }


class FakeResult:
    def __init__(self, rows: list[dict]):
        self._rows = rows

    def named_results(self):
        return iter(self._rows)


class FakeClient:
    """Records every call; answers queries whose SQL contains a registered fragment.

    ``respond(fragment, rows)`` accepts a list of rows, a callable
    ``(sql, parameters) -> rows``, or ``sequence=[rows, rows, ...]`` (the
    last answer repeats).
    """

    def __init__(self, name: str = "primary"):
        self.name = name
        self.queries: list[tuple[str, dict]] = []
        self.commands: list[tuple[str, dict]] = []
        self._handlers: list[tuple[str, Any]] = []
        self.error: Exception | None = None

    def respond(self, fragment: str, rows: Any = None, sequence: Iterable[list] | None = None) -> None:
        if sequence is not None:
            answers = list(sequence)

            def rows(sql, parameters):
                return answers.pop(0) if len(answers) > 1 else answers[0]
        self._handlers.append((fragment, rows))

    async def query(self, sql: str, parameters: dict | None = None) -> FakeResult:
        self.queries.append((sql, dict(parameters or {})))
        if self.error is not None:
            raise self.error
        for fragment, rows in self._handlers:
            if fragment in sql:
                if callable(rows):
                    rows = rows(sql, parameters)
                return FakeResult([dict(row) for row in rows])
        return FakeResult([])

    async def command(self, sql: str, parameters: dict | None = None) -> None:
        self.commands.append((sql, dict(parameters or {})))
        if self.error is not None:
            raise self.error


def run(awaitable: Any) -> Any:
    """Drive a coroutine (or any awaitable) to completion."""
    async def _wait():
        return await awaitable
    return asyncio.run(_wait())


def product_rows(*groups: list[dict]) -> list[dict]:
    """Cartesian product of partial rows, merged left to right (what row-multiplying joins return)."""
    rows = [{}]
    for group in groups:
        rows = [{**row, **part} for row in rows for part in group]
    return rows

