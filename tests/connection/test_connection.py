"""Tests for clickorm.connection: Database handles and the named registry."""

import pytest

from clickorm.cache import TemplateCache
from clickorm.connection import Database, connect, get_database
from clickorm.expressions import eq
from clickorm.mutations import DeleteQuery, UpdateQuery
from tests.helpers import FakeClient, run


def test_connect_registers_by_name(schema):
    primary = connect(FakeClient(), name="analytics", schema=schema)
    assert get_database("analytics") is primary
    assert "users" in primary.query
    replaced = connect(FakeClient(), name="analytics")
    assert get_database("analytics") is replaced


def test_get_database_rejects_unknown_names():
    with pytest.raises(ValueError, match="No connection configured with name=`nowhere`"):
        get_database("nowhere")


def test_select_is_bound_and_awaitable(schema, client):
    users = schema["users"]
    client.respond("FROM `users`", [{"id": 1}])
    db = Database(client, schema)
    query = db.select({"id": users.id}).from_(users).where(eq(users.id, 1))
    assert query.to_sql() == (
        "SELECT `users`.`id` AS `id` FROM `users` WHERE `users`.`id` = {p_1:UInt64}", {"p_1": 1}, []
    )
    assert run(query) == [{"id": 1}]
    assert run(db.select().from_(users).fetch()) == [{"id": 1}]
    assert len(db.cache) == 2


def test_relational_api_uses_the_database_client(schema, client):
    client.respond("FROM `posts`", [{"id": 3, "user_id": 1, "title": "t"}])
    db = Database(client, schema)
    assert run(db.query.posts.find_many()) == [{"id": 3, "user_id": 1, "title": "t"}]


def test_mutation_builders(schema, client):
    db = Database(client)
    events = schema["events"]
    assert isinstance(db.delete(events), DeleteQuery)
    update = db.update(events)
    assert isinstance(update, UpdateQuery)
    run(update.set({"kind": "x"}).where(eq(events.id, 1)))
    assert client.commands[0][0] == "ALTER TABLE `events` UPDATE `kind` = {p_1:String} WHERE `id` = {p_2:UInt64}"


def test_with_client_shares_the_template_cache(schema):
    users = schema["users"]
    primary = Database(FakeClient("primary"), schema, cache_capacity=8)
    replica = primary.with_client(FakeClient("replica"))
    assert replica.cache is primary.cache
    assert replica.cache.capacity == 8
    run(primary.select().from_(users).where(eq(users.id, 1)))
    run(replica.select().from_(users).where(eq(users.id, 2)))
    assert len(primary.cache) == 1
    assert replica.client.queries[0][1] == {"p_1": 2}
    primary.clear_cache()
    assert len(replica.cache) == 0


def test_explicit_cache_is_used(client):
    cache = TemplateCache(capacity=3)
    assert Database(client, cache=cache).cache is cache
