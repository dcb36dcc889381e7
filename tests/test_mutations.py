"""Tests for ALTER TABLE DELETE / UPDATE builders and mutation polling."""

import pytest

from clickorm.errors import MutationFailed, MutationWaitTimeout
from clickorm.expressions import and_, eq, gt
from clickorm.mutations import DeleteQuery, UpdateQuery
from clickorm.prepared import LATEST_MUTATION_SQL, MUTATION_STATUS_SQL
from tests.helpers import run


def test_delete_renders_unqualified_columns(schema, client):
    events = schema["events"]
    delete = DeleteQuery(events, client).where(eq(events.id, 3))
    assert delete.to_sql() == ("ALTER TABLE `events` DELETE WHERE `id` = {p_1:UInt64}", {"p_1": 3})


def test_update_types_values_from_columns(schema, client):
    events = schema["events"]
    update = UpdateQuery(events, client).set({"kind": "done", "score": 1.5}).where(eq(events.id, 3))
    assert update.to_sql() == (
        "ALTER TABLE `events` UPDATE `kind` = {p_1:String}, `score` = {p_2:Float64} WHERE `id` = {p_3:UInt64}",
        {"p_1": "done", "p_2": 1.5, "p_3": 3},
    )


def test_mutations_are_refused_on_append_only_tables(schema, client):
    users = schema["users"]
    with pytest.raises(ValueError, match="DELETE is blocked for append-only table `users`"):
        DeleteQuery(users, client).where(eq(users.id, 1)).to_sql()
    with pytest.raises(ValueError, match="UPDATE is blocked for append-only table `users`"):
        UpdateQuery(users, client).set({"email": "x"}).where(eq(users.id, 1)).to_sql()
    assert client.commands == []


def test_mutations_require_where(schema, client):
    events = schema["events"]
    with pytest.raises(ValueError, match="DELETE requires a WHERE clause"):
        DeleteQuery(events, client).to_sql()
    with pytest.raises(ValueError, match="UPDATE requires a WHERE clause"):
        UpdateQuery(events, client).set({"kind": "x"}).to_sql()


def test_update_checks_assignments(schema, client):
    events = schema["events"]
    with pytest.raises(ValueError, match="`colour` is not a column of `events`"):
        UpdateQuery(events, client).set({"colour": "red"})
    with pytest.raises(ValueError, match="at least one column"):
        UpdateQuery(events, client).where(eq(events.id, 1)).to_sql()


def test_execute_sends_a_command_and_reads_the_mutation_id(schema, client):
    events = schema["events"]
    client.respond("system.mutations", [{"mutation_id": "mutation_7.txt"}])
    delete = DeleteQuery(events, client).where(and_(eq(events.kind, "spam"), gt(events.score, 0.5)))
    run(delete)
    mutation = delete.build()
    assert mutation.executed
    assert mutation.mutation_id == "mutation_7.txt"
    assert client.commands == [(
        "ALTER TABLE `events` DELETE WHERE (`kind` = {p_1:String}) AND (`score` > {p_2:Float64})",
        {"p_1": "spam", "p_2": 0.5},
    )]
    assert client.queries == [(LATEST_MUTATION_SQL, {"table": "events"})]


def test_wait_polls_until_done(schema, client):
    events = schema["events"]
    client.respond("ORDER BY create_time", [{"mutation_id": "m1"}])
    client.respond("latest_fail_reason", sequence=[
        [{"is_done": 0, "latest_failed_part": "", "latest_fail_reason": ""}],
        [{"is_done": 0, "latest_failed_part": "", "latest_fail_reason": ""}],
        [{"is_done": 1, "latest_failed_part": "", "latest_fail_reason": ""}],
    ])
    update = UpdateQuery(events, client).set({"kind": "seen"}).where(eq(events.id, 1))
    run(update.wait(poll_interval_ms=1))
    polls = [query for query in client.queries if query[0] == MUTATION_STATUS_SQL]
    assert len(polls) == 3
    assert polls[0][1] == {"table": "events", "mid": "m1"}
    assert len(client.commands) == 1


def test_wait_returns_when_status_row_is_gone(schema, client):
    events = schema["events"]
    client.respond("ORDER BY create_time", [{"mutation_id": "m1"}])
    run(DeleteQuery(events, client).where(eq(events.id, 1)).wait(poll_interval_ms=1))
    assert client.queries[-1][0] == MUTATION_STATUS_SQL


def test_wait_without_mutation_id_does_not_poll(schema, client):
    events = schema["events"]
    run(DeleteQuery(events, client).where(eq(events.id, 1)).wait())
    assert client.queries == [(LATEST_MUTATION_SQL, {"table": "events"})]


def test_wait_raises_on_failure(schema, client):
    events = schema["events"]
    client.respond("ORDER BY create_time", [{"mutation_id": "m1"}])
    client.respond("latest_fail_reason", [{"is_done": 0, "latest_failed_part": "all_1_1_0",
                                           "latest_fail_reason": "Code: 241. Memory limit exceeded"}])
    with pytest.raises(MutationFailed, match="Memory limit exceeded"):
        run(DeleteQuery(events, client).where(eq(events.id, 1)).wait(poll_interval_ms=1))


def test_wait_times_out(schema, client):
    events = schema["events"]
    client.respond("ORDER BY create_time", [{"mutation_id": "m1"}])
    client.respond("latest_fail_reason", [{"is_done": 0, "latest_failed_part": "", "latest_fail_reason": ""}])
    with pytest.raises(MutationWaitTimeout, match="Mutation m1 not completed after 5ms"):
        run(DeleteQuery(events, client).where(eq(events.id, 1)).wait(poll_interval_ms=2, timeout_ms=5))


def test_wait_after_execute_does_not_resend(schema, client):
    events = schema["events"]
    delete = DeleteQuery(events, client).where(eq(events.id, 1))
    run(delete.execute())
    run(delete.wait())
    assert len(client.commands) == 1
