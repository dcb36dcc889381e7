"""Tests for relation planning and the single SELECT built by find_many."""

import logging

import pytest

from clickorm.compiler import SQLCompiler
from clickorm.errors import CompilationError
from clickorm.expressions import eq
from clickorm.relational import (
    MAX_RELATION_DEPTH,
    FindOptions,
    build_query,
    child_prefix,
    plan_relations,
    resolve_join_type,
)
from clickorm.relations import relations
from clickorm.table import table


def compiled_sql(table_, with_=None, **options):
    nodes = plan_relations(table_, with_)
    return SQLCompiler().compile(build_query(table_, nodes, FindOptions(with_=with_, **options)))


def test_child_prefix():
    assert child_prefix("", "profile") == "profile_"
    assert child_prefix("profile_", "badges") == "profile__badges_"


def test_plain_find_many(schema):
    compiled = compiled_sql(schema["users"], limit=10, offset=5)
    assert compiled.sql == (
        "SELECT `users`.`id` AS `id`, `users`.`email` AS `email`, `users`.`created_at` AS `created_at` "
        "FROM `users` LIMIT 10 OFFSET 5"
    )


def test_top_level_many_is_aggregated(schema):
    compiled = compiled_sql(schema["users"], {"posts": True})
    assert compiled.sql == (
        "SELECT `users`.`id` AS `id`, `users`.`email` AS `email`, `users`.`created_at` AS `created_at`, "
        "groupUniqArray(tuple(`posts`.`id`, `posts`.`user_id`, `posts`.`title`)) AS `posts` "
        "FROM `users` LEFT JOIN `posts` ON `users`.`id` = `posts`.`user_id` "
        "GROUP BY `users`.`id`, `users`.`email`, `users`.`created_at` "
        "SETTINGS join_use_nulls = 1"
    )


def test_aggregated_filter_uses_group_uniq_array_if(schema):
    posts = schema["posts"]
    compiled = compiled_sql(schema["users"], {"posts": {"where": eq(posts.title, "hi")}})
    assert "groupUniqArrayIf(tuple(`posts`.`id`, `posts`.`user_id`, `posts`.`title`), " \
           "`posts`.`title` = {p_1:String}) AS `posts`" in compiled.sql
    assert "ON `users`.`id` = `posts`.`user_id` GROUP BY" in compiled.sql
    assert compiled.params == {"p_1": "hi"}


def test_one_relation_is_joined_inline_with_its_filter(schema):
    compiled = compiled_sql(schema["users"], {"profile": {"where": lambda c: eq(c.bio, "x")}})
    assert compiled.sql == (
        "SELECT `users`.`id` AS `id`, `users`.`email` AS `email`, `users`.`created_at` AS `created_at`, "
        "`profiles`.`id` AS `profile_id`, `profiles`.`user_id` AS `profile_user_id`, "
        "`profiles`.`bio` AS `profile_bio` "
        "FROM `users` LEFT JOIN `profiles` ON (`users`.`id` = `profiles`.`user_id`) "
        "AND (`profiles`.`bio` = {p_1:String}) "
        "SETTINGS join_use_nulls = 1"
    )


def test_nested_many_under_one_falls_back_to_joins(schema):
    nodes = plan_relations(schema["users"], {"profile": {"with": {"badges": True, "links": True}}})
    (profile,) = nodes
    assert not profile.aggregated
    assert [child.prefix for child in profile.children] == ["profile__badges_", "profile__links_"]
    assert all(not child.aggregated for child in profile.children)
    assert profile.uses_fallback
    compiled = compiled_sql(schema["users"], {"profile": {"with": {"badges": True, "links": True}}})
    assert "`badges`.`label` AS `profile__badges_label`" in compiled.sql
    assert "LEFT JOIN `links` ON `profiles`.`id` = `links`.`profile_id`" in compiled.sql
    assert "GROUP BY" not in compiled.sql


def test_group_by_covers_inline_columns_of_joined_ones(schema):
    compiled = compiled_sql(schema["users"], {"posts": True, "profile": True})
    assert compiled.sql.endswith(
        "GROUP BY `users`.`id`, `users`.`email`, `users`.`created_at`, "
        "`profiles`.`id`, `profiles`.`user_id`, `profiles`.`bio` SETTINGS join_use_nulls = 1"
    )


def test_root_filter(schema):
    users = schema["users"]
    compiled = compiled_sql(schema["users"], where=lambda c: eq(c.email, "a@b.c"))
    assert compiled.sql.endswith("FROM `users` WHERE `users`.`email` = {p_1:String}")
    assert compiled_sql(users, where=eq(users.id, 1)).params == {"p_1": 1}


@pytest.mark.parametrize("strategy, expected", [
    ("standard", "LEFT"),
    ("global", "GLOBAL LEFT"),
    ("any", "ANY LEFT"),
    ("global_any", "GLOBAL ANY LEFT"),
])
def test_join_strategies(schema, strategy, expected):
    assert resolve_join_type(strategy, schema["users"], schema["posts"]) == expected


def test_auto_strategy_goes_global_for_distributed_tables(schema):
    users, posts, events = schema["users"], schema["posts"], schema["events"]
    assert resolve_join_type("auto", users, posts) == "LEFT"
    assert resolve_join_type("auto", users, events) == "GLOBAL LEFT"
    assert resolve_join_type("auto", events, users) == "GLOBAL LEFT"
    compiled = compiled_sql(users, {"events": True})
    assert "GLOBAL LEFT JOIN `events`" in compiled.sql


def test_unknown_relations_are_skipped_with_a_warning(schema, caplog):
    with caplog.at_level(logging.WARNING, logger="clickorm"):
        nodes = plan_relations(schema["users"], {"comments": True, "posts": True, "profile": False})
    assert [node.name for node in nodes] == ["posts"]
    assert "Table `users` has no relation `comments`; skipped" in caplog.text


def test_relations_without_join_fields_are_skipped(schema, caplog):
    users, posts = schema["users"], schema["posts"]
    relations(users, lambda r: {"loose": r.many(posts)})
    with caplog.at_level(logging.WARNING, logger="clickorm"):
        assert plan_relations(users, {"loose": True}) == ()
    assert "Relation `loose` of `users` declares no join fields" in caplog.text


def test_relations_nested_under_aggregates_are_skipped(schema, caplog):
    with caplog.at_level(logging.WARNING, logger="clickorm"):
        (posts,) = plan_relations(schema["users"], {"posts": {"with": {"author": True}}})
    assert posts.aggregated
    assert posts.children == ()
    assert "Relations nested under aggregated relation `posts` of `users`" in caplog.text


def test_relation_depth_is_capped():
    nodes = table("nodes", {"id": "UInt64", "parent_id": "UInt64"})
    relations(nodes, lambda r: {"parent": r.one(nodes, fields=[nodes.parent_id], references=[nodes.id])})

    def nested(depth):
        return True if depth == 0 else {"with": {"parent": nested(depth - 1)}}

    allowed = {"parent": nested(MAX_RELATION_DEPTH - 1)}
    assert len(plan_relations(nodes, allowed)) == 1
    with pytest.raises(CompilationError, match="deeper than 10 levels"):
        plan_relations(nodes, {"parent": nested(MAX_RELATION_DEPTH)})


def test_find_options_accept_the_with_alias():
    options = FindOptions.model_validate({"with": {"posts": True}, "limit": 3})
    assert options.with_ == {"posts": True}
    with pytest.raises(ValueError):
        FindOptions.model_validate({"limt": 3})


def test_join_strategy_is_rejected_on_nested_relations(schema):
    with pytest.raises(CompilationError, match="Relation `profile` of `users` sets join_strategy"):
        plan_relations(schema["users"], {"profile": {"join_strategy": "global"}})
    (profile,) = plan_relations(schema["users"], {"profile": {"limit": 1}})
    assert profile.options.join_strategy == "auto"
