"""Tests for bind plans and the per-model plan cache."""

from __future__ import annotations

import threading
import time
from typing import Annotated

import pytest
from pydantic import BaseModel
from sample_models import Post, User

import bindorm.model
from bindorm import (
    DefaultTypeConverter,
    ModelRegistry,
    QueryConstructionError,
    SQLAlchemyDialect,
    Tag,
)
from bindorm.bindings import NEXT_VERSION


class Note(BaseModel):
    body: Annotated[str, Tag("type=text")] = ""


@pytest.fixture
def convert(catalog, dialect):
    return DefaultTypeConverter(catalog, dialect).to_db


# -- Plans -------------------------------------------------------------------


def test_insert_plan_binds_auto_key_as_null(catalog, dialect):
    plan = catalog.get("user").insert_plan(dialect)
    assert plan.query == (
        'INSERT INTO "user" ("id", "name", "email", "age", "status", "created") '
        "VALUES (NULL, ?, ?, ?, ?, ?)"
    )
    assert plan.arg_fields == ("name", "email", "age", "status", "created")
    assert plan.auto_incr_idx == 0
    assert plan.auto_incr_field == "id"


def test_insert_plan_writes_next_version(catalog, dialect, convert):
    post = catalog.get("blog_post")
    plan = post.insert_plan(dialect)
    assert plan.version_field == "version"
    assert NEXT_VERSION in plan.arg_fields

    bound = post.bind_insert(
        dialect, Post(title="t", author=User(id=3), labels=["a"]), convert
    )
    assert bound.args[0:2] == ("t", 3)
    assert bound.args[-2:] == (1, '["a"]')
    assert (bound.existing_version, bound.new_version) == (0, 1)


def test_default_value_is_inlined(registry, dialect):
    mi = registry.get("group")
    mi.configure_column("public", default_value="1")
    plan = mi.insert_plan(dialect)
    assert plan.query.endswith("VALUES (NULL, ?, 1)")
    assert plan.arg_fields == ("name",)


def test_update_plan_checks_version(catalog, dialect):
    plan = catalog.get("blog_post").update_plan(dialect)
    assert plan.query == (
        'UPDATE "blog_post" SET "title" = ?, "author_id" = ?, "score" = ?, '
        '"published" = ?, "version" = ?, "labels" = ? '
        'WHERE "id" = ? AND "version" = ?'
    )
    assert plan.key_fields == ("id",)


def test_update_plan_restricted_to_columns(catalog, dialect, convert):
    post = catalog.get("blog_post")
    plan = post.update_plan(dialect, ["title"])
    assert plan.query == (
        'UPDATE "blog_post" SET "title" = ?, "version" = ? '
        'WHERE "id" = ? AND "version" = ?'
    )
    bound = post.bind_update(dialect, Post(id=9, title="x", version=4), convert, ["title"])
    assert bound.args == ("x", 5, 9, 4)
    assert bound.keys == (9,)


def test_delete_plan(catalog, dialect):
    assert catalog.get("user").delete_plan(dialect).query == (
        'DELETE FROM "user" WHERE "id" = ?'
    )
    assert catalog.get("blog_post").delete_plan(dialect).query == (
        'DELETE FROM "blog_post" WHERE "id" = ? AND "version" = ?'
    )


def test_get_plan_with_composite_key(catalog, dialect):
    junction = catalog.get("user_group")
    assert junction.get_plan(dialect).query == (
        'SELECT "user_id", "group_id" FROM "user_group" '
        'WHERE "user_id" = ? AND "group_id" = ?'
    )
    with pytest.raises(QueryConstructionError, match="2 key"):
        junction.bind_get(dialect, [1], lambda fi, v: v)


def test_plans_need_a_key(dialect):
    registry = ModelRegistry()
    registry.register(Note)
    note = registry.bootstrap().get("note")
    assert note.insert_plan(dialect).query == 'INSERT INTO "note" ("body") VALUES (?)'
    with pytest.raises(QueryConstructionError, match="no primary key"):
        note.update_plan(dialect)


def test_m2m_insert_plan_renders_rows_per_call(catalog, dialect):
    user = catalog.get("user")
    plan = user.m2m_insert_plan(dialect, catalog, user.col_map("groups"))
    bound = plan.bind(1, [2, 3], dialect)
    assert bound.query == (
        'INSERT INTO "user_group" ("user_id", "group_id") VALUES (?, ?), (?, ?)'
    )
    assert bound.args == (1, 2, 1, 3)
    with pytest.raises(QueryConstructionError):
        plan.bind(1, [], dialect)


def test_m2m_insert_plan_through_model(catalog, dialect):
    team = catalog.get("team")
    plan = team.m2m_insert_plan(dialect, catalog, team.col_map("players"))
    assert plan.bind(1, [5], dialect).query == (
        'INSERT INTO "roster" ("id", "team_id", "player_id") VALUES (NULL, ?, ?)'
    )


def test_m2m_query_plan(catalog, dialect):
    user = catalog.get("user")
    plan = user.m2m_query_plan(dialect, catalog, user.col_map("groups"))
    assert plan.query == (
        'SELECT "group"."id", "group"."name", "group"."public" FROM "group" '
        'INNER JOIN "user_group" ON "user_group"."group_id" = "group"."id" '
        'WHERE "user_group"."user_id" = ?'
    )


def test_postgres_insert_uses_returning(catalog):
    dialect = SQLAlchemyDialect.for_name("postgresql")
    plan = catalog.get("user").insert_plan(dialect)
    assert plan.query == (
        'INSERT INTO "user" ("id", "name", "email", "age", "status", "created") '
        'VALUES (DEFAULT, %s, %s, %s, %s, %s) RETURNING "id"'
    )


# -- Cache -------------------------------------------------------------------


def test_plans_are_cached_per_dialect(catalog, dialect):
    user = catalog.get("user")
    assert user.insert_plan(dialect) is user.insert_plan(dialect)
    other = user.insert_plan(SQLAlchemyDialect.for_name("postgresql"))
    assert other is not user.insert_plan(dialect)
    assert len(user.plans) == 2


def test_structural_change_resets_plans(registry, dialect):
    mi = registry.get("user")
    before = mi.update_plan(dialect)
    mi.configure_column("age", column="years")
    assert len(mi.plans) == 0
    after = mi.update_plan(dialect)
    assert after is not before
    assert '"years" = ?' in after.query


def test_concurrent_first_use_builds_once(catalog, dialect, monkeypatch):
    calls = []
    original = bindorm.model.build_delete_plan

    def slow_build(model, dialect):
        calls.append(model.table)
        time.sleep(0.05)
        return original(model, dialect)

    monkeypatch.setattr(bindorm.model, "build_delete_plan", slow_build)
    user = catalog.get("user")
    results = []
    threads = [
        threading.Thread(target=lambda: results.append(user.delete_plan(dialect)))
        for _ in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert calls == ["user"]
    assert len(results) == 8
    assert all(r is results[0] for r in results)
