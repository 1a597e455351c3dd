"""End-to-end tests of the execution facade against in-memory SQLite."""

from __future__ import annotations

import logging
from datetime import datetime

import pytest
from sample_models import Group, Player, Post, Profile, Roster, Team, User

from bindorm import (
    DatabaseHolder,
    DatabaseNotConfiguredError,
    DbMap,
    MultipleRowsError,
    OptimisticLockError,
    QueryConstructionError,
    database,
    set_database,
)
from bindorm.dbmap import DATABASE

# -- Schema ------------------------------------------------------------------


def test_creation_order_puts_referenced_tables_first(db):
    tables = [mi.table for mi in db.creation_order()]
    assert tables.index("user") < tables.index("blog_post")
    assert tables.index("user") < tables.index("profile")
    assert tables.index("group") < tables.index("user_group")
    assert tables.index("team") < tables.index("roster")
    assert tables.index("player") < tables.index("roster")


def test_create_table_sql(db):
    statements = db.create_tables_sql()
    assert (
        'CREATE TABLE IF NOT EXISTS "user" ("id" INTEGER NOT NULL PRIMARY KEY '
        'AUTOINCREMENT, "name" VARCHAR(64) NOT NULL, "email" VARCHAR(255) UNIQUE, '
        '"age" INTEGER NOT NULL, "status" VARCHAR(255) NOT NULL, "created" DATETIME)'
    ) in statements
    assert 'CREATE INDEX IF NOT EXISTS "user_name" ON "user" ("name")' in statements
    junction = next(s for s in statements if '"user_group" (' in s)
    assert 'PRIMARY KEY ("user_id", "group_id")' in junction
    assert 'FOREIGN KEY ("group_id") REFERENCES "group" ("id") ON DELETE CASCADE' in junction
    post = next(s for s in statements if s.startswith('CREATE TABLE IF NOT EXISTS "blog_post"'))
    assert 'ON DELETE SET NULL' in post
    roster = next(s for s in statements if '"roster" (' in s)
    assert 'UNIQUE ("team_id", "player_id")' in roster


def test_create_tables_is_repeatable(db):
    db.create_tables()
    db.drop_tables()
    db.create_tables(if_not_exists=False)


# -- Insert / get / update / delete ------------------------------------------


def test_insert_fills_generated_values(db):
    user = User(name="ann", age=30)
    db.insert(user)
    assert user.id > 0
    assert isinstance(user.created, datetime)

    post = Post(title="t", author=user)
    db.insert(post)
    assert post.version == 1


def test_get_round_trips(db, people):
    ann = db.get(User, people["ann"].id)
    assert ann.name == "ann"
    assert ann.email == "ann@example.com"
    assert ann.created == people["ann"].created
    assert db.get(User, 999) is None
    assert db.get("user", people["bob"].id).name == "bob"


def test_json_column_round_trips(db):
    post = Post(title="tagged", labels=["a", "b"])
    db.insert(post)
    assert db.get(Post, post.id).labels == ["a", "b"]


def test_update_bumps_version(db, people):
    post = people["Hello"]
    post.title = "Hello again"
    assert db.update(post) == 1
    assert post.version == 2
    stored = db.get(Post, post.id)
    assert (stored.title, stored.version) == ("Hello again", 2)


def test_stale_update_raises(db, people):
    fresh = db.get(Post, people["Hello"].id)
    stale = db.get(Post, people["Hello"].id)
    db.update(fresh)
    stale.title = "lost"
    with pytest.raises(OptimisticLockError) as exc_info:
        db.update(stale)
    assert exc_info.value.table == "blog_post"


def test_update_selected_columns(db, people):
    ann = people["ann"]
    ann.name = "anna"
    ann.age = 99
    db.update(ann, columns=["name"])
    stored = db.get(User, ann.id)
    assert (stored.name, stored.age) == ("anna", 31)


def test_delete(db, people):
    assert db.delete(people["cid"]) == 1
    assert db.get(User, people["cid"].id) is None


def test_stale_delete_raises(db, people):
    stale = db.get(Post, people["Teen"].id)
    db.update(db.get(Post, people["Teen"].id))
    with pytest.raises(OptimisticLockError):
        db.delete(stale)


# -- Transactions ------------------------------------------------------------


def test_transaction_rolls_back(db):
    with pytest.raises(RuntimeError), db.transaction():
        db.insert(User(name="ghost"))
        assert db.query_table(User).count() == 1
        raise RuntimeError("boom")
    assert db.query_table(User).count() == 0


def test_nested_transactions_share_a_connection(db):
    with db.transaction() as outer, db.transaction() as inner:
        assert inner is outer


# -- Relations ---------------------------------------------------------------


def test_load_forward_relation(db, people):
    post = db.get(Post, people["Hello"].id)
    author = db.load_related(post, "author")
    assert author.name == "ann"
    assert post.author is author


def test_load_reverse_relations(db, people):
    ann = db.get(User, people["ann"].id)
    posts = db.load_related(ann, "posts")
    assert sorted(p.title for p in posts) == ["Hello", "Second"]
    assert db.load_related(ann, "profile") is None

    profile = Profile(user=ann, city="Oslo")
    db.insert(profile)
    assert db.load_related(ann, "profile").city == "Oslo"
    assert ann.profile.id == profile.id


def test_load_related_rejects_scalars(db, people):
    with pytest.raises(QueryConstructionError, match="not a relation"):
        db.load_related(people["ann"], "name")


def test_m2m_add_query_remove(db, people):
    admins, staff, guests = Group(name="admins"), Group(name="staff"), Group(name="guests")
    db.insert(admins, staff, guests)
    ann = people["ann"]

    groups = db.m2m(ann, "groups")
    assert groups.add(admins, staff.id) == 2
    assert sorted(g.name for g in groups.all()) == ["admins", "staff"]
    assert groups.count() == 2
    assert groups.query().filter(name="staff").exist()
    assert not groups.query().filter(name="guests").exist()

    members = db.m2m(admins, "members")
    assert [u.name for u in members.all()] == ["ann"]
    members.add(people["bob"])
    assert members.count() == 2

    assert groups.remove(staff) == 1
    assert [g.name for g in db.load_related(ann, "groups")] == ["admins"]
    assert groups.clear() == 1
    assert not groups.exist()


def test_m2m_through_model(db):
    team, a, b = Team(name="red"), Player(name="a"), Player(name="b")
    db.insert(team, a, b)
    players = db.m2m(team, "players")
    players.add(a, b)
    assert sorted(p.name for p in players.all()) == ["a", "b"]
    assert db.query_table(Roster).count() == 2
    assert [t.name for t in db.load_related(a, "team")] == ["red"]


def test_m2m_requires_m2m_field(db, people):
    with pytest.raises(QueryConstructionError, match="many-to-many"):
        db.m2m(people["ann"], "posts")


# -- Raw SQL -----------------------------------------------------------------


def test_raw_select(db, people):
    users = db.select(User, 'SELECT * FROM "user" WHERE "age" > ? ORDER BY "age"', 18)
    assert [u.name for u in users] == ["ann", "cid"]
    one = db.select_one(User, 'SELECT "id", "name" FROM "user" WHERE "name" = ?', "bob")
    assert one.name == "bob"
    assert db.select_one(User, 'SELECT * FROM "user" WHERE "age" > ?', 99) is None
    with pytest.raises(MultipleRowsError):
        db.select_one(User, 'SELECT * FROM "user"')


def test_raw_scalar_and_exec(db, people):
    assert db.select_int('SELECT COUNT(*) FROM "user" WHERE "age" < ?', 40) == 2
    assert db.exec('UPDATE "user" SET "age" = ? WHERE "name" = ?', 20, "bob") == 1
    assert db.get(User, people["bob"].id).age == 20


def test_statements_are_logged(db, caplog):
    with caplog.at_level(logging.DEBUG, logger="bindorm.dbmap"):
        db.select_int('SELECT COUNT(*) FROM "user"')
    assert any('SELECT COUNT(*) FROM "user"' in r.getMessage() for r in caplog.records)


# -- Database handle ---------------------------------------------------------


def test_holder_requires_set():
    holder = DatabaseHolder()
    assert not holder.is_set
    with pytest.raises(DatabaseNotConfiguredError):
        holder.get()


def test_holder_get_or_init_builds_once(engine, catalog):
    holder = DatabaseHolder()
    built = []

    def factory():
        built.append(1)
        return DbMap(engine, catalog)

    first = holder.get_or_init(factory)
    assert holder.get_or_init(factory) is first
    assert built == [1]
    holder.reset()
    assert not holder.is_set


def test_global_database(db):
    try:
        set_database(db)
        assert database() is db
    finally:
        DATABASE.reset()
