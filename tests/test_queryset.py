"""Tests for the immutable query builder."""

from __future__ import annotations

from decimal import Decimal

import pytest
from sample_models import Post, Status, User

from bindorm import (
    Condition,
    MultipleRowsError,
    NoRowsError,
    QueryConstructionError,
)

USER_COLUMNS = '"id", "name", "email", "age", "status", "created"'


# -- SQL ---------------------------------------------------------------------


def test_filter_sql(db):
    assert db.query_table(User).filter(age__gt=18).to_sql() == (
        f'SELECT {USER_COLUMNS} FROM "user" WHERE "age" > ?',
        [18],
    )


def test_chained_filters_nest(db):
    qs = db.query_table(User).filter(age__gt=18).filter(name="ann")
    assert qs.to_sql()[0].endswith('WHERE "age" > ? AND ("name" = ?)')
    assert qs.to_sql()[1] == [18, "ann"]


def test_exclude_negates(db):
    sql, params = db.query_table(User).exclude(name="bob").to_sql()
    assert sql.endswith('WHERE NOT ("name" = ?)')
    assert params == ["bob"]


def test_builders_return_new_querysets(db):
    base = db.query_table(User).filter(age__gt=18)
    limited = base.limit(1)
    assert "LIMIT" not in base.to_sql()[0]
    assert limited.to_sql()[0].endswith("LIMIT 1")


def test_set_and_get_cond(db):
    cond = Condition().and_("age__lt", 20).or_("name", "cid")
    qs = db.query_table(User).filter(age=1).set_cond(cond)
    assert qs.get_cond() is cond
    assert qs.to_sql()[1] == [20, "cid"]


def test_joined_sql_is_aliased(db):
    sql, params = (
        db.query_table(Post).filter(author__name="ann").order_by("-score").to_sql()
    )
    assert sql == (
        'SELECT T0."id", T0."title", T0."author_id", T0."score", T0."published", '
        'T0."version", T0."labels" FROM "blog_post" T0 '
        'LEFT OUTER JOIN "user" T1 ON T1."id" = T0."author_id" '
        'WHERE T1."name" = ? ORDER BY T0."score" DESC'
    )
    assert params == ["ann"]


def test_paging_sql(db):
    sql, _ = db.query_table(User).order_by("name").limit(10).offset(5).to_sql()
    assert sql.endswith('ORDER BY "name" ASC LIMIT 10 OFFSET 5')


def test_count_sql_drops_order_and_limit(db):
    qs = db.query_table(User).filter(age__gt=18).order_by("name").limit(3)
    assert qs.count_sql() == ('SELECT COUNT(*) FROM "user" WHERE "age" > ?', [18])


# -- Reading -----------------------------------------------------------------


def test_all_builds_models(db, people):
    users = db.query_table(User).order_by("name").all()
    assert [u.name for u in users] == ["ann", "bob", "cid"]
    assert users[1].status is Status.BLOCKED
    assert users[0].id == people["ann"].id
    assert users[0].created is not None


def test_first_and_one(db, people):
    assert db.query_table(User).order_by("-age").first().name == "cid"
    assert db.query_table(User).filter(name="nobody").first() is None
    assert db.query_table(User).filter(name="bob").one().age == 17
    with pytest.raises(NoRowsError):
        db.query_table(User).filter(name="nobody").one()
    with pytest.raises(MultipleRowsError):
        db.query_table(User).one()


def test_count_and_exist(db, people):
    assert db.query_table(User).count() == 3
    assert db.query_table(User).filter(age__gte=18).count() == 2
    assert db.query_table(User).filter(name="ann").exist()
    assert not db.query_table(User).filter(name="eve").exist()


def test_filter_by_instance_and_null_relation(db, people):
    assert db.query_table(Post).filter(author=people["ann"]).count() == 2
    assert db.query_table(Post).filter(author__isnull=True).count() == 1


def test_filter_across_relations(db, people):
    titles = (
        db.query_table(Post)
        .filter(author__age__gt=30)
        .order_by("title")
        .values_list("title", flat=True)
    )
    assert titles == ["Hello", "Second"]
    names = db.query_table(User).filter(posts__title="Teen").values_list(
        "name", flat=True
    )
    assert names == ["bob"]


def test_values(db, people):
    rows = db.query_table(User).filter(age__lt=40).order_by("age").values("name", "age")
    assert rows == [{"name": "bob", "age": 17}, {"name": "ann", "age": 31}]


def test_values_follow_relations(db, people):
    rows = (
        db.query_table(Post)
        .filter(author__isnull=False)
        .order_by("title")
        .values_list("title", "author__name")
    )
    assert rows == [("Hello", "ann"), ("Second", "ann"), ("Teen", "bob")]


def test_values_list_flat_needs_one_field(db):
    with pytest.raises(QueryConstructionError, match="exactly one"):
        db.query_table(User).values_list("name", "age", flat=True)


def test_distinct_and_grouped_count(db, people):
    statuses = (
        db.query_table(User).distinct().order_by("status").values_list("status", flat=True)
    )
    assert statuses == [Status.ACTIVE, Status.BLOCKED]
    assert db.query_table(User).group_by("status").count() == 2


def test_decimal_round_trip(db, people):
    post = db.query_table(Post).filter(title="Teen").one()
    assert post.score == Decimal("2.25")
    assert post.author.id == people["bob"].id


# -- Writing -----------------------------------------------------------------


def test_update_matched_rows(db, people):
    assert db.query_table(User).filter(name="bob").update(age=18) == 1
    assert db.get(User, people["bob"].id).age == 18


def test_update_through_join(db, people):
    changed = db.query_table(Post).filter(author__name="ann").update(title="edited")
    assert changed == 2
    assert db.query_table(Post).filter(title="edited").count() == 2


def test_update_rejects_relation_without_column(db):
    with pytest.raises(QueryConstructionError):
        db.query_table(User).update(posts=[])
    with pytest.raises(QueryConstructionError, match="at least one"):
        db.query_table(User).update()


def test_delete(db, people):
    assert db.query_table(Post).filter(author__name="bob").delete() == 1
    assert db.query_table(User).filter(age__lt=18).delete() == 1
    assert db.query_table(User).count() == 2
