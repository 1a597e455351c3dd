"""Tests for the Criteria API."""

from __future__ import annotations

import pytest
from sample_models import Status, User

from bindorm import (
    MultipleRowsError,
    OperatorArgumentError,
    Projections,
    QueryConstructionError,
    Restrictions,
)

THIS_COLUMNS = (
    'this_."id", this_."name", this_."email", this_."age", this_."status", '
    'this_."created"'
)


# -- SQL ---------------------------------------------------------------------


def test_restriction_order_and_limit(db):
    crit = (
        db.criteria(User)
        .add(Restrictions.ge("age", 18))
        .add_order("name")
        .set_max_results(5)
    )
    assert crit.to_sql() == (
        f'SELECT {THIS_COLUMNS} FROM "user" this_ '
        'WHERE (this_."age" >= ?) ORDER BY this_."name" ASC LIMIT 5',
        [18],
    )


def test_no_criteria_selects_everything(db):
    assert db.criteria(User).to_sql() == (f'SELECT {THIS_COLUMNS} FROM "user" this_', [])


@pytest.mark.parametrize(
    ("criterion", "sql", "params"),
    [
        (Restrictions.eq("name", "ann"), 'this_."name" = ?', ["ann"]),
        (Restrictions.eq("email", None), 'this_."email" IS NULL', []),
        (Restrictions.ne("age", 3), 'this_."age" <> ?', [3]),
        (Restrictions.ne("email", None), 'this_."email" IS NOT NULL', []),
        (Restrictions.lt("age", 3), 'this_."age" < ?', [3]),
        (Restrictions.le("age", 3), 'this_."age" <= ?', [3]),
        (Restrictions.gt("age", 3), 'this_."age" > ?', [3]),
        (Restrictions.like("name", "a%"), 'this_."name" LIKE ?', ["a%"]),
        (Restrictions.ilike("name", "A%"), 'LOWER(this_."name") LIKE LOWER(?)', ["A%"]),
        (Restrictions.is_not_null("email"), 'this_."email" IS NOT NULL', []),
        (Restrictions.in_("age", [1, 2]), 'this_."age" IN (?, ?)', [1, 2]),
        (Restrictions.in_("age", 1, 2, 3), 'this_."age" IN (?, ?, ?)', [1, 2, 3]),
        (Restrictions.between("age", 1, 9), 'this_."age" BETWEEN ? AND ?', [1, 9]),
        (Restrictions.eq("status", Status.BLOCKED), 'this_."status" = ?', ["blocked"]),
    ],
)
def test_restrictions(db, criterion, sql, params):
    assert db.criteria(User).add(criterion).to_sql() == (
        f'SELECT {THIS_COLUMNS} FROM "user" this_ WHERE ({sql})',
        params,
    )


def test_junctions_and_negation(db):
    crit = db.criteria(User).add(
        Restrictions.or_(
            Restrictions.like("name", "a%"),
            Restrictions.not_(Restrictions.is_null("email")),
        )
    )
    sql, _ = crit.to_sql()
    assert sql.endswith(
        'WHERE ((this_."name" LIKE ?) OR (NOT (this_."email" IS NULL)))'
    )


def test_grouped_projection(db):
    crit = db.criteria(User).set_projection(
        Projections.group_property("status"), Projections.row_count()
    )
    assert crit.to_sql() == (
        'SELECT this_."status", COUNT(*) FROM "user" this_ GROUP BY this_."status"',
        [],
    )


def test_empty_in_is_rejected(db):
    with pytest.raises(OperatorArgumentError):
        db.criteria(User).add(Restrictions.in_("age")).to_sql()


def test_relation_without_column_is_rejected(db):
    with pytest.raises(QueryConstructionError, match="no column"):
        db.criteria(User).add(Restrictions.eq("posts", 1)).to_sql()


# -- Execution ---------------------------------------------------------------


def test_list_returns_models(db, people):
    users = (
        db.criteria(User)
        .add(Restrictions.ge("age", 18))
        .add_order("age", descending=True)
        .list()
    )
    assert [u.name for u in users] == ["cid", "ann"]


def test_paging(db, people):
    names = (
        db.criteria(User)
        .set_projection(Projections.property("name"))
        .add_order("name")
        .set_first_result(1)
        .set_max_results(1)
        .list()
    )
    assert names == ["bob"]


def test_aggregate_projections(db, people):
    crit = db.criteria(User).set_projection(Projections.row_count())
    assert crit.unique_result() == 3
    crit = db.criteria(User).set_projection(
        Projections.min("age"), Projections.max("age"), Projections.sum("age")
    )
    assert crit.unique_result() == (17, 45, 93)
    crit = db.criteria(User).set_projection(Projections.count("email"))
    assert crit.unique_result() == 2


def test_group_projection_rows(db, people):
    rows = (
        db.criteria(User)
        .set_projection(Projections.group_property("status"), Projections.avg("age"))
        .add_order("status")
        .list()
    )
    assert rows == [("active", 38.0), ("blocked", 17.0)]


def test_unique_result(db, people):
    assert db.criteria(User).add(Restrictions.eq("name", "zed")).unique_result() is None
    assert db.criteria(User).add(Restrictions.eq("name", "bob")).unique_result().age == 17
    with pytest.raises(MultipleRowsError):
        db.criteria(User).unique_result()
