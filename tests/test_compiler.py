"""Tests for condition trees and their compilation to SQL."""

from __future__ import annotations

from datetime import date, datetime

import pytest
from sample_models import Status, User

from bindorm import (
    Condition,
    ConditionCompiler,
    ConditionError,
    FieldNotFoundError,
    OperatorArgumentError,
    RelationshipTraversalError,
    SQLAlchemyDialect,
)
from bindorm.conditions import split_expr


def where(compiler, table, cond):
    return compiler.get_cond_sql(compiler.catalog.get(table), cond)


def compile_joined(compiler, table, cond):
    model = compiler.catalog.get(table)
    joins = compiler.joins_for(model, cond)
    sql, params = compiler.compile(model, cond, joins)
    return sql, params, joins


# -- Condition trees ---------------------------------------------------------


def test_split_expr_accepts_both_separators():
    assert split_expr("author__name__icontains") == ("author", "name", "icontains")
    assert split_expr("author.name") == ("author", "name")


def test_builders_are_immutable():
    base = Condition().and_("age__gt", 18)
    extended = base.or_("name", "bob")
    assert len(base) == 1
    assert len(extended) == 2
    assert extended.terms[1].is_or


def test_empty_nested_condition_is_ignored():
    cond = Condition().and_("age", 1)
    assert cond.and_cond(Condition()) is cond


def test_condition_errors():
    with pytest.raises(ConditionError, match="empty"):
        Condition().and_("", 1)
    with pytest.raises(ConditionError, match="at least one argument"):
        Condition().and_("age")
    cond = Condition().and_("age", 1)
    with pytest.raises(ConditionError, match="own child"):
        cond.and_cond(cond)


def test_where_joins_filters_with_and():
    cond = Condition.where(age__gt=18, name="bob")
    assert [t.exprs for t in cond.terms] == [("age", "gt"), ("name",)]
    assert not any(t.is_or for t in cond.terms)


# -- Scalar predicates -------------------------------------------------------


def test_simple_comparison(compiler):
    assert where(compiler, "user", Condition().and_("age__gt", 18)) == (
        'WHERE "age" > ?',
        [18],
    )


def test_empty_condition_has_no_where(compiler):
    assert where(compiler, "user", Condition()) == ("", [])


def test_nested_and_negated(compiler):
    cond = (
        Condition()
        .and_("name", "bob")
        .or_not_cond(Condition().and_("age__lt", 10).and_("age__gt", 60))
    )
    assert where(compiler, "user", cond) == (
        'WHERE "name" = ? OR NOT ("age" < ? AND "age" > ?)',
        ["bob", 10, 60],
    )


def test_and_not_leaf(compiler):
    cond = Condition().and_("age__gte", 18).and_not("name__ne", "root")
    assert where(compiler, "user", cond) == (
        'WHERE "age" >= ? AND NOT "name" != ?',
        [18, "root"],
    )


def test_in_flattens_nested_sequences(compiler):
    cond = Condition().and_("age__in", [1, None, (2, 3)], 4)
    assert where(compiler, "user", cond) == (
        'WHERE "age" IN (?, ?, ?, ?)',
        [1, 2, 3, 4],
    )


def test_between(compiler):
    cond = Condition().and_("age__between", 18, 30)
    assert where(compiler, "user", cond) == ('WHERE "age" BETWEEN ? AND ?', [18, 30])


def test_exact_none_is_null(compiler):
    assert where(compiler, "user", Condition().and_("email", None)) == (
        'WHERE "email" IS NULL',
        [],
    )


def test_isnull(compiler):
    cond = Condition().and_("email__isnull", False)
    assert where(compiler, "user", cond) == ('WHERE "email" IS NOT NULL', [])


def test_contains_escapes_percent(compiler):
    cond = Condition().and_("name__contains", "50%")
    assert where(compiler, "user", cond) == (
        "WHERE \"name\" LIKE ? ESCAPE '\\'",
        ["%50\\%%"],
    )


def test_pattern_escapes_backslash_before_percent(compiler):
    cond = Condition().and_("name__startswith", "a\\b%")
    assert where(compiler, "user", cond)[1] == ["a\\\\b\\%%"]


def test_startswith_and_endswith_patterns(compiler):
    cond = Condition().and_("name__startswith", "bo").and_("name__endswith", "b")
    _, params = where(compiler, "user", cond)
    assert params == ["bo%", "%b"]


def test_values_are_converted_to_bindable_primitives(compiler):
    assert where(compiler, "user", Condition().and_("status", Status.BLOCKED))[1] == [
        "blocked"
    ]
    assert where(
        compiler, "user", Condition().and_("created__gt", datetime(2024, 1, 2, 3, 4, 5))
    )[1] == ["2024-01-02 03:04:05"]
    assert where(
        compiler, "blog_post", Condition().and_("published", date(2024, 1, 2))
    )[1] == ["2024-01-02"]


def test_temporal_strings_are_normalized(compiler):
    cond = Condition().and_("created__lt", "2024-01-02")
    assert where(compiler, "user", cond)[1] == ["2024-01-02 00:00:00"]


def test_partial_temporal_strings_pass_through(compiler):
    cond = Condition().and_("created__startswith", "2024-01")
    assert where(compiler, "user", cond) == (
        "WHERE \"created\" LIKE ? ESCAPE '\\'",
        ["2024-01%"],
    )
    cond = Condition().and_("created__contains", "12:30")
    assert where(compiler, "user", cond)[1] == ["%12:30%"]


def test_model_instance_binds_its_key(compiler):
    cond = Condition().and_("author", User(id=7))
    assert where(compiler, "blog_post", cond) == ('WHERE "author_id" = ?', [7])


# -- Relation paths ----------------------------------------------------------


def test_forward_relation_join(compiler):
    sql, params, joins = compile_joined(
        compiler, "blog_post", Condition().and_("author__name", "bob")
    )
    assert sql == 'T1."name" = ?'
    assert params == ["bob"]
    assert joins.from_clause() == '"blog_post" T0'
    assert joins.join_clause() == 'LEFT OUTER JOIN "user" T1 ON T1."id" = T0."author_id"'


def test_target_key_does_not_join(compiler):
    sql, _, joins = compile_joined(
        compiler, "blog_post", Condition().and_("author__id", 3)
    )
    assert sql == '"author_id" = ?'
    assert not joins.aliased
    assert not joins.has_joins


def test_relation_isnull_uses_fk_column(compiler):
    cond = Condition().and_("author__isnull", True)
    assert where(compiler, "blog_post", cond) == ('WHERE "author_id" IS NULL', [])


def test_relation_joined_once(compiler):
    cond = Condition().and_("author__name", "bob").or_("author__age__gt", 30)
    sql, _, joins = compile_joined(compiler, "blog_post", cond)
    assert sql == 'T1."name" = ? OR T1."age" > ?'
    assert joins.join_clause().count("JOIN") == 1


def test_reverse_many_join(compiler):
    sql, _, joins = compile_joined(
        compiler, "user", Condition().and_("posts__title__startswith", "How")
    )
    assert sql.startswith('T1."title" LIKE ?')
    assert joins.join_clause() == (
        'LEFT OUTER JOIN "blog_post" T1 ON T1."author_id" = T0."id"'
    )


def test_m2m_join_goes_through_junction(compiler):
    sql, _, joins = compile_joined(
        compiler, "user", Condition().and_("groups__name", "admins")
    )
    assert sql == 'T2."name" = ?'
    assert joins.join_clause() == (
        'LEFT OUTER JOIN "user_group" T1 ON T1."user_id" = T0."id" '
        'LEFT OUTER JOIN "group" T2 ON T2."id" = T1."group_id"'
    )


def test_reverse_m2m_join(compiler):
    _, _, joins = compile_joined(
        compiler, "group", Condition().and_("members__age__gt", 18)
    )
    assert joins.join_clause() == (
        'LEFT OUTER JOIN "user_group" T1 ON T1."group_id" = T0."id" '
        'LEFT OUTER JOIN "user" T2 ON T2."id" = T1."user_id"'
    )


def test_order_sql(compiler):
    user = compiler.catalog.get("user")
    joins = compiler.joins_for(user, exprs=["-age", "name"])
    assert compiler.order_sql(user, ["-age", "name"], joins) == (
        'ORDER BY "age" DESC, "name" ASC'
    )


def test_order_by_relation_aliases_statement(compiler):
    post = compiler.catalog.get("blog_post")
    joins = compiler.joins_for(post, exprs=["-author__name"])
    assert compiler.order_sql(post, ["-author__name"], joins) == 'ORDER BY T1."name" DESC'
    assert compiler.group_sql(post, ["author__name"], joins) == 'GROUP BY T1."name"'


# -- Errors ------------------------------------------------------------------


def test_unknown_field_suggests(compiler):
    with pytest.raises(FieldNotFoundError) as exc_info:
        where(compiler, "user", Condition().and_("agee__gt", 1))
    assert "age" in exc_info.value.suggestions


def test_scalar_cannot_be_traversed(compiler):
    with pytest.raises(RelationshipTraversalError):
        where(compiler, "user", Condition().and_("name__first", "x"))


def test_paths_deeper_than_one_relation_fail(compiler):
    with pytest.raises(RelationshipTraversalError):
        where(compiler, "blog_post", Condition().and_("author__posts__title", "x"))


def test_operator_argument_errors(compiler):
    with pytest.raises(OperatorArgumentError, match="exactly 2"):
        where(compiler, "user", Condition().and_("age__between", 1))
    with pytest.raises(OperatorArgumentError, match="bool"):
        where(compiler, "user", Condition().and_("email__isnull", "yes"))


def test_in_needs_arguments(compiler):
    with pytest.raises(OperatorArgumentError):
        where(compiler, "user", Condition().and_("age__in", []))


def test_between_rejects_three_arguments(compiler):
    with pytest.raises(OperatorArgumentError, match="exactly 2"):
        where(compiler, "user", Condition().and_("age__between", 10, 20, 30))


def test_compilation_is_deterministic(compiler):
    cond = (
        Condition()
        .and_("author__name__in", ["ann", "bob"])
        .or_cond(Condition().and_("score__gt", 2).and_not("title", "x"))
    )
    first = compile_joined(compiler, "blog_post", cond)
    second = compile_joined(compiler, "blog_post", cond)
    assert first[:2] == second[:2]
    assert first[2].join_clause() == second[2].join_clause()
    assert first[2].from_clause() == second[2].from_clause()


# -- Dialects ----------------------------------------------------------------


def test_postgres_case_insensitive_operators(catalog):
    compiler = ConditionCompiler(catalog, SQLAlchemyDialect.for_name("postgresql"))
    assert where(compiler, "user", Condition().and_("name__icontains", "bob")) == (
        'WHERE UPPER("name") LIKE UPPER(?)',
        ["%bob%"],
    )
    assert where(compiler, "user", Condition().and_("name__iexact", "bob")) == (
        'WHERE UPPER("name") = UPPER(?)',
        ["bob"],
    )
