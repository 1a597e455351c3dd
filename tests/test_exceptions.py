"""Tests for the exception hierarchy."""

from __future__ import annotations

import pytest

from bindorm import (
    BindORMError,
    ConfigurationError,
    FieldNotFoundError,
    OperatorNotFoundError,
    OptimisticLockError,
    QueryConstructionError,
    UnknownTagError,
)


def test_field_not_found_suggests_close_names():
    exc = FieldNotFoundError("agee", "user", ["id", "name", "age"], "agee__gt")
    assert exc.suggestions == ["age"]
    assert str(exc) == (
        "no field or column `agee` on table `user` in path `agee__gt` "
        "(closest: age; fields: age, id, name)"
    )
    payload = exc.to_dict()
    assert payload["error"] == "FIELD_NOT_FOUND"
    assert payload["fields"] == ["age", "id", "name"]


def test_field_not_found_matches_case_insensitively():
    exc = FieldNotFoundError("CreatedAt", "event", ["createdAt", "id"])
    assert exc.suggestions == ["createdAt"]
    assert "in path" not in str(exc)


def test_unknown_tag_suggestions():
    exc = UnknownTagError("uniqe", ["unique", "null", "index"], "app.User.email")
    assert exc.suggestions == ["unique"]
    assert str(exc).endswith("`app.User.email`")
    assert exc.to_dict()["path"] == "app.User.email"


def test_unknown_operator_without_match():
    exc = OperatorNotFoundError("zzz", ["gt", "lt"])
    assert exc.suggestions == []
    assert str(exc) == "Unknown operator: 'zzz'."


def test_optimistic_lock_payload():
    exc = OptimisticLockError("blog_post", (3,), 2)
    assert exc.to_dict() == {
        "error": "OPTIMISTIC_LOCK",
        "table": "blog_post",
        "keys": [3],
        "version": 2,
    }


@pytest.mark.parametrize("cls", [ConfigurationError, QueryConstructionError])
def test_tiers_share_the_root(cls):
    exc = cls("boom")
    assert isinstance(exc, BindORMError)
    assert exc.to_dict() == {"error": cls.__name__, "message": "boom"}
