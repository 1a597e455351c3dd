"""Tests for the field tag language."""

from __future__ import annotations

import pytest

from bindorm import FieldDefinitionError, Tag, UnknownTagError
from bindorm.tags import collect_tags, parse_tag

# -- Parsing -----------------------------------------------------------------


def test_flags_and_values():
    tag = parse_tag("pk; auto ;size=64;column=user_name")
    assert tag.has("pk")
    assert tag.has("auto")
    assert tag.get("size") == "64"
    assert tag.get("column") == "user_name"


def test_keys_are_case_insensitive():
    tag = parse_tag("PK;Size=10")
    assert tag.has("pk")
    assert tag.get("size") == "10"


def test_empty_parts_are_ignored():
    tag = parse_tag(";;null;")
    assert tag.flags == {"null"}
    assert tag.values == {}


def test_missing_value_defaults():
    assert parse_tag("").get("rel") == ""
    assert parse_tag("").get("rel", "fk") == "fk"


# -- Errors ------------------------------------------------------------------


def test_unknown_attribute_suggests_close_match():
    with pytest.raises(UnknownTagError) as exc_info:
        parse_tag("pk;sise=10", "app.User.name")
    err = exc_info.value
    assert err.attribute == "sise"
    assert "size" in err.suggestions
    assert err.path == "app.User.name"
    assert err.to_dict()["error"] == "UNKNOWN_TAG"


def test_unknown_flag():
    with pytest.raises(UnknownTagError):
        parse_tag("primary")


def test_flag_with_value_is_rejected():
    with pytest.raises(FieldDefinitionError, match="takes no value"):
        parse_tag("null=true")


def test_value_key_without_value_is_rejected():
    with pytest.raises(FieldDefinitionError, match="needs a value"):
        parse_tag("size")


# -- Collection --------------------------------------------------------------


def test_collect_tags_joins_markers_in_order():
    metadata = (Tag("pk"), "unrelated", Tag("auto"))
    assert collect_tags(metadata) == "pk;auto"
