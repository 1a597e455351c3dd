"""
Field tag language.

Tags ride on ``typing.Annotated`` metadata::

    class User(BaseModel):
        id: Annotated[int, Tag("pk;auto")] = 0
        name: Annotated[str, Tag("size=100;index")] = ""

Attributes are ``;``-separated. Flags stand alone, keyed attributes use
``key=value``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .exceptions import FieldDefinitionError, UnknownTagError

TAG_DELIMITER = ";"

FLAG_ATTRIBUTES = frozenset(
    {"-", "null", "index", "unique", "pk", "auto", "auto_now", "auto_now_add"}
)
VALUE_ATTRIBUTES = frozenset(
    {
        "size",
        "column",
        "default",
        "rel",
        "reverse",
        "rel_table",
        "rel_through",
        "digits",
        "decimals",
        "on_delete",
        "type",
    }
)


@dataclass(frozen=True)
class Tag:
    """Marker carrying a raw tag string inside ``Annotated[...]``."""

    spec: str = ""


@dataclass
class ParsedTag:
    flags: set[str] = field(default_factory=set)
    values: dict[str, str] = field(default_factory=dict)

    def has(self, flag: str) -> bool:
        return flag in self.flags

    def get(self, key: str, default: str = "") -> str:
        return self.values.get(key, default)


def parse_tag(raw: str, path: str | None = None) -> ParsedTag:
    """
    Split a raw tag into flags and keyed values.

    Raises:
        UnknownTagError: For attributes outside the tag language.
        FieldDefinitionError: For a flag given a value or a key without one.
    """
    parsed = ParsedTag()
    valid = sorted(FLAG_ATTRIBUTES | VALUE_ATTRIBUTES)
    for part in raw.split(TAG_DELIMITER):
        part = part.strip()
        if not part:
            continue
        if "=" in part:
            key, _, value = part.partition("=")
            key = key.strip().lower()
            if key in FLAG_ATTRIBUTES:
                raise FieldDefinitionError(f"tag `{key}` takes no value", path)
            if key not in VALUE_ATTRIBUTES:
                raise UnknownTagError(key, valid, path)
            parsed.values[key] = value.strip()
            continue
        key = part.lower()
        if key in VALUE_ATTRIBUTES:
            raise FieldDefinitionError(f"tag `{key}` needs a value", path)
        if key not in FLAG_ATTRIBUTES:
            raise UnknownTagError(key, valid, path)
        parsed.flags.add(key)
    return parsed


def collect_tags(metadata: tuple[object, ...] | list[object]) -> str:
    """Join every ``Tag`` found in Annotated metadata, in order."""
    return TAG_DELIMITER.join(m.spec for m in metadata if isinstance(m, Tag))
