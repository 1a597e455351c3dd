"""
Column descriptors and the per-model field collection.

A ``ColumnDescriptor`` is the normalized result of reflecting one model
field. Relation metadata refers to other models by table name only; the
catalog resolves those names, so descriptors never hold references to
other models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class FieldType(str, Enum):
    """Semantic column types."""

    BOOLEAN = "boolean"
    CHAR = "char"
    TEXT = "text"
    JSON = "json"
    JSONB = "jsonb"
    TIME = "time"
    DATE = "date"
    DATETIME = "datetime"
    BIT = "bit"
    SMALL_INTEGER = "smallint"
    INTEGER = "integer"
    BIG_INTEGER = "bigint"
    POSITIVE_BIT = "positive_bit"
    POSITIVE_SMALL_INTEGER = "positive_smallint"
    POSITIVE_INTEGER = "positive_integer"
    POSITIVE_BIG_INTEGER = "positive_bigint"
    FLOAT = "float"
    DECIMAL = "decimal"
    FOREIGN_KEY = "fk"
    ONE_TO_ONE = "one"
    MANY_TO_MANY = "m2m"
    REVERSE_ONE = "reverse_one"
    REVERSE_MANY = "reverse_many"

    @property
    def is_integer(self) -> bool:
        return self in INTEGER_RANGES

    @property
    def is_positive(self) -> bool:
        return self in _POSITIVE_TYPES

    @property
    def is_temporal(self) -> bool:
        return self in _TEMPORAL_TYPES

    @property
    def is_relation(self) -> bool:
        return self in _FORWARD_RELATIONS or self in _REVERSE_RELATIONS

    @property
    def is_forward_relation(self) -> bool:
        return self in _FORWARD_RELATIONS

    @property
    def is_reverse_relation(self) -> bool:
        return self in _REVERSE_RELATIONS

    @property
    def is_plural(self) -> bool:
        return self in (FieldType.MANY_TO_MANY, FieldType.REVERSE_MANY)

    @property
    def has_column(self) -> bool:
        return not self.is_plural and self is not FieldType.REVERSE_ONE


INTEGER_RANGES: dict[FieldType, tuple[int, int]] = {
    FieldType.BIT: (-(2**7), 2**7 - 1),
    FieldType.SMALL_INTEGER: (-(2**15), 2**15 - 1),
    FieldType.INTEGER: (-(2**31), 2**31 - 1),
    FieldType.BIG_INTEGER: (-(2**63), 2**63 - 1),
    FieldType.POSITIVE_BIT: (0, 2**8 - 1),
    FieldType.POSITIVE_SMALL_INTEGER: (0, 2**16 - 1),
    FieldType.POSITIVE_INTEGER: (0, 2**32 - 1),
    FieldType.POSITIVE_BIG_INTEGER: (0, 2**64 - 1),
}

_POSITIVE_TYPES = frozenset(
    {
        FieldType.POSITIVE_BIT,
        FieldType.POSITIVE_SMALL_INTEGER,
        FieldType.POSITIVE_INTEGER,
        FieldType.POSITIVE_BIG_INTEGER,
    }
)
_TEMPORAL_TYPES = frozenset({FieldType.TIME, FieldType.DATE, FieldType.DATETIME})
_FORWARD_RELATIONS = frozenset(
    {FieldType.FOREIGN_KEY, FieldType.ONE_TO_ONE, FieldType.MANY_TO_MANY}
)
_REVERSE_RELATIONS = frozenset({FieldType.REVERSE_ONE, FieldType.REVERSE_MANY})


class OnDelete(str, Enum):
    CASCADE = "cascade"
    SET_NULL = "set_null"
    SET_DEFAULT = "set_default"
    DO_NOTHING = "do_nothing"

    @property
    def sql(self) -> str:
        return {
            OnDelete.CASCADE: "CASCADE",
            OnDelete.SET_NULL: "SET NULL",
            OnDelete.SET_DEFAULT: "SET DEFAULT",
            OnDelete.DO_NOTHING: "NO ACTION",
        }[self]


@dataclass
class RelationInfo:
    """
    Relation metadata living on a column descriptor.

    ``reverse_field`` / ``reverse_field_two`` name the two foreign keys of
    the junction model for m2m-style relations: the first points back at
    the model owning this descriptor, the second at the other side. For
    fk/one/reverse relations ``reverse_field`` names the paired field on
    the target model.
    """

    kind: FieldType
    target: Any
    target_table: str | None = None
    rel_table: str = ""
    rel_through: str = ""
    through_table: str | None = None
    reverse_field: str | None = None
    reverse_field_two: str | None = None
    reverse_field_m2m: str | None = None
    on_delete: OnDelete = OnDelete.CASCADE


@dataclass(eq=False)
class ColumnDescriptor:
    name: str
    column: str
    field_type: FieldType
    model_table: str
    full_name: str
    python_type: Any = None
    null: bool = False
    index: bool = False
    unique: bool = False
    pk: bool = False
    auto: bool = False
    auto_now: bool = False
    auto_now_add: bool = False
    size: int = 0
    digits: int = 0
    decimals: int = 0
    initial: str | None = None
    default_value: str | None = None
    transient: bool = False
    not_null: bool = False
    column_explicit: bool = False
    in_model: bool = True
    relation: RelationInfo | None = None

    @property
    def dbcol(self) -> bool:
        return self.field_type.has_column

    @property
    def is_relation(self) -> bool:
        return self.relation is not None

    @property
    def rel(self) -> bool:
        return self.field_type.is_forward_relation

    @property
    def reverse(self) -> bool:
        return self.field_type.is_reverse_relation

    @property
    def target_table(self) -> str | None:
        return self.relation.target_table if self.relation else None

    def __repr__(self) -> str:
        return f"<ColumnDescriptor {self.full_name} column={self.column!r}>"


class FieldCollection:
    """
    Ordered collection of a model's descriptors with name/column indexes.

    Storage column names are unique within one collection.
    """

    def __init__(self) -> None:
        self._by_name: dict[str, ColumnDescriptor] = {}
        self._by_lower_name: dict[str, ColumnDescriptor] = {}
        self._by_column: dict[str, ColumnDescriptor] = {}
        self.keys: list[ColumnDescriptor] = []

    def add(self, fi: ColumnDescriptor) -> bool:
        if fi.name in self._by_name or fi.column in self._by_column:
            return False
        self._by_name[fi.name] = fi
        self._by_lower_name.setdefault(fi.name.lower(), fi)
        self._by_column[fi.column] = fi
        if fi.pk and fi not in self.keys:
            self.keys.append(fi)
        return True

    def rename_column(self, fi: ColumnDescriptor, column: str) -> bool:
        if column == fi.column:
            return True
        if column in self._by_column:
            return False
        del self._by_column[fi.column]
        fi.column = column
        self._by_column[column] = fi
        return True

    def __iter__(self):
        return iter(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> ColumnDescriptor | None:
        return self._by_name.get(name)

    def get_by_column(self, column: str) -> ColumnDescriptor | None:
        return self._by_column.get(column)

    def get_by_any(self, name: str) -> ColumnDescriptor | None:
        """Look up by field name, lower-case field name, then column."""
        fi = self._by_name.get(name)
        if fi is None:
            fi = self._by_lower_name.get(name.lower())
        if fi is None:
            fi = self._by_column.get(name)
        if fi is None:
            lowered = name.lower()
            fi = next(
                (f for c, f in self._by_column.items() if c.lower() == lowered),
                None,
            )
        return fi

    @property
    def names(self) -> list[str]:
        return list(self._by_name)

    @property
    def db_fields(self) -> list[ColumnDescriptor]:
        return [fi for fi in self._by_name.values() if fi.dbcol]

    @property
    def rel_fields(self) -> list[ColumnDescriptor]:
        return [fi for fi in self._by_name.values() if fi.rel]

    @property
    def reverse_fields(self) -> list[ColumnDescriptor]:
        return [fi for fi in self._by_name.values() if fi.reverse]

    def by_type(self, field_type: FieldType) -> list[ColumnDescriptor]:
        return [fi for fi in self._by_name.values() if fi.field_type is field_type]

    def set_keys(self, keys: list[ColumnDescriptor]) -> None:
        for fi in self._by_name.values():
            fi.pk = False
            fi.auto = fi.auto and fi in keys
        for fi in keys:
            fi.pk = True
        self.keys = list(keys)
