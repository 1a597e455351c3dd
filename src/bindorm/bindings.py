"""
Bind-Plan Cache.

A ``BindPlan`` is the static shape of a mutation or lookup: the SQL text
and the ordered field names that feed its placeholders. Plans are built
once per model, operation and dialect, then turned into a
``BindInstance`` for each call by reading the actual field values off
the object being written.

Each plan lives in a ``PlanSlot``: a lock plus a published result.
Concurrent first callers block on the lock while one of them builds the
plan; afterwards readers return the published plan without locking.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Hashable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .exceptions import QueryConstructionError, RelationResolutionError

if TYPE_CHECKING:
    from .dialects import Dialect
    from .fields import ColumnDescriptor
    from .model import ModelInfo
    from .registry import ModelCatalog


NEXT_VERSION = "__next_version__"
"""Synthetic argument source: the version value the write will store."""

OWNER = "__owner__"
TARGET = "__target__"


class Operation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    GET = "get"
    M2M_INSERT = "m2m_insert"
    M2M_QUERY = "m2m_query"


Converter = Callable[["ColumnDescriptor", Any], Any]


@dataclass(frozen=True)
class BindInstance:
    """Per-call pairing of a plan's SQL with concrete argument values."""

    query: str
    args: tuple[Any, ...]
    keys: tuple[Any, ...] = ()
    version_field: str | None = None
    existing_version: int | None = None
    new_version: int | None = None
    auto_incr_idx: int | None = None
    auto_incr_field: str | None = None


@dataclass(frozen=True)
class BindPlan:
    query: str
    arg_fields: tuple[str, ...] = ()
    key_fields: tuple[str, ...] = ()
    version_field: str | None = None
    auto_incr_idx: int | None = None
    auto_incr_field: str | None = None

    def bind(self, obj: Any, model: ModelInfo, convert: Converter) -> BindInstance:
        existing: int | None = None
        new: int | None = None
        if self.version_field is not None:
            existing = int(getattr(obj, self.version_field, 0) or 0)
            new = existing + 1

        args: list[Any] = []
        for name in self.arg_fields:
            if name == NEXT_VERSION:
                args.append(new)
            else:
                args.append(_read(obj, model, name, convert))
        keys = tuple(_read(obj, model, name, convert) for name in self.key_fields)
        return BindInstance(
            query=self.query,
            args=tuple(args),
            keys=keys,
            version_field=self.version_field,
            existing_version=existing,
            new_version=new,
            auto_incr_idx=self.auto_incr_idx,
            auto_incr_field=self.auto_incr_field,
        )


@dataclass(frozen=True)
class M2MInsertPlan:
    """
    Junction insert shape; rows are rendered per call because their count
    varies while the column list does not.
    """

    head: str
    sources: tuple[str, ...]
    suffix: str = ""

    def bind(
        self, owner_key: Any, target_keys: Sequence[Any], dialect: Dialect
    ) -> BindInstance:
        if not target_keys:
            raise QueryConstructionError("m2m insert needs at least one target")
        rows: list[str] = []
        args: list[Any] = []
        for target in target_keys:
            marks: list[str] = []
            for source in self.sources:
                if source == OWNER:
                    marks.append(dialect.bind_var(len(args)))
                    args.append(owner_key)
                elif source == TARGET:
                    marks.append(dialect.bind_var(len(args)))
                    args.append(target)
                else:
                    marks.append(source)
            rows.append(f"({', '.join(marks)})")
        return BindInstance(
            query=f"{self.head}{', '.join(rows)}{self.suffix}", args=tuple(args)
        )


def _read(obj: Any, model: ModelInfo, name: str, convert: Converter) -> Any:
    fi = model.fields.get(name)
    if fi is None:
        raise QueryConstructionError(f"`{model.table}` has no field `{name}`")
    return convert(fi, getattr(obj, name, None))


class PlanSlot:
    """Compute-once latch guarding a single plan."""

    __slots__ = ("_lock", "_plan")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._plan: Any = None

    @property
    def computed(self) -> bool:
        return self._plan is not None

    def get(self, build: Callable[[], Any]) -> Any:
        plan = self._plan
        if plan is not None:
            return plan
        with self._lock:
            if self._plan is None:
                self._plan = build()
            return self._plan


class BindPlanCache:
    """Plan slots of one model, keyed by operation and dialect."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slots: dict[Hashable, PlanSlot] = {}

    def slot(self, key: Hashable) -> PlanSlot:
        slot = self._slots.get(key)
        if slot is None:
            with self._lock:
                slot = self._slots.setdefault(key, PlanSlot())
        return slot

    def get(self, key: Hashable, build: Callable[[], Any]) -> Any:
        return self.slot(key).get(build)

    def reset(self) -> None:
        with self._lock:
            self._slots = {}

    def __len__(self) -> int:
        return sum(1 for s in self._slots.values() if s.computed)


# ── Plan generation ──────────────────────────────────────────────────


def _where_keys(
    model: ModelInfo, dialect: Dialect, start: int
) -> tuple[list[str], list[str]]:
    clauses: list[str] = []
    names: list[str] = []
    for fi in model.keys:
        clauses.append(
            f"{dialect.quote_field(fi.column)} = {dialect.bind_var(start + len(names))}"
        )
        names.append(fi.name)
    return clauses, names


def _require_keys(model: ModelInfo, operation: Operation) -> None:
    if not model.keys:
        raise QueryConstructionError(
            f"`{model.table}` has no primary key; cannot build {operation.value}"
        )


def build_insert_plan(model: ModelInfo, dialect: Dialect) -> BindPlan:
    columns: list[str] = []
    values: list[str] = []
    arg_fields: list[str] = []
    version_field: str | None = None
    auto_idx: int | None = None
    auto_field: str | None = None
    suffix = ""

    for fi in model.fields.db_fields:
        if fi.transient:
            continue
        quoted = dialect.quote_field(fi.column)
        if fi.auto:
            auto_idx = len(columns)
            auto_field = fi.name
            suffix = dialect.auto_incr_insert_suffix(quoted)
            bind_value = dialect.auto_incr_bind_value()
            if bind_value:
                columns.append(quoted)
                values.append(bind_value)
            continue
        columns.append(quoted)
        if fi.default_value is not None:
            values.append(fi.default_value)
            continue
        values.append(dialect.bind_var(len(arg_fields)))
        if model.version is fi:
            version_field = fi.name
            arg_fields.append(NEXT_VERSION)
        else:
            arg_fields.append(fi.name)

    table = model.quoted_table(dialect)
    if columns:
        query = (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join(values)})"
        )
    else:
        query = f"INSERT INTO {table} DEFAULT VALUES"
    return BindPlan(
        query=query + suffix + dialect.query_suffix(),
        arg_fields=tuple(arg_fields),
        version_field=version_field,
        auto_incr_idx=auto_idx,
        auto_incr_field=auto_field,
    )


def build_update_plan(
    model: ModelInfo, dialect: Dialect, columns: frozenset[str] | None = None
) -> BindPlan:
    """``columns`` restricts the SET list to these field names."""
    _require_keys(model, Operation.UPDATE)
    sets: list[str] = []
    arg_fields: list[str] = []
    for fi in model.fields.db_fields:
        if fi.auto or fi.transient:
            continue
        if columns is not None and fi.name not in columns and fi is not model.version:
            continue
        sets.append(
            f"{dialect.quote_field(fi.column)} = {dialect.bind_var(len(arg_fields))}"
        )
        arg_fields.append(NEXT_VERSION if fi is model.version else fi.name)
    if not sets:
        raise QueryConstructionError(f"`{model.table}` has no columns to update")

    where, key_names = _where_keys(model, dialect, len(arg_fields))
    arg_fields.extend(key_names)
    version_field = None
    if model.version is not None:
        version_field = model.version.name
        where.append(
            f"{dialect.quote_field(model.version.column)} = "
            f"{dialect.bind_var(len(arg_fields))}"
        )
        arg_fields.append(version_field)

    query = (
        f"UPDATE {model.quoted_table(dialect)} SET {', '.join(sets)} "
        f"WHERE {' AND '.join(where)}{dialect.query_suffix()}"
    )
    return BindPlan(
        query=query,
        arg_fields=tuple(arg_fields),
        key_fields=tuple(key_names),
        version_field=version_field,
    )


def build_delete_plan(model: ModelInfo, dialect: Dialect) -> BindPlan:
    _require_keys(model, Operation.DELETE)
    where, key_names = _where_keys(model, dialect, 0)
    arg_fields = list(key_names)
    version_field = None
    if model.version is not None:
        version_field = model.version.name
        where.append(
            f"{dialect.quote_field(model.version.column)} = "
            f"{dialect.bind_var(len(arg_fields))}"
        )
        arg_fields.append(version_field)
    query = (
        f"DELETE FROM {model.quoted_table(dialect)} "
        f"WHERE {' AND '.join(where)}{dialect.query_suffix()}"
    )
    return BindPlan(
        query=query,
        arg_fields=tuple(arg_fields),
        key_fields=tuple(key_names),
        version_field=version_field,
    )


def build_get_plan(model: ModelInfo, dialect: Dialect) -> BindPlan:
    _require_keys(model, Operation.GET)
    selected = [
        dialect.quote_field(fi.column)
        for fi in model.fields.db_fields
        if not fi.transient
    ]
    where, key_names = _where_keys(model, dialect, 0)
    query = (
        f"SELECT {', '.join(selected)} FROM {model.quoted_table(dialect)} "
        f"WHERE {' AND '.join(where)}{dialect.query_suffix()}"
    )
    return BindPlan(
        query=query, arg_fields=tuple(key_names), key_fields=tuple(key_names)
    )


def junction_sides(
    model: ModelInfo, field: ColumnDescriptor, catalog: ModelCatalog
) -> tuple[ModelInfo, ColumnDescriptor, ColumnDescriptor]:
    rel = field.relation
    if (
        rel is None
        or rel.through_table is None
        or rel.reverse_field is None
        or rel.reverse_field_two is None
    ):
        raise RelationResolutionError(
            "field is not a resolved many-to-many relation", field.full_name
        )
    junction = catalog.get(rel.through_table)
    owner = junction.fields.get(rel.reverse_field)
    target = junction.fields.get(rel.reverse_field_two)
    if owner is None or target is None:
        raise RelationResolutionError("junction link fields are missing", field.full_name)
    return junction, owner, target


def build_m2m_insert_plan(
    model: ModelInfo, field: ColumnDescriptor, catalog: ModelCatalog, dialect: Dialect
) -> M2MInsertPlan:
    junction, owner, target = junction_sides(model, field, catalog)
    columns: list[str] = []
    sources: list[str] = []
    for fi in junction.fields.db_fields:
        if fi.transient:
            continue
        if fi is owner:
            source = OWNER
        elif fi is target:
            source = TARGET
        elif fi.auto:
            source = dialect.auto_incr_bind_value()
            if not source:
                continue
        elif fi.default_value is not None:
            source = fi.default_value
        else:
            continue
        columns.append(dialect.quote_field(fi.column))
        sources.append(source)
    head = f"INSERT INTO {junction.quoted_table(dialect)} ({', '.join(columns)}) VALUES "
    return M2MInsertPlan(head=head, sources=tuple(sources), suffix=dialect.query_suffix())


def build_m2m_query_plan(
    model: ModelInfo, field: ColumnDescriptor, catalog: ModelCatalog, dialect: Dialect
) -> BindPlan:
    junction, owner, target = junction_sides(model, field, catalog)
    target_model = catalog.target_of(field)
    target_pk = target_model.primary_key
    t_table = target_model.quoted_table(dialect)
    j_table = junction.quoted_table(dialect)
    q = dialect.quote_field

    selected = [
        f"{t_table}.{q(fi.column)}"
        for fi in target_model.fields.db_fields
        if not fi.transient
    ]
    query = (
        f"SELECT {', '.join(selected)} FROM {t_table} "
        f"INNER JOIN {j_table} ON {j_table}.{q(target.column)} = "
        f"{t_table}.{q(target_pk.column)} "
        f"WHERE {j_table}.{q(owner.column)} = {dialect.bind_var(0)}"
        f"{dialect.query_suffix()}"
    )
    pk = model.primary_key
    return BindPlan(query=query, arg_fields=(pk.name,), key_fields=(pk.name,))
