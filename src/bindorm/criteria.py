"""
Criteria API.

A mutable, property-based alternative to ``QuerySet``. The base table is
always aliased ``this_``::

    crit = (
        db.criteria(User)
        .add(Restrictions.ge("age", 18))
        .add(
            Restrictions.or_(
                Restrictions.like("name", "a%"), Restrictions.is_null("email")
            )
        )
        .set_projection(Projections.row_count())
    )
    adults = crit.unique_result()

Restrictions and projections address plain properties of the model only.
"""

from __future__ import annotations

import builtins
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .exceptions import MultipleRowsError, OperatorArgumentError, QueryConstructionError
from .statement import SelectStatement

if TYPE_CHECKING:
    from .dbmap import DbMap
    from .fields import ColumnDescriptor
    from .model import ModelInfo

ROOT_ALIAS = "this_"


class Criterion(ABC):
    @abstractmethod
    def to_sql(self, crit: Criteria) -> tuple[str, list[Any]]:
        """Predicate SQL with ``?`` marks and its parameters."""


@dataclass(frozen=True)
class _Compare(Criterion):
    prop: str
    op: str
    value: Any

    def to_sql(self, crit: Criteria) -> tuple[str, list[Any]]:
        column, fi = crit.column(self.prop)
        return f"{column} {self.op} ?", [crit.param(fi, self.value)]


@dataclass(frozen=True)
class _ILike(Criterion):
    prop: str
    value: Any

    def to_sql(self, crit: Criteria) -> tuple[str, list[Any]]:
        column, fi = crit.column(self.prop)
        return f"LOWER({column}) LIKE LOWER(?)", [crit.param(fi, self.value)]


@dataclass(frozen=True)
class _Null(Criterion):
    prop: str
    negated: bool = False

    def to_sql(self, crit: Criteria) -> tuple[str, list[Any]]:
        column, _ = crit.column(self.prop)
        return f"{column} IS {'NOT ' if self.negated else ''}NULL", []


@dataclass(frozen=True)
class _In(Criterion):
    prop: str
    values: tuple[Any, ...]

    def to_sql(self, crit: Criteria) -> tuple[str, list[Any]]:
        if not self.values:
            raise OperatorArgumentError("in", "needs at least one value")
        column, fi = crit.column(self.prop)
        marks = ", ".join("?" for _ in self.values)
        return f"{column} IN ({marks})", [crit.param(fi, v) for v in self.values]


@dataclass(frozen=True)
class _Between(Criterion):
    prop: str
    low: Any
    high: Any

    def to_sql(self, crit: Criteria) -> tuple[str, list[Any]]:
        column, fi = crit.column(self.prop)
        return (
            f"{column} BETWEEN ? AND ?",
            [crit.param(fi, self.low), crit.param(fi, self.high)],
        )


@dataclass(frozen=True)
class _Junction(Criterion):
    op: str
    parts: tuple[Criterion, ...]

    def to_sql(self, crit: Criteria) -> tuple[str, list[Any]]:
        if not self.parts:
            raise QueryConstructionError(f"{self.op} needs at least one criterion")
        fragments: list[str] = []
        params: list[Any] = []
        for part in self.parts:
            sql, part_params = part.to_sql(crit)
            fragments.append(f"({sql})")
            params.extend(part_params)
        return f" {self.op} ".join(fragments), params


@dataclass(frozen=True)
class _Not(Criterion):
    inner: Criterion

    def to_sql(self, crit: Criteria) -> tuple[str, list[Any]]:
        sql, params = self.inner.to_sql(crit)
        return f"NOT ({sql})", params


class Restrictions:
    """Factory for built-in criteria."""

    @staticmethod
    def eq(prop: str, value: Any) -> Criterion:
        if value is None:
            return _Null(prop)
        return _Compare(prop, "=", value)

    @staticmethod
    def ne(prop: str, value: Any) -> Criterion:
        if value is None:
            return _Null(prop, negated=True)
        return _Compare(prop, "<>", value)

    @staticmethod
    def gt(prop: str, value: Any) -> Criterion:
        return _Compare(prop, ">", value)

    @staticmethod
    def ge(prop: str, value: Any) -> Criterion:
        return _Compare(prop, ">=", value)

    @staticmethod
    def lt(prop: str, value: Any) -> Criterion:
        return _Compare(prop, "<", value)

    @staticmethod
    def le(prop: str, value: Any) -> Criterion:
        return _Compare(prop, "<=", value)

    @staticmethod
    def like(prop: str, pattern: str) -> Criterion:
        return _Compare(prop, "LIKE", pattern)

    @staticmethod
    def ilike(prop: str, pattern: str) -> Criterion:
        return _ILike(prop, pattern)

    @staticmethod
    def is_null(prop: str) -> Criterion:
        return _Null(prop)

    @staticmethod
    def is_not_null(prop: str) -> Criterion:
        return _Null(prop, negated=True)

    @staticmethod
    def in_(prop: str, *values: Any) -> Criterion:
        if len(values) == 1 and isinstance(values[0], (list, tuple, set, frozenset)):
            values = tuple(values[0])
        return _In(prop, tuple(values))

    @staticmethod
    def between(prop: str, low: Any, high: Any) -> Criterion:
        return _Between(prop, low, high)

    @staticmethod
    def and_(*criteria: Criterion) -> Criterion:
        return _Junction("AND", criteria)

    @staticmethod
    def or_(*criteria: Criterion) -> Criterion:
        return _Junction("OR", criteria)

    @staticmethod
    def not_(criterion: Criterion) -> Criterion:
        return _Not(criterion)


@dataclass(frozen=True)
class Projection:
    """One select-list item; ``grouped`` items also land in ``GROUP BY``."""

    function: str | None
    prop: str | None = None
    grouped: bool = False

    def to_sql(self, crit: Criteria) -> str:
        if self.prop is None:
            return f"{self.function}(*)"
        column, _ = crit.column(self.prop)
        if self.function is None:
            return column
        return f"{self.function}({column})"


class Projections:
    @staticmethod
    def row_count() -> Projection:
        return Projection("COUNT")

    @staticmethod
    def count(prop: str) -> Projection:
        return Projection("COUNT", prop)

    @staticmethod
    def property(prop: str) -> Projection:
        return Projection(None, prop)

    @staticmethod
    def group_property(prop: str) -> Projection:
        return Projection(None, prop, grouped=True)

    @staticmethod
    def max(prop: str) -> Projection:
        return Projection("MAX", prop)

    @staticmethod
    def min(prop: str) -> Projection:
        return Projection("MIN", prop)

    @staticmethod
    def sum(prop: str) -> Projection:
        return Projection("SUM", prop)

    @staticmethod
    def avg(prop: str) -> Projection:
        return Projection("AVG", prop)


class Criteria:
    def __init__(self, db: DbMap, model: ModelInfo) -> None:
        self._db = db
        self._model = model
        self._criteria: list[Criterion] = []
        self._projections: list[Projection] = []
        self._orders: list[tuple[str, bool]] = []
        self._max_results: int | None = None
        self._first_result: int | None = None

    def add(self, criterion: Criterion) -> Criteria:
        self._criteria.append(criterion)
        return self

    def set_projection(self, *projections: Projection) -> Criteria:
        """Replace the select list; no projection selects whole rows."""
        self._projections = list(projections)
        return self

    def add_order(self, prop: str, descending: bool = False) -> Criteria:
        self._orders.append((prop, descending))
        return self

    def set_max_results(self, limit: int) -> Criteria:
        self._max_results = limit
        return self

    def set_first_result(self, offset: int) -> Criteria:
        self._first_result = offset
        return self

    # ── Helpers used by criteria and projections ─────────────────────

    def column(self, prop: str) -> tuple[str, ColumnDescriptor]:
        fi = self._model.col_map(prop)
        if not fi.dbcol:
            raise QueryConstructionError(
                f"`{fi.name}` has no column on `{self._model.table}`"
            )
        return f"{ROOT_ALIAS}.{self._db.dialect.quote_field(fi.column)}", fi

    def param(self, fi: ColumnDescriptor, value: Any) -> Any:
        return self._db.compiler.to_param(fi, value)

    # ── Execution ────────────────────────────────────────────────────

    def to_sql(self) -> tuple[str, builtins.list[Any]]:
        dialect = self._db.dialect
        if self._projections:
            select = ", ".join(p.to_sql(self) for p in self._projections)
            groups = [p.to_sql(self) for p in self._projections if p.grouped]
        else:
            select = ", ".join(
                self.column(fi.name)[0]
                for fi in self._model.fields.db_fields
                if not fi.transient
            )
            groups = []
        where = ""
        params: list[Any] = []
        if self._criteria:
            where, params = Restrictions.and_(*self._criteria).to_sql(self)
        orders = [
            f"{self.column(prop)[0]} {'DESC' if desc else 'ASC'}"
            for prop, desc in self._orders
        ]
        stmt = SelectStatement(
            select=select,
            from_clause=f"{self._model.quoted_table(dialect)} {ROOT_ALIAS}",
            where=where,
            group_by=f"GROUP BY {', '.join(groups)}" if groups else "",
            order_by=f"ORDER BY {', '.join(orders)}" if orders else "",
            limit_clause=dialect.limit_offset_sql(self._max_results, self._first_result),
            params=tuple(params),
        )
        return dialect.replace_marks(stmt.to_sql()), list(stmt.params)

    def list(self) -> builtins.list[Any]:
        """
        Model instances without projections; scalars with one projection;
        tuples with several.
        """
        sql, params = self.to_sql()
        rows = self._db.fetch(sql, params)
        if not self._projections:
            fields = [fi for fi in self._model.fields.db_fields if not fi.transient]
            return [self._db.from_row(self._model, fields, row) for row in rows]
        if len(self._projections) == 1:
            return [row[0] for row in rows]
        return [tuple(row) for row in rows]

    def unique_result(self) -> Any | None:
        results = self.list()
        if len(results) > 1:
            raise MultipleRowsError(
                f"criteria on `{self._model.table}` returned {len(results)} rows"
            )
        return results[0] if results else None
