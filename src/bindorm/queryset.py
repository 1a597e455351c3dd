"""
Immutable query builder over one model.

Usage::

    adults = (
        db.query_table(User)
        .filter(age__gte=18)
        .exclude(profile__city="Paris")
        .order_by("-age", "name")
        .limit(10)
    )
    users = adults.all()
    total = adults.count()

Every builder method returns a new ``QuerySet``; terminals execute through
the owning ``DbMap``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from .bindings import junction_sides
from .compiler import JoinTracker, ResolvedPath
from .conditions import Condition, split_expr
from .exceptions import MultipleRowsError, NoRowsError, QueryConstructionError
from .statement import SelectStatement

if TYPE_CHECKING:
    from .dbmap import DbMap
    from .fields import ColumnDescriptor
    from .model import ModelInfo


@dataclass(frozen=True)
class _Through:
    """Restricts a query on the target side of an m2m to one owner."""

    field: ColumnDescriptor
    owner_key: Any


@dataclass(frozen=True)
class _QueryState:
    cond: Condition = Condition()
    orders: tuple[str, ...] = ()
    groups: tuple[str, ...] = ()
    limit: int | None = None
    offset: int | None = None
    distinct: bool = False
    through: _Through | None = None


class QuerySet:
    def __init__(
        self, db: DbMap, model: ModelInfo, state: _QueryState | None = None
    ) -> None:
        self._db = db
        self._model = model
        self._state = state or _QueryState()

    def __repr__(self) -> str:
        return f"<QuerySet {self._model.table}>"

    @property
    def model(self) -> ModelInfo:
        return self._model

    def _clone(self, **changes: Any) -> QuerySet:
        return QuerySet(self._db, self._model, replace(self._state, **changes))

    # ── Builders ─────────────────────────────────────────────────────

    def filter(self, *conds: Condition, **filters: Any) -> QuerySet:
        """AND the given conditions and ``field__op=value`` filters in."""
        cond = self._state.cond
        extras = list(conds)
        if filters:
            extras.append(Condition.where(**filters))
        for extra in extras:
            cond = extra if cond.is_empty() else cond.and_cond(extra)
        return self._clone(cond=cond)

    def exclude(self, *conds: Condition, **filters: Any) -> QuerySet:
        cond = self._state.cond
        for extra in conds:
            cond = cond.and_not_cond(extra)
        if filters:
            cond = cond.and_not_cond(Condition.where(**filters))
        return self._clone(cond=cond)

    def set_cond(self, cond: Condition) -> QuerySet:
        """Replace the whole condition tree."""
        return self._clone(cond=cond)

    def get_cond(self) -> Condition:
        return self._state.cond

    def order_by(self, *exprs: str) -> QuerySet:
        return self._clone(orders=self._state.orders + exprs)

    def group_by(self, *exprs: str) -> QuerySet:
        return self._clone(groups=self._state.groups + exprs)

    def limit(self, limit: int) -> QuerySet:
        return self._clone(limit=limit)

    def offset(self, offset: int) -> QuerySet:
        return self._clone(offset=offset)

    def distinct(self, distinct: bool = True) -> QuerySet:
        return self._clone(distinct=distinct)

    def through(self, field: ColumnDescriptor, owner_key: Any) -> QuerySet:
        """Restrict rows to targets linked to ``owner_key`` via m2m ``field``."""
        return self._clone(through=_Through(field, owner_key))

    # ── Assembly ─────────────────────────────────────────────────────

    def _joins(self, exprs: Sequence[str] = ()) -> JoinTracker:
        state = self._state
        return self._db.compiler.joins_for(
            self._model,
            state.cond,
            [*state.orders, *state.groups, *exprs],
        )

    def _through_sql(self, joins: JoinTracker) -> tuple[str, list[Any]]:
        through = self._state.through
        if through is None:
            return "", []
        catalog = self._db.catalog
        owner = catalog.get(through.field.model_table)
        junction, mine, other = junction_sides(owner, through.field, catalog)
        q = self._db.dialect.quote_field
        pk = joins.base_column(self._model.primary_key)
        sql = (
            f"{pk} IN (SELECT {q(other.column)} FROM "
            f"{junction.quoted_table(self._db.dialect)} WHERE {q(mine.column)} = ?)"
        )
        return sql, [self._db.converter.to_db(mine, through.owner_key)]

    def _statement(
        self, select: str | None = None, exprs: Sequence[str] = ()
    ) -> tuple[SelectStatement, JoinTracker, list[ResolvedPath]]:
        """
        Build the statement. ``exprs`` are value paths that become the
        select list; they are resolved last so join aliases follow the
        filter, order and group paths.
        """
        compiler = self._db.compiler
        state = self._state
        joins = self._joins(exprs)
        through_sql, params = self._through_sql(joins)
        where = ""
        if not state.cond.is_empty():
            where, where_params = compiler.compile(self._model, state.cond, joins)
            params.extend(where_params)
        order_by = compiler.order_sql(self._model, state.orders, joins)
        group_by = compiler.group_sql(self._model, state.groups, joins)
        paths = [
            compiler.resolve(self._model, split_expr(e), joins, with_operator=False)
            for e in exprs
        ]
        if paths:
            select = ", ".join(p.column_sql for p in paths)
        elif select is None:
            select = ", ".join(
                joins.base_column(fi) for fi in self._selected_fields()
            )
        stmt = SelectStatement(
            select=select,
            from_clause=joins.from_clause(),
            joins=joins.join_clause(),
            join_where=through_sql,
            where=where,
            group_by=group_by,
            order_by=order_by,
            limit_clause=self._db.dialect.limit_offset_sql(state.limit, state.offset),
            distinct=state.distinct,
            params=tuple(params),
        )
        return stmt, joins, paths

    def _selected_fields(self) -> list[ColumnDescriptor]:
        return [fi for fi in self._model.fields.db_fields if not fi.transient]

    def _finish(self, stmt: SelectStatement) -> tuple[str, list[Any]]:
        return self._db.dialect.replace_marks(stmt.to_sql()), list(stmt.params)

    def to_sql(self) -> tuple[str, list[Any]]:
        """The ``SELECT`` this query runs, with its parameters."""
        stmt, _, _ = self._statement()
        return self._finish(stmt)

    def count_sql(self) -> tuple[str, list[Any]]:
        stmt, _, _ = self._statement()
        return self._finish(stmt.count())

    # ── Terminals ────────────────────────────────────────────────────

    def all(self) -> list[Any]:
        fields = self._selected_fields()
        sql, params = self.to_sql()
        rows = self._db.fetch(sql, params)
        return [self._db.from_row(self._model, fields, row) for row in rows]

    def first(self) -> Any | None:
        rows = self.limit(1).all()
        return rows[0] if rows else None

    def one(self) -> Any:
        """
        Exactly one row.

        Raises:
            NoRowsError: Nothing matched.
            MultipleRowsError: More than one row matched.
        """
        rows = self.limit(2).all()
        if not rows:
            raise NoRowsError(f"no `{self._model.table}` row matched")
        if len(rows) > 1:
            raise MultipleRowsError(f"more than one `{self._model.table}` row matched")
        return rows[0]

    def count(self) -> int:
        sql, params = self.count_sql()
        return int(self._db.fetch_scalar(sql, params) or 0)

    def exist(self) -> bool:
        stmt, _, _ = self._statement(select="1")
        stmt = replace(
            stmt,
            order_by="",
            limit_clause=self._db.dialect.limit_offset_sql(1, None),
        )
        sql, params = self._finish(stmt)
        return bool(self._db.fetch(sql, params))

    def values(self, *exprs: str) -> list[dict[str, Any]]:
        """Rows as dicts keyed by the requested paths (all columns by default)."""
        names, rows = self._values(exprs)
        return [dict(zip(names, row)) for row in rows]

    def values_list(self, *exprs: str, flat: bool = False) -> list[Any]:
        if flat and len(exprs) != 1:
            raise QueryConstructionError("values_list(flat=True) needs exactly one field")
        _, rows = self._values(exprs)
        if flat:
            return [row[0] for row in rows]
        return [tuple(row) for row in rows]

    def _values(
        self, exprs: Sequence[str]
    ) -> tuple[list[str], list[list[Any]]]:
        if not exprs:
            exprs = tuple(fi.name for fi in self._selected_fields())
        stmt, _, paths = self._statement(exprs=exprs)
        sql, params = self._finish(stmt)
        rows = self._db.fetch(sql, params)
        convert = self._db.converter.from_db
        return list(exprs), [
            [convert(p.field, value) for p, value in zip(paths, row)] for row in rows
        ]

    def update(self, **values: Any) -> int:
        """Set columns on every matched row; returns the row count."""
        if not values:
            raise QueryConstructionError("update() needs at least one column")
        dialect = self._db.dialect
        q = dialect.quote_field
        sets: list[str] = []
        params: list[Any] = []
        for name, value in values.items():
            fi = self._model.col_map(name)
            if not fi.dbcol:
                raise QueryConstructionError(
                    f"`{fi.name}` has no column on `{self._model.table}`"
                )
            sets.append(f"{q(fi.column)} = ?")
            params.append(self._db.converter.to_db(fi, value))
        where, where_params = self._mutation_where()
        sql = f"UPDATE {self._model.quoted_table(dialect)} SET {', '.join(sets)}"
        if where:
            sql = f"{sql} {where}"
        return self._db.execute(dialect.replace_marks(sql), params + where_params)

    def delete(self) -> int:
        """Delete every matched row; returns the row count."""
        dialect = self._db.dialect
        where, params = self._mutation_where()
        sql = f"DELETE FROM {self._model.quoted_table(dialect)}"
        if where:
            sql = f"{sql} {where}"
        return self._db.execute(dialect.replace_marks(sql), params)

    def _mutation_where(self) -> tuple[str, list[Any]]:
        """
        ``WHERE`` for update/delete. Joined filters go through a key
        subquery since neither statement can carry the join itself.
        """
        stmt, joins, _ = self._statement(select="")
        if not joins.has_joins:
            return stmt.where_clause(), list(stmt.params)
        pk = self._model.primary_key
        inner = replace(
            stmt,
            select=joins.base_column(pk),
            order_by="",
            limit_clause="",
            distinct=False,
        )
        column = self._db.dialect.quote_field(pk.column)
        return f"WHERE {column} IN ({inner.to_sql()})", list(stmt.params)
