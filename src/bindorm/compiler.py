"""
Condition/Expression Compiler.

Turns ``Condition`` trees into SQL predicates with ``?`` marks and an
ordered parameter list. Field paths are ``field``, ``field__op``,
``relation__field`` or ``relation__field__op``; a trailing segment that
names a registered operator is the comparison, ``exact`` otherwise.

When any path crosses a relation, the base table is aliased ``T0`` and
every joined table ``T1``, ``T2``...; otherwise columns are emitted as
bare quoted names.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pydantic import BaseModel

from .conditions import Condition, split_expr
from .converters import format_temporal
from .exceptions import (
    FieldNotFoundError,
    QueryConstructionError,
    RelationshipTraversalError,
    UnresolvableValueError,
)
from .fields import ColumnDescriptor, FieldType
from .operators import DEFAULT_REGISTRY, Operator, OperatorRegistry
from .utils import parse_temporal

if TYPE_CHECKING:
    from datetime import tzinfo

    from .dialects import Dialect
    from .model import ModelInfo
    from .registry import ModelCatalog


BASE_ALIAS = "T0"
_SINGULAR_FORWARD = (FieldType.FOREIGN_KEY, FieldType.ONE_TO_ONE)


@dataclass(frozen=True)
class ResolvedPath:
    field: ColumnDescriptor
    column_sql: str
    operator: str


class JoinTracker:
    """
    Assigns aliases and renders the ``LEFT OUTER JOIN`` chain for one
    statement. Each relation field is joined at most once.
    """

    def __init__(
        self,
        model: ModelInfo,
        catalog: ModelCatalog,
        dialect: Dialect,
        *,
        aliased: bool = False,
    ) -> None:
        self.model = model
        self._catalog = catalog
        self._dialect = dialect
        self.aliased = aliased
        self._joined: dict[str, tuple[str, ModelInfo]] = {}
        self._clauses: list[str] = []
        self._counter = 0

    def _alias(self) -> str:
        self._counter += 1
        return f"T{self._counter}"

    def base_column(self, fi: ColumnDescriptor) -> str:
        q = self._dialect.quote_field(fi.column)
        return f"{BASE_ALIAS}.{q}" if self.aliased else q

    def from_clause(self) -> str:
        table = self.model.quoted_table(self._dialect)
        return f"{table} {BASE_ALIAS}" if self.aliased else table

    def join_clause(self) -> str:
        return " ".join(self._clauses)

    @property
    def has_joins(self) -> bool:
        return bool(self._clauses)

    def join(self, fi: ColumnDescriptor, full_path: str) -> tuple[str, ModelInfo]:
        """Join the table behind relation ``fi``; returns its alias and model."""
        if fi.name in self._joined:
            return self._joined[fi.name]
        rel = fi.relation
        if rel is None:
            raise RelationshipTraversalError(fi.name, self.model.table, full_path)
        if not self.aliased:
            raise QueryConstructionError(
                f"joining `{fi.name}` needs an aliased statement; "
                "build the tracker with ConditionCompiler.joins_for()"
            )
        target = self._catalog.target_of(fi)
        q = self._dialect.quote_field

        if fi.field_type in _SINGULAR_FORWARD:
            alias = self._alias()
            self._clauses.append(
                f"LEFT OUTER JOIN {target.quoted_table(self._dialect)} {alias} "
                f"ON {alias}.{q(target.primary_key.column)} = "
                f"{BASE_ALIAS}.{q(fi.column)}"
            )
        elif rel.through_table is None:
            base_pk = f"{BASE_ALIAS}.{q(self.model.primary_key.column)}"
            paired = target.fields.get(rel.reverse_field or "")
            if paired is None:
                raise RelationshipTraversalError(fi.name, self.model.table, full_path)
            alias = self._alias()
            self._clauses.append(
                f"LEFT OUTER JOIN {target.quoted_table(self._dialect)} {alias} "
                f"ON {alias}.{q(paired.column)} = {base_pk}"
            )
        else:
            base_pk = f"{BASE_ALIAS}.{q(self.model.primary_key.column)}"
            junction = self._catalog.get(rel.through_table)
            mine = junction.fields.get(rel.reverse_field or "")
            other = junction.fields.get(rel.reverse_field_two or "")
            if mine is None or other is None:
                raise RelationshipTraversalError(fi.name, self.model.table, full_path)
            j_alias = self._alias()
            alias = self._alias()
            self._clauses.append(
                f"LEFT OUTER JOIN {junction.quoted_table(self._dialect)} {j_alias} "
                f"ON {j_alias}.{q(mine.column)} = {base_pk}"
            )
            self._clauses.append(
                f"LEFT OUTER JOIN {target.quoted_table(self._dialect)} {alias} "
                f"ON {alias}.{q(target.primary_key.column)} = "
                f"{j_alias}.{q(other.column)}"
            )
        self._joined[fi.name] = (alias, target)
        return alias, target


class ConditionCompiler:
    """
    Compiles conditions, orderings and groupings against one catalog and
    dialect.

    Usage::

        compiler = ConditionCompiler(catalog, dialect)
        where, params = compiler.get_cond_sql(user, Condition().and_("age__gt", 18))
        # where == 'WHERE "age" > ?', params == [18]
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        dialect: Dialect,
        *,
        operators: OperatorRegistry | None = None,
        zone: tzinfo | None = None,
    ) -> None:
        self.catalog = catalog
        self.dialect = dialect
        self.operators = operators or DEFAULT_REGISTRY
        self._zone = zone

    # ── Joins ────────────────────────────────────────────────────────

    def joins_for(
        self,
        model: ModelInfo,
        cond: Condition | None = None,
        exprs: Iterable[str] = (),
    ) -> JoinTracker:
        """Tracker aliased only when some condition or expression crosses a relation."""
        paths = [split_expr(e.lstrip("-")) for e in exprs]
        if cond is not None:
            paths.extend(_leaf_paths(cond))
        aliased = any(self._needs_join(model, p) for p in paths)
        return JoinTracker(model, self.catalog, self.dialect, aliased=aliased)

    def _needs_join(self, model: ModelInfo, exprs: Sequence[str]) -> bool:
        segs, _ = self._split_operator(exprs)
        if not segs:
            return False
        fi = model.get_by_any(segs[0])
        if fi is None:
            return False
        if len(segs) == 1:
            return not fi.dbcol
        if fi.field_type in _SINGULAR_FORWARD and fi.relation is not None:
            target = self.catalog.find(fi.relation.target_table or "")
            leaf = target.get_by_any(segs[1]) if target else None
            return not (target and leaf is not None and leaf in target.keys)
        return True

    # ── Paths ────────────────────────────────────────────────────────

    def _split_operator(self, exprs: Sequence[str]) -> tuple[list[str], str]:
        segs = list(exprs)
        if len(segs) > 1 and segs[-1] in self.operators.supported_operators:
            return segs[:-1], segs[-1]
        return segs, Operator.EXACT.value

    def resolve(
        self,
        model: ModelInfo,
        exprs: Sequence[str],
        joins: JoinTracker,
        *,
        with_operator: bool = True,
    ) -> ResolvedPath:
        """
        Resolve a split path to a column expression.

        Raises:
            FieldNotFoundError: Unknown field or column on either model.
            RelationshipTraversalError: A scalar was traversed, or the
                path goes deeper than one relation.
        """
        full_path = "__".join(exprs)
        if with_operator:
            segs, operator = self._split_operator(exprs)
        else:
            segs, operator = list(exprs), Operator.EXACT.value
        if not segs:
            raise FieldNotFoundError(full_path, model.table, model.fields.names)
        if len(segs) > 2:
            raise RelationshipTraversalError(segs[1], model.table, full_path)

        fi = _field(model, segs[0], full_path)
        q = self.dialect.quote_field
        if len(segs) == 1:
            if fi.dbcol:
                return ResolvedPath(fi, joins.base_column(fi), operator)
            alias, target = joins.join(fi, full_path)
            pk = target.primary_key
            return ResolvedPath(pk, f"{alias}.{q(pk.column)}", operator)

        if fi.relation is None:
            raise RelationshipTraversalError(fi.name, model.table, full_path)
        target = self.catalog.target_of(fi)
        leaf = _field(target, segs[1], full_path)
        if not leaf.dbcol:
            raise RelationshipTraversalError(leaf.name, target.table, full_path)
        if fi.field_type in _SINGULAR_FORWARD and leaf in target.keys:
            return ResolvedPath(leaf, joins.base_column(fi), operator)
        alias, _ = joins.join(fi, full_path)
        return ResolvedPath(leaf, f"{alias}.{q(leaf.column)}", operator)

    # ── Conditions ───────────────────────────────────────────────────

    def compile(
        self, model: ModelInfo, cond: Condition, joins: JoinTracker
    ) -> tuple[str, list[Any]]:
        """Predicate without the ``WHERE`` keyword."""
        parts: list[str] = []
        params: list[Any] = []
        for i, term in enumerate(cond.terms):
            prefix = ""
            if i > 0:
                prefix = "OR " if term.is_or else "AND "
            if term.is_not:
                prefix += "NOT "
            if term.cond is not None:
                inner, inner_params = self.compile(model, term.cond, joins)
                parts.append(f"{prefix}({inner})")
                params.extend(inner_params)
                continue
            path = self.resolve(model, term.exprs, joins)
            flat = self.flatten(path.field, term.args)
            fragment, bound = self.operators.compile(
                path.operator, path.column_sql, flat, self.dialect
            )
            parts.append(prefix + fragment)
            params.extend(bound)
        return " ".join(parts), params

    def get_cond_sql(
        self,
        model: ModelInfo,
        cond: Condition | None,
        joins: JoinTracker | None = None,
    ) -> tuple[str, list[Any]]:
        """Top-level ``WHERE`` clause; empty string for an empty condition."""
        if cond is None or cond.is_empty():
            return "", []
        if joins is None:
            joins = self.joins_for(model, cond)
        sql, params = self.compile(model, cond, joins)
        return f"WHERE {sql}", params

    def order_sql(
        self, model: ModelInfo, orders: Sequence[str], joins: JoinTracker
    ) -> str:
        """``ORDER BY`` clause; a leading ``-`` sorts descending."""
        if not orders:
            return ""
        items = []
        for expr in orders:
            desc = expr.startswith("-")
            path = self.resolve(
                model, split_expr(expr.lstrip("-")), joins, with_operator=False
            )
            items.append(f"{path.column_sql} {'DESC' if desc else 'ASC'}")
        return f"ORDER BY {', '.join(items)}"

    def group_sql(
        self, model: ModelInfo, groups: Sequence[str], joins: JoinTracker
    ) -> str:
        if not groups:
            return ""
        cols = [self.column_sql(model, expr, joins) for expr in groups]
        return f"GROUP BY {', '.join(cols)}"

    def column_sql(self, model: ModelInfo, expr: str, joins: JoinTracker) -> str:
        return self.resolve(model, split_expr(expr), joins, with_operator=False).column_sql

    # ── Arguments ────────────────────────────────────────────────────

    def flatten(self, field: ColumnDescriptor, args: Sequence[Any]) -> list[Any]:
        """
        Flatten nested sequences and convert values to bindable primitives.

        A top-level ``None`` is kept (``exact`` turns it into ``IS NULL``);
        ``None`` inside a sequence is dropped.
        """
        params: list[Any] = []
        for arg in args:
            if arg is None:
                params.append(None)
                continue
            self._flatten_into(field, arg, params)
        return params

    def _flatten_into(self, field: ColumnDescriptor, value: Any, out: list[Any]) -> None:
        if isinstance(value, (list, tuple, set, frozenset)):
            for item in value:
                if item is not None:
                    self._flatten_into(field, item, out)
            return
        out.append(self.to_param(field, value))

    def to_param(self, field: ColumnDescriptor, value: Any) -> Any:
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, BaseModel):
            if not self.catalog.is_model(value):
                raise UnresolvableValueError(
                    f"`{type(value).__qualname__}` is not a registered model"
                )
            return self.catalog.pk_value(value)
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        ft = field.field_type
        if ft.is_temporal:
            if isinstance(value, str):
                # Partial values such as "2024-01" are kept for LIKE patterns.
                try:
                    value = parse_temporal(value)
                except ValueError:
                    return value
            if isinstance(value, (datetime, date, time)):
                return format_temporal(ft, value, self._zone)
        elif isinstance(value, (datetime, date, time)):
            kind = (
                FieldType.DATETIME
                if isinstance(value, datetime)
                else FieldType.DATE
                if isinstance(value, date)
                else FieldType.TIME
            )
            return format_temporal(kind, value, self._zone)
        if isinstance(value, UUID):
            return str(value)
        return value


def _field(model: ModelInfo, name: str, full_path: str) -> ColumnDescriptor:
    fi = model.get_by_any(name)
    if fi is None:
        raise FieldNotFoundError(name, model.table, model.fields.names, full_path)
    return fi


def _leaf_paths(cond: Condition) -> list[tuple[str, ...]]:
    paths: list[tuple[str, ...]] = []
    for term in cond.terms:
        if term.cond is not None:
            paths.extend(_leaf_paths(term.cond))
        else:
            paths.append(term.exprs)
    return paths
