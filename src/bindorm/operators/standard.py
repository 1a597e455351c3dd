"""Equality and comparison operators."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .base import Operator, SQLOperator, require_count

if TYPE_CHECKING:
    from ..dialects import Dialect


class _DialectOperator(SQLOperator):
    """Single argument, SQL taken verbatim from the dialect table."""

    def compile(self, params: list[Any], dialect: Dialect) -> tuple[str, list[Any]]:
        require_count(self.name, params, 1)
        return dialect.operator_sql(self.name.value), params


class ExactOperator(_DialectOperator):
    @property
    def name(self) -> Operator:
        return Operator.EXACT

    def compile(self, params: list[Any], dialect: Dialect) -> tuple[str, list[Any]]:
        if len(params) == 1 and params[0] is None:
            return "IS NULL", []
        return super().compile(params, dialect)


class EqualOperator(_DialectOperator):
    @property
    def name(self) -> Operator:
        return Operator.EQ


class NotEqualOperator(_DialectOperator):
    @property
    def name(self) -> Operator:
        return Operator.NE


class NotEqualAliasOperator(_DialectOperator):
    @property
    def name(self) -> Operator:
        return Operator.NQ


class GreaterThanOperator(_DialectOperator):
    @property
    def name(self) -> Operator:
        return Operator.GT


class GreaterEqualOperator(_DialectOperator):
    @property
    def name(self) -> Operator:
        return Operator.GTE


class LessThanOperator(_DialectOperator):
    @property
    def name(self) -> Operator:
        return Operator.LT


class LessEqualOperator(_DialectOperator):
    @property
    def name(self) -> Operator:
        return Operator.LTE
