"""Pattern operators compiled to ``LIKE``."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .base import Operator, SQLOperator, require_count

if TYPE_CHECKING:
    from ..dialects import Dialect


class _PatternOperator(SQLOperator):
    prefix = ""
    suffix = ""

    def compile(self, params: list[Any], dialect: Dialect) -> tuple[str, list[Any]]:
        require_count(self.name, params, 1)
        sql = dialect.operator_sql(self.name.value)
        if "LIKE" not in sql:
            return sql, params
        value = str(params[0]).replace("\\", "\\\\").replace("%", "\\%")
        return sql, [f"{self.prefix}{value}{self.suffix}"]


class IExactOperator(_PatternOperator):
    @property
    def name(self) -> Operator:
        return Operator.IEXACT


class ContainsOperator(_PatternOperator):
    prefix = suffix = "%"

    @property
    def name(self) -> Operator:
        return Operator.CONTAINS


class IContainsOperator(ContainsOperator):
    @property
    def name(self) -> Operator:
        return Operator.ICONTAINS


class StartsWithOperator(_PatternOperator):
    suffix = "%"

    @property
    def name(self) -> Operator:
        return Operator.STARTSWITH


class IStartsWithOperator(StartsWithOperator):
    @property
    def name(self) -> Operator:
        return Operator.ISTARTSWITH


class EndsWithOperator(_PatternOperator):
    prefix = "%"

    @property
    def name(self) -> Operator:
        return Operator.ENDSWITH


class IEndsWithOperator(EndsWithOperator):
    @property
    def name(self) -> Operator:
        return Operator.IENDSWITH
