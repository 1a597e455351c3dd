"""Set membership and range operators."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .base import Operator, SQLOperator, require_count, require_some

if TYPE_CHECKING:
    from ..dialects import Dialect


class InOperator(SQLOperator):
    @property
    def name(self) -> Operator:
        return Operator.IN

    def compile(self, params: list[Any], dialect: Dialect) -> tuple[str, list[Any]]:
        require_some(self.name, params)
        return f"IN ({', '.join('?' for _ in params)})", params


class BetweenOperator(SQLOperator):
    @property
    def name(self) -> Operator:
        return Operator.BETWEEN

    def compile(self, params: list[Any], dialect: Dialect) -> tuple[str, list[Any]]:
        require_count(self.name, params, 2)
        return "BETWEEN ? AND ?", params
