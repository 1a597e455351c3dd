"""Null check operator."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..exceptions import OperatorArgumentError
from .base import Operator, SQLOperator, require_count

if TYPE_CHECKING:
    from ..dialects import Dialect


class IsNullOperator(SQLOperator):
    @property
    def name(self) -> Operator:
        return Operator.ISNULL

    def compile(self, params: list[Any], dialect: Dialect) -> tuple[str, list[Any]]:
        require_count(self.name, params, 1)
        if not isinstance(params[0], bool):
            raise OperatorArgumentError(
                self.name.value, f"needs a bool argument, got {params[0]!r}"
            )
        return ("IS NULL" if params[0] else "IS NOT NULL"), []
