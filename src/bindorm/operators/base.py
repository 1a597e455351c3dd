"""
Operator compilation strategy.

Each ``SQLOperator`` turns a flattened argument list into the right-hand
side of a predicate (``> ?``, ``IN (?, ?)``, ``IS NULL``...) plus the
parameters that remain bound. ``OperatorRegistry`` maps operator keywords
to strategies.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..exceptions import OperatorArgumentError, OperatorNotFoundError

if TYPE_CHECKING:
    from ..dialects import Dialect


class Operator(str, Enum):
    """Operator keywords of the filter-expression language."""

    EXACT = "exact"
    IEXACT = "iexact"
    CONTAINS = "contains"
    ICONTAINS = "icontains"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NQ = "nq"
    NE = "ne"
    STARTSWITH = "startswith"
    ENDSWITH = "endswith"
    ISTARTSWITH = "istartswith"
    IENDSWITH = "iendswith"
    IN = "in"
    BETWEEN = "between"
    ISNULL = "isnull"


class SQLOperator(ABC):
    """
    Strategy interface for compiling one operator keyword.
    """

    @property
    @abstractmethod
    def name(self) -> Operator:
        """The operator this strategy handles."""
        ...

    @abstractmethod
    def compile(self, params: list[Any], dialect: Dialect) -> tuple[str, list[Any]]:
        """
        Build the predicate's right-hand side.

        Args:
            params: Flattened, bindable arguments.
            dialect: Source of vendor-specific operator SQL.

        Returns:
            SQL using ``?`` marks, and the parameters those marks bind.
        """
        ...

    def left(self, column_sql: str, dialect: Dialect) -> str:
        return dialect.operator_left_col(self.name.value, column_sql)


def require_count(operator: Operator, params: list[Any], count: int) -> None:
    if len(params) != count:
        raise OperatorArgumentError(
            operator.value, f"needs exactly {count} argument(s), got {len(params)}"
        )


def require_some(operator: Operator, params: list[Any]) -> None:
    if not params:
        raise OperatorArgumentError(operator.value, "needs at least one argument")


class OperatorRegistry:
    """
    Registry of ``SQLOperator`` instances keyed by keyword.
    """

    def __init__(self) -> None:
        self._operators: dict[str, SQLOperator] = {}

    def register(self, operator: SQLOperator) -> None:
        self._operators[operator.name.value] = operator

    def register_all(self, *operators: SQLOperator) -> None:
        for op in operators:
            self.register(op)

    def unregister(self, name: str) -> None:
        self._operators.pop(str(getattr(name, "value", name)), None)

    def get(self, name: str) -> SQLOperator | None:
        return self._operators.get(str(getattr(name, "value", name)))

    def has(self, name: str) -> bool:
        return str(getattr(name, "value", name)) in self._operators

    @property
    def supported_operators(self) -> set[str]:
        return set(self._operators.keys())

    def compile(
        self, name: str, column_sql: str, params: list[Any], dialect: Dialect
    ) -> tuple[str, list[Any]]:
        """
        Look up the operator and build ``<column> <rhs>``.

        Raises:
            OperatorNotFoundError: If the operator is not registered.
        """
        op = self.get(name)
        if op is None:
            raise OperatorNotFoundError(str(name), sorted(self._operators))
        rhs, bound = op.compile(params, dialect)
        return f"{op.left(column_sql, dialect)} {rhs}", bound
