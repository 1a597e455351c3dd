"""
Operator strategies and the default registry.

Usage::

    from bindorm.operators import DEFAULT_REGISTRY

    sql, params = DEFAULT_REGISTRY.compile("gt", '"age"', [18], dialect)
"""

from __future__ import annotations

from .base import Operator, OperatorRegistry, SQLOperator
from .null import IsNullOperator
from .set import BetweenOperator, InOperator
from .standard import (
    EqualOperator,
    ExactOperator,
    GreaterEqualOperator,
    GreaterThanOperator,
    LessEqualOperator,
    LessThanOperator,
    NotEqualAliasOperator,
    NotEqualOperator,
)
from .string import (
    ContainsOperator,
    EndsWithOperator,
    IContainsOperator,
    IEndsWithOperator,
    IExactOperator,
    IStartsWithOperator,
    StartsWithOperator,
)


def build_default_registry() -> OperatorRegistry:
    """Create a registry with all built-in operators."""
    registry = OperatorRegistry()
    registry.register_all(
        # Equality / comparison
        ExactOperator(),
        EqualOperator(),
        NotEqualOperator(),
        NotEqualAliasOperator(),
        GreaterThanOperator(),
        GreaterEqualOperator(),
        LessThanOperator(),
        LessEqualOperator(),
        # Pattern
        IExactOperator(),
        ContainsOperator(),
        IContainsOperator(),
        StartsWithOperator(),
        IStartsWithOperator(),
        EndsWithOperator(),
        IEndsWithOperator(),
        # Set / range
        InOperator(),
        BetweenOperator(),
        # Null
        IsNullOperator(),
    )
    return registry


DEFAULT_REGISTRY: OperatorRegistry = build_default_registry()

__all__ = [
    "DEFAULT_REGISTRY",
    "Operator",
    "OperatorRegistry",
    "SQLOperator",
    "build_default_registry",
]
