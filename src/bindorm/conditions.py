"""
Condition trees.

A ``Condition`` is an immutable sequence of terms. Each term is either a
leaf comparison (``"age__gt", 18``) or a nested condition, and carries a
negation flag plus how it joins the previous term (AND / OR)::

    cond = (
        Condition()
        .and_("age__gt", 18)
        .and_not_cond(Condition().and_("name", "bob").or_("name", "eve"))
    )

Every builder method returns a new condition.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .exceptions import ConditionError

EXPR_SEP = "__"


@dataclass(frozen=True)
class CondTerm:
    exprs: tuple[str, ...] = ()
    args: tuple[Any, ...] = ()
    cond: Condition | None = None
    is_not: bool = False
    is_or: bool = False

    @property
    def is_cond(self) -> bool:
        return self.cond is not None


def split_expr(expr: str) -> tuple[str, ...]:
    """``profile__age__gt`` / ``profile.age.gt`` -> path segments."""
    return tuple(p for p in expr.replace(".", EXPR_SEP).split(EXPR_SEP) if p)


class Condition:
    __slots__ = ("_terms",)

    def __init__(self, terms: tuple[CondTerm, ...] = ()) -> None:
        self._terms = tuple(terms)

    @classmethod
    def where(cls, **filters: Any) -> Condition:
        """``Condition.where(age__gt=18, name="bob")`` joined with AND."""
        cond = cls()
        for expr, value in filters.items():
            cond = cond.and_(expr, value)
        return cond

    @property
    def terms(self) -> tuple[CondTerm, ...]:
        return self._terms

    def is_empty(self) -> bool:
        return not self._terms

    def __len__(self) -> int:
        return len(self._terms)

    def __repr__(self) -> str:
        return f"Condition({list(self._terms)!r})"

    def and_(self, expr: str, *args: Any) -> Condition:
        return self._leaf(expr, args, is_not=False, is_or=False)

    def and_not(self, expr: str, *args: Any) -> Condition:
        return self._leaf(expr, args, is_not=True, is_or=False)

    def or_(self, expr: str, *args: Any) -> Condition:
        return self._leaf(expr, args, is_not=False, is_or=True)

    def or_not(self, expr: str, *args: Any) -> Condition:
        return self._leaf(expr, args, is_not=True, is_or=True)

    def and_cond(self, cond: Condition) -> Condition:
        return self._nested(cond, is_not=False, is_or=False)

    def and_not_cond(self, cond: Condition) -> Condition:
        return self._nested(cond, is_not=True, is_or=False)

    def or_cond(self, cond: Condition) -> Condition:
        return self._nested(cond, is_not=False, is_or=True)

    def or_not_cond(self, cond: Condition) -> Condition:
        return self._nested(cond, is_not=True, is_or=True)

    def _leaf(
        self, expr: str, args: tuple[Any, ...], *, is_not: bool, is_or: bool
    ) -> Condition:
        exprs = split_expr(expr or "")
        if not exprs:
            raise ConditionError("condition expression cannot be empty")
        if not args:
            raise ConditionError(f"condition `{expr}` needs at least one argument")
        term = CondTerm(exprs=exprs, args=args, is_not=is_not, is_or=is_or)
        return Condition(self._terms + (term,))

    def _nested(self, cond: Condition, *, is_not: bool, is_or: bool) -> Condition:
        if cond is self:
            raise ConditionError("cannot use a condition as its own child")
        if cond.is_empty():
            return self
        term = CondTerm(cond=cond, is_not=is_not, is_or=is_or)
        return Condition(self._terms + (term,))
