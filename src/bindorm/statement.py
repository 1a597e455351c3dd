"""
Statement Assembler.

Clause fragments are produced independently (select list, joins, filter
predicates, grouping, ordering) and glued together here in a fixed
order. Absent clauses contribute nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class SelectStatement:
    """
    One ``SELECT`` in pieces.

    ``where`` and ``join_where`` hold predicates without the keyword;
    join-derived predicates come first when both are present.
    ``limit_clause`` is rendered verbatim after ``ORDER BY``.
    """

    select: str = "*"
    from_clause: str = ""
    joins: str = ""
    join_where: str = ""
    where: str = ""
    group_by: str = ""
    order_by: str = ""
    limit_clause: str = ""
    distinct: bool = False
    params: tuple[Any, ...] = field(default=())

    def where_clause(self) -> str:
        predicates = [p for p in (self.join_where, self.where) if p]
        if not predicates:
            return ""
        if len(predicates) == 2:
            return f"WHERE {predicates[0]} AND ({predicates[1]})"
        return f"WHERE {predicates[0]}"

    def to_sql(self) -> str:
        head = "SELECT DISTINCT" if self.distinct else "SELECT"
        parts = [f"{head} {self.select}", f"FROM {self.from_clause}"]
        for clause in (
            self.joins,
            self.where_clause(),
            self.group_by,
            self.order_by,
            self.limit_clause,
        ):
            if clause:
                parts.append(clause)
        return " ".join(parts)

    def count(self) -> SelectStatement:
        """
        Row-count variant. Grouped or distinct selections are counted
        through a derived table.
        """
        if self.group_by or self.distinct:
            inner = replace(self, order_by="", limit_clause="")
            return SelectStatement(
                select="COUNT(*)",
                from_clause=f"({inner.to_sql()}) AS T",
                params=self.params,
            )
        return replace(self, select="COUNT(*)", order_by="", limit_clause="")
