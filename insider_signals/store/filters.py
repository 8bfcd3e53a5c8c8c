"""Typed WHERE-clause builder.

Queries that need optional predicates build a QueryFilter instead of
concatenating SQL fragments. Column names are validated against a plain
identifier pattern (optionally table-qualified); values always travel as
bound parameters.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, List, Sequence, Tuple

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

_BINARY_OPS = {
    "eq": "=",
    "ne": "<>",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}


def _check_column(column: str) -> str:
    c = (column or "").strip()
    if not _IDENT_RE.match(c):
        raise ValueError(f"Invalid column identifier: {column!r}")
    return c


@dataclass(frozen=True)
class Predicate:
    column: str
    op: str
    values: Tuple[Any, ...] = ()

    def render(self) -> Tuple[str, List[Any]]:
        if self.op in _BINARY_OPS:
            return f"{self.column} {_BINARY_OPS[self.op]} ?", [self.values[0]]
        if self.op == "between":
            return f"{self.column} BETWEEN ? AND ?", [self.values[0], self.values[1]]
        if self.op == "is_not_null":
            return f"{self.column} IS NOT NULL", []
        if self.op == "is_true":
            return f"{self.column} = 1", []
        if self.op == "in":
            if not self.values:
                # Empty IN list matches nothing.
                return "1 = 0", []
            marks = ",".join("?" for _ in self.values)
            return f"{self.column} IN ({marks})", list(self.values)
        raise ValueError(f"Unknown predicate op: {self.op}")


@dataclass
class QueryFilter:
    """An AND-ed list of predicates.

    Builder methods return self so filters chain:

        f = QueryFilter().eq("f.status", "completed").gte("it.transaction_date", since)
        where, params = f.render()
    """

    predicates: List[Predicate] = field(default_factory=list)

    def _add(self, column: str, op: str, *values: Any) -> "QueryFilter":
        self.predicates.append(Predicate(_check_column(column), op, tuple(values)))
        return self

    def eq(self, column: str, value: Any) -> "QueryFilter":
        return self._add(column, "eq", value)

    def ne(self, column: str, value: Any) -> "QueryFilter":
        return self._add(column, "ne", value)

    def gt(self, column: str, value: Any) -> "QueryFilter":
        return self._add(column, "gt", value)

    def gte(self, column: str, value: Any) -> "QueryFilter":
        return self._add(column, "gte", value)

    def lt(self, column: str, value: Any) -> "QueryFilter":
        return self._add(column, "lt", value)

    def lte(self, column: str, value: Any) -> "QueryFilter":
        return self._add(column, "lte", value)

    def between(self, column: str, low: Any, high: Any) -> "QueryFilter":
        return self._add(column, "between", low, high)

    def is_not_null(self, column: str) -> "QueryFilter":
        return self._add(column, "is_not_null")

    def is_true(self, column: str) -> "QueryFilter":
        return self._add(column, "is_true")

    def in_(self, column: str, values: Sequence[Any]) -> "QueryFilter":
        return self._add(column, "in", *list(values))

    def render(self) -> Tuple[str, List[Any]]:
        """Return ("a = ? AND b > ?", params). "1 = 1" when empty."""
        if not self.predicates:
            return "1 = 1", []
        parts: List[str] = []
        params: List[Any] = []
        for p in self.predicates:
            sql, vals = p.render()
            parts.append(sql)
            params.extend(vals)
        return " AND ".join(parts), params

def qualifying_purchase_filter(alias_tx: str = "it", alias_filing: str = "f") -> QueryFilter:
    """Open-market purchase on a completed filing with positive shares and price."""
    return (
        QueryFilter()
        .eq(f"{alias_filing}.status", "completed")
        .eq(f"{alias_tx}.transaction_code", "P")
        .eq(f"{alias_tx}.acquired_disposed_code", "A")
        .gt(f"{alias_tx}.shares_transacted", 0)
        .is_not_null(f"{alias_tx}.price_per_share")
        .gt(f"{alias_tx}.price_per_share", 0)
    )
