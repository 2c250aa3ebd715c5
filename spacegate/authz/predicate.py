"""Storage-agnostic scoping predicates.

The gate never queries storage; it returns one of these and the data-access
layer ANDs it into its own query.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from sqlalchemy import and_, false
from sqlalchemy.sql.elements import ColumnElement


@dataclass(frozen=True, slots=True)
class Clause:
    field: str
    op: Literal["eq", "in"]
    value: str | tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ScopePredicate:
    clauses: tuple[Clause, ...]

    @classmethod
    def build(cls, **equals: str) -> ScopePredicate:
        return cls(tuple(Clause(name, "eq", value) for name, value in equals.items()))

    def and_in(self, field: str, values: frozenset[str] | set[str]) -> ScopePredicate:
        return ScopePredicate((*self.clauses, Clause(field, "in", tuple(sorted(values)))))

    def matches(self, record: Mapping[str, Any] | object) -> bool:
        """Evaluate against a mapping or an object with matching attributes."""
        for clause in self.clauses:
            if isinstance(record, Mapping):
                actual = record.get(clause.field)
            else:
                actual = getattr(record, clause.field, None)
            if clause.op == "eq" and actual != clause.value:
                return False
            if clause.op == "in" and actual not in clause.value:
                return False
        return True

    def as_clause(self, model: Any) -> ColumnElement[bool]:
        """Render as a SQLAlchemy boolean expression over ``model``'s columns.

        Raises AttributeError when the model lacks a scoped column.
        """
        parts: list[ColumnElement[bool]] = []
        for clause in self.clauses:
            column = getattr(model, clause.field)
            if clause.op == "eq":
                parts.append(column == clause.value)
            elif clause.value:
                parts.append(column.in_(clause.value))
            else:
                parts.append(false())
        return and_(*parts)

    def to_dict(self) -> list[dict[str, Any]]:
        return [
            {
                "field": c.field,
                "op": c.op,
                "value": list(c.value) if isinstance(c.value, tuple) else c.value,
            }
            for c in self.clauses
        ]
