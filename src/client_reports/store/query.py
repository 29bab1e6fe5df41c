"""Composable, parameterized SQL predicates.

A :class:`Predicate` pairs a SQL fragment that only ever contains ``?``
placeholders with the values bound to them. Values are never interpolated
into the SQL text.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Predicate:
    """A WHERE-clause fragment and its bound parameters."""

    sql: str
    params: tuple[Any, ...] = ()

    def __and__(self, other: Predicate) -> Predicate:
        return all_of(self, other)

    def __or__(self, other: Predicate) -> Predicate:
        return any_of(self, other)


TRUE = Predicate("1 = 1")
FALSE = Predicate("1 = 0")


def all_of(*predicates: Predicate) -> Predicate:
    parts = [p for p in predicates if p is not TRUE]
    if not parts:
        return TRUE
    if len(parts) == 1:
        return parts[0]
    return Predicate(
        "(" + " AND ".join(p.sql for p in parts) + ")",
        tuple(v for p in parts for v in p.params),
    )


def any_of(*predicates: Predicate) -> Predicate:
    parts = [p for p in predicates if p is not FALSE]
    if not parts:
        return FALSE
    if len(parts) == 1:
        return parts[0]
    return Predicate(
        "(" + " OR ".join(p.sql for p in parts) + ")",
        tuple(v for p in parts for v in p.params),
    )


def escape_like(value: str) -> str:
    """Escape LIKE wildcards; pair with ``ESCAPE '\\'``."""

    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def contains_ci(column: str, needle: str) -> Predicate:
    """Case-insensitive substring match on a trusted column expression."""

    return Predicate(
        f"lower({column}) LIKE ? ESCAPE '\\'",
        (f"%{escape_like(needle.lower())}%",),
    )
