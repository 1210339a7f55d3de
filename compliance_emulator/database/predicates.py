"""Predicate composer shared by select, update and delete.

Every fluent filter call appends one Filter; a record matches a FilterSet
when it satisfies every Filter in it (conjunction). A disjunctive group is a
single Filter whose clauses are ORed.

Operator semantics:
    eq / neq        value equality / inequality
    gt gte lt lte   lexicographic when both operands are strings, natural
                    ordering otherwise; None or incomparable operands never match
    like / ilike    '%' matches zero or more characters, case-insensitive,
                    against str(value); the pattern must cover the whole value
    in              column value is one of the supplied values
    is              exact equality (null checks)
    not_is          column value differs from the supplied value
    contains        list-valued column holds every supplied element
    or              any clause of the group matches

The compact ``"col.op.value,col.op.value"`` grammar accepted by or_() is
parsed once, at composition time, into Clause objects. A clause that does
not parse raises ValidationError.
"""

from __future__ import annotations

import operator
import re
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from functools import lru_cache
from typing import Any, Self

from compliance_emulator.clock import parse_instant, to_store_value
from compliance_emulator.errors import ValidationError

Record = dict[str, Any]

_CLAUSE_PATTERN = re.compile(r"^(?P<column>\w+)\.(?P<op>\w+)\.(?P<value>.*)$", re.DOTALL)


class FilterOp(StrEnum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    ILIKE = "ilike"
    IN = "in"
    IS = "is"
    NOT_IS = "not_is"
    CONTAINS = "contains"
    OR = "or"


# Operators usable inside a disjunctive group.
GROUP_OPS: frozenset[FilterOp] = frozenset(
    {
        FilterOp.EQ,
        FilterOp.NEQ,
        FilterOp.GT,
        FilterOp.GTE,
        FilterOp.LT,
        FilterOp.LTE,
        FilterOp.LIKE,
        FilterOp.ILIKE,
        FilterOp.IS,
    }
)

_RANGE_OPERATORS: dict[FilterOp, Callable[[Any, Any], bool]] = {
    FilterOp.GT: operator.gt,
    FilterOp.GTE: operator.ge,
    FilterOp.LT: operator.lt,
    FilterOp.LTE: operator.le,
}


# ------------------------------------------------------------------ #
# Operator implementations
# ------------------------------------------------------------------ #


@lru_cache(maxsize=256)
def _compile_pattern(pattern: str) -> re.Pattern[str]:
    parts = (re.escape(part) for part in pattern.split("%"))
    return re.compile(".*".join(parts), re.IGNORECASE | re.DOTALL)


def pattern_matches(value: Any, pattern: str) -> bool:
    """Wildcard match where '%' stands for zero or more characters. None never matches."""
    if value is None:
        return False
    return _compile_pattern(pattern).fullmatch(str(value)) is not None


def comparable(left: Any, right: Any) -> tuple[Any, Any]:
    """Put a datetime and an ISO stamp on the same footing before ordering them."""
    if not (isinstance(left, datetime) or isinstance(right, datetime)):
        return left, right
    if not all(isinstance(side, (str, datetime)) for side in (left, right)):
        return left, right
    try:
        return parse_instant(left), parse_instant(right)
    except ValueError:
        return left, right


def compare(value: Any, target: Any, op: FilterOp) -> bool:
    """Range comparison; never matches on None or incomparable operands."""
    if value is None or target is None:
        return False
    compare_fn = _RANGE_OPERATORS[op]
    try:
        return bool(compare_fn(*comparable(value, target)))
    except TypeError:
        return False


def _coerce_literal(raw: str) -> Any:
    """Interpret a value written in the compact or-grammar."""
    lowered = raw.lower()
    if lowered == "null":
        return None
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return raw


# ------------------------------------------------------------------ #
# Filters
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class Clause:
    """One ``column op value`` condition inside a disjunctive group."""

    column: str
    op: FilterOp
    value: Any = None

    def __post_init__(self) -> None:
        try:
            op = FilterOp(self.op)
        except ValueError:
            raise ValidationError(
                f"unknown operator '{self.op}' in or() clause", field=self.column
            ) from None
        if op not in GROUP_OPS:
            raise ValidationError(
                f"operator '{op}' is not supported inside or()", field=self.column
            )
        object.__setattr__(self, "op", op)

    @classmethod
    def parse(cls, text: str) -> Clause:
        match = _CLAUSE_PATTERN.match(text.strip())
        if match is None:
            raise ValidationError(f"malformed or() clause: {text!r}")
        return cls(
            match.group("column"),
            match.group("op"),
            _coerce_literal(match.group("value")),
        )

    def matches(self, record: Record) -> bool:
        return _evaluate(self.op, record.get(self.column), self.value)


def _evaluate(op: FilterOp, value: Any, target: Any) -> bool:
    if op in (FilterOp.EQ, FilterOp.IS):
        return value == target
    if op in (FilterOp.NEQ, FilterOp.NOT_IS):
        return value != target
    if op in _RANGE_OPERATORS:
        return compare(value, target, op)
    if op in (FilterOp.LIKE, FilterOp.ILIKE):
        return pattern_matches(value, target)
    if op == FilterOp.IN:
        return value in target
    if op == FilterOp.CONTAINS:
        if not isinstance(value, (list, tuple, set, frozenset)):
            return False
        return all(item in value for item in target)
    raise ValidationError(f"operator '{op}' cannot be evaluated directly")


@dataclass(frozen=True, slots=True)
class Filter:
    """A single composed predicate evaluated against one record."""

    column: str | None
    op: FilterOp
    value: Any = None
    clauses: tuple[Clause, ...] = ()

    def matches(self, record: Record) -> bool:
        if self.op == FilterOp.OR:
            return any(clause.matches(record) for clause in self.clauses)
        return _evaluate(self.op, record.get(self.column), self.value)

    def describe(self) -> str:
        if self.op == FilterOp.OR:
            inner = ",".join(f"{c.column}.{c.op}.{c.value}" for c in self.clauses)
            return f"or({inner})"
        return f"{self.column}.{self.op}.{self.value!r}"


@dataclass(slots=True)
class FilterSet:
    """Ordered list of filters, ANDed together."""

    filters: list[Filter] = field(default_factory=list)

    def add(self, item: Filter) -> None:
        self.filters.append(item)

    def matches(self, record: Record) -> bool:
        return all(item.matches(record) for item in self.filters)

    def apply(self, records: Iterable[Record]) -> list[Record]:
        return [record for record in records if self.matches(record)]

    def __len__(self) -> int:
        return len(self.filters)

    def __iter__(self) -> Iterator[Filter]:
        return iter(self.filters)


# ------------------------------------------------------------------ #
# Fluent mixin
# ------------------------------------------------------------------ #


class FilterBuilderMixin:
    """Fluent filter methods for any builder owning a ``_filters`` FilterSet."""

    _filters: FilterSet

    def _push(self, column: str | None, op: FilterOp, value: Any = None) -> Self:
        self._filters.add(Filter(column, op, to_store_value(value)))
        return self

    def eq(self, column: str, value: Any) -> Self:
        return self._push(column, FilterOp.EQ, value)

    def neq(self, column: str, value: Any) -> Self:
        return self._push(column, FilterOp.NEQ, value)

    def gt(self, column: str, value: Any) -> Self:
        return self._push(column, FilterOp.GT, value)

    def gte(self, column: str, value: Any) -> Self:
        return self._push(column, FilterOp.GTE, value)

    def lt(self, column: str, value: Any) -> Self:
        return self._push(column, FilterOp.LT, value)

    def lte(self, column: str, value: Any) -> Self:
        return self._push(column, FilterOp.LTE, value)

    def like(self, column: str, pattern: str) -> Self:
        return self._push(column, FilterOp.LIKE, str(pattern))

    def ilike(self, column: str, pattern: str) -> Self:
        return self._push(column, FilterOp.ILIKE, str(pattern))

    def in_(self, column: str, values: Iterable[Any]) -> Self:
        return self._push(column, FilterOp.IN, tuple(values))

    def is_(self, column: str, value: Any) -> Self:
        return self._push(column, FilterOp.IS, value)

    def not_(self, column: str, op: str, value: Any) -> Self:
        """Negated filter. Only ``is`` is supported (e.g. ``not_("x", "is", None)``)."""
        if op != FilterOp.IS:
            raise ValidationError(f"not() supports only 'is', got '{op}'", field=column)
        return self._push(column, FilterOp.NOT_IS, value)

    def contains(self, column: str, values: Sequence[Any]) -> Self:
        return self._push(column, FilterOp.CONTAINS, tuple(values))

    def or_(self, conditions: str | Iterable[Clause]) -> Self:
        """Disjunctive group from structured clauses or the compact string form."""
        if isinstance(conditions, str):
            clauses = tuple(Clause.parse(part) for part in conditions.split(","))
        else:
            clauses = tuple(conditions)
        if not clauses:
            raise ValidationError("or() requires at least one clause")
        self._filters.add(Filter(None, FilterOp.OR, clauses=clauses))
        return self
