"""Query executor: filter, count, order, paginate, shape.

A SelectQuery is a plain builder; nothing touches the store until
``execute()`` runs the single-pass pipeline:

1. Filter   keep records satisfying every composed predicate
2. Count    size of the filtered set, captured before pagination
            (only when count="exact" was requested)
3. Order    stable sort on one column; nulls last ascending, first descending
4. Paginate offset/limit, or an inclusive range(start, end)
5. Shape    single() / maybe_single() resolve to one row or None

execute() never raises for engine failures: they are returned in
``QueryResult.error`` with ``data=None``.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cmp_to_key
from typing import TYPE_CHECKING, Any, Self

import structlog

from compliance_emulator.database.predicates import FilterBuilderMixin, FilterSet, comparable
from compliance_emulator.errors import (
    MultipleRowsError,
    NotFoundError,
    QueryError,
    ValidationError,
)

if TYPE_CHECKING:
    from compliance_emulator.database.registry import TableName, TableRegistry

log = structlog.get_logger(__name__)

Record = dict[str, Any]

COUNT_EXACT = "exact"


@dataclass(slots=True)
class QueryResult:
    """Uniform result envelope returned by every execute()."""

    data: Any = None
    error: QueryError | None = None
    count: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> Self:
        """Re-raise the captured error, or return self for chaining."""
        if self.error is not None:
            raise self.error
        return self


# ------------------------------------------------------------------ #
# Helpers shared with the mutation executors
# ------------------------------------------------------------------ #


def parse_columns(columns: str | None) -> tuple[str, ...] | None:
    """Parse a select list; None means every column."""
    if columns is None:
        return None
    names = tuple(part.strip() for part in columns.split(",") if part.strip())
    if not names or "*" in names:
        return None
    return names


def project(record: Record, columns: tuple[str, ...] | None) -> Record:
    """Shallow copy of ``record``, narrowed to ``columns`` when given."""
    if columns is None:
        return dict(record)
    return {name: record.get(name) for name in columns}


def _compare_values(left: Any, right: Any) -> int:
    left, right = comparable(left, right)
    try:
        if left < right:
            return -1
        if left > right:
            return 1
    except TypeError:
        return 0
    return 0


def order_records(records: list[Record], column: str, *, ascending: bool = True) -> list[Record]:
    """Stable sort with nulls last when ascending and first when descending."""
    present = [r for r in records if r.get(column) is not None]
    missing = [r for r in records if r.get(column) is None]
    present.sort(
        key=cmp_to_key(lambda a, b: _compare_values(a.get(column), b.get(column))),
        reverse=not ascending,
    )
    return present + missing if ascending else missing + present


def paginate(records: list[Record], offset: int, limit: int | None) -> list[Record]:
    if offset:
        records = records[offset:]
    if limit is not None:
        records = records[:limit]
    return records


class BaseQuery:
    """State common to every builder bound to one logical collection."""

    def __init__(self, registry: TableRegistry, table: str | TableName) -> None:
        self._registry = registry
        self._table = table

    @property
    def table(self) -> str:
        return str(self._table)


# ------------------------------------------------------------------ #
# Select
# ------------------------------------------------------------------ #


class SelectQuery(FilterBuilderMixin, BaseQuery):
    """Chainable select.

    Usage:
        result = (
            client.table("action_tasks")
            .select("*", count="exact")
            .eq("status", "in_progress")
            .order("assigned_at")
            .limit(1)
            .execute()
        )
    """

    def __init__(
        self,
        registry: TableRegistry,
        table: str | TableName,
        columns: str | None = "*",
        *,
        count: str | None = None,
        strict_single: bool = True,
    ) -> None:
        super().__init__(registry, table)
        if count not in (None, COUNT_EXACT):
            raise ValidationError(f"unsupported count mode '{count}'", field="count")
        self._filters = FilterSet()
        self._columns = parse_columns(columns)
        self._count_exact = count == COUNT_EXACT
        self._order_column: str | None = None
        self._ascending = True
        self._offset = 0
        self._limit: int | None = None
        self._single = False
        self._strict = False
        self._strict_single = strict_single

    def order(self, column: str, *, desc: bool = False) -> Self:
        """Order by one column; a later call replaces an earlier one."""
        self._order_column = column
        self._ascending = not desc
        return self

    def limit(self, count: int) -> Self:
        if count < 0:
            raise ValidationError("limit must be >= 0", field="limit")
        self._limit = count
        return self

    def offset(self, count: int) -> Self:
        if count < 0:
            raise ValidationError("offset must be >= 0", field="offset")
        self._offset = count
        return self

    def range(self, start: int, end: int) -> Self:
        """Inclusive row range: offset=start, limit=end - start + 1."""
        if start < 0 or end < start - 1:
            raise ValidationError(f"invalid range ({start}, {end})", field="range")
        self._offset = start
        self._limit = end - start + 1
        return self

    def single(self) -> Self:
        """Resolve to exactly one row (see Settings.strict_single)."""
        self._single = True
        self._strict = self._strict_single
        return self

    def maybe_single(self) -> Self:
        """Resolve to the first row or None; never an error."""
        self._single = True
        self._strict = False
        return self

    def execute(self) -> QueryResult:
        try:
            with self._registry.lock(self._table) as rows:
                matched = self._filters.apply(rows)
                total = len(matched) if self._count_exact else None
                if self._order_column is not None:
                    matched = order_records(
                        matched, self._order_column, ascending=self._ascending
                    )
                page = paginate(matched, self._offset, self._limit)
                data = [project(record, self._columns) for record in page]
        except QueryError as exc:
            log.warning("store.select_failed", table=self.table, error=exc.message)
            return QueryResult(error=exc)

        log.debug(
            "store.select",
            table=self.table,
            filters=[f.describe() for f in self._filters],
            returned=len(data),
            count=total,
        )

        if not self._single:
            return QueryResult(data=data, count=total)
        if self._strict and not data:
            return QueryResult(error=NotFoundError(self.table), count=total)
        if self._strict and len(data) > 1:
            return QueryResult(error=MultipleRowsError(self.table, len(data)), count=total)
        return QueryResult(data=data[0] if data else None, count=total)
