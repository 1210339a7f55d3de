"""Insert, update and delete executors.

All three resolve their collection through the registry and mutate the
shared list in place while holding the collection lock, so a write is
visible to every later read and filter-then-mutate is atomic with respect
to other writers.

Insert does not validate rows against an entity schema; shape correctness
is the caller's responsibility.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Self

import structlog

from compliance_emulator.clock import to_iso, to_store_row
from compliance_emulator.database.predicates import FilterBuilderMixin, FilterSet
from compliance_emulator.database.query import BaseQuery, QueryResult, parse_columns, project
from compliance_emulator.errors import ImmutableTableError, QueryError, ValidationError

if TYPE_CHECKING:
    from compliance_emulator.database.registry import TableName, TableRegistry

log = structlog.get_logger(__name__)

Record = dict[str, Any]


def generate_id() -> str:
    """Random 128-bit identifier in the dashed hexadecimal layout."""
    return str(uuid.uuid4())


class InsertQuery(BaseQuery):
    """Append one row or a sequence of rows.

    Datetime values are stored as ISO stamps, the format every other row uses.

    A missing (or empty) ``id`` is generated; ``created_at`` and
    ``updated_at`` are always stamped with the current instant.
    """

    def __init__(
        self,
        registry: TableRegistry,
        table: str | TableName,
        rows: Record | Sequence[Record],
    ) -> None:
        super().__init__(registry, table)
        self._many = not isinstance(rows, Mapping)
        batch = rows if self._many else [rows]
        self._rows: list[Record] = [to_store_row(row) for row in batch]
        self._columns: tuple[str, ...] | None = None
        self._single = False

    def select(self, columns: str = "*") -> Self:
        """Narrow the returned rows to ``columns``. Inserted rows are always returned."""
        self._columns = parse_columns(columns)
        return self

    def single(self) -> Self:
        self._single = True
        return self

    def execute(self) -> QueryResult:
        try:
            with self._registry.lock(self._table) as table:
                now = to_iso(self._registry.now())
                inserted: list[Record] = []
                for row in self._rows:
                    record = {**row, "id": row.get("id") or generate_id()}
                    record["created_at"] = now
                    record["updated_at"] = now
                    table.append(record)
                    inserted.append(record)
        except QueryError as exc:
            log.warning("store.insert_failed", table=self.table, error=exc.message)
            return QueryResult(error=exc)

        log.debug("store.insert", table=self.table, inserted=len(inserted))
        data = [project(record, self._columns) for record in inserted]
        if self._many and not self._single:
            return QueryResult(data=data)
        return QueryResult(data=data[0] if data else None)


class UpdateQuery(FilterBuilderMixin, BaseQuery):
    """Shallow-merge a patch into every matching row and stamp ``updated_at``."""

    def __init__(self, registry: TableRegistry, table: str | TableName, patch: Record) -> None:
        super().__init__(registry, table)
        self._filters = FilterSet()
        self._patch = to_store_row(patch)
        self._columns: tuple[str, ...] | None = None
        self._single = False

    def select(self, columns: str = "*") -> Self:
        self._columns = parse_columns(columns)
        return self

    def single(self) -> Self:
        self._single = True
        return self

    def execute(self) -> QueryResult:
        try:
            if self._registry.is_append_only(self._table):
                raise ImmutableTableError(self.table, "update")
            with self._registry.lock(self._table) as table:
                if not self._filters:
                    log.warning("store.update_unfiltered", table=self.table, rows=len(table))
                matched = [record for record in table if self._filters.matches(record)]
                if matched:
                    now = to_iso(self._registry.now())
                    for record in matched:
                        record.update(self._patch)
                        record["updated_at"] = now
                data = [project(record, self._columns) for record in matched]
        except QueryError as exc:
            log.warning("store.update_failed", table=self.table, error=exc.message)
            return QueryResult(error=exc)

        log.debug(
            "store.update",
            table=self.table,
            fields=sorted(self._patch),
            matched=len(data),
        )
        if self._single:
            return QueryResult(data=data[0] if data else None)
        return QueryResult(data=data)


class DeleteQuery(FilterBuilderMixin, BaseQuery):
    """Remove matching rows. At least one predicate is required."""

    def __init__(self, registry: TableRegistry, table: str | TableName) -> None:
        super().__init__(registry, table)
        self._filters = FilterSet()
        self._returning = False
        self._columns: tuple[str, ...] | None = None

    def select(self, columns: str = "*") -> Self:
        """Return the removed rows instead of ``data=None``."""
        self._returning = True
        self._columns = parse_columns(columns)
        return self

    def execute(self) -> QueryResult:
        try:
            if not self._filters:
                raise ValidationError("delete() requires at least one filter")
            if self._registry.is_append_only(self._table):
                raise ImmutableTableError(self.table, "delete")
            with self._registry.lock(self._table) as table:
                kept: list[Record] = []
                removed: list[Record] = []
                for record in table:
                    (removed if self._filters.matches(record) else kept).append(record)
                table[:] = kept
        except QueryError as exc:
            log.warning("store.delete_failed", table=self.table, error=exc.message)
            return QueryResult(error=exc)

        log.debug("store.delete", table=self.table, removed=len(removed))
        if not self._returning:
            return QueryResult()
        return QueryResult(data=[project(record, self._columns) for record in removed])
