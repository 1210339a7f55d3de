"""Base repository shared by the workflow repositories.

Repositories are the layer that turns the raw client into a tenant-scoped,
invariant-checked API:

- every read and write is filtered by ``tenant_id``
- envelope errors are logged and raised (the client never raises)
- rows are validated against the entity model before they are written,
  so a broken lifecycle rule surfaces as InvariantViolationError instead
  of a corrupt row
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

import pydantic
import structlog

from compliance_emulator.clock import to_iso
from compliance_emulator.database.mutations import generate_id
from compliance_emulator.errors import InvariantViolationError, NotFoundError
from compliance_emulator.models.base import RowModel

if TYPE_CHECKING:
    from compliance_emulator.database.client import ComplianceClient, TableQueryBuilder
    from compliance_emulator.database.query import QueryResult, SelectQuery
    from compliance_emulator.database.registry import TableName

log = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=RowModel)

Record = dict[str, Any]

DEFAULT_PAGE_SIZE = 50


@dataclass(slots=True)
class Page(Generic[ModelT]):
    """One page of query results plus the exact filtered total."""

    items: list[ModelT] = field(default_factory=list)
    total: int = 0
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


def match_any(query: SelectQuery, column: str, value: Any) -> SelectQuery:
    """eq for a scalar, in_ for a collection, nothing for None."""
    if value is None:
        return query
    if isinstance(value, (list, tuple, set, frozenset)):
        return query.in_(column, list(value))
    return query.eq(column, value)


class BaseRepository(Generic[ModelT]):
    """Tenant-scoped access to one collection.

    Subclasses set ``table``, ``resource`` and ``model``.
    """

    table: ClassVar[TableName]
    resource: ClassVar[str]
    model: ClassVar[type[RowModel]]

    # Columns callers may order by; anything else falls back to created_at.
    order_columns: ClassVar[frozenset[str]] = frozenset({"created_at"})

    def __init__(self, client: ComplianceClient, tenant_id: str | None = None) -> None:
        self._client = client
        self._settings = client.settings
        self.tenant_id = tenant_id or self._settings.default_tenant_id

    # ------------------------------------------------------------------ #
    # Plumbing
    # ------------------------------------------------------------------ #

    @property
    def table_name(self) -> str:
        """Physical table name, as the hosted service would see it."""
        return f"{self._settings.table_prefix}{self.table}"

    def set_tenant_context(self) -> None:
        result = self._client.rpc("set_tenant_context", {"tenant_id": self.tenant_id}).execute()
        self._raise_for(result, "set tenant context")

    def _from(self) -> TableQueryBuilder:
        self.set_tenant_context()
        return self._client.table(self.table_name)

    def _select(self, columns: str = "*", *, count: str | None = None) -> SelectQuery:
        return self._from().select(columns, count=count).eq("tenant_id", self.tenant_id)

    def _raise_for(self, result: QueryResult, operation: str) -> QueryResult:
        """Log and raise the envelope error, if any."""
        if result.error is not None:
            log.error(
                "repository.operation_failed",
                repository=type(self).__name__,
                operation=operation,
                code=result.error.code,
                error=result.error.message,
            )
            raise result.error
        return result

    def _now(self) -> datetime:
        return self._client.now()

    def _stamp(self) -> str:
        return to_iso(self._now())

    def _validated(self, row: Record) -> ModelT:
        """Parse ``row`` into the entity model or raise InvariantViolationError."""
        try:
            return self.model.from_row(row)  # type: ignore[return-value]
        except pydantic.ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first["loc"]) or self.resource
            raise InvariantViolationError(
                f"{self.resource}: {location}: {first['msg']}"
            ) from exc

    # ------------------------------------------------------------------ #
    # Generic operations
    # ------------------------------------------------------------------ #

    def _find_row(self, record_id: str) -> Record | None:
        result = self._select().eq("id", record_id).maybe_single().execute()
        return self._raise_for(result, f"find {self.resource}").data

    def _require_row(self, record_id: str) -> Record:
        row = self._find_row(record_id)
        if row is None:
            raise NotFoundError(self.resource, record_id)
        return row

    def find_by_id(self, record_id: str) -> ModelT | None:
        row = self._find_row(record_id)
        return self.model.from_row(row) if row is not None else None  # type: ignore[return-value]

    def get(self, record_id: str) -> ModelT:
        """Like find_by_id but raises NotFoundError."""
        return self.model.from_row(self._require_row(record_id))  # type: ignore[return-value]

    def _insert(self, row: Record) -> ModelT:
        row = {"id": generate_id(), "tenant_id": self.tenant_id, **row}
        self._validated(row)
        result = self._from().insert(row).select().single().execute()
        self._raise_for(result, f"create {self.resource}")
        return self.model.from_row(result.data)  # type: ignore[return-value]

    def _insert_many(self, rows: Iterable[Record]) -> list[ModelT]:
        prepared = [{"id": generate_id(), "tenant_id": self.tenant_id, **row} for row in rows]
        if not prepared:
            return []
        for row in prepared:
            self._validated(row)
        result = self._from().insert(prepared).select().execute()
        self._raise_for(result, f"create {self.resource} batch")
        return [self.model.from_row(row) for row in result.data]  # type: ignore[misc]

    def _update(self, record_id: str, patch: Record) -> ModelT:
        """Validate the merged row, then write ``patch`` to one record."""
        with self._client.locked(self.table):
            current = self._require_row(record_id)
            self._validated({**current, **patch})
            result = (
                self._from()
                .update(patch)
                .eq("id", record_id)
                .eq("tenant_id", self.tenant_id)
                .select()
                .single()
                .execute()
            )
        self._raise_for(result, f"update {self.resource}")
        if result.data is None:
            raise NotFoundError(self.resource, record_id)
        return self.model.from_row(result.data)  # type: ignore[return-value]

    def _page(
        self,
        query: SelectQuery,
        *,
        order_by: str,
        descending: bool,
        limit: int,
        offset: int,
    ) -> Page[ModelT]:
        column = order_by if order_by in self.order_columns else "created_at"
        result = query.order(column, desc=descending).range(offset, offset + limit - 1).execute()
        self._raise_for(result, f"query {self.resource}")
        return Page(
            items=[self.model.from_row(row) for row in result.data],  # type: ignore[misc]
            total=result.count or 0,
            limit=limit,
            offset=offset,
        )
