"""Client facade over the in-memory store.

Mirrors the surface application code already uses against the hosted
service::

    client.table("data_subject_requests").select("*", count="exact").eq(...).execute()
    client.from_("action_tasks").update({...}).eq("id", task_id).execute()
    client.rpc("get_compliance_metrics", {}).execute()
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from compliance_emulator.config import Settings
from compliance_emulator.database.mutations import DeleteQuery, InsertQuery, UpdateQuery
from compliance_emulator.database.query import SelectQuery
from compliance_emulator.database.registry import Record, TableName, TableRegistry
from compliance_emulator.database.rpc import RpcCall


class TableQueryBuilder:
    """Entry point for the four chains on one collection."""

    def __init__(self, client: ComplianceClient, table: str | TableName) -> None:
        self._client = client
        # Route eagerly so a misspelled name fails where it is written.
        self._table = client.registry.route(table)

    @property
    def name(self) -> TableName:
        return self._table

    def select(self, columns: str = "*", *, count: str | None = None) -> SelectQuery:
        return SelectQuery(
            self._client.registry,
            self._table,
            columns,
            count=count,
            strict_single=self._client.settings.strict_single,
        )

    def insert(self, rows: Record | Sequence[Record]) -> InsertQuery:
        return InsertQuery(self._client.registry, self._table, rows)

    def update(self, patch: Record) -> UpdateQuery:
        return UpdateQuery(self._client.registry, self._table, patch)

    def delete(self) -> DeleteQuery:
        return DeleteQuery(self._client.registry, self._table)


class ComplianceClient:
    """PostgREST-style client bound to one TableRegistry."""

    def __init__(self, registry: TableRegistry, settings: Settings) -> None:
        self.registry = registry
        self.settings = settings

    def table(self, name: str | TableName) -> TableQueryBuilder:
        return TableQueryBuilder(self, name)

    def from_(self, name: str | TableName) -> TableQueryBuilder:
        return self.table(name)

    def rpc(self, name: str, params: dict[str, Any] | None = None) -> RpcCall:
        return RpcCall(self.registry, name, params)

    def now(self) -> datetime:
        return self.registry.now()

    @contextmanager
    def locked(self, name: str | TableName) -> Iterator[list[Record]]:
        """Hold one collection's lock across a read-modify-write."""
        with self.registry.lock(name) as rows:
            yield rows
