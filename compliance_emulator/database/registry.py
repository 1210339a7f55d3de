"""Table registry - owner of every backing collection.

The registry is the only holder of the record lists. Executors resolve a
logical name to the shared list on every call and mutate it in place, which
is what makes an insert or update visible to every later read.

Routing:
    A caller-supplied name has the configured physical prefix stripped
    (``compliance_data_subject_requests`` -> ``data_subject_requests``) and
    must then equal one of the TableName members. Anything else raises
    UnknownTableError instead of silently routing to an empty collection.

Locking:
    One re-entrant lock per collection. Executors hold it across
    filter-then-mutate; repositories may hold it across a read followed by
    an update (RLock lets the same thread re-enter from the executor).
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from enum import StrEnum
from typing import Any

import structlog

from compliance_emulator.clock import Clock, to_store_row, utc_now
from compliance_emulator.errors import UnknownTableError

log = structlog.get_logger(__name__)

Record = dict[str, Any]


class TableName(StrEnum):
    """Logical collections known to the emulator."""

    AUDIT_LOGS = "audit_logs"
    DATA_SUBJECT_REQUESTS = "data_subject_requests"
    CONSENT_RECORDS = "consent_records"
    PII_LOCATIONS = "pii_locations"
    ACTION_TASKS = "action_tasks"
    REQUEST_ACTIVITIES = "request_activities"


# Entries in these collections are never updated or removed once written.
APPEND_ONLY_TABLES: frozenset[TableName] = frozenset(
    {TableName.AUDIT_LOGS, TableName.REQUEST_ACTIVITIES}
)


class TableRegistry:
    """Maps logical collection names to shared, mutable record lists.

    Usage:
        registry = TableRegistry(table_prefix="compliance_")
        rows = registry.resolve("compliance_action_tasks")
        with registry.lock(TableName.ACTION_TASKS):
            ...
    """

    def __init__(self, *, table_prefix: str = "", clock: Clock = utc_now) -> None:
        self._table_prefix = table_prefix
        self._clock = clock
        self._tables: dict[TableName, list[Record]] = {name: [] for name in TableName}
        self._locks: dict[TableName, threading.RLock] = {
            name: threading.RLock() for name in TableName
        }

    @property
    def table_prefix(self) -> str:
        return self._table_prefix

    def now(self) -> datetime:
        """Current instant from the injected clock."""
        return self._clock()

    def route(self, name: str | TableName) -> TableName:
        """Resolve a caller-supplied name to its TableName, or raise."""
        if isinstance(name, TableName):
            return name
        logical = str(name).strip()
        if self._table_prefix and logical.startswith(self._table_prefix):
            logical = logical[len(self._table_prefix):]
        try:
            return TableName(logical)
        except ValueError:
            log.warning("store.unknown_table", table=str(name))
            raise UnknownTableError(str(name)) from None

    def resolve(self, name: str | TableName) -> list[Record]:
        """Return the shared backing list for ``name`` (never a copy)."""
        return self._tables[self.route(name)]

    @contextmanager
    def lock(self, name: str | TableName) -> Iterator[list[Record]]:
        """Hold the collection lock; yields the backing list."""
        table = self.route(name)
        with self._locks[table]:
            yield self._tables[table]

    def is_append_only(self, name: str | TableName) -> bool:
        return self.route(name) in APPEND_ONLY_TABLES

    def load(self, name: str | TableName, rows: Iterable[Record]) -> int:
        """Bulk-append rows without id generation or stamping. Used for seeding."""
        with self.lock(name) as table:
            before = len(table)
            table.extend(to_store_row(row) for row in rows)
            return len(table) - before

    def counts(self) -> dict[str, int]:
        return {str(name): len(rows) for name, rows in self._tables.items()}
