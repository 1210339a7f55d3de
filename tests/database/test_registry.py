"""Tests for the table registry and store factory."""

from __future__ import annotations

import threading

import pytest

from compliance_emulator.database import TableName, TableRegistry, create_client, create_store
from compliance_emulator.errors import UnknownTableError


class TestRouting:
    """Caller-supplied names map to exactly one collection."""

    def test_logical_name(self, registry: TableRegistry) -> None:
        """A bare logical name routes to its collection."""
        assert registry.route("action_tasks") is TableName.ACTION_TASKS

    def test_prefixed_name(self, registry: TableRegistry) -> None:
        """The configured physical prefix is stripped before routing."""
        assert registry.route("compliance_data_subject_requests") is TableName.DATA_SUBJECT_REQUESTS

    def test_enum_passthrough(self, registry: TableRegistry) -> None:
        assert registry.route(TableName.CONSENT_RECORDS) is TableName.CONSENT_RECORDS

    @pytest.mark.parametrize(
        "name",
        ["users", "requests", "compliance_", "", "data_subject_requests_archive", "audit"],
    )
    def test_unknown_names_rejected(self, registry: TableRegistry, name: str) -> None:
        """Names that are not an exact collection raise instead of routing to nothing."""
        with pytest.raises(UnknownTableError) as exc_info:
            registry.route(name)
        assert exc_info.value.code == "42P01"


class TestSharedCollections:
    """The registry hands out the backing lists themselves."""

    def test_resolve_returns_same_list(self, registry: TableRegistry) -> None:
        """Identity is stable: every caller sees the same list."""
        first = registry.resolve("audit_logs")
        second = registry.resolve("compliance_audit_logs")
        assert first is second

    def test_load_appends_copies(self, registry: TableRegistry) -> None:
        """Bulk load copies rows so the caller's dicts are not aliased."""
        row = {"id": "a"}
        assert registry.load(TableName.AUDIT_LOGS, [row]) == 1
        row["id"] = "b"
        assert registry.resolve(TableName.AUDIT_LOGS)[0]["id"] == "a"

    def test_append_only_collections(self, registry: TableRegistry) -> None:
        assert registry.is_append_only("audit_logs")
        assert registry.is_append_only("request_activities")
        assert not registry.is_append_only("action_tasks")

    def test_lock_is_reentrant(self, registry: TableRegistry) -> None:
        """The same thread may re-acquire a collection lock it already holds."""
        with registry.lock("action_tasks") as outer:
            with registry.lock(TableName.ACTION_TASKS) as inner:
                assert outer is inner

    def test_lock_blocks_other_threads(self, registry: TableRegistry) -> None:
        """Another thread cannot take a held collection lock."""
        acquired: list[bool] = []

        def try_lock() -> None:
            lock = registry._locks[TableName.ACTION_TASKS]
            got = lock.acquire(blocking=False)
            acquired.append(got)
            if got:
                lock.release()

        with registry.lock("action_tasks"):
            worker = threading.Thread(target=try_lock)
            worker.start()
            worker.join()

        assert acquired == [False]

    def test_now_uses_injected_clock(self, registry: TableRegistry, clock) -> None:
        assert registry.now() == clock.current
        clock.advance(minutes=5)
        assert registry.now() == clock.current


class TestFactory:
    """create_store / create_client build independent stores."""

    def test_seeded_counts(self, settings) -> None:
        """A seeded store carries the demo data set."""
        store = create_store(settings, seed=True)
        assert store.counts() == {
            "audit_logs": 5,
            "data_subject_requests": 5,
            "consent_records": 5,
            "pii_locations": 5,
            "action_tasks": 4,
            "request_activities": 5,
        }

    def test_unseeded_store_is_empty(self, settings) -> None:
        """settings.seed_on_startup=False yields empty collections."""
        store = create_store(settings)
        assert all(count == 0 for count in store.counts().values())

    def test_stores_are_independent(self, settings) -> None:
        """Writes to one store are invisible to another."""
        first = create_client(settings, seed=True)
        second = create_client(settings, seed=True)

        first.table("audit_logs").insert({"action": "x", "resource_type": "y"}).execute()

        assert first.registry.counts()["audit_logs"] == 6
        assert second.registry.counts()["audit_logs"] == 5
