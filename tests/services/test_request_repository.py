"""Tests for DataSubjectRequestRepository."""

from __future__ import annotations

from datetime import timedelta

import pytest

from compliance_emulator.clock import to_iso
from compliance_emulator.database import ComplianceClient, SeedIds
from compliance_emulator.errors import InvariantViolationError, NotFoundError
from compliance_emulator.models import ActivityType, RequestStatus, RequestType
from compliance_emulator.services import ActivityRepository, DataSubjectRequestRepository


@pytest.fixture
def requests(client: ComplianceClient, tenant_id: str) -> DataSubjectRequestRepository:
    return DataSubjectRequestRepository(client, tenant_id)


@pytest.fixture
def activities(client: ComplianceClient, tenant_id: str) -> ActivityRepository:
    return ActivityRepository(client, tenant_id)


class TestCreate:
    """New requests get a fixed response deadline and a timeline entry."""

    def test_due_date_from_deadline(self, requests, clock) -> None:
        request = requests.create(RequestType.ERASURE, "new.person@example.com")

        assert request.status == RequestStatus.PENDING
        assert request.requested_at == clock.current
        assert request.due_date == clock.current + timedelta(days=30)
        assert request.completed_at is None

    def test_logs_request_created(self, requests, activities) -> None:
        request = requests.create("access", "new.person@example.com", requester_name="New Person")

        timeline = activities.get_timeline(request.id)
        assert [a.activity_type for a in timeline] == [ActivityType.REQUEST_CREATED]
        assert timeline[0].new_status == "pending"

    def test_invalid_row_rejected(self, requests, client) -> None:
        """Rows failing entity validation are never written."""
        before = client.registry.counts()["data_subject_requests"]
        with pytest.raises(InvariantViolationError, match="requester_email"):
            requests.create("access", "x")
        assert client.registry.counts()["data_subject_requests"] == before


class TestStatusLifecycle:
    """completed_at follows status; every change leaves one activity."""

    def test_pending_to_in_progress(self, requests, activities, seed_ids: SeedIds) -> None:
        request_id = seed_ids.requests[0]

        updated = requests.change_status(request_id, RequestStatus.IN_PROGRESS, actor_id="u-1")

        assert updated.status == RequestStatus.IN_PROGRESS
        assert updated.completed_at is None
        last = activities.get_timeline(request_id)[-1]
        assert last.activity_type == ActivityType.REQUEST_STATUS_CHANGED
        assert (last.previous_status, last.new_status) == ("pending", "in_progress")
        assert last.actor_id == "u-1"

    def test_completion_sets_completed_at(self, requests, seed_ids: SeedIds, clock) -> None:
        completed = requests.change_status(seed_ids.requests[3], "completed")
        assert completed.completed_at == clock.current

    def test_reopening_clears_completed_at(self, requests, seed_ids: SeedIds) -> None:
        reopened = requests.change_status(seed_ids.requests[2], RequestStatus.REVIEW)
        assert reopened.completed_at is None

    def test_same_status_is_a_no_op(self, requests, activities, seed_ids: SeedIds) -> None:
        request_id = seed_ids.requests[0]
        before = len(activities.get_timeline(request_id))

        requests.change_status(request_id, RequestStatus.PENDING)

        assert len(activities.get_timeline(request_id)) == before

    def test_unknown_request(self, requests) -> None:
        with pytest.raises(NotFoundError):
            requests.change_status("missing", RequestStatus.REVIEW)


class TestUpdate:
    def test_metadata_is_merged(self, requests, seed_ids: SeedIds) -> None:
        request_id = seed_ids.requests[0]
        requests.update(request_id, metadata={"source": "email"})
        updated = requests.update(request_id, metadata={"channel": "web"})
        assert updated.metadata == {"source": "email", "channel": "web"}

    def test_no_changes_returns_current(self, requests, seed_ids: SeedIds) -> None:
        current = requests.get(seed_ids.requests[0])
        assert requests.update(seed_ids.requests[0]) == current

    def test_add_note(self, requests, seed_ids: SeedIds) -> None:
        requests.add_note(seed_ids.requests[1], "Called the customer", "dpo@example.com")
        updated = requests.add_note(seed_ids.requests[1], "Awaiting CRM", "dpo@example.com")
        notes = updated.metadata["processingNotes"]
        assert [n["note"] for n in notes] == ["Called the customer", "Awaiting CRM"]

    def test_assign(self, requests, seed_ids: SeedIds) -> None:
        requests.assign(seed_ids.requests[0], seed_ids.users[2])
        assigned = requests.get_assigned_to(seed_ids.users[2])
        assert [r.id for r in assigned] == [seed_ids.requests[0]]

    def test_assigned_excludes_closed(self, requests, seed_ids: SeedIds) -> None:
        """Completed requests no longer count as assigned work."""
        assert requests.get_assigned_to(seed_ids.users[1]) == []


class TestQueries:
    def test_filters_and_total(self, requests) -> None:
        page = requests.query(status="pending", limit=1)
        assert page.total == 2
        assert len(page.items) == 1
        assert page.has_more

    def test_status_list(self, requests) -> None:
        page = requests.query(status=["in_progress", "review"])
        assert {r.status for r in page.items} == {"in_progress", "review"}

    def test_overdue(self, requests, seed_ids: SeedIds) -> None:
        assert [r.id for r in requests.get_overdue()] == [seed_ids.requests[4]]

    def test_due_soon(self, requests, client, seed_ids: SeedIds) -> None:
        assert requests.get_due_soon() == []
        client.table("data_subject_requests").update(
            {"due_date": to_iso(client.now() + timedelta(days=3))}
        ).eq("id", seed_ids.requests[3]).execute()
        assert [r.id for r in requests.get_due_soon()] == [seed_ids.requests[3]]

    def test_search(self, requests, seed_ids: SeedIds) -> None:
        """Free text matches email, name or notes, case-insensitively."""
        assert [r.id for r in requests.query(search="SMITH").items] == [seed_ids.requests[1]]
        assert [r.id for r in requests.query(search="address").items] == [seed_ids.requests[3]]

    def test_order_by_due_date(self, requests, seed_ids: SeedIds) -> None:
        page = requests.query(order_by="due_date", descending=False)
        assert page.items[0].id == seed_ids.requests[2]

    def test_unknown_order_column_falls_back(self, requests) -> None:
        page = requests.query(order_by="requester_email; drop table")
        assert page.total == 5

    def test_date_window(self, requests, clock) -> None:
        page = requests.query(start_date=clock.current - timedelta(days=10))
        assert page.total == 2


class TestTenantIsolation:
    """Repositories only ever see their own tenant's rows."""

    def test_other_tenant_sees_nothing(self, client, other_tenant_id, seed_ids: SeedIds) -> None:
        other = DataSubjectRequestRepository(client, other_tenant_id)
        assert other.query().total == 0
        assert other.find_by_id(seed_ids.requests[0]) is None
        with pytest.raises(NotFoundError):
            other.change_status(seed_ids.requests[0], RequestStatus.REVIEW)

    def test_created_rows_carry_tenant(self, client, other_tenant_id) -> None:
        other = DataSubjectRequestRepository(client, other_tenant_id)
        request = other.create("access", "someone@example.com")
        assert request.tenant_id == other_tenant_id
        assert other.query().total == 1

    def test_default_tenant_from_settings(self, client, tenant_id) -> None:
        assert DataSubjectRequestRepository(client).tenant_id == tenant_id

    def test_table_name_uses_prefix(self, requests) -> None:
        assert requests.table_name == "compliance_data_subject_requests"


class TestMetrics:
    def test_seeded_metrics(self, requests) -> None:
        metrics = requests.get_metrics()
        assert metrics.total == 5
        assert metrics.pending == 2
        assert metrics.in_progress == 2
        assert metrics.completed == 1
        assert metrics.overdue == 1
        assert metrics.due_soon == 0
        assert metrics.avg_response_days == 21.0
        assert metrics.compliance_rate == 100.0
        assert metrics.by_type["access"] == 2

    def test_empty_metrics(self, empty_client) -> None:
        metrics = DataSubjectRequestRepository(empty_client).get_metrics()
        assert metrics.total == 0
        assert metrics.compliance_rate == 100.0


class TestRowsWrittenThroughTheClient:
    """Rows inserted with the raw client are classified the same way everywhere."""

    def _insert(self, empty_client: ComplianceClient, tenant_id: str, due_date) -> None:
        empty_client.table("data_subject_requests").insert(
            {
                "tenant_id": tenant_id,
                "request_type": "access",
                "status": "pending",
                "requester_email": "raw.row@example.com",
                "due_date": due_date,
            }
        ).execute().raise_for_error()

    def test_datetime_due_date_overdue_for_every_consumer(
        self, empty_client: ComplianceClient, tenant_id: str, clock
    ) -> None:
        self._insert(empty_client, tenant_id, clock.current - timedelta(days=2))
        requests = DataSubjectRequestRepository(empty_client, tenant_id)

        rpc = empty_client.rpc("get_compliance_metrics", {}).execute().data
        assert len(requests.get_overdue()) == 1
        assert requests.get_metrics().overdue == 1
        assert rpc["gdprRequests"]["overdue"] == 1
        assert requests.query(overdue=True).items[0].is_overdue(clock.current)

    def test_naive_due_date_treated_as_utc(
        self, empty_client: ComplianceClient, tenant_id: str, clock
    ) -> None:
        naive = (clock.current - timedelta(days=2)).replace(tzinfo=None).isoformat()
        self._insert(empty_client, tenant_id, naive)
        requests = DataSubjectRequestRepository(empty_client, tenant_id)

        overdue = requests.get_overdue()
        assert len(overdue) == 1
        assert overdue[0].due_date.tzinfo is not None
        assert overdue[0].is_overdue(clock.current)
        assert requests.get_metrics().overdue == 1
