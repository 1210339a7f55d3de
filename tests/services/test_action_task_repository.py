"""Tests for ActionTaskRepository: task creation and retry bookkeeping."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from compliance_emulator.database import ComplianceClient, SeedIds
from compliance_emulator.errors import InvariantViolationError, NotFoundError, RetryExhaustedError
from compliance_emulator.models import ActivityType, RequestType, TaskStatus
from compliance_emulator.services import (
    ActionTaskRepository,
    ActivityRepository,
    DataSubjectRequestRepository,
)
from compliance_emulator.services.action_tasks import retry_delay


@pytest.fixture
def tasks(client: ComplianceClient, tenant_id: str) -> ActionTaskRepository:
    return ActionTaskRepository(client, tenant_id)


@pytest.fixture
def activities(client: ComplianceClient, tenant_id: str) -> ActivityRepository:
    return ActivityRepository(client, tenant_id)


def _set_raw(client: ComplianceClient, task_id: str, **patch) -> None:
    client.table("action_tasks").update(patch).eq("id", task_id).execute().raise_for_error()


class TestRetryDelay:
    @pytest.mark.parametrize(("attempts", "minutes"), [(0, 1), (1, 2), (2, 4), (3, 8)])
    def test_exponential(self, attempts: int, minutes: int) -> None:
        assert retry_delay(attempts, 1) == timedelta(minutes=minutes)

    def test_base_scales(self) -> None:
        assert retry_delay(2, 5) == timedelta(minutes=20)


class TestCreate:
    def test_tasks_for_request(self, client, tasks, activities, tenant_id) -> None:
        """One task per supporting active location; manual locations start in manual_action."""
        request = DataSubjectRequestRepository(client, tenant_id).create(
            RequestType.ERASURE, "someone@example.com"
        )

        created = tasks.create_tasks_for_request(request.id, RequestType.ERASURE)

        assert [t.status for t in created] == [
            TaskStatus.PENDING,
            TaskStatus.MANUAL_ACTION,
            TaskStatus.PENDING,
            TaskStatus.PENDING,
        ]
        assert all(t.max_attempts == 3 and t.attempt_count == 0 for t in created)
        assert len({t.correlation_id for t in created}) == 4
        timeline = activities.get_timeline(request.id)
        assert [a.activity_type for a in timeline].count(ActivityType.TASK_CREATED) == 4

    def test_only_supporting_locations(self, tasks) -> None:
        """Rectification is supported by two of the five seeded locations."""
        created = tasks.create_tasks_for_request("r-x", RequestType.RECTIFICATION)
        assert len(created) == 2
        assert {t.task_type for t in created} == {RequestType.RECTIFICATION}

    def test_unsupported_location_rejected(self, tasks, seed_ids: SeedIds) -> None:
        """The legacy ERP only supports access requests."""
        with pytest.raises(InvariantViolationError, match="does not support"):
            tasks.create(seed_ids.requests[1], seed_ids.pii_locations[4], RequestType.ERASURE)

    def test_max_attempts_from_settings(self, client, settings, seed_ids: SeedIds) -> None:
        custom = ComplianceClient(
            client.registry, settings.model_copy(update={"default_max_attempts": 5})
        )
        task = ActionTaskRepository(custom).create(
            seed_ids.requests[0], seed_ids.pii_locations[0], RequestType.ACCESS
        )
        assert task.max_attempts == 5
        assert task.status == TaskStatus.PENDING


class TestStart:
    def test_start_increments_attempt(self, tasks, activities, seed_ids: SeedIds, clock) -> None:
        started = tasks.start_task(seed_ids.action_tasks[3], assigned_to="u-9")

        assert started.status == TaskStatus.IN_PROGRESS
        assert started.attempt_count == 1
        assert started.started_at == clock.current
        assert started.last_attempt_at == clock.current
        assert started.assigned_to == "u-9"
        last = activities.get_timeline(seed_ids.requests[1])[-1]
        assert last.activity_type == ActivityType.TASK_STARTED
        assert last.pii_location_name == "AWS S3 User Documents"
        assert (last.previous_status, last.new_status) == ("pending", "in_progress")

    def test_completed_task_cannot_start(self, tasks, seed_ids: SeedIds) -> None:
        with pytest.raises(InvariantViolationError, match="already completed"):
            tasks.start_task(seed_ids.action_tasks[0])

    def test_exhausted_start_escalates(self, client, tasks, activities, seed_ids: SeedIds) -> None:
        """A start beyond max_attempts raises and leaves the task in manual_action."""
        task_id = seed_ids.action_tasks[3]
        _set_raw(client, task_id, attempt_count=3)

        with pytest.raises(RetryExhaustedError) as exc_info:
            tasks.start_task(task_id)

        assert exc_info.value.attempt_count == 3
        task = tasks.get(task_id)
        assert task.status == TaskStatus.MANUAL_ACTION
        assert task.attempt_count == 3
        assert activities.get_timeline(seed_ids.requests[1])[-1].activity_type == ActivityType.TASK_FAILED

    def test_concurrent_starts_take_last_attempt_once(
        self, client, tasks, seed_ids: SeedIds
    ) -> None:
        """Two racing starts with one attempt left: exactly one wins."""
        task_id = seed_ids.action_tasks[3]
        _set_raw(client, task_id, attempt_count=2)
        barrier = threading.Barrier(2)
        outcomes: list[str] = []
        lock = threading.Lock()

        def start() -> None:
            barrier.wait()
            try:
                tasks.start_task(task_id)
                outcome = "started"
            except RetryExhaustedError:
                outcome = "exhausted"
            with lock:
                outcomes.append(outcome)

        workers = [threading.Thread(target=start) for _ in range(2)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        assert sorted(outcomes) == ["exhausted", "started"]
        assert tasks.get(task_id).attempt_count == 3


class TestFailAndRetry:
    def test_full_retry_cycle(self, tasks, seed_ids: SeedIds, clock) -> None:
        """Attempts climb to max_attempts, then the task leaves automation."""
        task_id = seed_ids.action_tasks[3]

        tasks.start_task(task_id)
        failed = tasks.fail_task(task_id, "HTTP 503")
        assert failed.status == TaskStatus.FAILED
        assert failed.next_retry_at == clock.current + timedelta(minutes=2)
        assert failed.execution_result["errorMessage"] == "HTTP 503"

        assert tasks.retry_task(task_id).status == TaskStatus.PENDING
        tasks.start_task(task_id)
        failed = tasks.fail_task(task_id, "HTTP 503")
        assert failed.next_retry_at == clock.current + timedelta(minutes=4)

        tasks.retry_task(task_id)
        tasks.start_task(task_id)
        final = tasks.fail_task(task_id, "HTTP 500")

        assert final.attempt_count == 3
        assert final.status == TaskStatus.MANUAL_ACTION
        assert final.next_retry_at is None
        with pytest.raises(RetryExhaustedError):
            tasks.start_task(task_id)

    def test_fail_without_schedule(self, tasks, seed_ids: SeedIds) -> None:
        failed = tasks.fail_task(seed_ids.action_tasks[2], "timeout", schedule_retry=False)
        assert failed.status == TaskStatus.FAILED
        assert failed.next_retry_at is None

    def test_only_failed_tasks_retry(self, tasks, seed_ids: SeedIds) -> None:
        with pytest.raises(InvariantViolationError, match="Only failed"):
            tasks.retry_task(seed_ids.action_tasks[3])

    def test_retry_exhausted(self, client, tasks, seed_ids: SeedIds) -> None:
        task_id = seed_ids.action_tasks[3]
        _set_raw(client, task_id, status="failed", attempt_count=3)
        with pytest.raises(RetryExhaustedError):
            tasks.retry_task(task_id)

    def test_due_retries(self, tasks, seed_ids: SeedIds, clock) -> None:
        """next_retry_at is data; get_due_retries reports tasks whose time has come."""
        task_id = seed_ids.action_tasks[2]
        tasks.fail_task(task_id, "rate limited")

        assert tasks.get_due_retries() == []
        clock.advance(minutes=2)
        assert [t.id for t in tasks.get_due_retries()] == [task_id]

    def test_failed_listing(self, tasks, seed_ids: SeedIds) -> None:
        tasks.fail_task(seed_ids.action_tasks[2], "boom")
        assert [t.id for t in tasks.query(has_errors=True).items] == [seed_ids.action_tasks[2]]


class TestCompleteAndVerify:
    def test_complete(self, tasks, activities, seed_ids: SeedIds, clock) -> None:
        completed = tasks.complete_task(seed_ids.action_tasks[2], {"recordsAffected": 2})

        assert completed.status == TaskStatus.COMPLETED
        assert completed.completed_at == clock.current
        assert completed.execution_result == {"recordsAffected": 2}
        assert completed.next_retry_at is None
        assert activities.get_timeline(seed_ids.requests[1])[-1].activity_type == ActivityType.TASK_COMPLETED

    def test_complete_requires_attempt(self, tasks, seed_ids: SeedIds) -> None:
        """A task cannot be completed without a terminal attempt."""
        with pytest.raises(InvariantViolationError, match="execution attempt"):
            tasks.complete_task(seed_ids.action_tasks[3])
        assert tasks.get(seed_ids.action_tasks[3]).status == TaskStatus.PENDING

    def test_complete_twice(self, tasks, seed_ids: SeedIds) -> None:
        with pytest.raises(InvariantViolationError):
            tasks.complete_task(seed_ids.action_tasks[0])

    def test_verify_completed(self, tasks, seed_ids: SeedIds, clock) -> None:
        verified = tasks.verify_task(seed_ids.action_tasks[0], "dpo@example.com", "Checked DB")
        assert verified.is_verified
        assert verified.verified_at == clock.current
        assert verified.verification_notes == "Checked DB"

    def test_verify_requires_completion(self, tasks, seed_ids: SeedIds) -> None:
        with pytest.raises(InvariantViolationError, match="Only completed"):
            tasks.verify_task(seed_ids.action_tasks[2], "dpo@example.com")


class TestCallbacks:
    def test_success_callback(self, tasks, seed_ids: SeedIds) -> None:
        task = tasks.get(seed_ids.action_tasks[2])
        completed = tasks.handle_callback(task.correlation_id, {"deleted": True}, success=True)
        assert completed.status == TaskStatus.COMPLETED
        assert completed.execution_result["webhookPayload"] == {"deleted": True}

    def test_failure_callback(self, tasks, seed_ids: SeedIds) -> None:
        task = tasks.get(seed_ids.action_tasks[2])
        failed = tasks.handle_callback(task.correlation_id, "customer locked", success=False)
        assert failed.status == TaskStatus.FAILED

    def test_unknown_correlation(self, tasks) -> None:
        with pytest.raises(NotFoundError):
            tasks.handle_callback("nope", {}, success=True)


class TestReads:
    def test_tasks_for_request(self, tasks, seed_ids: SeedIds) -> None:
        assert [t.id for t in tasks.get_tasks_for_request(seed_ids.requests[1])] == seed_ids.action_tasks

    def test_pending_manual(self, tasks, seed_ids: SeedIds) -> None:
        assert [t.id for t in tasks.get_pending_manual_tasks()] == [seed_ids.action_tasks[1]]

    def test_summary(self, tasks, seed_ids: SeedIds) -> None:
        summary = tasks.get_summary_for_request(seed_ids.requests[1])
        assert summary.total == 4
        assert summary.by_status == {
            "pending": 1,
            "in_progress": 1,
            "completed": 1,
            "manual_action": 1,
            "failed": 0,
        }
        assert not summary.all_completed
        assert not summary.has_failures
        assert summary.pending_manual_actions == 1

    def test_summary_all_completed(self, tasks, seed_ids: SeedIds) -> None:
        tasks.complete_task(seed_ids.action_tasks[2])
        for task_id in (seed_ids.action_tasks[1], seed_ids.action_tasks[3]):
            tasks.start_task(task_id)
            tasks.complete_task(task_id)
        assert tasks.get_summary_for_request(seed_ids.requests[1]).all_completed

    def test_order_by_assigned_at(self, tasks, seed_ids: SeedIds) -> None:
        page = tasks.query(order_by="assigned_at", descending=False, limit=1)
        assert page.items[0].id == seed_ids.action_tasks[0]
        assert page.total == 4
