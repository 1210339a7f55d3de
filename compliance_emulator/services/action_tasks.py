"""Action task repository.

One task executes one request against one PII location. Retry bookkeeping:

    pending/failed --start_task--> in_progress --complete_task--> completed
                                        |
                                        +--fail_task--> failed (next_retry_at set)
                                                    \\-> manual_action (attempts exhausted)

- start_task is the only operation that increments ``attempt_count`` and it
  does so under the collection lock, so two concurrent starts can never both
  take the last attempt
- a start that would exceed ``max_attempts`` moves the task to
  manual_action and raises RetryExhaustedError
- a task cannot complete without at least one attempt
- verification is only possible once completed

``next_retry_at`` is data only; the scheduler that acts on it is external.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from compliance_emulator.clock import to_iso
from compliance_emulator.database.mutations import generate_id
from compliance_emulator.database.query import COUNT_EXACT
from compliance_emulator.database.registry import TableName
from compliance_emulator.errors import InvariantViolationError, NotFoundError, RetryExhaustedError
from compliance_emulator.models.action_task import ActionTask, TaskStatus
from compliance_emulator.models.audit import ActivityType, ActorType
from compliance_emulator.models.pii_location import ExecutionType, PiiLocation
from compliance_emulator.models.request import RequestType
from compliance_emulator.services.activity import ActivityRepository
from compliance_emulator.services.base import DEFAULT_PAGE_SIZE, BaseRepository, Page, match_any
from compliance_emulator.services.pii_locations import PiiLocationRepository

if TYPE_CHECKING:
    from compliance_emulator.database.client import ComplianceClient

log = structlog.get_logger(__name__)


@dataclass(slots=True)
class TaskSummary:
    dsr_request_id: str
    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    all_completed: bool = False
    has_failures: bool = False
    pending_manual_actions: int = 0


def retry_delay(attempt_count: int, base_minutes: int) -> timedelta:
    """Exponential backoff: base, 2*base, 4*base, ... minutes."""
    return timedelta(minutes=base_minutes * 2**attempt_count)


class ActionTaskRepository(BaseRepository[ActionTask]):
    table = TableName.ACTION_TASKS
    resource = "Action task"
    model = ActionTask
    order_columns = frozenset({"created_at", "status", "assigned_at", "next_retry_at"})

    def __init__(self, client: ComplianceClient, tenant_id: str | None = None) -> None:
        super().__init__(client, tenant_id)
        self._locations = PiiLocationRepository(client, self.tenant_id)
        self._activities = ActivityRepository(client, self.tenant_id)

    # ------------------------------------------------------------------ #
    # Creation
    # ------------------------------------------------------------------ #

    def _task_row(
        self,
        dsr_request_id: str,
        location: PiiLocation,
        task_type: RequestType | str,
        *,
        status: TaskStatus | str | None = None,
        assigned_to: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        if status is None:
            manual = location.execution_type == ExecutionType.MANUAL
            status = TaskStatus.MANUAL_ACTION if manual else TaskStatus.PENDING
        return {
            "dsr_request_id": dsr_request_id,
            "pii_location_id": location.id,
            "task_type": str(task_type),
            "status": str(status),
            "assigned_to": assigned_to,
            "assigned_at": self._stamp() if assigned_to else None,
            "started_at": None,
            "completed_at": None,
            "attempt_count": 0,
            "max_attempts": self._settings.default_max_attempts,
            "last_attempt_at": None,
            "next_retry_at": None,
            "execution_result": {},
            "notes": notes,
            "verified_by": None,
            "verified_at": None,
            "verification_notes": None,
            "correlation_id": generate_id(),
        }

    def create(
        self,
        dsr_request_id: str,
        pii_location_id: str,
        task_type: RequestType | str,
        *,
        status: TaskStatus | str | None = None,
        assigned_to: str | None = None,
        notes: str | None = None,
    ) -> ActionTask:
        """Create one task. The location must support ``task_type``."""
        location = self._locations.get(pii_location_id)
        if not location.supports(task_type):
            raise InvariantViolationError(
                f"PII location '{location.name}' does not support {task_type} requests"
            )
        task = self._insert(
            self._task_row(
                dsr_request_id,
                location,
                task_type,
                status=status,
                assigned_to=assigned_to,
                notes=notes,
            )
        )
        log.info(
            "task.created",
            task_id=task.id,
            dsr_request_id=dsr_request_id,
            location=location.name,
            status=str(task.status),
        )
        return task

    def create_tasks_for_request(
        self, dsr_request_id: str, request_type: RequestType | str
    ) -> list[ActionTask]:
        """One task per active location supporting ``request_type``, in priority order."""
        locations = self._locations.get_for_request_type(request_type)
        tasks = self._insert_many(
            self._task_row(dsr_request_id, location, request_type) for location in locations
        )
        for task, location in zip(tasks, locations):
            self._activities.log(
                dsr_request_id,
                ActivityType.TASK_CREATED,
                f"{request_type} task created for {location.name}",
                action_task_id=task.id,
                pii_location_name=location.name,
                new_status=task.status,
            )
        log.info(
            "task.batch_created",
            dsr_request_id=dsr_request_id,
            request_type=str(request_type),
            created=len(tasks),
        )
        return tasks

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def _record(
        self,
        task: ActionTask,
        activity_type: ActivityType,
        description: str,
        *,
        previous_status: TaskStatus,
        actor_type: ActorType | str = ActorType.AUTOMATION,
        actor_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        location = self._locations.find_by_id(task.pii_location_id)
        self._activities.log(
            task.dsr_request_id,
            activity_type,
            description,
            action_task_id=task.id,
            pii_location_name=location.name if location else None,
            actor_type=actor_type,
            actor_id=actor_id,
            previous_status=previous_status,
            new_status=task.status,
            details=details,
        )

    def start_task(self, task_id: str, assigned_to: str | None = None) -> ActionTask:
        """Begin an execution attempt.

        Raises:
            RetryExhaustedError: the attempt would exceed max_attempts. The
                task has been moved to manual_action before this is raised.
            InvariantViolationError: the task is already completed.
        """
        with self._client.locked(self.table):
            task = self.get(task_id)
            previous = task.status
            if task.status == TaskStatus.COMPLETED:
                raise InvariantViolationError(f"Action task '{task_id}' is already completed")

            if task.attempt_count + 1 > task.max_attempts:
                escalated = self._update(
                    task_id,
                    {"status": str(TaskStatus.MANUAL_ACTION), "next_retry_at": None},
                )
                exhausted = True
            else:
                now = self._stamp()
                patch: dict[str, Any] = {
                    "status": str(TaskStatus.IN_PROGRESS),
                    "attempt_count": task.attempt_count + 1,
                    "last_attempt_at": now,
                    "started_at": now,
                    "next_retry_at": None,
                }
                if assigned_to:
                    patch["assigned_to"] = assigned_to
                    patch["assigned_at"] = now
                started = self._update(task_id, patch)
                exhausted = False

        if exhausted:
            log.warning(
                "task.retry_exhausted",
                task_id=task_id,
                attempt_count=task.attempt_count,
                max_attempts=task.max_attempts,
            )
            self._record(
                escalated,
                ActivityType.TASK_FAILED,
                "Attempts exhausted; escalated to manual action",
                previous_status=previous,
                details={"attemptCount": task.attempt_count, "maxAttempts": task.max_attempts},
            )
            raise RetryExhaustedError(task_id, task.attempt_count, task.max_attempts)

        log.info("task.started", task_id=task_id, attempt=started.attempt_count)
        self._record(
            started,
            ActivityType.TASK_STARTED,
            f"Attempt {started.attempt_count} of {started.max_attempts} started",
            previous_status=previous,
            actor_type=ActorType.USER if assigned_to else ActorType.AUTOMATION,
            actor_id=assigned_to,
        )
        return started

    def complete_task(
        self,
        task_id: str,
        result: dict[str, Any] | None = None,
        *,
        notes: str | None = None,
    ) -> ActionTask:
        """Mark a task completed; ``result`` is merged into execution_result."""
        with self._client.locked(self.table):
            task = self.get(task_id)
            if task.status == TaskStatus.COMPLETED:
                raise InvariantViolationError(f"Action task '{task_id}' is already completed")
            if task.attempt_count < 1:
                raise InvariantViolationError(
                    f"Action task '{task_id}' cannot complete without an execution attempt"
                )
            patch: dict[str, Any] = {
                "status": str(TaskStatus.COMPLETED),
                "completed_at": self._stamp(),
                "next_retry_at": None,
                "execution_result": {**task.execution_result, **(result or {})},
            }
            if notes is not None:
                patch["notes"] = notes
            completed = self._update(task_id, patch)

        log.info("task.completed", task_id=task_id, attempts=completed.attempt_count)
        self._record(
            completed,
            ActivityType.TASK_COMPLETED,
            "Task completed",
            previous_status=task.status,
            details=result,
        )
        return completed

    def fail_task(
        self,
        task_id: str,
        error_message: str,
        *,
        notes: str | None = None,
        schedule_retry: bool = True,
    ) -> ActionTask:
        """Record a failed attempt.

        While attempts remain the task becomes failed, with ``next_retry_at``
        scheduled by exponential backoff when ``schedule_retry`` is set. Once
        attempts are exhausted it moves to manual_action with no retry.
        """
        with self._client.locked(self.table):
            task = self.get(task_id)
            if task.status == TaskStatus.COMPLETED:
                raise InvariantViolationError(f"Action task '{task_id}' is already completed")
            patch: dict[str, Any] = {
                "execution_result": {**task.execution_result, "errorMessage": error_message},
            }
            if notes is not None:
                patch["notes"] = notes
            if task.attempt_count < task.max_attempts:
                patch["status"] = str(TaskStatus.FAILED)
                patch["next_retry_at"] = None
                if schedule_retry:
                    delay = retry_delay(
                        task.attempt_count, self._settings.retry_backoff_base_minutes
                    )
                    patch["next_retry_at"] = to_iso(self._now() + delay)
            else:
                patch["status"] = str(TaskStatus.MANUAL_ACTION)
                patch["next_retry_at"] = None
            failed = self._update(task_id, patch)

        log.warning(
            "task.failed",
            task_id=task_id,
            attempt_count=failed.attempt_count,
            status=str(failed.status),
            next_retry_at=to_iso(failed.next_retry_at),
            error=error_message,
        )
        self._record(
            failed,
            ActivityType.TASK_FAILED,
            error_message,
            previous_status=task.status,
            details={"errorMessage": error_message, "attemptCount": failed.attempt_count},
        )
        return failed

    def retry_task(self, task_id: str) -> ActionTask:
        """Return a failed task to pending so it can be started again."""
        with self._client.locked(self.table):
            task = self.get(task_id)
            if task.status != TaskStatus.FAILED:
                raise InvariantViolationError(
                    f"Only failed tasks can be retried (task '{task_id}' is {task.status})"
                )
            if task.attempt_count >= task.max_attempts:
                raise RetryExhaustedError(task_id, task.attempt_count, task.max_attempts)
            retried = self._update(
                task_id, {"status": str(TaskStatus.PENDING), "next_retry_at": None}
            )

        log.info("task.retry_queued", task_id=task_id, attempt_count=retried.attempt_count)
        self._record(
            retried,
            ActivityType.TASK_RETRIED,
            "Task queued for retry",
            previous_status=task.status,
        )
        return retried

    def verify_task(
        self, task_id: str, verified_by: str, notes: str | None = None
    ) -> ActionTask:
        """Record human verification of a completed task."""
        with self._client.locked(self.table):
            task = self.get(task_id)
            if task.status != TaskStatus.COMPLETED:
                raise InvariantViolationError(
                    f"Only completed tasks can be verified (task '{task_id}' is {task.status})"
                )
            verified = self._update(
                task_id,
                {
                    "verified_by": verified_by,
                    "verified_at": self._stamp(),
                    "verification_notes": notes,
                },
            )

        log.info("task.verified", task_id=task_id, verified_by=verified_by)
        self._record(
            verified,
            ActivityType.TASK_VERIFIED,
            f"Verified by {verified_by}",
            previous_status=task.status,
            actor_type=ActorType.USER,
            actor_id=verified_by,
        )
        return verified

    def handle_callback(
        self, correlation_id: str, payload: Any, *, success: bool
    ) -> ActionTask:
        """Resolve an in-flight task from an external system's callback."""
        result = self._select().eq("correlation_id", correlation_id).maybe_single().execute()
        self._raise_for(result, "find task by correlation id")
        if result.data is None:
            raise NotFoundError("Action task with correlation id", correlation_id)
        task_id = result.data["id"]
        if success:
            return self.complete_task(
                task_id, {"webhookReceived": True, "webhookPayload": payload}
            )
        return self.fail_task(task_id, f"callback reported failure: {payload}")

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def query(
        self,
        *,
        dsr_request_id: str | None = None,
        pii_location_id: str | None = None,
        task_type: str | list[str] | None = None,
        status: str | list[str] | None = None,
        assigned_to: str | None = None,
        has_errors: bool = False,
        order_by: str = "created_at",
        descending: bool = True,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Page[ActionTask]:
        query = self._select(count=COUNT_EXACT)
        query = match_any(query, "dsr_request_id", dsr_request_id)
        query = match_any(query, "pii_location_id", pii_location_id)
        query = match_any(query, "task_type", task_type)
        query = match_any(query, "status", status)
        query = match_any(query, "assigned_to", assigned_to)
        if has_errors:
            query = query.eq("status", str(TaskStatus.FAILED))
        return self._page(
            query, order_by=order_by, descending=descending, limit=limit, offset=offset
        )

    def get_tasks_for_request(self, dsr_request_id: str) -> list[ActionTask]:
        return self.query(dsr_request_id=dsr_request_id, descending=False, limit=1000).items

    def get_pending_manual_tasks(self, assigned_to: str | None = None) -> list[ActionTask]:
        return self.query(
            status=str(TaskStatus.MANUAL_ACTION), assigned_to=assigned_to, limit=1000
        ).items

    def get_due_retries(self, now: datetime | None = None) -> list[ActionTask]:
        """Failed tasks whose scheduled retry time has arrived and that have
        attempts left, soonest first."""
        now = now or self._now()
        result = (
            self._select()
            .eq("status", str(TaskStatus.FAILED))
            .not_("next_retry_at", "is", None)
            .lte("next_retry_at", to_iso(now))
            .order("next_retry_at")
            .execute()
        )
        self._raise_for(result, "get due retries")
        return [
            ActionTask.from_row(row)
            for row in result.data
            if row["attempt_count"] < row["max_attempts"]
        ]

    def get_summary_for_request(self, dsr_request_id: str) -> TaskSummary:
        result = self._select("status").eq("dsr_request_id", dsr_request_id).execute()
        self._raise_for(result, "get task summary")
        counts = Counter(row["status"] for row in result.data)
        total = len(result.data)
        return TaskSummary(
            dsr_request_id=dsr_request_id,
            total=total,
            by_status={str(status): counts.get(status, 0) for status in TaskStatus},
            all_completed=total > 0 and counts[TaskStatus.COMPLETED] == total,
            has_failures=counts[TaskStatus.FAILED] > 0,
            pending_manual_actions=counts[TaskStatus.MANUAL_ACTION],
        )
