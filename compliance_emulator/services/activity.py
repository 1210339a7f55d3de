"""Per-request activity timeline (append-only)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from compliance_emulator.database.query import COUNT_EXACT
from compliance_emulator.database.registry import TableName
from compliance_emulator.models.audit import ActivityType, ActorType, RequestActivity
from compliance_emulator.services.base import DEFAULT_PAGE_SIZE, BaseRepository, Page, match_any

log = structlog.get_logger(__name__)


@dataclass(slots=True)
class ActivitySummary:
    dsr_request_id: str
    total_activities: int
    last_activity: RequestActivity | None
    task_completions: int
    task_failures: int


class ActivityRepository(BaseRepository[RequestActivity]):
    """Writes and reads RequestActivity entries. There is no update or delete."""

    table = TableName.REQUEST_ACTIVITIES
    resource = "Request activity"
    model = RequestActivity

    def log(
        self,
        dsr_request_id: str,
        activity_type: ActivityType | str,
        description: str,
        *,
        action_task_id: str | None = None,
        pii_location_name: str | None = None,
        actor_type: ActorType | str = ActorType.SYSTEM,
        actor_id: str | None = None,
        actor_name: str | None = None,
        previous_status: str | None = None,
        new_status: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> RequestActivity:
        activity = self._insert(
            {
                "dsr_request_id": dsr_request_id,
                "action_task_id": action_task_id,
                "pii_location_name": pii_location_name,
                "activity_type": str(activity_type),
                "description": description,
                "actor_type": str(actor_type),
                "actor_id": actor_id,
                "actor_name": actor_name,
                "previous_status": str(previous_status) if previous_status else None,
                "new_status": str(new_status) if new_status else None,
                "details": details or {},
            }
        )
        log.info(
            "activity.logged",
            dsr_request_id=dsr_request_id,
            activity_type=str(activity_type),
            previous_status=activity.previous_status,
            new_status=activity.new_status,
        )
        return activity

    def query(
        self,
        *,
        dsr_request_id: str | None = None,
        action_task_id: str | None = None,
        activity_type: str | list[str] | None = None,
        actor_type: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        descending: bool = True,
    ) -> Page[RequestActivity]:
        query = self._select(count=COUNT_EXACT)
        query = match_any(query, "dsr_request_id", dsr_request_id)
        query = match_any(query, "action_task_id", action_task_id)
        query = match_any(query, "activity_type", activity_type)
        query = match_any(query, "actor_type", actor_type)
        return self._page(
            query, order_by="created_at", descending=descending, limit=limit, offset=offset
        )

    def get_timeline(self, dsr_request_id: str) -> list[RequestActivity]:
        """All activities of one request, oldest first."""
        return self.query(dsr_request_id=dsr_request_id, limit=1000, descending=False).items

    def get_recent(self, limit: int = 20) -> list[RequestActivity]:
        return self.query(limit=limit).items

    def get_summary(self, dsr_request_id: str) -> ActivitySummary:
        timeline = self.get_timeline(dsr_request_id)
        return ActivitySummary(
            dsr_request_id=dsr_request_id,
            total_activities=len(timeline),
            last_activity=timeline[-1] if timeline else None,
            task_completions=sum(
                1 for a in timeline if a.activity_type == ActivityType.TASK_COMPLETED
            ),
            task_failures=sum(1 for a in timeline if a.activity_type == ActivityType.TASK_FAILED),
        )
