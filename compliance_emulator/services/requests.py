"""Data subject request repository.

Implements the request lifecycle on top of the raw client:
- due date fixed at creation (GDPR Art. 12 response deadline)
- ``completed_at`` set on completion, cleared when a request is reopened
- every status change recorded as one RequestActivity
- overdue / due soon derived from ``due_date`` at query time, never stored
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from compliance_emulator.clock import parse_instant, to_iso
from compliance_emulator.database.predicates import Clause
from compliance_emulator.database.query import COUNT_EXACT
from compliance_emulator.database.registry import TableName
from compliance_emulator.models.audit import ActivityType, ActorType
from compliance_emulator.models.request import (
    DataSubjectRequest,
    RequestPriority,
    RequestStatus,
    RequestType,
)
from compliance_emulator.services.activity import ActivityRepository
from compliance_emulator.services.base import DEFAULT_PAGE_SIZE, BaseRepository, Page, match_any

if TYPE_CHECKING:
    from compliance_emulator.database.client import ComplianceClient

log = structlog.get_logger(__name__)

OPEN_STATUSES: tuple[RequestStatus, ...] = (
    RequestStatus.PENDING,
    RequestStatus.IN_PROGRESS,
    RequestStatus.REVIEW,
)


@dataclass(slots=True)
class RequestMetrics:
    total: int = 0
    pending: int = 0
    in_progress: int = 0  # in_progress + review
    completed: int = 0
    overdue: int = 0
    due_soon: int = 0
    avg_response_days: float = 0.0
    compliance_rate: float = 100.0  # completed on time / completed
    by_type: dict[str, int] = field(default_factory=dict)


class DataSubjectRequestRepository(BaseRepository[DataSubjectRequest]):
    """Tenant-scoped access to data subject requests.

    Usage:
        requests = DataSubjectRequestRepository(client, tenant_id)
        request = requests.create(RequestType.ERASURE, "jane@example.com")
        requests.change_status(request.id, RequestStatus.IN_PROGRESS, actor_id=user_id)
    """

    table = TableName.DATA_SUBJECT_REQUESTS
    resource = "Data subject request"
    model = DataSubjectRequest
    order_columns = frozenset({"created_at", "due_date", "priority", "status", "requested_at"})

    def __init__(self, client: ComplianceClient, tenant_id: str | None = None) -> None:
        super().__init__(client, tenant_id)
        self._activities = ActivityRepository(client, self.tenant_id)

    def create(
        self,
        request_type: RequestType | str,
        requester_email: str,
        *,
        customer_id: str | None = None,
        requester_name: str | None = None,
        requester_phone: str | None = None,
        priority: RequestPriority | str = RequestPriority.MEDIUM,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
        actor_type: ActorType | str = ActorType.SYSTEM,
        actor_id: str | None = None,
    ) -> DataSubjectRequest:
        now = self._now()
        request = self._insert(
            {
                "customer_id": customer_id,
                "request_type": str(request_type),
                "status": str(RequestStatus.PENDING),
                "priority": str(priority),
                "requester_email": requester_email,
                "requester_name": requester_name,
                "requester_phone": requester_phone,
                "assigned_to": None,
                "requested_at": to_iso(now),
                "due_date": to_iso(now + timedelta(days=self._settings.response_deadline_days)),
                "completed_at": None,
                "notes": notes,
                "metadata": metadata or {},
            }
        )
        self._activities.log(
            request.id,
            ActivityType.REQUEST_CREATED,
            f"{request.request_type} request submitted",
            actor_type=actor_type,
            actor_id=actor_id,
            new_status=RequestStatus.PENDING,
            details={"requestType": str(request.request_type)},
        )
        log.info(
            "dsr.created",
            request_id=request.id,
            request_type=str(request.request_type),
            due_date=to_iso(request.due_date),
        )
        return request

    def update(
        self,
        request_id: str,
        *,
        status: RequestStatus | str | None = None,
        priority: RequestPriority | str | None = None,
        assigned_to: str | None = None,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DataSubjectRequest:
        """Apply the given changes; arguments left as None are unchanged.

        ``metadata`` is merged into the existing metadata, not replaced.
        """
        with self._client.locked(self.table):
            current = self.get(request_id)
            patch: dict[str, Any] = {}
            if status is not None:
                patch["status"] = str(status)
                if status == RequestStatus.COMPLETED:
                    if current.status != RequestStatus.COMPLETED:
                        patch["completed_at"] = self._stamp()
                else:
                    patch["completed_at"] = None
            if priority is not None:
                patch["priority"] = str(priority)
            if assigned_to is not None:
                patch["assigned_to"] = assigned_to
            if notes is not None:
                patch["notes"] = notes
            if metadata is not None:
                patch["metadata"] = {**current.metadata, **metadata}
            if not patch:
                return current
            return self._update(request_id, patch)

    def change_status(
        self,
        request_id: str,
        new_status: RequestStatus | str,
        *,
        actor_type: ActorType | str = ActorType.SYSTEM,
        actor_id: str | None = None,
        actor_name: str | None = None,
        reason: str | None = None,
    ) -> DataSubjectRequest:
        """Move a request to ``new_status`` and record the transition."""
        new_status = RequestStatus(new_status)
        with self._client.locked(self.table):
            current = self.get(request_id)
            previous = current.status
            if previous == new_status:
                return current
            request = self.update(request_id, status=new_status)

        self._activities.log(
            request_id,
            ActivityType.REQUEST_STATUS_CHANGED,
            reason or f"Request moved from {previous} to {new_status}",
            actor_type=actor_type,
            actor_id=actor_id,
            actor_name=actor_name,
            previous_status=previous,
            new_status=new_status,
        )
        log.info(
            "dsr.status_changed",
            request_id=request_id,
            previous_status=str(previous),
            new_status=str(new_status),
        )
        return request

    def assign(self, request_id: str, user_id: str) -> DataSubjectRequest:
        return self.update(request_id, assigned_to=user_id)

    def add_note(self, request_id: str, note: str, author: str) -> DataSubjectRequest:
        """Append a processing note to ``metadata.processingNotes``."""
        with self._client.locked(self.table):
            current = self.get(request_id)
            notes = list(current.metadata.get("processingNotes", []))
            notes.append({"timestamp": self._stamp(), "note": note, "author": author})
            return self.update(request_id, metadata={"processingNotes": notes})

    def query(
        self,
        *,
        request_type: str | list[str] | None = None,
        status: str | list[str] | None = None,
        priority: str | list[str] | None = None,
        assigned_to: str | None = None,
        customer_id: str | None = None,
        overdue: bool = False,
        due_soon: bool = False,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        search: str | None = None,
        order_by: str = "created_at",
        descending: bool = True,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Page[DataSubjectRequest]:
        now = self._now()
        query = self._select(count=COUNT_EXACT)
        query = match_any(query, "request_type", request_type)
        query = match_any(query, "status", status)
        query = match_any(query, "priority", priority)
        query = match_any(query, "assigned_to", assigned_to)
        query = match_any(query, "customer_id", customer_id)
        if overdue:
            query = query.lt("due_date", to_iso(now)).in_("status", OPEN_STATUSES)
        if due_soon:
            horizon = now + timedelta(days=self._settings.due_soon_days)
            query = (
                query.gte("due_date", to_iso(now))
                .lte("due_date", to_iso(horizon))
                .in_("status", OPEN_STATUSES)
            )
        if start_date is not None:
            query = query.gte("created_at", to_iso(start_date))
        if end_date is not None:
            query = query.lte("created_at", to_iso(end_date))
        if search:
            pattern = f"%{search}%"
            query = query.or_(
                [
                    Clause("requester_email", "ilike", pattern),
                    Clause("requester_name", "ilike", pattern),
                    Clause("notes", "ilike", pattern),
                ]
            )
        return self._page(
            query, order_by=order_by, descending=descending, limit=limit, offset=offset
        )

    def get_assigned_to(self, user_id: str) -> list[DataSubjectRequest]:
        return self.query(assigned_to=user_id, status=list(OPEN_STATUSES), limit=1000).items

    def get_overdue(self) -> list[DataSubjectRequest]:
        return self.query(overdue=True, order_by="due_date", descending=False, limit=1000).items

    def get_due_soon(self) -> list[DataSubjectRequest]:
        return self.query(due_soon=True, order_by="due_date", descending=False, limit=1000).items

    def get_metrics(self) -> RequestMetrics:
        result = self._select(
            "status, request_type, due_date, requested_at, created_at, completed_at"
        ).execute()
        self._raise_for(result, "get request metrics")

        now = self._now()
        horizon = now + timedelta(days=self._settings.due_soon_days)
        metrics = RequestMetrics()
        by_type: Counter[str] = Counter()
        response_days = 0
        on_time = 0

        for row in result.data:
            metrics.total += 1
            by_type[row["request_type"]] += 1
            status = row["status"]
            due = parse_instant(row["due_date"])
            if status == RequestStatus.PENDING:
                metrics.pending += 1
            elif status in (RequestStatus.IN_PROGRESS, RequestStatus.REVIEW):
                metrics.in_progress += 1
            elif status == RequestStatus.COMPLETED:
                metrics.completed += 1
                completed_at = parse_instant(row["completed_at"])
                requested_at = parse_instant(row["requested_at"] or row["created_at"])
                if completed_at and requested_at:
                    response_days += math.ceil((completed_at - requested_at).total_seconds() / 86400)
                if completed_at and due and completed_at <= due:
                    on_time += 1

            if status in OPEN_STATUSES and due is not None:
                if due < now:
                    metrics.overdue += 1
                elif due <= horizon:
                    metrics.due_soon += 1

        if metrics.completed:
            metrics.avg_response_days = round(response_days / metrics.completed, 1)
            metrics.compliance_rate = round(on_time / metrics.completed * 100, 1)
        metrics.by_type = dict(by_type)
        return metrics
