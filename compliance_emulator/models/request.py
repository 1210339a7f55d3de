"""Data subject request entity.

Lifecycle::

    pending -> in_progress -> review -> completed

``completed_at`` is set exactly when the status is completed. "Overdue" is
derived (due date in the past and not completed) and never stored.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import Field, model_validator

from compliance_emulator.clock import parse_instant
from compliance_emulator.models.base import RowModel


class RequestType(StrEnum):
    """GDPR data subject request types."""

    ACCESS = "access"  # Art. 15
    ERASURE = "erasure"  # Art. 17
    PORTABILITY = "portability"  # Art. 20
    RECTIFICATION = "rectification"  # Art. 16


class RequestStatus(StrEnum):
    """Lifecycle status of a data subject request."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"


class RequestPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


def is_overdue(row: dict[str, Any], now: datetime) -> bool:
    """True when the row's due date has passed and it is not completed."""
    if row.get("status") == RequestStatus.COMPLETED:
        return False
    due = parse_instant(row.get("due_date"))
    return due is not None and due < parse_instant(now)


class DataSubjectRequest(RowModel):
    """A data subject's rights request against one tenant."""

    customer_id: str | None = None
    request_type: RequestType
    status: RequestStatus = RequestStatus.PENDING
    priority: RequestPriority = RequestPriority.MEDIUM
    requester_email: str = Field(..., min_length=3)
    requester_name: str | None = None
    requester_phone: str | None = None
    assigned_to: str | None = None
    requested_at: datetime | None = None
    due_date: datetime
    completed_at: datetime | None = None
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _completed_at_matches_status(self) -> DataSubjectRequest:
        completed = self.status == RequestStatus.COMPLETED
        if completed and self.completed_at is None:
            raise ValueError("completed requests must carry completed_at")
        if not completed and self.completed_at is not None:
            raise ValueError(f"completed_at must be empty while status is '{self.status}'")
        return self

    def is_overdue(self, now: datetime) -> bool:
        return self.status != RequestStatus.COMPLETED and self.due_date < parse_instant(now)
