"""Action task entity: the unit of work executing one request against one
PII location.

Retry bookkeeping:
- ``attempt_count`` never exceeds ``max_attempts``
- ``completed_at`` is only set on completed tasks
- verification fields are only set on completed tasks
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import Field, model_validator

from compliance_emulator.models.base import RowModel
from compliance_emulator.models.request import RequestType


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    MANUAL_ACTION = "manual_action"
    FAILED = "failed"


class ActionTask(RowModel):
    dsr_request_id: str
    pii_location_id: str
    task_type: RequestType
    status: TaskStatus = TaskStatus.PENDING
    assigned_to: str | None = None
    assigned_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    attempt_count: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    last_attempt_at: datetime | None = None
    next_retry_at: datetime | None = None
    execution_result: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None
    verified_by: str | None = None
    verified_at: datetime | None = None
    verification_notes: str | None = None
    correlation_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _check_bookkeeping(self) -> ActionTask:
        if self.attempt_count > self.max_attempts:
            raise ValueError(
                f"attempt_count {self.attempt_count} exceeds max_attempts {self.max_attempts}"
            )
        completed = self.status == TaskStatus.COMPLETED
        if self.completed_at is not None and not completed:
            raise ValueError("completed_at is only valid on completed tasks")
        if not completed and (self.verified_by or self.verified_at):
            raise ValueError("only completed tasks can be verified")
        return self

    @property
    def attempts_remaining(self) -> int:
        return self.max_attempts - self.attempt_count

    @property
    def is_verified(self) -> bool:
        return self.verified_at is not None
