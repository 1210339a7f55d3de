"""Append-only audit entities: tenant-wide audit log entries and the
per-request activity timeline."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import Field

from compliance_emulator.models.base import RowModel


class ActorType(StrEnum):
    USER = "user"
    SYSTEM = "system"
    ADMIN = "admin"
    AUTOMATION = "automation"


class ActivityType(StrEnum):
    REQUEST_CREATED = "request_created"
    REQUEST_STATUS_CHANGED = "request_status_changed"
    REQUEST_NOTE_ADDED = "request_note_added"
    TASK_CREATED = "task_created"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    TASK_RETRIED = "task_retried"
    TASK_VERIFIED = "task_verified"


class AuditLogEntry(RowModel):
    action: str = Field(..., min_length=1)
    resource_type: str
    resource_id: str | None = None
    actor_type: ActorType = ActorType.SYSTEM
    user_id: str | None = None
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    is_gdpr_relevant: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class RequestActivity(RowModel):
    dsr_request_id: str
    action_task_id: str | None = None
    pii_location_name: str | None = None
    activity_type: ActivityType
    description: str
    actor_type: ActorType = ActorType.SYSTEM
    actor_id: str | None = None
    actor_name: str | None = None
    previous_status: str | None = None
    new_status: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
