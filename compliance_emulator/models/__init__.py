"""Workflow entity models."""

from compliance_emulator.models.action_task import ActionTask, TaskStatus
from compliance_emulator.models.audit import (
    ActivityType,
    ActorType,
    AuditLogEntry,
    RequestActivity,
)
from compliance_emulator.models.consent import ConsentRecord
from compliance_emulator.models.pii_location import (
    AutomatedActionConfig,
    ExecutionType,
    ManualActionConfig,
    PiiLocation,
    SystemType,
)
from compliance_emulator.models.request import (
    DataSubjectRequest,
    RequestPriority,
    RequestStatus,
    RequestType,
    is_overdue,
)

__all__ = [
    "ActionTask",
    "ActivityType",
    "ActorType",
    "AuditLogEntry",
    "AutomatedActionConfig",
    "ConsentRecord",
    "DataSubjectRequest",
    "ExecutionType",
    "ManualActionConfig",
    "PiiLocation",
    "RequestActivity",
    "RequestPriority",
    "RequestStatus",
    "RequestType",
    "SystemType",
    "TaskStatus",
    "is_overdue",
]
