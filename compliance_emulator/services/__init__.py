"""Tenant-scoped workflow repositories."""

from compliance_emulator.services.action_tasks import ActionTaskRepository, TaskSummary
from compliance_emulator.services.activity import ActivityRepository, ActivitySummary
from compliance_emulator.services.audit import AuditLogRepository
from compliance_emulator.services.base import BaseRepository, Page
from compliance_emulator.services.consent import (
    ConsentMetrics,
    ConsentRepository,
    CustomerConsentSummary,
)
from compliance_emulator.services.pii_locations import LocationSummary, PiiLocationRepository
from compliance_emulator.services.requests import DataSubjectRequestRepository, RequestMetrics

__all__ = [
    "ActionTaskRepository",
    "ActivityRepository",
    "ActivitySummary",
    "AuditLogRepository",
    "BaseRepository",
    "ConsentMetrics",
    "ConsentRepository",
    "CustomerConsentSummary",
    "DataSubjectRequestRepository",
    "LocationSummary",
    "Page",
    "PiiLocationRepository",
    "RequestMetrics",
    "TaskSummary",
]
