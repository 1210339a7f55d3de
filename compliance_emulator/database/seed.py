"""Demo seed data.

Every timestamp is computed relative to the store clock at seeding time, so
"overdue" and "due soon" rows stay overdue and due soon no matter when the
emulator starts. Relationships (request -> tasks -> locations, activities ->
requests/tasks) are wired through the ids in the returned SeedIds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog

from compliance_emulator.clock import to_iso
from compliance_emulator.database.mutations import generate_id
from compliance_emulator.database.registry import TableName, TableRegistry

log = structlog.get_logger(__name__)

Record = dict[str, Any]

DEMO_TENANT_ID = "demo-tenant-001"


@dataclass(slots=True)
class SeedIds:
    """Ids of the seeded rows, in seed order."""

    tenant_id: str
    customers: list[str] = field(default_factory=list)
    users: list[str] = field(default_factory=list)
    requests: list[str] = field(default_factory=list)
    pii_locations: list[str] = field(default_factory=list)
    action_tasks: list[str] = field(default_factory=list)


class _Offsets:
    """Stamps relative to one fixed instant."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def ago(self, *, days: float = 0, hours: float = 0, minutes: float = 0) -> str:
        return to_iso(self.now - timedelta(days=days, hours=hours, minutes=minutes))

    def ahead(self, *, days: float = 0) -> str:
        return to_iso(self.now + timedelta(days=days))


def _audit_logs(t: _Offsets, ids: SeedIds) -> list[Record]:
    users = ids.users
    rows = [
        ("gdpr_request.created", "gdpr_request", "user", users[0], "192.168.1.100",
         "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7)", {"request_type": "access"},
         True, t.ago(minutes=30)),
        ("consent.granted", "consent", "user", users[1], "10.0.0.55",
         "Mozilla/5.0 (Windows NT 10.0; Win64; x64)", {"consent_type": "marketing"},
         True, t.ago(hours=1)),
        ("data.exported", "user_data", "system", None, None, None,
         {"format": "json", "size_bytes": 45231}, True, t.ago(hours=2)),
        ("user.login", "session", "user", users[2], "172.16.0.22",
         "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0)",
         {"method": "oauth", "provider": "google"}, False, t.ago(hours=3)),
        ("gdpr_request.completed", "gdpr_request", "admin", users[0], "192.168.1.50",
         "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7)",
         {"request_type": "erasure", "processing_time_hours": 48, "riskLevel": "high"},
         True, t.ago(hours=5)),
    ]
    return [
        {
            "id": generate_id(),
            "tenant_id": ids.tenant_id,
            "action": action,
            "resource_type": resource_type,
            "resource_id": generate_id(),
            "actor_type": actor_type,
            "user_id": user_id,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "metadata": metadata,
            "is_gdpr_relevant": relevant,
            "created_at": created_at,
        }
        for (action, resource_type, actor_type, user_id, ip_address, user_agent,
             metadata, relevant, created_at) in rows
    ]


def _requests(t: _Offsets, ids: SeedIds) -> list[Record]:
    customers, users = ids.customers, ids.users
    rows = [
        # type, status, priority, email, name, assignee, due, completed, notes, created, updated
        ("access", "pending", "high", "john.doe@example.com", "John Doe", None,
         t.ahead(days=25), None, "User requested all personal data",
         t.ago(days=5), t.ago(days=5)),
        ("erasure", "in_progress", "urgent", "jane.smith@example.com", "Jane Smith", users[0],
         t.ahead(days=10), None, "Complete data deletion requested per GDPR Art. 17",
         t.ago(days=20), t.ago(days=2)),
        ("portability", "completed", "medium", "alice.johnson@example.com", "Alice Johnson",
         users[1], t.ago(days=5), t.ago(days=7), "Data exported in JSON format",
         t.ago(days=28), t.ago(days=7)),
        ("rectification", "review", "low", "bob.wilson@example.com", "Bob Wilson", None,
         t.ahead(days=20), None, "Address correction requested",
         t.ago(days=8), t.ago(days=1)),
        # overdue: due two days ago and still pending
        ("access", "pending", "medium", "emma.davis@example.com", "Emma Davis", None,
         t.ago(days=2), None, "Requesting copy of all stored data",
         t.ago(days=35), t.ago(days=35)),
    ]
    records = []
    for index, (request_type, status, priority, email, name, assignee, due, completed,
                notes, created, updated) in enumerate(rows):
        records.append(
            {
                "id": ids.requests[index],
                "tenant_id": ids.tenant_id,
                "customer_id": customers[index],
                "request_type": request_type,
                "status": status,
                "priority": priority,
                "requester_email": email,
                "requester_name": name,
                "requester_phone": None,
                "assigned_to": assignee,
                "requested_at": created,
                "due_date": due,
                "completed_at": completed,
                "notes": notes,
                "metadata": {},
                "created_at": created,
                "updated_at": updated,
            }
        )
    return records


def _endpoint(url: str, method: str, auth_type: str, auth_config: Record, statuses: list[int]) -> Record:
    return {
        "endpoint": {
            "url": url,
            "method": method,
            "authType": auth_type,
            "authConfig": auth_config,
        },
        "successCondition": {"httpStatus": statuses},
    }


def _steps(*steps: tuple[str, str], **extra: Any) -> Record:
    instructions = [
        {"step": number, "title": title, "description": description}
        for number, (title, description) in enumerate(steps, start=1)
    ]
    return {"instructions": instructions, **extra}


def _pii_locations(t: _Offsets, ids: SeedIds) -> list[Record]:
    locations = [
        {
            "name": "PostgreSQL Users Database",
            "description": "Primary user accounts and profile data",
            "system_type": "database",
            "execution_type": "automated",
            "supported_request_types": ["access", "erasure", "rectification", "portability"],
            "priority_order": 10,
            "action_config": _endpoint(
                "https://api.internal/users/{customer_id}", "DELETE", "bearer",
                {"secretRef": "vault:db_api_token"}, [200, 204],
            ),
            "owner_email": "backend-team@example.com",
            "owner_team": "Backend Engineering",
            "pii_fields": ["email", "name", "phone", "address"],
            "data_categories": ["identification", "contact"],
            "consent_fields": ["email_marketing", "sms_marketing", "analytics"],
            "consent_query_config": {
                "queryType": "database",
                "query": (
                    "SELECT email_marketing_consent, consent_updated_at "
                    "FROM users WHERE id = {{customerId}}"
                ),
                "responseMapping": {
                    "consentField": "email_marketing_consent",
                    "grantedAtField": "consent_updated_at",
                },
            },
            "last_verified_at": t.ago(days=10),
            "metadata": {},
            "created_at": t.ago(days=90),
            "updated_at": t.ago(days=10),
        },
        {
            "name": "Salesforce CRM",
            "description": "Customer relationship management system",
            "system_type": "third_party",
            "execution_type": "manual",
            "supported_request_types": ["access", "erasure", "rectification"],
            "priority_order": 20,
            "action_config": _steps(
                ("Log into Salesforce", "Log in with admin credentials"),
                ("Search for contact", "Use global search to find the customer by email"),
                ("Delete contact record", "Select Actions > Delete and confirm"),
                ("Clear from recycle bin", "Empty the recycle bin to permanently delete"),
                estimatedMinutes=15,
                requiredRole="Salesforce Admin",
                verificationChecklist=["Contact deleted", "Recycle bin cleared"],
            ),
            "owner_email": "sales-ops@example.com",
            "owner_team": "Sales Operations",
            "pii_fields": ["email", "name", "phone", "company"],
            "data_categories": ["identification", "contact", "professional"],
            "consent_fields": ["email_marketing"],
            "consent_query_config": {
                "queryType": "manual",
                "instructions": "Contact > Details > Marketing Preferences",
            },
            "last_verified_at": t.ago(days=45),
            "metadata": {},
            "created_at": t.ago(days=60),
            "updated_at": t.ago(days=45),
        },
        {
            "name": "Stripe Payment Gateway",
            "description": "Payment processing and billing data",
            "system_type": "api",
            "execution_type": "automated",
            "supported_request_types": ["access", "erasure"],
            "priority_order": 30,
            "action_config": _endpoint(
                "https://api.stripe.com/v1/customers/{stripe_customer_id}", "DELETE",
                "bearer", {"secretRef": "vault:stripe_secret_key"}, [200],
            ),
            "owner_email": "finance@example.com",
            "owner_team": "Finance",
            "pii_fields": ["email", "name", "payment_method"],
            "data_categories": ["financial", "identification"],
            "consent_fields": [],
            "consent_query_config": None,
            "last_verified_at": t.ago(days=5),
            "metadata": {},
            "created_at": t.ago(days=75),
            "updated_at": t.ago(days=5),
        },
        {
            "name": "AWS S3 User Documents",
            "description": "User-uploaded files and documents",
            "system_type": "file_storage",
            "execution_type": "semi_automated",
            "supported_request_types": ["access", "erasure", "portability"],
            "priority_order": 40,
            "action_config": _endpoint(
                "https://api.internal/storage/users/{customer_id}/delete", "POST", "api_key",
                {"headerName": "X-API-Key", "secretRef": "vault:storage_api_key"}, [200, 202],
            ),
            "owner_email": "platform@example.com",
            "owner_team": "Platform Engineering",
            "pii_fields": ["documents", "photos"],
            "data_categories": ["user_content"],
            "consent_fields": [],
            "consent_query_config": None,
            "last_verified_at": None,
            "metadata": {},
            "created_at": t.ago(days=30),
            "updated_at": t.ago(days=30),
        },
        {
            "name": "Legacy ERP System",
            "description": "On-premise enterprise resource planning (read-only access)",
            "system_type": "manual",
            "execution_type": "manual",
            "supported_request_types": ["access"],
            "priority_order": 100,
            "action_config": _steps(
                ("Contact IT Support", "Open a ticket requesting a data export from ERP"),
                ("Provide customer details", "Include customer ID and email in the ticket"),
                ("Wait for export", "IT will process within 3-5 business days"),
                estimatedMinutes=30,
                requiredRole="IT Admin",
                documentationUrl="https://wiki.internal/erp-data-export",
            ),
            "owner_email": "it-support@example.com",
            "owner_team": "IT Operations",
            "pii_fields": ["email", "name", "employee_id", "department"],
            "data_categories": ["identification", "professional"],
            "consent_fields": [],
            "consent_query_config": None,
            "last_verified_at": t.ago(days=60),
            "metadata": {"note": "Legacy system - erasure not supported"},
            "created_at": t.ago(days=120),
            "updated_at": t.ago(days=60),
        },
    ]
    return [
        {"id": ids.pii_locations[index], "tenant_id": ids.tenant_id, "is_active": True, **row}
        for index, row in enumerate(locations)
    ]


def _action_tasks(t: _Offsets, ids: SeedIds) -> list[Record]:
    erasure_request = ids.requests[1]
    blank = {
        "assigned_to": None,
        "assigned_at": None,
        "started_at": None,
        "completed_at": None,
        "attempt_count": 0,
        "max_attempts": 3,
        "last_attempt_at": None,
        "next_retry_at": None,
        "execution_result": {},
        "notes": None,
        "verified_by": None,
        "verified_at": None,
        "verification_notes": None,
    }
    tasks = [
        {
            "status": "completed",
            "assigned_to": ids.users[0],
            "assigned_at": t.ago(days=3),
            "started_at": t.ago(days=3),
            "completed_at": t.ago(days=2),
            "attempt_count": 1,
            "last_attempt_at": t.ago(days=3),
            "execution_result": {"recordsAffected": 1, "httpStatus": 204},
            "notes": "User record deleted successfully",
            "updated_at": t.ago(days=2),
        },
        {"status": "manual_action", "updated_at": t.ago(days=5)},
        {
            "status": "in_progress",
            "assigned_to": ids.users[0],
            "assigned_at": t.ago(hours=2),
            "started_at": t.ago(hours=2),
            "attempt_count": 1,
            "last_attempt_at": t.ago(hours=2),
            "notes": "Processing Stripe deletion",
            "updated_at": t.ago(hours=2),
        },
        {"status": "pending", "updated_at": t.ago(days=5)},
    ]
    return [
        {
            **blank,
            **task,
            "id": ids.action_tasks[index],
            "tenant_id": ids.tenant_id,
            "dsr_request_id": erasure_request,
            "pii_location_id": ids.pii_locations[index],
            "task_type": "erasure",
            "correlation_id": generate_id(),
            "created_at": t.ago(days=5),
        }
        for index, task in enumerate(tasks)
    ]


def _consent_records(t: _Offsets, ids: SeedIds) -> list[Record]:
    rows = [
        ("marketing", True, 30, "web_form", "consent", 365, "192.168.1.100",
         "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7)", {"source": "signup_page"}),
        ("analytics", True, 15, "cookie_banner", "consent", 180, "10.0.0.55",
         "Mozilla/5.0 (Windows NT 10.0; Win64; x64)", {"source": "homepage"}),
        ("marketing", False, 5, "preference_center", None, None, "172.16.0.22",
         "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0)",
         {"reason": "User requested removal from mailing list"}),
        ("third_party_sharing", True, 60, "api", "consent", None, "203.0.113.45",
         "MyApp/3.2.1 (iOS)", {"source": "mobile_app"}),
        ("profiling", True, 10, "web_form", "legitimate_interest", 90, "198.51.100.20",
         "Mozilla/5.0 (Linux; Android 13)", {"source": "checkout_page"}),
    ]
    records = []
    for index, (consent_type, granted, days, method, legal_basis, retention,
                ip_address, user_agent, metadata) in enumerate(rows):
        stamp = t.ago(days=days)
        records.append(
            {
                "id": generate_id(),
                "tenant_id": ids.tenant_id,
                "customer_id": ids.customers[index],
                "consent_type": consent_type,
                "consent_granted": granted,
                "granted_at": stamp if granted else None,
                "revoked_at": None if granted else stamp,
                "method": method,
                "legal_basis": legal_basis,
                "retention_days": retention,
                "ip_address": ip_address,
                "user_agent": user_agent,
                "metadata": metadata,
                "created_at": stamp,
                "updated_at": stamp,
            }
        )
    return records


def _activities(t: _Offsets, ids: SeedIds) -> list[Record]:
    requests, tasks, users = ids.requests, ids.action_tasks, ids.users
    rows = [
        (requests[0], None, None, "request_created", "Access request submitted for customer data",
         "user", users[0], "john.smith@example.com", None, "pending",
         {"requestType": "access"}, t.ago(days=5)),
        (requests[1], None, None, "request_created",
         "Erasure request submitted - right to be forgotten", "system", None, None,
         None, "pending", {"requestType": "erasure", "source": "public_api"}, t.ago(days=20)),
        (requests[1], None, None, "request_status_changed", "Request moved to in progress",
         "user", users[1], "jane.doe@example.com", "pending", "in_progress", {}, t.ago(days=6)),
        (requests[1], tasks[0], "PostgreSQL Users Database", "task_completed",
         "User data deleted from primary database", "automation", None, None,
         "in_progress", "completed", {"recordsAffected": 1, "executionTimeMs": 245},
         t.ago(days=2)),
        (requests[1], tasks[2], "Stripe Payment Gateway", "task_started",
         "Stripe deletion started", "user", users[0], "john.smith@example.com",
         "pending", "in_progress", {}, t.ago(hours=2)),
    ]
    return [
        {
            "id": generate_id(),
            "tenant_id": ids.tenant_id,
            "dsr_request_id": dsr_request_id,
            "action_task_id": action_task_id,
            "pii_location_name": location_name,
            "activity_type": activity_type,
            "description": description,
            "actor_type": actor_type,
            "actor_id": actor_id,
            "actor_name": actor_name,
            "previous_status": previous_status,
            "new_status": new_status,
            "details": details,
            "created_at": created_at,
        }
        for (dsr_request_id, action_task_id, location_name, activity_type, description,
             actor_type, actor_id, actor_name, previous_status, new_status, details,
             created_at) in rows
    ]


def seed_store(registry: TableRegistry, *, tenant_id: str = DEMO_TENANT_ID) -> SeedIds:
    """Load the demo data set into ``registry`` and return the seeded ids."""
    ids = SeedIds(
        tenant_id=tenant_id,
        customers=[generate_id() for _ in range(5)],
        users=[generate_id() for _ in range(3)],
        requests=[generate_id() for _ in range(5)],
        pii_locations=[generate_id() for _ in range(5)],
        action_tasks=[generate_id() for _ in range(4)],
    )
    offsets = _Offsets(registry.now())

    registry.load(TableName.AUDIT_LOGS, _audit_logs(offsets, ids))
    registry.load(TableName.DATA_SUBJECT_REQUESTS, _requests(offsets, ids))
    registry.load(TableName.PII_LOCATIONS, _pii_locations(offsets, ids))
    registry.load(TableName.ACTION_TASKS, _action_tasks(offsets, ids))
    registry.load(TableName.CONSENT_RECORDS, _consent_records(offsets, ids))
    registry.load(TableName.REQUEST_ACTIVITIES, _activities(offsets, ids))

    log.info("store.seeded", tenant_id=tenant_id, **registry.counts())
    return ids
