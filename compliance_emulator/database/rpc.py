"""Side-channel procedure calls (``client.rpc(name, params)``).

Two families are recognised:
- ``set_tenant_context`` / ``set_session_variable``: tenant-scoping setup.
  Returns no data; the only side effect is binding the tenant to the log
  context.
- any name containing ``metrics`` or ``stats``: a read-only summary computed
  by counting over the current collections.

Every other name resolves to ``data=None``.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from compliance_emulator.clock import parse_instant
from compliance_emulator.database.query import QueryResult
from compliance_emulator.database.registry import TableName
from compliance_emulator.errors import QueryError
from compliance_emulator.models.request import RequestStatus, is_overdue
from compliance_emulator.telemetry import bind_tenant_context

if TYPE_CHECKING:
    from compliance_emulator.database.registry import TableRegistry

log = structlog.get_logger(__name__)

TENANT_CONTEXT_FUNCTIONS = frozenset({"set_tenant_context", "set_session_variable"})
METRICS_MARKERS = ("metrics", "stats")

_RECENT_WITHDRAWAL_DAYS = 30


def _percent(part: int, whole: int, *, empty: float) -> float:
    if whole == 0:
        return empty
    return round(part / whole * 100, 1)


def _scoped(rows: list[dict[str, Any]], tenant_id: str | None) -> list[dict[str, Any]]:
    if tenant_id is None:
        return list(rows)
    return [row for row in rows if row.get("tenant_id") == tenant_id]


def request_metrics(rows: list[dict[str, Any]], now: datetime) -> dict[str, Any]:
    by_status = Counter(row.get("status") for row in rows)
    response_days: list[float] = []
    on_time = 0
    for row in rows:
        if row.get("status") != RequestStatus.COMPLETED:
            continue
        completed_at = parse_instant(row.get("completed_at"))
        started = parse_instant(row.get("requested_at") or row.get("created_at"))
        due = parse_instant(row.get("due_date"))
        if completed_at and started:
            response_days.append((completed_at - started).total_seconds() / 86400)
        if completed_at and due and completed_at <= due:
            on_time += 1
    completed = by_status[RequestStatus.COMPLETED]
    return {
        "total": len(rows),
        "pending": by_status[RequestStatus.PENDING],
        "inProgress": by_status[RequestStatus.IN_PROGRESS],
        "review": by_status[RequestStatus.REVIEW],
        "completed": completed,
        "overdue": sum(1 for row in rows if is_overdue(row, now)),
        "avgResponseDays": round(sum(response_days) / len(response_days), 1) if response_days else 0,
        "complianceRate": _percent(on_time, completed, empty=100.0),
        "byType": dict(Counter(row.get("request_type") for row in rows)),
    }


def consent_metrics(rows: list[dict[str, Any]], now: datetime) -> dict[str, Any]:
    active = sum(1 for row in rows if row.get("consent_granted"))
    cutoff = now - timedelta(days=_RECENT_WITHDRAWAL_DAYS)
    recent = 0
    for row in rows:
        revoked_at = parse_instant(row.get("revoked_at"))
        if not row.get("consent_granted") and revoked_at and revoked_at >= cutoff:
            recent += 1
    return {
        "totalActive": active,
        "totalRevoked": len(rows) - active,
        "consentRate": _percent(active, len(rows), empty=0.0),
        "recentWithdrawals": recent,
        "byType": dict(Counter(row.get("consent_type") for row in rows)),
    }


def audit_metrics(rows: list[dict[str, Any]], now: datetime) -> dict[str, Any]:
    today = now.date()
    today_events = 0
    for row in rows:
        created_at = parse_instant(row.get("created_at"))
        if created_at and created_at.date() == today:
            today_events += 1
    return {
        "totalEvents": len(rows),
        "todayEvents": today_events,
        "gdprRelevantEvents": sum(1 for row in rows if row.get("is_gdpr_relevant")),
        "highRiskEvents": sum(
            1 for row in rows if (row.get("metadata") or {}).get("riskLevel") == "high"
        ),
        "byAction": dict(Counter(row.get("action") for row in rows)),
    }


def compliance_metrics(registry: TableRegistry, tenant_id: str | None = None) -> dict[str, Any]:
    """Fixed-shape dashboard summary over the current collections."""
    now = registry.now()
    with registry.lock(TableName.DATA_SUBJECT_REQUESTS) as rows:
        requests = _scoped(rows, tenant_id)
    with registry.lock(TableName.CONSENT_RECORDS) as rows:
        consents = _scoped(rows, tenant_id)
    with registry.lock(TableName.AUDIT_LOGS) as rows:
        audit = _scoped(rows, tenant_id)
    return {
        "gdprRequests": request_metrics(requests, now),
        "consent": consent_metrics(consents, now),
        "audit": audit_metrics(audit, now),
    }


class RpcCall:
    """Deferred procedure call resolved by execute()."""

    def __init__(self, registry: TableRegistry, name: str, params: dict[str, Any] | None = None) -> None:
        self._registry = registry
        self._name = name
        self._params = dict(params or {})

    def execute(self) -> QueryResult:
        if self._name in TENANT_CONTEXT_FUNCTIONS:
            tenant_id = self._params.get("tenant_id") or self._params.get("variable_value")
            if tenant_id:
                bind_tenant_context(str(tenant_id))
            return QueryResult()

        if any(marker in self._name for marker in METRICS_MARKERS):
            tenant_id = self._params.get("tenant_id") or self._params.get("p_tenant_id")
            try:
                return QueryResult(data=compliance_metrics(self._registry, tenant_id))
            except QueryError as exc:
                return QueryResult(error=exc)

        log.debug("rpc.unknown_function", function=self._name)
        return QueryResult()
