"""Audit log repository.

Write-once: entries are appended and read back, never changed. The
underlying collection rejects update and delete outright.

Usage:
    audit = AuditLogRepository(client, tenant_id)
    audit.log(
        "gdpr_request.created",
        "gdpr_request",
        resource_id=request.id,
        actor_type=ActorType.USER,
        user_id=user_id,
        is_gdpr_relevant=True,
    )
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from compliance_emulator.clock import to_iso
from compliance_emulator.database.predicates import Clause
from compliance_emulator.database.query import COUNT_EXACT
from compliance_emulator.database.registry import TableName
from compliance_emulator.models.audit import ActorType, AuditLogEntry
from compliance_emulator.services.base import DEFAULT_PAGE_SIZE, BaseRepository, Page, match_any

if TYPE_CHECKING:
    from compliance_emulator.database.query import SelectQuery

log = structlog.get_logger(__name__)

# Upper bound on rows returned by one export.
EXPORT_LIMIT = 10_000


class AuditLogRepository(BaseRepository[AuditLogEntry]):
    table = TableName.AUDIT_LOGS
    resource = "Audit log"
    model = AuditLogEntry
    order_columns = frozenset({"created_at", "action", "resource_type"})

    def log(
        self,
        action: str,
        resource_type: str,
        *,
        resource_id: str | None = None,
        actor_type: ActorType | str = ActorType.SYSTEM,
        user_id: str | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        is_gdpr_relevant: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        entry = self._insert(
            {
                "action": action,
                "resource_type": resource_type,
                "resource_id": str(resource_id) if resource_id else None,
                "actor_type": str(actor_type),
                "user_id": user_id,
                "old_values": old_values,
                "new_values": new_values,
                "ip_address": ip_address,
                "user_agent": user_agent,
                "is_gdpr_relevant": is_gdpr_relevant,
                "metadata": metadata or {},
            }
        )
        log.info(
            "audit.logged",
            action=action,
            resource_type=resource_type,
            resource_id=entry.resource_id,
            gdpr=is_gdpr_relevant,
        )
        return entry

    def _filtered(
        self,
        *,
        user_id: str | None = None,
        actor_type: str | None = None,
        action: str | list[str] | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        gdpr_relevant: bool | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        search: str | None = None,
    ) -> SelectQuery:
        query = self._select(count=COUNT_EXACT)
        query = match_any(query, "user_id", user_id)
        query = match_any(query, "actor_type", actor_type)
        query = match_any(query, "action", action)
        query = match_any(query, "resource_type", resource_type)
        query = match_any(query, "resource_id", resource_id)
        query = match_any(query, "is_gdpr_relevant", gdpr_relevant)
        if start_date is not None:
            query = query.gte("created_at", to_iso(start_date))
        if end_date is not None:
            query = query.lte("created_at", to_iso(end_date))
        if search:
            pattern = f"%{search}%"
            query = query.or_(
                [Clause("action", "ilike", pattern), Clause("resource_type", "ilike", pattern)]
            )
        return query

    def query(
        self,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        order_by: str = "created_at",
        descending: bool = True,
        **filters: Any,
    ) -> Page[AuditLogEntry]:
        """Filter by user_id, actor_type, action, resource_type, resource_id,
        gdpr_relevant, start_date/end_date (on created_at) or free-text search."""
        return self._page(
            self._filtered(**filters),
            order_by=order_by,
            descending=descending,
            limit=limit,
            offset=offset,
        )

    def get_recent(self, limit: int = 10) -> list[AuditLogEntry]:
        return self.query(limit=limit).items

    def get_gdpr_relevant(self, limit: int = DEFAULT_PAGE_SIZE) -> list[AuditLogEntry]:
        return self.query(gdpr_relevant=True, limit=limit).items

    def get_for_resource(self, resource_type: str, resource_id: str) -> list[AuditLogEntry]:
        return self.query(resource_type=resource_type, resource_id=resource_id, limit=1000).items

    def count(self, **filters: Any) -> int:
        result = self._filtered(**filters).limit(0).execute()
        self._raise_for(result, "count audit logs")
        return result.count or 0

    def export(self, **filters: Any) -> list[AuditLogEntry]:
        """Every matching entry, newest first, up to EXPORT_LIMIT. Takes query() filters."""
        return self.query(limit=EXPORT_LIMIT, offset=0, **filters).items

    def export_to_json(self, **filters: Any) -> str:
        entries = [entry.to_row() for entry in self.export(**filters)]
        log.info("audit.exported", entries=len(entries), filters=sorted(filters))
        return json.dumps(entries, indent=2, sort_keys=True)
