"""PII location registry repository."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import structlog
from pydantic import BaseModel

from compliance_emulator.clock import parse_instant
from compliance_emulator.database.predicates import Clause
from compliance_emulator.database.query import COUNT_EXACT
from compliance_emulator.database.registry import TableName
from compliance_emulator.errors import NotFoundError, ValidationError
from compliance_emulator.models.pii_location import ExecutionType, PiiLocation, SystemType
from compliance_emulator.models.request import RequestType
from compliance_emulator.services.base import DEFAULT_PAGE_SIZE, BaseRepository, Page, match_any

log = structlog.get_logger(__name__)

# Locations not verified within this window are flagged in the summary.
VERIFICATION_INTERVAL_DAYS = 30

DEFAULT_REQUEST_TYPES = (RequestType.ERASURE, RequestType.ACCESS, RequestType.PORTABILITY)

UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "system_type",
        "execution_type",
        "supported_request_types",
        "priority_order",
        "action_config",
        "owner_email",
        "owner_team",
        "pii_fields",
        "data_categories",
        "consent_fields",
        "consent_query_config",
        "is_active",
    }
)


@dataclass(slots=True)
class LocationSummary:
    total: int = 0
    active: int = 0
    needs_verification: int = 0
    by_system_type: dict[str, int] = field(default_factory=dict)
    by_execution_type: dict[str, int] = field(default_factory=dict)


def _config_row(config: BaseModel | dict[str, Any]) -> dict[str, Any]:
    if isinstance(config, BaseModel):
        return config.model_dump(by_alias=True, exclude_none=True)
    return dict(config)


class PiiLocationRepository(BaseRepository[PiiLocation]):
    table = TableName.PII_LOCATIONS
    resource = "PII location"
    model = PiiLocation
    order_columns = frozenset({"priority_order", "name", "created_at", "updated_at"})

    def create(
        self,
        name: str,
        system_type: SystemType | str,
        execution_type: ExecutionType | str,
        action_config: BaseModel | dict[str, Any],
        *,
        supported_request_types: list[str] | None = None,
        priority_order: int = 100,
        description: str | None = None,
        owner_email: str | None = None,
        owner_team: str | None = None,
        pii_fields: list[str] | None = None,
        data_categories: list[str] | None = None,
        consent_fields: list[str] | None = None,
        consent_query_config: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PiiLocation:
        types = supported_request_types or DEFAULT_REQUEST_TYPES
        location = self._insert(
            {
                "name": name,
                "description": description,
                "system_type": str(system_type),
                "execution_type": str(execution_type),
                "supported_request_types": [str(t) for t in types],
                "priority_order": priority_order,
                "action_config": _config_row(action_config),
                "owner_email": owner_email,
                "owner_team": owner_team,
                "pii_fields": pii_fields or [],
                "data_categories": data_categories or [],
                "consent_fields": consent_fields or [],
                "consent_query_config": consent_query_config,
                "is_active": True,
                "last_verified_at": None,
                "metadata": metadata or {},
            }
        )
        log.info(
            "pii_location.created",
            location_id=location.id,
            name=name,
            execution_type=str(execution_type),
        )
        return location

    def update(self, location_id: str, **changes: Any) -> PiiLocation:
        """Update any of UPDATABLE_FIELDS; ``metadata`` is merged."""
        unknown = set(changes) - UPDATABLE_FIELDS - {"metadata"}
        if unknown:
            raise ValidationError(
                f"cannot update {', '.join(sorted(unknown))}", field=sorted(unknown)[0]
            )
        patch = dict(changes)
        if "action_config" in patch:
            patch["action_config"] = _config_row(patch["action_config"])
        if "supported_request_types" in patch:
            patch["supported_request_types"] = [str(t) for t in patch["supported_request_types"]]
        for key in ("system_type", "execution_type"):
            if key in patch:
                patch[key] = str(patch[key])
        with self._client.locked(self.table):
            if "metadata" in patch:
                current = self.get(location_id)
                patch["metadata"] = {**current.metadata, **patch["metadata"]}
            return self._update(location_id, patch)

    def query(
        self,
        *,
        system_type: str | list[str] | None = None,
        execution_type: str | list[str] | None = None,
        request_type: str | None = None,
        is_active: bool | None = None,
        owner_team: str | None = None,
        search: str | None = None,
        order_by: str = "priority_order",
        descending: bool = False,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Page[PiiLocation]:
        query = self._select(count=COUNT_EXACT)
        query = match_any(query, "system_type", system_type)
        query = match_any(query, "execution_type", execution_type)
        query = match_any(query, "is_active", is_active)
        query = match_any(query, "owner_team", owner_team)
        if request_type is not None:
            query = query.contains("supported_request_types", [str(request_type)])
        if search:
            pattern = f"%{search}%"
            query = query.or_(
                [Clause("name", "ilike", pattern), Clause("description", "ilike", pattern)]
            )
        return self._page(
            query, order_by=order_by, descending=descending, limit=limit, offset=offset
        )

    def get_active(self) -> list[PiiLocation]:
        return self.query(is_active=True, limit=1000).items

    def get_for_request_type(self, request_type: RequestType | str) -> list[PiiLocation]:
        """Active locations supporting ``request_type``, in priority order."""
        return self.query(is_active=True, request_type=request_type, limit=1000).items

    def get_by_system_type(self, system_type: SystemType | str) -> list[PiiLocation]:
        return self.query(system_type=str(system_type), is_active=True, limit=1000).items

    def get_by_execution_type(self, execution_type: ExecutionType | str) -> list[PiiLocation]:
        return self.query(execution_type=str(execution_type), is_active=True, limit=1000).items

    def deactivate(self, location_id: str) -> PiiLocation:
        """Soft delete: the location stays but no longer spawns tasks."""
        location = self._update(location_id, {"is_active": False})
        log.info("pii_location.deactivated", location_id=location_id)
        return location

    def hard_delete(self, location_id: str) -> None:
        result = (
            self._from()
            .delete()
            .eq("id", location_id)
            .eq("tenant_id", self.tenant_id)
            .select("id")
            .execute()
        )
        self._raise_for(result, "delete PII location")
        if not result.data:
            raise NotFoundError(self.resource, location_id)
        log.warning("pii_location.deleted", location_id=location_id)

    def mark_verified(self, location_id: str) -> PiiLocation:
        return self._update(location_id, {"last_verified_at": self._stamp()})

    def get_summary(self) -> LocationSummary:
        result = self._select(
            "is_active, system_type, execution_type, last_verified_at"
        ).execute()
        self._raise_for(result, "get PII location summary")

        stale_before = self._now() - timedelta(days=VERIFICATION_INTERVAL_DAYS)
        summary = LocationSummary()
        by_system: Counter[str] = Counter()
        by_execution: Counter[str] = Counter()
        for row in result.data:
            summary.total += 1
            if not row["is_active"]:
                continue
            summary.active += 1
            by_system[row["system_type"]] += 1
            by_execution[row["execution_type"]] += 1
            verified_at = parse_instant(row["last_verified_at"])
            if verified_at is None or verified_at < stale_before:
                summary.needs_verification += 1
        summary.by_system_type = dict(by_system)
        summary.by_execution_type = dict(by_execution)
        return summary
