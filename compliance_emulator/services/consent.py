"""Consent repository.

Consent history is never rewritten: granting and revoking both append a new
ConsentRecord, and the current state for a (customer, consent type) pair is
whichever record was written last. Reads walk the history oldest first so
that two records stamped with the same instant still resolve in write order.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog

from compliance_emulator.clock import parse_instant, to_iso
from compliance_emulator.database.query import COUNT_EXACT
from compliance_emulator.database.registry import TableName
from compliance_emulator.models.consent import ConsentRecord
from compliance_emulator.services.base import DEFAULT_PAGE_SIZE, BaseRepository, Page, match_any

log = structlog.get_logger(__name__)

RECENT_WITHDRAWAL_DAYS = 30


@dataclass(slots=True)
class CustomerConsentSummary:
    customer_id: str
    consents: dict[str, ConsentRecord] = field(default_factory=dict)
    last_updated: datetime | None = None

    def granted(self, consent_type: str) -> bool:
        record = self.consents.get(consent_type)
        return bool(record and record.consent_granted)


@dataclass(slots=True)
class ConsentMetrics:
    total_active: int = 0
    total_revoked: int = 0
    consent_rate: float = 0.0
    recent_withdrawals: int = 0
    by_type: dict[str, dict[str, int]] = field(default_factory=dict)
    by_method: dict[str, int] = field(default_factory=dict)


class ConsentRepository(BaseRepository[ConsentRecord]):
    table = TableName.CONSENT_RECORDS
    resource = "Consent record"
    model = ConsentRecord

    def grant_consent(
        self,
        customer_id: str,
        consent_type: str,
        *,
        method: str | None = None,
        legal_basis: str | None = "consent",
        retention_days: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ConsentRecord:
        record = self._insert(
            {
                "customer_id": customer_id,
                "consent_type": consent_type,
                "consent_granted": True,
                "granted_at": self._stamp(),
                "revoked_at": None,
                "method": method,
                "legal_basis": legal_basis,
                "retention_days": retention_days,
                "ip_address": ip_address,
                "user_agent": user_agent,
                "metadata": metadata or {},
            }
        )
        log.info("consent.granted", customer_id=customer_id, consent_type=consent_type)
        return record

    def revoke_consent(
        self,
        customer_id: str,
        consent_type: str,
        *,
        method: str | None = None,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ConsentRecord:
        record = self._insert(
            {
                "customer_id": customer_id,
                "consent_type": consent_type,
                "consent_granted": False,
                "granted_at": None,
                "revoked_at": self._stamp(),
                "method": method,
                "legal_basis": None,
                "retention_days": None,
                "ip_address": ip_address,
                "user_agent": user_agent,
                "metadata": {"reason": reason} if reason else {},
            }
        )
        log.info("consent.revoked", customer_id=customer_id, consent_type=consent_type)
        return record

    def query(
        self,
        *,
        customer_id: str | None = None,
        consent_type: str | list[str] | None = None,
        granted: bool | None = None,
        method: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        descending: bool = True,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Page[ConsentRecord]:
        query = self._select(count=COUNT_EXACT)
        query = match_any(query, "customer_id", customer_id)
        query = match_any(query, "consent_type", consent_type)
        query = match_any(query, "consent_granted", granted)
        query = match_any(query, "method", method)
        if start_date is not None:
            query = query.gte("created_at", to_iso(start_date))
        if end_date is not None:
            query = query.lte("created_at", to_iso(end_date))
        return self._page(
            query, order_by="created_at", descending=descending, limit=limit, offset=offset
        )

    def _history(self, customer_id: str | None = None, consent_type: str | None = None) -> list[dict]:
        query = self._select()
        query = match_any(query, "customer_id", customer_id)
        query = match_any(query, "consent_type", consent_type)
        result = query.order("created_at").execute()
        self._raise_for(result, "read consent history")
        return result.data

    def get_customer_history(self, customer_id: str) -> list[ConsentRecord]:
        """Every record for one customer, newest first."""
        rows = self._history(customer_id)
        return [ConsentRecord.from_row(row) for row in reversed(rows)]

    def has_consent(self, customer_id: str, consent_type: str) -> bool:
        """Current state of one consent; False when nothing was ever recorded."""
        rows = self._history(customer_id, consent_type)
        return bool(rows) and bool(rows[-1]["consent_granted"])

    def get_customer_summary(self, customer_id: str) -> CustomerConsentSummary:
        """Latest record per consent type for one customer."""
        summary = CustomerConsentSummary(customer_id=customer_id)
        for row in self._history(customer_id):
            record = ConsentRecord.from_row(row)
            summary.consents[record.consent_type] = record
            if record.created_at and (
                summary.last_updated is None or record.created_at >= summary.last_updated
            ):
                summary.last_updated = record.created_at
        return summary

    def get_metrics(self) -> ConsentMetrics:
        rows = self._history()
        withdrawals_since = self._now() - timedelta(days=RECENT_WITHDRAWAL_DAYS)

        latest: dict[tuple[str, str], bool] = {}
        by_method: Counter[str] = Counter()
        metrics = ConsentMetrics()
        for row in rows:
            latest[(row["customer_id"], row["consent_type"])] = bool(row["consent_granted"])
            if row.get("method"):
                by_method[row["method"]] += 1
            created_at = parse_instant(row.get("created_at"))
            if not row["consent_granted"] and created_at and created_at > withdrawals_since:
                metrics.recent_withdrawals += 1

        for (_, consent_type), granted in latest.items():
            counts = metrics.by_type.setdefault(consent_type, {"granted": 0, "revoked": 0})
            if granted:
                metrics.total_active += 1
                counts["granted"] += 1
            else:
                metrics.total_revoked += 1
                counts["revoked"] += 1

        total = metrics.total_active + metrics.total_revoked
        if total:
            metrics.consent_rate = round(metrics.total_active / total * 100, 1)
        metrics.by_method = dict(by_method)
        return metrics
