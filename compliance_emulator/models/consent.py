"""Consent record entity.

Records are immutable history: a grant and a later revocation are two
rows. Exactly one of ``granted_at`` / ``revoked_at`` is set, matching
``consent_granted``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field, model_validator

from compliance_emulator.models.base import RowModel

# Well-known consent types; custom types are accepted as plain strings.
CONSENT_TYPES = (
    "marketing",
    "analytics",
    "profiling",
    "third_party_sharing",
    "email_marketing",
    "sms_marketing",
    "data_processing",
)


class ConsentRecord(RowModel):
    customer_id: str
    consent_type: str = Field(..., min_length=1)
    consent_granted: bool
    granted_at: datetime | None = None
    revoked_at: datetime | None = None
    method: str | None = None
    legal_basis: str | None = None
    retention_days: int | None = Field(default=None, ge=0)
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    @model_validator(mode="after")
    def _exactly_one_stamp(self) -> ConsentRecord:
        if self.consent_granted and (self.granted_at is None or self.revoked_at is not None):
            raise ValueError("a granted consent carries granted_at and no revoked_at")
        if not self.consent_granted and (self.revoked_at is None or self.granted_at is not None):
            raise ValueError("a revoked consent carries revoked_at and no granted_at")
        return self

    @property
    def decided_at(self) -> datetime | None:
        return self.granted_at or self.revoked_at
