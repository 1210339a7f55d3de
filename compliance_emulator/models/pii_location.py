"""PII location registry entity.

A PII location is a system of record holding personal data. Its
``action_config`` says how a request is executed against it: an
automated endpoint call or a list of manual steps.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from compliance_emulator.models.base import RowModel
from compliance_emulator.models.request import RequestType


class SystemType(StrEnum):
    DATABASE = "database"
    API = "api"
    MANUAL = "manual"
    FILE_STORAGE = "file_storage"
    THIRD_PARTY = "third_party"


class ExecutionType(StrEnum):
    AUTOMATED = "automated"  # fully automated via API/webhook
    SEMI_AUTOMATED = "semi_automated"  # automated, manually verified
    MANUAL = "manual"  # human follows instructions


class _CamelModel(BaseModel):
    """Nested config stored with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class AuthConfig(_CamelModel):
    header_name: str | None = None
    secret_ref: str | None = None


class Endpoint(_CamelModel):
    url: str
    method: str = Field(default="POST", pattern="^(DELETE|POST|PUT|PATCH|GET)$")
    auth_type: str = Field(default="none", pattern="^(bearer|api_key|oauth2|basic|none)$")
    auth_config: AuthConfig = Field(default_factory=AuthConfig)


class SuccessCondition(_CamelModel):
    http_status: list[int] = Field(default_factory=lambda: [200])


class AutomatedActionConfig(_CamelModel):
    endpoint: Endpoint
    success_condition: SuccessCondition = Field(default_factory=SuccessCondition)


class InstructionStep(_CamelModel):
    step: int = Field(..., ge=1)
    title: str
    description: str
    warning: str | None = None
    expected_result: str | None = None


class ManualActionConfig(_CamelModel):
    instructions: list[InstructionStep] = Field(..., min_length=1)
    estimated_minutes: int | None = Field(default=None, ge=0)
    required_role: str | None = None
    documentation_url: str | None = None
    verification_checklist: list[str] = Field(default_factory=list)


class PiiLocation(RowModel):
    name: str = Field(..., min_length=1)
    description: str | None = None
    system_type: SystemType
    execution_type: ExecutionType
    supported_request_types: list[RequestType] = Field(default_factory=list)
    priority_order: int = 100
    action_config: AutomatedActionConfig | ManualActionConfig
    owner_email: str | None = None
    owner_team: str | None = None
    pii_fields: list[str] = Field(default_factory=list)
    data_categories: list[str] = Field(default_factory=list)
    consent_fields: list[str] = Field(default_factory=list)
    consent_query_config: dict[str, Any] | None = None
    is_active: bool = True
    last_verified_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _config_matches_execution(self) -> PiiLocation:
        manual = self.execution_type == ExecutionType.MANUAL
        if manual and not isinstance(self.action_config, ManualActionConfig):
            raise ValueError("manual locations require a manual action config")
        if not manual and not isinstance(self.action_config, AutomatedActionConfig):
            raise ValueError(f"{self.execution_type} locations require an endpoint config")
        return self

    def supports(self, request_type: str) -> bool:
        return request_type in self.supported_request_types
