"""Tests for PiiLocationRepository."""

from __future__ import annotations

import pytest

from compliance_emulator.database import ComplianceClient, SeedIds
from compliance_emulator.errors import InvariantViolationError, NotFoundError, ValidationError
from compliance_emulator.models import (
    AutomatedActionConfig,
    ExecutionType,
    ManualActionConfig,
    RequestType,
    SystemType,
)
from compliance_emulator.models.pii_location import Endpoint, InstructionStep
from compliance_emulator.services import PiiLocationRepository


@pytest.fixture
def locations(client: ComplianceClient, tenant_id: str) -> PiiLocationRepository:
    return PiiLocationRepository(client, tenant_id)


def _manual_config() -> ManualActionConfig:
    return ManualActionConfig(
        instructions=[InstructionStep(step=1, title="Open ticket", description="Ask IT")],
        estimated_minutes=20,
    )


class TestCreate:
    def test_automated_location(self, locations) -> None:
        config = AutomatedActionConfig(
            endpoint=Endpoint(url="https://api.internal/crm/{customer_id}", method="DELETE")
        )
        location = locations.create(
            "CRM", SystemType.API, ExecutionType.AUTOMATED, config, priority_order=5
        )

        assert location.supported_request_types == [
            RequestType.ERASURE,
            RequestType.ACCESS,
            RequestType.PORTABILITY,
        ]
        assert location.is_active
        assert location.last_verified_at is None
        stored = locations.get(location.id)
        assert stored.action_config.endpoint.url.startswith("https://api.internal/crm")

    def test_manual_location_from_model(self, locations) -> None:
        location = locations.create(
            "Paper archive",
            "manual",
            "manual",
            _manual_config(),
            supported_request_types=["access"],
        )
        assert isinstance(location.action_config, ManualActionConfig)

    def test_mismatched_config_rejected(self, locations) -> None:
        with pytest.raises(InvariantViolationError, match="manual"):
            locations.create(
                "Paper archive",
                "manual",
                "manual",
                {"endpoint": {"url": "https://x"}},
            )


class TestUpdate:
    def test_update_fields(self, locations, seed_ids: SeedIds) -> None:
        updated = locations.update(seed_ids.pii_locations[2], priority_order=15, owner_team="Billing")
        assert updated.priority_order == 15
        assert updated.owner_team == "Billing"

    def test_unknown_field_rejected(self, locations, seed_ids: SeedIds) -> None:
        with pytest.raises(ValidationError, match="tenant_id"):
            locations.update(seed_ids.pii_locations[0], tenant_id="other")

    def test_metadata_merged(self, locations, seed_ids: SeedIds) -> None:
        updated = locations.update(seed_ids.pii_locations[4], metadata={"ticketQueue": "ERP"})
        assert updated.metadata == {
            "note": "Legacy system - erasure not supported",
            "ticketQueue": "ERP",
        }

    def test_switch_to_manual_needs_config(self, locations, seed_ids: SeedIds) -> None:
        """Changing the execution type alone would leave an inconsistent row."""
        with pytest.raises(InvariantViolationError):
            locations.update(seed_ids.pii_locations[0], execution_type="manual")
        updated = locations.update(
            seed_ids.pii_locations[0], execution_type="manual", action_config=_manual_config()
        )
        assert updated.execution_type == ExecutionType.MANUAL


class TestQueries:
    def test_for_request_type_in_priority_order(self, locations) -> None:
        names = [loc.name for loc in locations.get_for_request_type(RequestType.ERASURE)]
        assert names == [
            "PostgreSQL Users Database",
            "Salesforce CRM",
            "Stripe Payment Gateway",
            "AWS S3 User Documents",
        ]

    def test_inactive_excluded(self, locations, seed_ids: SeedIds) -> None:
        locations.deactivate(seed_ids.pii_locations[0])
        names = [loc.name for loc in locations.get_for_request_type("portability")]
        assert names == ["AWS S3 User Documents"]
        assert len(locations.get_active()) == 4

    def test_by_system_and_execution_type(self, locations) -> None:
        assert [loc.name for loc in locations.get_by_system_type("api")] == ["Stripe Payment Gateway"]
        manual = locations.get_by_execution_type(ExecutionType.MANUAL)
        assert [loc.name for loc in manual] == ["Salesforce CRM", "Legacy ERP System"]

    def test_search(self, locations) -> None:
        page = locations.query(search="payment")
        assert [loc.name for loc in page.items] == ["Stripe Payment Gateway"]

    def test_owner_team(self, locations) -> None:
        assert locations.query(owner_team="Finance").total == 1


class TestVerificationAndRemoval:
    def test_mark_verified(self, locations, seed_ids: SeedIds, clock) -> None:
        verified = locations.mark_verified(seed_ids.pii_locations[3])
        assert verified.last_verified_at == clock.current

    def test_summary(self, locations) -> None:
        """Active locations never verified or verified over 30 days ago need verification."""
        summary = locations.get_summary()
        assert summary.total == 5
        assert summary.active == 5
        assert summary.needs_verification == 3
        assert summary.by_execution_type == {"automated": 2, "manual": 2, "semi_automated": 1}

    def test_summary_counts_only_active(self, locations, seed_ids: SeedIds) -> None:
        locations.deactivate(seed_ids.pii_locations[4])
        summary = locations.get_summary()
        assert summary.total == 5
        assert summary.active == 4
        assert summary.needs_verification == 2

    def test_hard_delete(self, locations, seed_ids: SeedIds) -> None:
        locations.hard_delete(seed_ids.pii_locations[4])
        assert locations.find_by_id(seed_ids.pii_locations[4]) is None
        with pytest.raises(NotFoundError):
            locations.hard_delete(seed_ids.pii_locations[4])
