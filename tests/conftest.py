"""
Shared test fixtures for pytest.

Provides:
- clock: FrozenClock pinned to a fixed instant; advance() moves it
- settings: Test environment configuration (no implicit seeding)
- registry / seed_ids: Store seeded with the demo data set
- client: ComplianceClient over the seeded store
- empty_client: ComplianceClient over an empty store
- tenant_id, other_tenant_id: Tenant ids for isolation tests
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from compliance_emulator.config import Environment, Settings, get_settings
from compliance_emulator.database import ComplianceClient, SeedIds, TableRegistry, seed_store
from compliance_emulator.telemetry import clear_context

FROZEN_NOW = datetime(2026, 3, 16, 12, 0, 0, tzinfo=UTC)


class FrozenClock:
    """Deterministic clock; every call returns the same instant until advanced."""

    def __init__(self, start: datetime = FROZEN_NOW) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current += timedelta(**delta)
        return self.current


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Tenant context bound by one test must not leak into the next."""
    clear_context()
    yield
    clear_context()


# ------------------------------------------------------------------ #
# Settings & store fixtures
# ------------------------------------------------------------------ #

@pytest.fixture
def settings() -> Settings:
    """Test environment settings with safe defaults."""
    return Settings(
        _env_file=None,
        environment=Environment.TEST,
        seed_on_startup=False,
        log_level="DEBUG",
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def registry(settings: Settings, clock: FrozenClock) -> TableRegistry:
    return TableRegistry(table_prefix=settings.table_prefix, clock=clock)


@pytest.fixture
def seed_ids(registry: TableRegistry, settings: Settings) -> SeedIds:
    """Load the demo data set into the registry."""
    return seed_store(registry, tenant_id=settings.default_tenant_id)


@pytest.fixture
def client(registry: TableRegistry, settings: Settings, seed_ids: SeedIds) -> ComplianceClient:
    """Client over a freshly seeded store."""
    return ComplianceClient(registry, settings)


@pytest.fixture
def empty_client(settings: Settings, clock: FrozenClock) -> ComplianceClient:
    """Client over a store with no rows at all."""
    return ComplianceClient(
        TableRegistry(table_prefix=settings.table_prefix, clock=clock), settings
    )


@pytest.fixture
def tenant_id(settings: Settings) -> str:
    return settings.default_tenant_id


@pytest.fixture
def other_tenant_id() -> str:
    return "other-tenant-002"
