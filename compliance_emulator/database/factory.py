"""Store and client construction."""

from __future__ import annotations

import structlog

from compliance_emulator.clock import Clock, utc_now
from compliance_emulator.config import Settings, get_settings
from compliance_emulator.database.client import ComplianceClient
from compliance_emulator.database.registry import TableRegistry
from compliance_emulator.database.seed import seed_store

log = structlog.get_logger(__name__)


def create_store(
    settings: Settings,
    *,
    clock: Clock = utc_now,
    seed: bool | None = None,
) -> TableRegistry:
    """Return a new registry, seeded unless disabled.

    Args:
        settings: Emulator Settings instance.
        clock: Source of "now" for stamps and seed offsets.
        seed: Overrides settings.seed_on_startup when given.

    Returns:
        A TableRegistry with its own independent collections.
    """
    registry = TableRegistry(table_prefix=settings.table_prefix, clock=clock)
    should_seed = settings.seed_on_startup if seed is None else seed
    if should_seed:
        seed_store(registry, tenant_id=settings.default_tenant_id)
    log.info("store.created", seeded=should_seed, environment=str(settings.environment))
    return registry


def create_client(
    settings: Settings | None = None,
    *,
    clock: Clock = utc_now,
    seed: bool | None = None,
) -> ComplianceClient:
    """Build a client over a fresh store.

    Each call owns an independent store; share one client between callers
    that should observe each other's writes.
    """
    settings = settings or get_settings()
    return ComplianceClient(create_store(settings, clock=clock, seed=seed), settings)
