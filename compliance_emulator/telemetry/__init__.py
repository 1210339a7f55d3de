"""Telemetry package: structured logging for the emulator."""

from __future__ import annotations

from compliance_emulator.telemetry.logging import (
    bind_tenant_context,
    clear_context,
    configure_logging,
)

__all__ = [
    "bind_tenant_context",
    "clear_context",
    "configure_logging",
]
