"""
Emulator configuration via pydantic-settings.

All settings are loaded from environment variables prefixed with
``COMPLIANCE_`` (or a .env file in dev). This is the single source of truth
for tunables - nothing is hardcoded elsewhere.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="COMPLIANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False

    # ------------------------------------------------------------------ #
    # Logging
    # ------------------------------------------------------------------ #
    log_level: str = Field(
        default="INFO",
        description="Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=False,
        description="Render logs as JSON instead of the dev console format",
    )

    # ------------------------------------------------------------------ #
    # Store
    # ------------------------------------------------------------------ #
    default_tenant_id: str = Field(
        default="demo-tenant-001",
        min_length=1,
        description="Tenant used by the seed data and the CLI",
    )
    table_prefix: str = Field(
        default="compliance_",
        description="Physical table prefix stripped before routing a name to a collection",
    )
    seed_on_startup: bool = Field(
        default=True,
        description="Load demo seed data into newly created stores",
    )
    strict_single: bool = Field(
        default=True,
        description=(
            "When True, single() reports NotFound / MultipleRows in the result "
            "envelope. When False it behaves like maybe_single()."
        ),
    )

    # ------------------------------------------------------------------ #
    # Workflow
    # ------------------------------------------------------------------ #
    response_deadline_days: int = Field(
        default=30,
        ge=1,
        le=90,
        description="Days between request submission and its due date (GDPR Art. 12)",
    )
    due_soon_days: int = Field(
        default=7,
        ge=1,
        description="Window used by the 'due soon' request filter",
    )
    default_max_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Execution attempts allowed per action task",
    )
    retry_backoff_base_minutes: int = Field(
        default=1,
        ge=1,
        description="Base delay for exponential retry scheduling (base * 2**attempts)",
    )

    # ------------------------------------------------------------------ #
    # Derived / Computed
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @model_validator(mode="after")
    def _refuse_seed_in_prod(self) -> Settings:
        """Demo seed data must never be loaded into a production environment."""
        if self.environment == Environment.PROD and self.seed_on_startup:
            raise ValueError(
                "COMPLIANCE_SEED_ON_STARTUP must be false when COMPLIANCE_ENVIRONMENT=prod"
            )
        return self

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton.

    Pass an explicit Settings instance to create_client() in tests instead
    of mutating this one.
    """
    return Settings()
