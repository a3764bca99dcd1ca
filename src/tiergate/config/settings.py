from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TIERGATE_",
        env_file=".env",
        extra="ignore",
    )

    # Runtime
    ENVIRONMENT: str = Field(default="dev", description="Environment name")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level for the CLI")

    # Database
    DATABASE_URL: str = Field(default="sqlite:///tiergate_dev.db")
    TEST_DATABASE_URL: str = Field(default="sqlite:///:memory:")
    SCHEMA_MODE: str = Field(
        default="create_all",
        description="create_all: auto-create tables (dev), external: schema is managed elsewhere",
    )

    # Modules
    MODULE_DIRS: str = Field(
        default="./modules", description="Comma-separated module directories, core first"
    )
    MODULE_PACKAGES: str = Field(
        default="", description="Comma-separated importable packages holding modules"
    )
    MODULE_ENTRY_POINT_GROUP: str = Field(
        default="tiergate.modules",
        description="Entry point group scanned after directories and packages; empty disables",
    )
    MODULES_AUTOLOAD: bool = Field(
        default=True, description="Discover modules when the runtime starts"
    )
    MODULES_DISABLED: str = Field(
        default="", description="Comma-separated module ids disabled after discovery"
    )

    # Tiers / usage
    TIER_POLICY_FILE: str = Field(
        default="",
        description="YAML or JSON tier policy file; empty uses the built-in table",
    )
    DEFAULT_TIER: str = Field(
        default="free", description="Tier used for users without an active membership"
    )
    USAGE_COUNTER_FALLBACK: bool = Field(
        default=False,
        description="Unknown resource types without a usage source read the monthly counter",
    )

    AUDIT_ENABLED: bool = Field(default=True, description="Write audit lines to the audit logger")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
