"""Runtime settings for the ingest service.

Configuration comes from ``PNP_``-prefixed environment variables and an
optional ``.env`` file. The one exception is ``BYPASS_LOCAL_STORAGE``, which
keeps its historical un-prefixed name because test harnesses set it directly.

Examples:
    >>> from pnp_ingest.core.settings import IngestSettings
    >>> settings = IngestSettings(encryption_keys=["..."], workers=8)
    >>> settings.retry_delay_seconds
    5.0

Tags:
    settings, configuration, pydantic, environment, pnp-ingest
"""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Annotated, Any

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class IngestSettings(BaseSettings):
    """Settings for the materialization pipeline.

    Fields
    ──────
    encryption_keys        : Fernet keys; first is primary, rest for rotation
    database_url           : SQLAlchemy URL of the relational store
    db_timeout_seconds     : Deadline applied to every DB call
    bypass_local_storage   : Skip all DB reads and writes (test deployments)
    workers                : Worker threads pulling from the bus
    retry_delay_seconds    : Fixed sleep between transient retries
    catalog_url            : HTTP endpoint serving catalog entries
    catalog_file           : Local JSON catalog (used when no URL is set)
    catalog_ttl_seconds    : Lifetime of the cached catalog snapshot
    notification_queue_size: Bound of the outbound intent queue
    """

    model_config = SettingsConfigDict(
        env_prefix="PNP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Decryption ───────────────────────────────────────────────
    encryption_keys: Annotated[list[SecretStr], NoDecode] = Field(default_factory=list)

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = "sqlite:///pnp_ingest.db"
    db_timeout_seconds: float = 30.0
    db_pool_size: int = 10
    bypass_local_storage: bool = Field(
        default=False,
        validation_alias=AliasChoices("BYPASS_LOCAL_STORAGE", "bypass_local_storage"),
    )

    # ── Execution ────────────────────────────────────────────────
    workers: int = Field(default=4, ge=1)
    retry_delay_seconds: float = 5.0
    shutdown_grace_seconds: float = 5.0
    dead_letter_permanent: bool = True

    # ── Catalog ──────────────────────────────────────────────────
    catalog_url: str | None = None
    catalog_file: str | None = None
    catalog_ttl_seconds: float = 3600.0
    catalog_timeout_seconds: float = 10.0
    heartbeat_service: str = "pnp-api-oss"

    # ── Bus / notifications ──────────────────────────────────────
    redis_url: str = "redis://localhost:6379/0"
    queue_prefix: str = "pnp"
    notification_queue_size: int = Field(default=1000, ge=1)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None
    service_name: str = "pnp-ingest"
    host: str = "0.0.0.0"
    port: int = 8000

    @field_validator("bypass_local_storage", mode="before")
    @classmethod
    def _only_literal_true(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        return str(value) == "true"

    @field_validator("encryption_keys", mode="before")
    @classmethod
    def _split_keys(cls, value: Any) -> Any:
        # PNP_ENCRYPTION_KEYS=key1,key2 as well as a JSON list
        if isinstance(value, str):
            if value.lstrip().startswith("["):
                return json.loads(value)
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    def key_material(self) -> list[bytes]:
        """Return raw key bytes in priority order."""
        return [key.get_secret_value().encode() for key in self.encryption_keys]


@lru_cache(maxsize=1)
def get_settings() -> IngestSettings:
    """Process-wide settings instance."""
    return IngestSettings()
