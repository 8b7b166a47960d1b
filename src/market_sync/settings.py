from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from market_sync.entities import LOG_DRIVEN_ENTITIES, RECONCILED_ENTITIES
from market_sync.models import EntityKind, FailurePolicy

_TABLE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _conninfo_quote(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


class EntitySyncConfig(BaseModel):
    """Chunking and failure handling for one entity kind."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True
    insert_chunk_size: int = Field(default=100, ge=1)
    delete_chunk_size: int = Field(default=100, ge=1)
    failure_policy: FailurePolicy = FailurePolicy.CONTINUE_ON_CHUNK_FAILURE
    max_attempts: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=400, ge=0)


_STRICT = {"failure_policy": FailurePolicy.ABORT_ON_FIRST_FAILURE, "max_attempts": 1}

DEFAULT_ENTITY_CONFIGS: dict[str, EntitySyncConfig] = {
    EntityKind.PRICE.config_name: EntitySyncConfig(insert_chunk_size=50, delete_chunk_size=50),
    # Product uploads stop at the first failed batch.
    EntityKind.INVENTORY.config_name: EntitySyncConfig(
        insert_chunk_size=100, delete_chunk_size=100, **_STRICT
    ),
    EntityKind.PRODUCT_BARCODE.config_name: EntitySyncConfig(
        insert_chunk_size=500, delete_chunk_size=500, **_STRICT
    ),
    EntityKind.CUSTOMER.config_name: EntitySyncConfig(insert_chunk_size=50, delete_chunk_size=50),
    EntityKind.PRICE_FORMULA.config_name: EntitySyncConfig(
        insert_chunk_size=100, delete_chunk_size=100
    ),
    "balance": EntitySyncConfig(insert_chunk_size=1000, delete_chunk_size=1000, **_STRICT),
}


def known_entity_names() -> tuple[str, ...]:
    return tuple(definition.name for definition in LOG_DRIVEN_ENTITIES.values()) + tuple(
        RECONCILED_ENTITIES
    )


def load_entity_overrides(path: Path) -> dict[str, dict[str, Any]]:
    """Read per-entity overrides from a YAML file shaped like ``entities: {name: {...}}``."""
    with path.open("r", encoding="utf-8") as handle:
        document = yaml.safe_load(handle) or {}

    if not isinstance(document, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")

    entities = document.get("entities") or {}
    if not isinstance(entities, dict):
        raise ValueError(f"{path}: 'entities' must be a mapping")

    unknown = sorted(set(entities) - set(known_entity_names()))
    if unknown:
        raise ValueError(f"{path}: unknown entities {', '.join(unknown)}")

    for name, overrides in entities.items():
        if not isinstance(overrides, dict):
            raise ValueError(f"{path}: entities.{name} must be a mapping")
    return entities


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False)

    pghost: str = Field(alias="PGHOST")
    pgport: int = Field(default=5432, alias="PGPORT")
    pguser: str = Field(alias="PGUSER")
    pgpassword: str = Field(alias="PGPASSWORD")
    pgdatabase: str = Field(alias="PGDATABASE")
    connect_timeout_s: int = Field(default=5, alias="CONNECT_TIMEOUT_S")

    gateway_base_url: str = Field(alias="GATEWAY_BASE_URL")
    gateway_timeout_s: float = Field(default=120.0, alias="GATEWAY_TIMEOUT_S")

    change_log_table: str = Field(default="sml_market_sync", alias="CHANGE_LOG_TABLE")
    prune_chunk_size: int = Field(default=100, alias="PRUNE_CHUNK_SIZE")
    prune_mode: Literal["confirmed", "eager"] = Field(default="confirmed", alias="PRUNE_MODE")
    chunk_delay_ms: int = Field(default=100, alias="CHUNK_DELAY_MS")
    halt_on_error: bool = Field(default=False, alias="HALT_ON_ERROR")
    cycle_interval_s: float = Field(default=60.0, alias="CYCLE_INTERVAL_S")

    reconcile_page_size: int = Field(default=10000, alias="RECONCILE_PAGE_SIZE")
    reconcile_epsilon: float = Field(default=0.001, alias="RECONCILE_EPSILON")

    entity_config_path: Path | None = Field(default=None, alias="ENTITY_CONFIG_PATH")
    entities: dict[str, EntitySyncConfig] = Field(
        default_factory=lambda: dict(DEFAULT_ENTITY_CONFIGS)
    )

    @field_validator("change_log_table")
    @classmethod
    def _validate_change_log_table(cls, value: str) -> str:
        if not _TABLE_PATTERN.fullmatch(value):
            raise ValueError("CHANGE_LOG_TABLE must be a plain SQL identifier")
        return value

    @field_validator("gateway_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("GATEWAY_BASE_URL must be an http(s) URL")
        return value.rstrip("/")

    @field_validator("prune_chunk_size", "reconcile_page_size")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("chunk and page sizes must be >= 1")
        return value

    @field_validator("chunk_delay_ms")
    @classmethod
    def _validate_delay(cls, value: int) -> int:
        if value < 0:
            raise ValueError("CHUNK_DELAY_MS must be >= 0")
        return value

    @field_validator("reconcile_epsilon", "gateway_timeout_s")
    @classmethod
    def _validate_non_negative_float(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @model_validator(mode="after")
    def _merge_entity_overrides(self) -> Settings:
        if self.entity_config_path is None:
            return self

        merged = dict(self.entities)
        for name, overrides in load_entity_overrides(self.entity_config_path).items():
            base = merged.get(name, EntitySyncConfig())
            merged[name] = EntitySyncConfig.model_validate({**base.model_dump(), **overrides})
        self.entities = merged
        return self

    def entity_config(self, name: str) -> EntitySyncConfig:
        try:
            return self.entities[name]
        except KeyError:
            raise KeyError(f"No sync configuration for entity {name!r}") from None

    @property
    def postgres_conninfo(self) -> str:
        return (
            f"host={self.pghost} port={self.pgport} user={self.pguser} "
            f"password={_conninfo_quote(self.pgpassword)} dbname={self.pgdatabase} "
            f"connect_timeout={self.connect_timeout_s}"
        )
