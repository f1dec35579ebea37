# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for cache backend selection, freshness windows,
key derivation tuning and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Storage backend ===
    cache_backend: Literal["json", "sqlite", "redis"] = "json"
    cache_root: Path = Path("~/.analysiscache/store")
    cache_redis_url: str = ""
    cache_redis_prefix: str = "analysiscache:"

    # === Per-user cache keys ===
    cache_key_digest_length: int = 32
    url_tracking_params: str = (
        "ref,ref_,utm_source,utm_medium,utm_campaign,utm_term,utm_content,tag"
    )
    input_summary_max_chars: int = 500
    url_summary_max_chars: int = 200

    # === Shared entity cache ===
    entity_cache_ttl_days: int = 30
    entity_live_fields: str = (
        "risk_score,aromatization_score,aromatization_notes,aa_ratio,curator_notes"
    )

    # === Generation ===
    generation_timeout_s: float = 60.0

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("cache_key_digest_length")
    @classmethod
    def validate_digest_length(cls, v: int) -> int:  # noqa: N805
        """SHA-256 hex digests are 64 chars; below 8 collisions get likely."""
        if not 8 <= v <= 64:
            raise ValueError("cache_key_digest_length must be within 8..64")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.cache_backend == "redis" and not self.cache_redis_url:
            errors.append("CACHE_BACKEND=redis requires CACHE_REDIS_URL")

        if self.entity_cache_ttl_days <= 0:
            errors.append("ENTITY_CACHE_TTL_DAYS must be > 0")

        if self.generation_timeout_s <= 0:
            errors.append("GENERATION_TIMEOUT_S must be > 0")

        if self.input_summary_max_chars <= 0 or self.url_summary_max_chars <= 0:
            errors.append("Summary limits must be > 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def url_tracking_params_list(self) -> list[str]:
        """Parse comma-separated tracking parameter names."""
        return [p.strip() for p in self.url_tracking_params.split(",") if p.strip()]

    @property
    def entity_live_field_paths(self) -> dict[str, str]:
        """Parse ``name`` or ``name:dotted.path`` entries into a field → path map."""
        paths: dict[str, str] = {}
        for item in self.entity_live_fields.split(","):
            item = item.strip()
            if not item:
                continue
            name, _, path = item.partition(":")
            paths[name.strip()] = path.strip() or name.strip()
        return paths


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or embedding).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
