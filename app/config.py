"""Application configuration models."""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Literal, Mapping

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import DOMAINS


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Stackr", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./stackr.db", alias="DATABASE_URL"
    )

    cache_ttl_seconds: int = Field(default=14_400, alias="CACHE_TTL", ge=60)

    recommendation_min_items: int = Field(
        default=10, alias="RECOMMENDATION_MIN_ITEMS", ge=1, le=1_000
    )
    recommendation_limit: int = Field(
        default=6, alias="RECOMMENDATION_LIMIT", ge=1, le=50
    )
    candidate_pool_size: int = Field(
        default=20, alias="CANDIDATE_POOL_SIZE", ge=1, le=100
    )

    sync_poll_interval_seconds: int = Field(
        default=0, alias="SYNC_POLL_INTERVAL", ge=0, le=86_400
    )

    provider_urls: dict[str, str] = Field(
        default_factory=dict, alias="PROVIDER_URLS"
    )
    fallback_provider_urls: dict[str, str] = Field(
        default_factory=dict, alias="FALLBACK_PROVIDER_URLS"
    )
    provider_api_key: str | None = Field(default=None, alias="PROVIDER_API_KEY")
    provider_timeout_seconds: float = Field(
        default=20.0, alias="PROVIDER_TIMEOUT", gt=0, le=120
    )
    provider_retry_limit: int = Field(
        default=3, alias="PROVIDER_RETRY_LIMIT", ge=0, le=10
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("provider_urls", "fallback_provider_urls", mode="before")
    @classmethod
    def _parse_provider_urls(cls, value: object) -> dict[str, str]:
        """Accept a JSON object or mapping of domain to provider base URL."""

        if value is None or value == "":
            return {}
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError("Provider URLs must be a JSON object") from exc
        if not isinstance(value, Mapping):
            raise TypeError("Provider URLs must map a domain to a base URL")

        cleaned: dict[str, str] = {}
        for raw_domain, raw_url in value.items():
            domain = str(raw_domain).strip().lower()
            if domain not in DOMAINS:
                raise ValueError(f"Unknown content domain configured: {raw_domain}")
            url = str(raw_url or "").strip().rstrip("/")
            if url:
                cleaned[domain] = url
        return cleaned

    @property
    def configured_domains(self) -> tuple[str, ...]:
        """Return the domains that have at least one live provider."""

        configured = set(self.provider_urls) | set(self.fallback_provider_urls)
        return tuple(domain for domain in DOMAINS if domain in configured)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
