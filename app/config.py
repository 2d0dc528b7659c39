from functools import lru_cache
from typing import List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = Field(default="Billing Service")
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )
    use_mock_data: bool = Field(
        default=True
    )
    identity_base_url: AnyHttpUrl | None = Field(
        default=None
    )
    identity_api_key: str | None = Field(
        default=None
    )
    identity_service_key: str | None = Field(
        default=None
    )
    identity_timeout: float = Field(
        default=10.0
    )
    cache_enabled: bool = Field(
        default=True
    )
    cache_default_ttl: int = Field(default=3600)
    cache_entity_ttl: int = Field(default=1800)
    cache_list_ttl: int = Field(default=600)
    cache_stats_ttl: int = Field(default=900)
    default_currency: str = Field(default="EUR")
    default_language: str = Field(default="fr")
    default_payment_terms: int = Field(default=30)

    model_config = SettingsConfigDict(env_prefix="BILLING_", case_sensitive=False)

    @field_validator("cors_origins", mode="before")
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
