"""Application configuration using Pydantic settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = False
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    # Used for checkout success/cancel URLs when the request has no Origin header
    app_origin: str = "http://localhost:5173"

    # Auth (managed auth signs access tokens with this secret)
    jwt_secret: str = Field(default="development-jwt-secret-change-in-production")
    jwt_audience: str = "authenticated"

    # Firestore
    firestore_emulator_host: str | None = None
    gcp_project_id: str = ""

    # WhatsApp gateway (Evolution API)
    evolution_api_url: str = "http://localhost:8080"
    evolution_api_key: str = ""
    # Public base URL the gateway posts webhooks to
    webhook_base_url: str = "http://localhost:8000"

    # Stripe
    stripe_secret_key: str = ""
    stripe_api_base: str = "https://api.stripe.com"
    # Token purchase webhook; unsigned events are accepted in development only
    stripe_webhook_secret: str = ""

    # ElevenLabs
    elevenlabs_api_key: str = ""
    elevenlabs_api_url: str = "https://api.elevenlabs.io/v1"
    elevenlabs_model_id: str = "eleven_multilingual_v2"

    # Object storage (S3 compatible)
    s3_bucket: str = ""
    s3_endpoint_url: str | None = None
    s3_region: str = "us-east-1"
    s3_public_base_url: str | None = None
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""

    # LLM Providers
    openai_api_key: str = ""
    google_api_key: str = ""
    anthropic_api_key: str = ""

    # LiteLLM
    litellm_primary_model: str = "gemini/gemini-2.5-flash"
    litellm_fallback_model: str = "gpt-4o-mini"

    # Government open data (IBGE localidades)
    ibge_api_url: str = "https://servicodados.ibge.gov.br/api/v1/localidades"

    # Warming
    warming_start_hour: int = Field(default=8, ge=0, le=23)
    warming_end_hour: int = Field(default=22, ge=1, le=24)
    warming_utc_offset_hours: int = -3

    # HTTP
    http_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
