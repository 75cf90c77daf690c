"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """reMarkidian application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    secret_key: str = "change-me-in-production"
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/remarkidian.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # CORS
    cors_origins: list[str] = Field(default_factory=list)

    # reMarkable Cloud
    remarkable_auth_url: str = "https://webapp-production-dot-remarkable-cloud.appspot.com"
    remarkable_storage_url: str = (
        "https://document-storage-production-dot-remarkable-cloud.appspot.com"
    )
    remarkable_user_agent: str = "reMarkidian/1.0.0"
    remarkable_device_desc: str = "desktop-linux"
    remote_timeout_seconds: float = Field(default=45.0, gt=0, le=300)
    remote_max_retries: int = Field(default=3, ge=0, le=10)
    remote_backoff_seconds: float = Field(default=0.5, ge=0)

    # Scheduling
    sync_interval_minutes: int = Field(default=0, ge=0)

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        if self.secret_key == "change-me-in-production" or len(self.secret_key) < 32:
            raise ValueError(
                "Insecure production configuration: "
                "SECRET_KEY must be overridden with a high-entropy value (>=32 chars)"
            )
