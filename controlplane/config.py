"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Controlplane application settings."""

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
    database_url: str = "sqlite+aiosqlite:///data/db/controlplane.db"
    database_busy_timeout: float = Field(default=30.0, gt=0)

    # Mirror blob cache
    cache_dir: Path = Path("./data/mirror-cache")

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=list)

    # Internal endpoints (workspace collaborator -> controlplane)
    internal_token: str = ""

    # Workspace sandbox (controlplane -> workspace collaborator)
    sandbox_url: str = "http://localhost:8080"
    sandbox_internal_token: str = ""
    replication_timeout_seconds: float = Field(default=15.0, gt=0)

    # Mirror engine
    mirror_lease_seconds: int = Field(default=3600, ge=1)
    mirror_verify_cached_blobs: bool = True
    provider_timeout_seconds: float = Field(default=60.0, gt=0)

    # Provider API endpoints (overridable for testing against fakes)
    google_drive_api_url: str = "https://www.googleapis.com/drive/v3"
    github_api_url: str = "https://api.github.com"
    box_api_url: str = "https://api.box.com/2.0"
    onedrive_api_url: str = "https://graph.microsoft.com/v1.0"

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if self.secret_key == "change-me-in-production" or len(self.secret_key) < 32:
            violations.append(
                "SECRET_KEY must be overridden with a high-entropy value (>=32 chars)"
            )
        if len(self.internal_token) < 32:
            violations.append("INTERNAL_TOKEN must be set to a high-entropy value (>=32 chars)")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
