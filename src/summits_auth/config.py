"""Application configuration.

Configuration is loaded from environment variables using pydantic-settings.
OAuth client secrets and storage credentials should be provided via
environment variables, not config files.

## Environment Variables

- BASE_URL: Externally reachable origin, used to build OAuth redirect URIs
- DATABASE_URL: Async SQLAlchemy URL (default: local SQLite file)
- VK_CLIENT_ID / VK_CLIENT_SECRET: VK application credentials
- SU_CLIENT_ID / SU_CLIENT_SECRET: SU application credentials
- S3_ACCESS_KEY / S3_SECRET_KEY / S3_BUCKET: Avatar object storage
- SESSION_STORE: "database" (default) or "memory"

## Example .env file

```
BASE_URL=https://summits.example.org
DATABASE_URL=sqlite+aiosqlite:///var/lib/summits/summits.db
VK_CLIENT_ID=1234567
VK_CLIENT_SECRET=your-vk-secret
SU_CLIENT_ID=summits
SU_CLIENT_SECRET=your-su-secret
```
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
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
    app_name: str = "Summits"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 5000
    base_url: str = Field(
        default="http://localhost:5000",
        description="Externally reachable origin used in OAuth redirect URIs",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///summits.db"
    database_pool_size: int = Field(default=5, ge=1, le=50)
    database_max_overflow: int = Field(default=10, ge=0, le=50)
    database_echo: bool = False

    # OAuth providers
    vk_client_id: str | None = None
    vk_client_secret: str | None = None
    su_client_id: str | None = None
    su_client_secret: str | None = None
    provider_timeout_seconds: float = Field(default=10.0, gt=0)

    # Session
    session_cookie_name: str = "session"
    session_lifetime_seconds: int = Field(default=60 * 60 * 24, ge=60)
    session_store: Literal["database", "memory"] = "database"
    session_cleanup_interval_seconds: int = Field(default=300, ge=1)

    # Landing locations
    login_landing_path: str = "/user/me"
    logout_landing_path: str = "/"

    # Avatar storage
    s3_endpoint: str = "https://s3.timeweb.cloud"
    s3_bucket: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_region: str = "ru-1-ru"

    @field_validator("base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Redirect URIs are built by appending absolute paths."""
        return v.rstrip("/")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def s3_configured(self) -> bool:
        """Check if avatar object storage is configured."""
        return bool(self.s3_bucket and self.s3_access_key and self.s3_secret_key)

    def redirect_uri(self, provider: str) -> str:
        """OAuth callback URL registered with the given provider."""
        return f"{self.base_url}/auth/authorized/{provider}"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Settings are loaded once and cached. To reload, clear the cache:
    ```python
    get_settings.cache_clear()
    ```
    """
    return Settings()
