"""Settings management.

WHAT:
    Typed application settings loaded from the environment or `.env`.

WHY:
    Handlers receive one explicit `Settings` instance (via `create_app`) instead
    of reading secrets ad hoc, so tests can swap secrets deterministically.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    ENVIRONMENT: str = "development"

    # Data store
    DATABASE_URL: str = "sqlite:///./adsync.db"
    # URL-safe base64-encoded 32-byte Fernet key
    TOKEN_ENCRYPTION_KEY: str = ""

    # Google (GA4, Google Ads, Search Console share one OAuth client)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_ADS_DEVELOPER_TOKEN: str = ""

    # Meta
    META_APP_ID: str = ""
    META_APP_SECRET: str = ""
    META_SCOPES: str = "ads_management,ads_read"

    # Signing secrets
    OAUTH_STATE_SECRET: str = ""
    OAUTH_STATE_TTL_SECONDS: int = 600
    GOOGLE_ADS_WEBHOOK_SECRET: str = ""
    META_WEBHOOK_SECRET: str = ""

    # Optional external automation hook (e.g. n8n) pinged after webhook events
    AUTOMATION_WEBHOOK_URL: Optional[str] = None

    # Sync tuning
    SYNC_BATCH_SIZE: int = 100
    SYNC_DEFAULT_WINDOW_DAYS: int = 30
    SYNC_MAX_ATTEMPTS: int = 3
    HTTP_TIMEOUT_SECONDS: float = 15.0

    ALERT_SOURCE_NAME: str = "adsync"
    SENTRY_DSN: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def meta_scopes(self) -> List[str]:
        return [scope.strip() for scope in self.META_SCOPES.split(",") if scope.strip()]

    def webhook_secret_for(self, platform: str) -> str:
        """Return the signing secret for a platform's webhook endpoint."""
        secrets = {
            "google_ads": self.GOOGLE_ADS_WEBHOOK_SECRET,
            "meta_ads": self.META_WEBHOOK_SECRET,
        }
        return secrets.get(platform, "")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    from adsync.utils.env import load_env_file
    load_env_file()
    return Settings()  # type: ignore[call-arg]
