"""
Environment-driven settings for the social dashboard.

Each concern reads its own variables (FACEBOOK_APP_ID, SOCIAL_CALL_TIMEOUT,
REDIS_URL, ...) from the process environment or a local .env file. Missing
provider credentials are not an error: the platform is simply reported as
unconfigured. Missing DATABASE_URL and REDIS_URL select in-memory storage.

    settings = get_settings()
    settings.configured_platforms  # [SocialPlatform.FACEBOOK, ...]
"""

from functools import lru_cache
from typing import Dict, List, Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from socialdash.types.social import SocialPlatform

ENV_CONFIG = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


# =============================================================================
# Platform Credential Settings
# =============================================================================


class FacebookSettings(BaseSettings):
    """Facebook app credentials."""

    model_config = ENV_CONFIG

    facebook_app_id: Optional[str] = Field(
        default=None,
        description="Facebook app ID (OAuth client id)",
    )
    facebook_app_secret: Optional[SecretStr] = Field(
        default=None,
        description="Facebook app secret",
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.facebook_app_id and self.facebook_app_secret)


class InstagramSettings(BaseSettings):
    """Instagram app credentials."""

    model_config = ENV_CONFIG

    instagram_app_id: Optional[str] = Field(
        default=None,
        description="Instagram app ID (OAuth client id)",
    )
    instagram_app_secret: Optional[SecretStr] = Field(
        default=None,
        description="Instagram app secret",
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.instagram_app_id and self.instagram_app_secret)


class TikTokSettings(BaseSettings):
    """TikTok app credentials."""

    model_config = ENV_CONFIG

    tiktok_app_id: Optional[str] = Field(
        default=None,
        description="TikTok client key",
    )
    tiktok_app_secret: Optional[SecretStr] = Field(
        default=None,
        description="TikTok client secret",
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.tiktok_app_id and self.tiktok_app_secret)


# =============================================================================
# Aggregation Settings
# =============================================================================


class AggregationSettings(BaseSettings):
    """Limits for cross-platform fan-out calls."""

    model_config = ENV_CONFIG

    social_call_timeout: float = Field(
        default=10.0,
        ge=1.0,
        le=120.0,
        description="Upper bound in seconds on one platform's share of an aggregation round",
    )
    social_http_timeout: float = Field(
        default=10.0,
        ge=1.0,
        le=120.0,
        description="httpx timeout in seconds for a single provider request",
    )


# =============================================================================
# Account Linking Settings
# =============================================================================


class LinkSettings(BaseSettings):
    """Configuration for the OAuth account-linking flow."""

    model_config = ENV_CONFIG

    app_url: str = Field(
        default="http://localhost:5000",
        description="Public base URL used to build OAuth redirect URIs",
    )
    oauth_state_ttl_seconds: int = Field(
        default=600,
        ge=30,
        le=3600,
        description="Lifetime of an OAuth state nonce",
    )
    dashboard_path: str = Field(
        default="/dashboard",
        description="Where the browser lands after a link attempt",
    )

    def redirect_uri(self, platform: SocialPlatform) -> str:
        """OAuth callback URL registered with the provider."""
        return f"{self.app_url.rstrip('/')}/api/social/{platform.value}/callback"


# =============================================================================
# Database Settings (Postgres)
# =============================================================================


class DatabaseSettings(BaseSettings):
    """Configuration for the Postgres connection pool."""

    model_config = ENV_CONFIG

    database_url: Optional[str] = Field(
        default=None,
        description="Postgres DSN; in-memory storage is used when unset",
    )
    database_pool_min_size: int = Field(default=1, ge=1)
    database_pool_max_size: int = Field(default=5, ge=1)

    @property
    def is_configured(self) -> bool:
        return bool(self.database_url)


# =============================================================================
# Redis Settings (Optional)
# =============================================================================


class RedisSettings(BaseSettings):
    """Configuration for Redis (OAuth state nonces)."""

    model_config = ENV_CONFIG

    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for OAuth state; state is kept in process memory when unset",
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.redis_url)


# =============================================================================
# Realtime Settings
# =============================================================================


class RealtimeSettings(BaseSettings):
    """Configuration for the websocket channel."""

    model_config = ENV_CONFIG

    price_tick_interval: float = Field(
        default=5.0,
        gt=0,
        description="Seconds between simulated STOCK_UPDATE messages",
    )


# =============================================================================
# Application Settings
# =============================================================================


class AppSettings(BaseSettings):
    """Environment, logging and monitoring configuration."""

    model_config = ENV_CONFIG

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="development, staging or production",
    )
    dev_mode: bool = Field(
        default=False,
        description="Allow requests without an X-User-ID header (resolved to dev_user)",
    )
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        description="Comma-separated browser origins allowed by CORS",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN; error reporting is off when unset",
    )
    sentry_traces_sample_rate: float = Field(default=0.1, ge=0.0, le=1.0)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def origins_list(self) -> List[str]:
        return [
            origin.strip()
            for origin in self.allowed_origins.split(",")
            if origin.strip()
        ]


# =============================================================================
# Main Settings Class
# =============================================================================


class Settings(BaseSettings):
    """All settings groups, each loaded from the environment on construction."""

    model_config = ENV_CONFIG

    facebook: FacebookSettings = Field(default_factory=FacebookSettings)
    instagram: InstagramSettings = Field(default_factory=InstagramSettings)
    tiktok: TikTokSettings = Field(default_factory=TikTokSettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
    link: LinkSettings = Field(default_factory=LinkSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    app: AppSettings = Field(default_factory=AppSettings)

    @property
    def is_production(self) -> bool:
        return self.app.is_production

    @property
    def is_dev_mode(self) -> bool:
        return self.app.dev_mode

    @property
    def configured_platforms(self) -> List[SocialPlatform]:
        """Platforms whose app credentials are present."""
        flags: Dict[SocialPlatform, bool] = {
            SocialPlatform.FACEBOOK: self.facebook.is_configured,
            SocialPlatform.INSTAGRAM: self.instagram.is_configured,
            SocialPlatform.TIKTOK: self.tiktok.is_configured,
        }
        return [platform for platform, ok in flags.items() if ok]

    def get_config_summary(self) -> dict:
        """Which features are switched on, for the startup log. Holds no secrets."""
        return {
            "environment": self.app.environment,
            "dev_mode": self.is_dev_mode,
            "platforms_configured": [p.value for p in self.configured_platforms],
            "database_configured": self.database.is_configured,
            "redis_configured": self.redis.is_configured,
            "call_timeout": self.aggregation.social_call_timeout,
            "oauth_state_ttl": self.link.oauth_state_ttl_seconds,
            "log_level": self.app.log_level,
        }


# =============================================================================
# Settings Singleton
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    return Settings()


def reload_settings() -> Settings:
    """Re-read the environment; used by tests that change variables."""
    get_settings.cache_clear()
    return get_settings()
