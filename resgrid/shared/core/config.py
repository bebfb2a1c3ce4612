from functools import lru_cache
from threading import Lock
from typing import Optional

import structlog
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"
ENV_LOCAL = "local"


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Main configuration for Resource Grid.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "Resource Grid"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT
    TESTING: bool = False
    API_URL: str = "http://localhost:8000"
    CORS_ORIGINS: list[str] = ["http://localhost:5173"]

    # Database
    DATABASE_URL: Optional[str] = None
    DB_ECHO: bool = False

    # Auth provider (bearer JWT)
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_JWT_AUDIENCE: str = "authenticated"
    AUTH_JWT_ALGORITHM: str = "HS256"

    # Resource list paging
    RESOURCE_PAGE_SIZE: int = 50
    RESOURCE_PAGE_SIZE_MAX: int = 200

    # Client query cache
    CACHE_FRESHNESS_WINDOW_MS: int = 60_000
    CACHE_IDLE_EVICTION_MS: int = 600_000

    # Infinite scroll sentinel (pixels, or any unit the observer reports in)
    VISIBILITY_LEADING_MARGIN: float = 200.0

    # Page loads
    PAGE_LOAD_RETRIES: int = 2
    PAGE_LOAD_BACKOFF_BASE_SECONDS: float = 1.0
    PAGE_LOAD_BACKOFF_MAX_SECONDS: float = 10.0
    HTTP_TIMEOUT_SECONDS: float = 20.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        """Centralized validation, grouped by concern."""
        if self.TESTING and self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            raise ValueError(
                "TESTING must be false in staging/production runtime environments."
            )

        self._validate_paging_config()
        self._validate_client_config()
        if not self.TESTING:
            self._validate_auth_config()
        return self

    def _validate_paging_config(self) -> None:
        if self.RESOURCE_PAGE_SIZE_MAX <= 0:
            raise ValueError("RESOURCE_PAGE_SIZE_MAX must be > 0.")
        if not 0 < self.RESOURCE_PAGE_SIZE <= self.RESOURCE_PAGE_SIZE_MAX:
            raise ValueError(
                "RESOURCE_PAGE_SIZE must be > 0 and <= RESOURCE_PAGE_SIZE_MAX."
            )

    def _validate_client_config(self) -> None:
        if self.CACHE_FRESHNESS_WINDOW_MS < 0:
            raise ValueError("CACHE_FRESHNESS_WINDOW_MS must be >= 0.")
        if self.CACHE_IDLE_EVICTION_MS < self.CACHE_FRESHNESS_WINDOW_MS:
            raise ValueError(
                "CACHE_IDLE_EVICTION_MS must be >= CACHE_FRESHNESS_WINDOW_MS."
            )
        if self.VISIBILITY_LEADING_MARGIN < 0:
            raise ValueError("VISIBILITY_LEADING_MARGIN must be >= 0.")
        if self.PAGE_LOAD_RETRIES < 0:
            raise ValueError("PAGE_LOAD_RETRIES must be >= 0.")
        if self.PAGE_LOAD_BACKOFF_BASE_SECONDS < 0:
            raise ValueError("PAGE_LOAD_BACKOFF_BASE_SECONDS must be >= 0.")
        if self.PAGE_LOAD_BACKOFF_MAX_SECONDS < self.PAGE_LOAD_BACKOFF_BASE_SECONDS:
            raise ValueError(
                "PAGE_LOAD_BACKOFF_MAX_SECONDS must be >= PAGE_LOAD_BACKOFF_BASE_SECONDS."
            )
        if not 0 < self.HTTP_TIMEOUT_SECONDS <= 120:
            raise ValueError("HTTP_TIMEOUT_SECONDS must be within (0, 120].")

    def _validate_auth_config(self) -> None:
        if not self.AUTH_JWT_SECRET or len(self.AUTH_JWT_SECRET) < 32:
            raise ValueError("AUTH_JWT_SECRET must be set to a secure value (>= 32 chars).")
        if self.is_production and not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is required in production.")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == ENV_PRODUCTION
