import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./profiles.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # REST gateway (PostgREST-compatible)
    profile_api_url: str | None = Field(default=None, alias="PROFILE_API_URL")
    profile_api_key: str = Field(default="", alias="PROFILE_API_KEY")
    profile_api_timeout: float = Field(default=15.0, alias="PROFILE_API_TIMEOUT")

    # Profile cache
    cache_ttl_minutes: float = Field(default=5, alias="PROFILE_CACHE_TTL_MINUTES")
    cache_max_entries: int = Field(default=1000, alias="PROFILE_CACHE_MAX_ENTRIES")
    cache_cleanup_minutes: float = Field(
        default=10, alias="PROFILE_CACHE_CLEANUP_MINUTES"
    )

    # Retry
    retry_max_attempts: int = Field(default=3, alias="PROFILE_RETRY_MAX_ATTEMPTS")
    retry_delay_ms: int = Field(default=1000, alias="PROFILE_RETRY_DELAY_MS")
    retry_backoff: float = Field(default=2.0, alias="PROFILE_RETRY_BACKOFF")
    retry_max_delay_ms: int = Field(default=10000, alias="PROFILE_RETRY_MAX_DELAY_MS")
    retry_jitter: bool = Field(default=False, alias="PROFILE_RETRY_JITTER")
    request_timeout_ms: int = Field(default=30000, alias="PROFILE_REQUEST_TIMEOUT_MS")

    # Event log
    event_log_capacity: int = Field(default=1000, alias="PROFILE_EVENT_LOG_CAPACITY")


def load_settings() -> Settings:
    """Build settings from the process environment (after .env is loaded)."""
    return Settings.model_validate(dict(os.environ))


global_settings = load_settings()
