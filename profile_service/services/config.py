"""
Profile service configuration.
"""

from pydantic import BaseModel, Field

from profile_service.services.retry import RetryPolicy
from profile_service.settings import Settings


class CacheConfig(BaseModel):
    ttl_minutes: float = Field(default=5, gt=0)
    max_entries: int = Field(default=1000, ge=1)
    cleanup_interval_minutes: float = Field(default=10, gt=0)
    eviction_ratio: float = Field(default=0.1, gt=0, le=1)


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    delay_ms: float = Field(default=1000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    max_delay_ms: float = Field(default=10000, ge=0)
    jitter: bool = False
    attempt_timeout_ms: float = Field(default=30000, gt=0)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay_ms=self.delay_ms,
            backoff_multiplier=self.backoff_multiplier,
            max_delay_ms=self.max_delay_ms,
            jitter=self.jitter,
        )


class ProfileServiceConfig(BaseModel):
    """Cache, retry and event-log settings for one ProfileService."""

    cache: CacheConfig = Field(default_factory=CacheConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    event_log_capacity: int = Field(default=1000, ge=1)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProfileServiceConfig":
        return cls(
            cache=CacheConfig(
                ttl_minutes=settings.cache_ttl_minutes,
                max_entries=settings.cache_max_entries,
                cleanup_interval_minutes=settings.cache_cleanup_minutes,
            ),
            retry=RetryConfig(
                max_attempts=settings.retry_max_attempts,
                delay_ms=settings.retry_delay_ms,
                backoff_multiplier=settings.retry_backoff,
                max_delay_ms=settings.retry_max_delay_ms,
                jitter=settings.retry_jitter,
                attempt_timeout_ms=settings.request_timeout_ms,
            ),
            event_log_capacity=settings.event_log_capacity,
        )
