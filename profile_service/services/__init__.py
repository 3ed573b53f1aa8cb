"""
Service layer - caching and resilience around the profile repository.

Provides:
- ProfileCache: TTL cache with LRU-style eviction and single-flight loading
- RetryExecutor: Retry with exponential backoff and per-attempt timeouts
- classify_error: Maps failures into a retryable/non-retryable taxonomy
- EventLog: Bounded log of recent cache and error events
- ProfileService: Public API combining all of the above
"""

from profile_service.services.errors import (
    ServiceError,
    ErrorCode,
    NetworkError,
    PaymentRequiredError,
    ProfileNotFoundError,
    ProfileServiceError,
    RateLimitError,
    RepositoryError,
    RequestTimeoutError,
    ServiceUnavailableError,
)
from profile_service.services.classifier import (
    ClassifiedError,
    ErrorKind,
    classify_error,
)
from profile_service.services.retry import BatchResult, RetryExecutor, RetryPolicy
from profile_service.services.cache import CacheEntry, CacheStats, ProfileCache
from profile_service.services.events import EventLog, EventType, ProfileEvent
from profile_service.services.fetcher import ProfileFetcher, build_profile
from profile_service.services.config import (
    CacheConfig,
    ProfileServiceConfig,
    RetryConfig,
)
from profile_service.services.profile_service import (
    ProfileListResponse,
    ProfileResponse,
    ProfileService,
    close_profile_service,
    get_profile_service,
)

__all__ = [
    # Errors
    "ServiceError",
    "ErrorCode",
    "NetworkError",
    "PaymentRequiredError",
    "ProfileNotFoundError",
    "ProfileServiceError",
    "RateLimitError",
    "RepositoryError",
    "RequestTimeoutError",
    "ServiceUnavailableError",
    # Classification
    "ClassifiedError",
    "ErrorKind",
    "classify_error",
    # Retry
    "BatchResult",
    "RetryExecutor",
    "RetryPolicy",
    # Cache
    "CacheEntry",
    "CacheStats",
    "ProfileCache",
    # Events
    "EventLog",
    "EventType",
    "ProfileEvent",
    # Fetching
    "ProfileFetcher",
    "build_profile",
    # Service
    "CacheConfig",
    "ProfileServiceConfig",
    "RetryConfig",
    "ProfileListResponse",
    "ProfileResponse",
    "ProfileService",
    "close_profile_service",
    "get_profile_service",
]
