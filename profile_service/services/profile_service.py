"""
ProfileService - Public API for cached, role-aware profile access.

Combines:
- ProfileCache for TTL caching and single-flight loading
- ProfileFetcher + RetryExecutor for resilient backend access
- EventLog for recent operational events

No public method raises for backend failures; they return a response object
whose ``error`` carries a caller-safe message.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from loguru import logger
from pydantic import BaseModel, TypeAdapter, ValidationError

from profile_service.datastore.base import ProfileRepository, Record
from profile_service.services.cache import ProfileCache
from profile_service.services.classifier import ErrorKind, classify_error
from profile_service.services.config import ProfileServiceConfig
from profile_service.services.errors import (
    ErrorCode,
    ProfileServiceError,
    RoleMismatchError,
)
from profile_service.services.events import EventLog, EventType, ProfileEvent
from profile_service.services.fetcher import ProfileFetcher, build_profile
from profile_service.services.retry import RetryExecutor
from profile_service.types import (
    ADMIN_ROLES,
    AdminProfileUpdate,
    AgentProfileUpdate,
    UserProfile,
    UserProfileUpdate,
    UserRole,
    UserRoleName,
    UserSearchOptions,
)

PROFILE_NOT_FOUND = "User profile not found"

UPDATE_MODELS: dict[str, type[UserProfileUpdate]] = {
    "user": UserProfileUpdate,
    "agent": AgentProfileUpdate,
    "admin": AdminProfileUpdate,
    "super_admin": AdminProfileUpdate,
}

_role_adapter: TypeAdapter[UserRoleName] = TypeAdapter(UserRoleName)


def _same_role_family(requested: str, stored: str) -> bool:
    if requested == stored:
        return True
    return requested in ADMIN_ROLES and stored in ADMIN_ROLES


@dataclass
class ProfileResponse:
    """Result of a single-profile operation."""

    data: UserProfile | None
    error: str | None = None
    cached: bool = False
    cache_timestamp: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ProfileListResponse:
    """Result of a search."""

    data: list[UserProfile] = field(default_factory=list)
    error: str | None = None
    total_count: int = 0
    page: int = 1
    page_size: int = 20


class ProfileService:
    """
    Cached profile access for users, agents and admins.

    Usage:
        service = ProfileService(SqlProfileRepository(get_session_factory()))

        async with service:
            result = await service.get_user_profile(user_id)
            if result.error:
                ...
            profile = result.data
    """

    def __init__(
        self,
        repository: ProfileRepository,
        config: ProfileServiceConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
        executor: RetryExecutor | None = None,
        debug: bool = False,
    ):
        self.config = config or ProfileServiceConfig()
        self._repository = repository
        self._policy = self.config.retry.to_policy()
        self._timeout_ms = self.config.retry.attempt_timeout_ms

        self._cache: ProfileCache[UserProfile] = ProfileCache(
            max_entries=self.config.cache.max_entries,
            ttl=timedelta(minutes=self.config.cache.ttl_minutes),
            eviction_ratio=self.config.cache.eviction_ratio,
            clock=clock,
            debug=debug,
        )
        self._events = EventLog(self.config.event_log_capacity, clock=clock)
        self._executor = executor or RetryExecutor(self._policy, debug=debug)
        self._fetcher = ProfileFetcher(
            repository,
            self._executor,
            self._policy,
            attempt_timeout_ms=self._timeout_ms,
            debug=debug,
        )

    # Lifecycle

    def start(self) -> None:
        """Start the background expiry sweep (needs a running event loop)."""
        self._cache.start_sweeper(
            timedelta(minutes=self.config.cache.cleanup_interval_minutes)
        )

    async def close(self, close_repository: bool = False) -> None:
        """Stop the sweep and optionally close the repository."""
        self._cache.stop_sweeper()
        if close_repository:
            await self._repository.close()
        logger.debug("ProfileService closed")

    async def __aenter__(self) -> "ProfileService":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # Profiles

    async def get_user_profile(self, user_id: str) -> ProfileResponse:
        """Get a profile, from cache when fresh."""
        entry = self._cache.get(user_id)
        if entry is not None:
            # The first read after an update reports the written data as fresh
            if entry.first_read_of_write:
                self._events.record(
                    EventType.CACHE_HIT,
                    user_id,
                    operation="get_user_profile",
                    first_read_of_write=True,
                )
                return ProfileResponse(data=entry.data, cached=False)

            self._events.record(
                EventType.CACHE_HIT, user_id, operation="get_user_profile"
            )
            return ProfileResponse(
                data=entry.data,
                cached=True,
                cache_timestamp=entry.created_at,
            )

        self._events.record(EventType.CACHE_MISS, user_id, operation="get_user_profile")

        try:
            profile = await self._cache.load(
                user_id, lambda: self._fetcher.fetch(user_id)
            )
        except Exception as e:
            error = self._handle_error(
                ErrorCode.FETCH_ERROR,
                "Failed to fetch user profile",
                e,
                user_id=user_id,
                operation="get_user_profile",
            )
            return ProfileResponse(data=None, error=error.message)

        if profile is None:
            return ProfileResponse(data=None, error=PROFILE_NOT_FOUND)

        return ProfileResponse(data=profile, cached=False)

    async def update_user_profile(
        self,
        user_id: str,
        updates: Mapping[str, Any] | BaseModel,
        role: str | None = None,
    ) -> ProfileResponse:
        """
        Update a profile through its stored role's update path.

        ``role`` is optional; when given it must match the stored role
        (``admin`` and ``super_admin`` are interchangeable). Once the write is
        attempted the cache entry is dropped whatever the outcome and, on
        success, replaced with the fresh profile before returning.
        """
        try:
            if role is not None:
                _role_adapter.validate_python(role)
        except ValidationError as e:
            return self._invalid_update(user_id, e)

        try:
            stored = await self._fetcher.role_of(user_id)
        except Exception as e:
            return self._failed_update(user_id, e)

        if stored is None:
            self._cache.invalidate(user_id)
            return ProfileResponse(data=None, error=PROFILE_NOT_FOUND)

        if role is not None and not _same_role_family(role, stored):
            return self._invalid_update(
                user_id, RoleMismatchError(user_id, role, stored)
            )

        try:
            changes = self._validate_update(stored, updates)
        except ValidationError as e:
            return self._invalid_update(user_id, e)

        try:
            profile = await self._fetcher.update(user_id, stored, changes)
        except Exception as e:
            return self._failed_update(user_id, e)

        self._cache.invalidate(user_id)
        if profile is None:
            return ProfileResponse(data=None, error=PROFILE_NOT_FOUND)

        await self._cache.set(user_id, profile)
        self._events.record(
            EventType.PROFILE_UPDATED, user_id, role=stored, fields=sorted(changes)
        )
        return ProfileResponse(data=profile, cached=False)

    @staticmethod
    def _validate_update(
        role: str, updates: Mapping[str, Any] | BaseModel
    ) -> Record:
        if isinstance(updates, BaseModel):
            updates = updates.model_dump(exclude_unset=True)
        validated = UPDATE_MODELS[role].model_validate(dict(updates))
        return validated.model_dump(exclude_unset=True)

    def _invalid_update(self, user_id: str, error: Exception) -> ProfileResponse:
        wrapped = self._handle_error(
            ErrorCode.VALIDATION_ERROR,
            "Invalid profile update",
            error,
            user_id=user_id,
            operation="update_user_profile",
        )
        return ProfileResponse(data=None, error=wrapped.message)

    def _failed_update(self, user_id: str, error: Exception) -> ProfileResponse:
        self._cache.invalidate(user_id)
        wrapped = self._handle_error(
            ErrorCode.UPDATE_ERROR,
            "Failed to update user profile",
            error,
            user_id=user_id,
            operation="update_user_profile",
        )
        return ProfileResponse(data=None, error=wrapped.message)

    async def search_users(
        self,
        options: UserSearchOptions | Mapping[str, Any] | None = None,
    ) -> ProfileListResponse:
        """Search profiles; bypasses the cache."""
        try:
            opts = (
                options
                if isinstance(options, UserSearchOptions)
                else UserSearchOptions.model_validate(dict(options or {}))
            )
        except ValidationError as e:
            error = self._handle_error(
                ErrorCode.VALIDATION_ERROR,
                "Invalid search options",
                e,
                operation="search_users",
            )
            return ProfileListResponse(error=error.message)

        try:
            page = await self._executor.with_retry_and_timeout(
                lambda: self._repository.search_records(
                    opts.query,
                    opts.filters,
                    opts.sort_by,
                    opts.sort_order,
                    opts.page,
                    opts.page_size,
                ),
                self._policy,
                self._timeout_ms,
            )
            profiles = [build_profile(r.get("role"), r) for r in page.records]
        except Exception as e:
            error = self._handle_error(
                ErrorCode.SEARCH_ERROR,
                "Failed to search users",
                e,
                operation="search_users",
            )
            return ProfileListResponse(
                error=error.message, page=opts.page, page_size=opts.page_size
            )

        return ProfileListResponse(
            data=profiles,
            total_count=page.total_count,
            page=opts.page,
            page_size=opts.page_size,
        )

    async def get_user_role(self, user_id: str) -> UserRole | None:
        """Role assignment straight from the repository (uncached)."""
        try:
            return await self._repository.get_role_by_user_id(user_id)
        except Exception as e:
            self._handle_error(
                ErrorCode.ROLE_FETCH_ERROR,
                "Failed to fetch user role",
                e,
                user_id=user_id,
                operation="get_user_role",
            )
            return None

    # Cache management and diagnostics

    def invalidate_user(self, user_id: str) -> bool:
        """Drop one user's cached profile."""
        return self._cache.invalidate(user_id)

    def clear_cache(self) -> None:
        count = self._cache.clear()
        logger.info(f"Profile cache cleared manually ({count} entries)")

    def get_cache_stats(self) -> dict[str, Any]:
        return self._cache.stats().to_dict()

    def get_event_log(self) -> list[ProfileEvent]:
        return self._events.snapshot()

    def _handle_error(
        self,
        code: ErrorCode,
        message: str,
        error: BaseException,
        user_id: str | None = None,
        operation: str | None = None,
    ) -> ProfileServiceError:
        """Classify, log and record a failure; returns the wrapped error."""
        cause = classify_error(error)
        if cause.kind == ErrorKind.NOT_FOUND:
            message = PROFILE_NOT_FOUND

        wrapped = ProfileServiceError(
            code, message, cause, user_id=user_id, operation=operation
        )
        logger.error(
            f"[{code.value}] {message} (operation={operation}, user={user_id}): "
            f"{cause.message}"
        )
        details = wrapped.to_dict()
        del details["user_id"]
        self._events.record(EventType.API_ERROR, user_id, **details)
        return wrapped


# Global service instance
_global_service: ProfileService | None = None


def get_profile_service(repository: ProfileRepository | None = None) -> ProfileService:
    """
    Get the process-wide service, creating it on first use.

    Without an explicit repository, the REST gateway is used when
    PROFILE_API_URL is set and the SQL database otherwise.
    """
    global _global_service
    if _global_service is None:
        from profile_service.settings import global_settings

        if repository is None:
            repository = _default_repository()
        _global_service = ProfileService(
            repository, ProfileServiceConfig.from_settings(global_settings)
        )
    return _global_service


def _default_repository() -> ProfileRepository:
    from profile_service.datastore.engine import get_session_factory
    from profile_service.datastore.repositories import SqlProfileRepository
    from profile_service.datastore.rest import RestProfileRepository
    from profile_service.settings import global_settings

    if global_settings.profile_api_url:
        return RestProfileRepository(
            global_settings.profile_api_url,
            api_key=global_settings.profile_api_key,
            timeout=global_settings.profile_api_timeout,
        )
    return SqlProfileRepository(get_session_factory())


async def close_profile_service() -> None:
    """Close the global service."""
    global _global_service
    if _global_service:
        await _global_service.close(close_repository=True)
        _global_service = None
