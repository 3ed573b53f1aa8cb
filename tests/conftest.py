"""
Shared fixtures: a controllable clock and an in-memory profile repository.
"""

import asyncio
from collections import Counter
from datetime import datetime, timedelta
from typing import Any

import pytest

from profile_service.datastore.base import ProfileRepository, Record, SearchPage
from profile_service.services import ProfileService, ProfileServiceConfig
from profile_service.services.config import CacheConfig, RetryConfig
from profile_service.types import UserRole, UserSearchFilters

START = datetime(2024, 1, 1, 12, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class InMemoryRepository(ProfileRepository):
    """
    Dict-backed repository that counts calls and can inject failures.

    Exceptions in ``failures`` are raised, one per call, by the next
    ``get_role_by_user_id`` calls; ``update_failures`` does the same for
    updates.
    """

    def __init__(self) -> None:
        self.roles: dict[str, UserRole] = {}
        self.records: dict[str, Record] = {}
        self.calls: Counter[str] = Counter()
        self.failures: list[BaseException] = []
        self.update_failures: list[BaseException] = []
        self.delay = 0.0
        self.closed = False

    def add(self, user_id: str, role: str = "user", **fields: Any) -> Record:
        self.roles[user_id] = UserRole(user_id=user_id, role=role)
        record = {
            "id": user_id,
            "email": f"{user_id}@example.com",
            "name": user_id.title(),
            "active": True,
            "profile_completed": False,
            "created_at": START,
            "updated_at": START,
            **fields,
        }
        self.records[user_id] = record
        return record

    async def get_role_by_user_id(self, user_id: str) -> UserRole | None:
        self.calls["get_role"] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        return self.roles.get(user_id)

    async def _record(self, kind: str, user_id: str) -> Record | None:
        self.calls[kind] += 1
        record = self.records.get(user_id)
        return dict(record) if record is not None else None

    async def get_user_record_by_id(self, user_id: str) -> Record | None:
        return await self._record("get_user", user_id)

    async def get_agent_record_by_id(self, user_id: str) -> Record | None:
        return await self._record("get_agent", user_id)

    async def get_admin_record_by_id(self, user_id: str) -> Record | None:
        return await self._record("get_admin", user_id)

    async def _update(self, kind: str, user_id: str, changes: Record) -> Record | None:
        self.calls[kind] += 1
        if self.update_failures:
            raise self.update_failures.pop(0)
        if user_id not in self.records:
            return None
        self.records[user_id].update(changes)
        return dict(self.records[user_id])

    async def update_user_record(self, user_id: str, changes: Record) -> Record | None:
        return await self._update("update_user", user_id, changes)

    async def update_agent_record(self, user_id: str, changes: Record) -> Record | None:
        return await self._update("update_agent", user_id, changes)

    async def update_admin_record(self, user_id: str, changes: Record) -> Record | None:
        return await self._update("update_admin", user_id, changes)

    async def search_records(
        self,
        query: str,
        filters: UserSearchFilters,
        sort_by: str,
        sort_order: str,
        page: int,
        page_size: int,
    ) -> SearchPage:
        self.calls["search"] += 1
        rows = []
        for user_id, record in self.records.items():
            role = self.roles[user_id].role
            if filters.role and role != filters.role:
                continue
            if query and query.lower() not in record.get("name", "").lower():
                continue
            rows.append({**record, "role": role})
        rows.sort(key=lambda r: r[sort_by] or "", reverse=sort_order == "desc")
        start = (page - 1) * page_size
        return SearchPage(records=rows[start : start + page_size], total_count=len(rows))

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def config() -> ProfileServiceConfig:
    """Default cache settings, near-instant retries."""
    return ProfileServiceConfig(
        cache=CacheConfig(ttl_minutes=5, max_entries=1000),
        retry=RetryConfig(
            max_attempts=3, delay_ms=1, backoff_multiplier=2, attempt_timeout_ms=1000
        ),
    )


@pytest.fixture
def service(repository, config, clock) -> ProfileService:
    return ProfileService(repository, config, clock=clock)
