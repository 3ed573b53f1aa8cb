"""
Profile repository interface.

Records are plain dicts of column values ("raw records"); turning them into
profile models is the fetcher's job. Lookups return ``None`` when the row is
absent and raise for anything else.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from profile_service.types import SortField, SortOrder, UserRole, UserSearchFilters

Record = dict[str, Any]


@dataclass
class SearchPage:
    """One page of search results."""

    records: list[Record] = field(default_factory=list)
    total_count: int = 0


class ProfileRepository(ABC):
    """
    Abstract backing store for profiles and role assignments.

    Search records carry a ``role`` key so callers can pick the profile shape.
    """

    @abstractmethod
    async def get_role_by_user_id(self, user_id: str) -> UserRole | None:
        """Role assignment for a user, or None."""
        ...

    @abstractmethod
    async def get_user_record_by_id(self, user_id: str) -> Record | None:
        """Common profile columns only."""
        ...

    @abstractmethod
    async def get_agent_record_by_id(self, user_id: str) -> Record | None:
        """Common columns plus service areas and social handles."""
        ...

    @abstractmethod
    async def get_admin_record_by_id(self, user_id: str) -> Record | None:
        """Common columns plus admin fields and a ``permissions`` list."""
        ...

    @abstractmethod
    async def update_user_record(self, user_id: str, changes: Record) -> Record | None:
        ...

    @abstractmethod
    async def update_agent_record(
        self, user_id: str, changes: Record
    ) -> Record | None:
        ...

    @abstractmethod
    async def update_admin_record(
        self, user_id: str, changes: Record
    ) -> Record | None:
        ...

    @abstractmethod
    async def search_records(
        self,
        query: str,
        filters: UserSearchFilters,
        sort_by: SortField,
        sort_order: SortOrder,
        page: int,
        page_size: int,
    ) -> SearchPage:
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None
