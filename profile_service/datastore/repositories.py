"""
SQL profile repository - wraps data access for profiles and role assignments.
"""

import json
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import String, Select, cast, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from profile_service.datastore.base import ProfileRepository, Record, SearchPage
from profile_service.datastore.models import (
    ADMIN_COLUMNS,
    AGENT_COLUMNS,
    ALL_COLUMNS,
    BASE_COLUMNS,
    AdminPermissionDB,
    ProfileDB,
    UserRoleDB,
)
from profile_service.services.errors import RepositoryError
from profile_service.types import (
    SORTABLE_FIELDS,
    SortField,
    SortOrder,
    UserRole,
    UserSearchFilters,
)

USER_FIELDS = frozenset({"name", "phone", "profile_image", "bio", "preferences"})
AGENT_FIELDS = USER_FIELDS | {
    "specialization",
    "service_areas",
    "whatsapp",
    "linkedin",
    "instagram",
    "license_number",
    "commission_rate",
}
ADMIN_FIELDS = USER_FIELDS | {"permissions", "department", "access_level"}


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SqlProfileRepository(ProfileRepository):
    """
    Profile repository over an async SQLAlchemy session factory.

    Each call opens its own short-lived session.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_role_by_user_id(self, user_id: str) -> UserRole | None:
        async with self._session_factory() as session:
            row = await session.get(UserRoleDB, user_id)
            if row is None:
                return None
            return UserRole(
                user_id=row.user_id,
                role=row.role,
                assigned_at=row.assigned_at,
                assigned_by=row.assigned_by,
            )

    async def get_user_record_by_id(self, user_id: str) -> Record | None:
        async with self._session_factory() as session:
            return await self._select_columns(session, BASE_COLUMNS, user_id)

    async def get_agent_record_by_id(self, user_id: str) -> Record | None:
        async with self._session_factory() as session:
            return await self._select_columns(session, AGENT_COLUMNS, user_id)

    async def get_admin_record_by_id(self, user_id: str) -> Record | None:
        async with self._session_factory() as session:
            record = await self._select_columns(session, ADMIN_COLUMNS, user_id)
            if record is None:
                return None
            record["permissions"] = await self._select_permissions(session, user_id)
            return record

    async def update_user_record(self, user_id: str, changes: Record) -> Record | None:
        if not await self._apply_update(user_id, changes, USER_FIELDS):
            return None
        return await self.get_user_record_by_id(user_id)

    async def update_agent_record(
        self, user_id: str, changes: Record
    ) -> Record | None:
        if not await self._apply_update(user_id, changes, AGENT_FIELDS):
            return None
        return await self.get_agent_record_by_id(user_id)

    async def update_admin_record(
        self, user_id: str, changes: Record
    ) -> Record | None:
        if not await self._apply_update(user_id, changes, ADMIN_FIELDS):
            return None
        return await self.get_admin_record_by_id(user_id)

    async def search_records(
        self,
        query: str,
        filters: UserSearchFilters,
        sort_by: SortField,
        sort_order: SortOrder,
        page: int,
        page_size: int,
    ) -> SearchPage:
        if sort_by not in SORTABLE_FIELDS:
            raise RepositoryError(f"Cannot sort by '{sort_by}'", status_code=400)

        stmt = self._search_statement(query, filters)

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(stmt.subquery())
            )

            column = getattr(ProfileDB, sort_by)
            ordering = column.asc() if sort_order == "asc" else column.desc()
            rows = await session.execute(
                stmt.order_by(ordering, ProfileDB.id.asc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )

            records = []
            for profile, role in rows.all():
                record: Record = {c: getattr(profile, c) for c in ALL_COLUMNS}
                record["role"] = role
                records.append(record)

        return SearchPage(records=records, total_count=total or 0)

    def _search_statement(self, query: str, filters: UserSearchFilters) -> Select[Any]:
        stmt = select(ProfileDB, UserRoleDB.role).join(
            UserRoleDB, UserRoleDB.user_id == ProfileDB.id
        )

        if filters.role:
            stmt = stmt.where(UserRoleDB.role == filters.role)
        if filters.active is not None:
            stmt = stmt.where(ProfileDB.active == filters.active)
        if filters.profile_completed is not None:
            stmt = stmt.where(ProfileDB.profile_completed == filters.profile_completed)
        if filters.service_areas:
            # JSON arrays are matched on their serialized form
            areas_text = cast(ProfileDB.service_areas, String)
            stmt = stmt.where(
                or_(
                    *(
                        areas_text.like(_like_pattern(json.dumps(area)), escape="\\")
                        for area in filters.service_areas
                    )
                )
            )
        if filters.specialization:
            stmt = stmt.where(
                ProfileDB.specialization.ilike(
                    _like_pattern(filters.specialization), escape="\\"
                )
            )
        if filters.created_after:
            stmt = stmt.where(ProfileDB.created_at >= filters.created_after)
        if filters.created_before:
            stmt = stmt.where(ProfileDB.created_at <= filters.created_before)

        text = query.strip()
        if text:
            pattern = _like_pattern(text)
            stmt = stmt.where(
                or_(
                    ProfileDB.name.ilike(pattern, escape="\\"),
                    ProfileDB.email.ilike(pattern, escape="\\"),
                    ProfileDB.bio.ilike(pattern, escape="\\"),
                    ProfileDB.specialization.ilike(pattern, escape="\\"),
                )
            )

        return stmt

    async def _select_columns(
        self, session: AsyncSession, columns: tuple[str, ...], user_id: str
    ) -> Record | None:
        result = await session.execute(
            select(*(getattr(ProfileDB, c) for c in columns)).where(
                ProfileDB.id == user_id
            )
        )
        row = result.mappings().one_or_none()
        return dict(row) if row is not None else None

    async def _select_permissions(
        self, session: AsyncSession, user_id: str
    ) -> list[Record]:
        result = await session.execute(
            select(AdminPermissionDB)
            .where(AdminPermissionDB.user_id == user_id)
            .order_by(AdminPermissionDB.id)
        )
        return [
            {
                "resource": p.resource,
                "actions": list(p.actions or []),
                "granted_at": p.granted_at,
                "granted_by": p.granted_by,
            }
            for p in result.scalars().all()
        ]

    async def _apply_update(
        self, user_id: str, changes: Record, allowed: frozenset[str]
    ) -> bool:
        """Write ``changes``; returns False when the profile does not exist."""
        unknown = set(changes) - allowed
        if unknown:
            raise RepositoryError(
                f"Unknown profile fields: {', '.join(sorted(unknown))}",
                status_code=400,
            )

        values = dict(changes)
        permissions = values.pop("permissions", None)

        async with self._session_factory() as session:
            async with session.begin():
                profile = await session.get(ProfileDB, user_id)
                if profile is None:
                    return False

                for name, value in values.items():
                    setattr(profile, name, value)
                profile.updated_at = datetime.now()

                if permissions is not None:
                    await session.execute(
                        delete(AdminPermissionDB).where(
                            AdminPermissionDB.user_id == user_id
                        )
                    )
                    for grant in permissions:
                        session.add(AdminPermissionDB(user_id=user_id, **grant))

        logger.debug(f"Updated profile {user_id}: {sorted(changes)}")
        return True
