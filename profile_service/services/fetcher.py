"""
ProfileFetcher - Role-dispatched profile retrieval.

1. Read the user's role assignment
2. Query the role-shaped record (user / agent / admin)
3. Normalize the raw record into the matching profile model

The whole cycle runs under the retry executor, so a transient failure at any
step retries the cycle from the top.
"""

import json
from typing import Any

from loguru import logger

from profile_service.datastore.base import ProfileRepository, Record
from profile_service.services.retry import RetryExecutor, RetryPolicy
from profile_service.types import ADMIN_ROLES, UserProfile, profile_adapter

COMMON_FIELDS: tuple[str, ...] = (
    "id",
    "email",
    "name",
    "phone",
    "bio",
    "profile_image",
    "active",
    "profile_completed",
    "created_at",
    "updated_at",
    "last_login",
)

AGENT_FIELDS: tuple[str, ...] = (
    "specialization",
    "whatsapp",
    "linkedin",
    "instagram",
    "license_number",
    "commission_rate",
)


def _decode_json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return None
    return value


def parse_service_areas(value: Any) -> list[str]:
    """
    Normalize a stored service-area value into an ordered list.

    Accepts a list, a JSON-encoded list, or a legacy comma-separated string.
    """
    if value is None:
        return []

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        try:
            value = json.loads(text)
        except json.JSONDecodeError:
            logger.warning(f"service_areas is not JSON, splitting on commas: {text!r}")
            value = text.split(",")

    if isinstance(value, (list, tuple)):
        areas = (str(area).strip() for area in value if area is not None)
        return [area for area in areas if area]

    return [str(value)]


def build_profile(role: str | None, record: Record) -> UserProfile:
    """
    Materialize exactly one profile variant for ``record``.

    ``admin``/``super_admin`` give AdminProfile, ``agent`` gives AgentProfile,
    anything else UserProfile. Absent optional fields fall back to model
    defaults.
    """
    data: dict[str, Any] = {
        name: record[name] for name in COMMON_FIELDS if record.get(name) is not None
    }

    preferences = _decode_json(record.get("preferences"))
    if isinstance(preferences, dict):
        data["preferences"] = preferences

    if role == "agent":
        metrics = _decode_json(record.get("performance_metrics"))
        data.update({name: record.get(name) for name in AGENT_FIELDS})
        data["service_areas"] = parse_service_areas(record.get("service_areas"))
        data["performance_metrics"] = metrics if isinstance(metrics, dict) else None
    elif role in ADMIN_ROLES:
        data["permissions"] = _decode_json(record.get("permissions")) or []
        data["department"] = record.get("department")
        data["access_level"] = record.get("access_level") or role
    else:
        role = "user"

    return profile_adapter.validate_python({**data, "role": role})


class ProfileFetcher:
    """
    Reads and writes role-shaped profiles through a repository.

    Usage:
        fetcher = ProfileFetcher(repository, RetryExecutor(), RetryPolicy())
        profile = await fetcher.fetch(user_id)  # None when no role/profile
    """

    def __init__(
        self,
        repository: ProfileRepository,
        executor: RetryExecutor,
        policy: RetryPolicy | None = None,
        attempt_timeout_ms: float = 30000,
        debug: bool = False,
    ):
        self.repository = repository
        self._executor = executor
        self._policy = policy
        self._attempt_timeout_ms = attempt_timeout_ms
        self._debug = debug

    async def fetch(self, user_id: str) -> UserProfile | None:
        """Fetch and normalize a profile; ``None`` if the user has no role."""
        return await self._executor.with_retry_and_timeout(
            lambda: self._fetch_once(user_id),
            self._policy,
            self._attempt_timeout_ms,
        )

    async def _fetch_once(self, user_id: str) -> UserProfile | None:
        role = await self.repository.get_role_by_user_id(user_id)
        if role is None:
            self._log(f"NO ROLE: {user_id}")
            return None

        if role.role == "agent":
            record = await self.repository.get_agent_record_by_id(user_id)
        elif role.role in ADMIN_ROLES:
            record = await self.repository.get_admin_record_by_id(user_id)
        else:
            record = await self.repository.get_user_record_by_id(user_id)

        if record is None:
            logger.warning(
                f"User {user_id} has role '{role.role}' but no profile record"
            )
            return None

        self._log(f"FETCHED: {user_id} as {role.role}")
        return build_profile(role.role, record)

    async def role_of(self, user_id: str) -> str | None:
        """Stored role name for ``user_id``; ``None`` if unassigned."""
        role = await self._executor.with_retry_and_timeout(
            lambda: self.repository.get_role_by_user_id(user_id),
            self._policy,
            self._attempt_timeout_ms,
        )
        return role.role if role else None

    async def update(
        self, user_id: str, role: str, changes: Record
    ) -> UserProfile | None:
        """
        Apply ``changes`` through the role's update path; ``None`` if absent.

        ``role`` must be the stored role (see ``role_of``), as it picks both
        the repository method and the returned profile variant.
        """

        async def run() -> Record | None:
            if role == "agent":
                return await self.repository.update_agent_record(user_id, changes)
            if role in ADMIN_ROLES:
                return await self.repository.update_admin_record(user_id, changes)
            return await self.repository.update_user_record(user_id, changes)

        record = await self._executor.with_retry_and_timeout(
            run, self._policy, self._attempt_timeout_ms
        )
        if record is None:
            return None
        return build_profile(role, record)

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[ProfileFetcher] {message}")
