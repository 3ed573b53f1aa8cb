"""
REST profile repository - talks to a PostgREST-compatible gateway.

Tables are exposed as ``/user_roles``, ``/profiles`` and
``/admin_permissions``; filters use PostgREST operators (``eq.``, ``ilike.``,
``ov.``) and the total count of a search comes from the ``Content-Range``
header.
"""

from datetime import datetime
from typing import Any

import httpx
from loguru import logger
from pydantic import TypeAdapter

from profile_service.datastore.base import ProfileRepository, Record, SearchPage
from profile_service.datastore.models import ADMIN_COLUMNS, AGENT_COLUMNS, BASE_COLUMNS
from profile_service.services.errors import (
    NetworkError,
    RepositoryError,
    RequestTimeoutError,
)
from profile_service.types import (
    SORTABLE_FIELDS,
    SortField,
    SortOrder,
    UserRole,
    UserSearchFilters,
)

PERMISSION_SELECT = "admin_permissions(resource,actions,granted_at,granted_by)"

Params = list[tuple[str, str]]

_json_adapter: TypeAdapter[Any] = TypeAdapter(Any)


def _quote(value: str) -> str:
    """Quote a value for use inside a PostgREST ``or=(...)`` list."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _parse_total(content_range: str | None, fallback: int) -> int:
    # "0-19/57" or "*/0"
    if not content_range or "/" not in content_range:
        return fallback
    total = content_range.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else fallback


def _role_of(row: Record) -> str | None:
    nested = row.pop("user_roles", None)
    if isinstance(nested, list):
        nested = nested[0] if nested else None
    if isinstance(nested, dict):
        return nested.get("role")
    return row.get("role")


class RestProfileRepository(ProfileRepository):
    """
    Profile repository over HTTP.

    Usage:
        repository = RestProfileRepository(
            base_url="https://db.example.com/rest/v1",
            api_key=settings.profile_api_key,
        )
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Params | None = None,
        json_data: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        """Execute the HTTP request, mapping transport failures to service errors."""
        client = self._get_client()
        try:
            response = await client.request(
                method,
                f"{self._base_url}/{path}",
                params=params,
                json=(
                    _json_adapter.dump_python(json_data, mode="json")
                    if json_data is not None
                    else None
                ),
                headers=self._headers(prefer),
            )
            response.raise_for_status()
            return response

        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self._timeout * 1000) from e

        except httpx.HTTPStatusError as e:
            raise RepositoryError(
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e

        except httpx.RequestError as e:
            raise NetworkError(str(e)) from e

    async def _select_one(
        self, table: str, key: str, value: str, select: str
    ) -> Record | None:
        response = await self._request(
            "GET", table, params=[(key, f"eq.{value}"), ("select", select)]
        )
        rows = response.json()
        return dict(rows[0]) if rows else None

    async def get_role_by_user_id(self, user_id: str) -> UserRole | None:
        row = await self._select_one("user_roles", "user_id", user_id, "*")
        return UserRole.model_validate(row) if row else None

    async def get_user_record_by_id(self, user_id: str) -> Record | None:
        return await self._select_one("profiles", "id", user_id, ",".join(BASE_COLUMNS))

    async def get_agent_record_by_id(self, user_id: str) -> Record | None:
        return await self._select_one(
            "profiles", "id", user_id, ",".join(AGENT_COLUMNS)
        )

    async def get_admin_record_by_id(self, user_id: str) -> Record | None:
        record = await self._select_one(
            "profiles",
            "id",
            user_id,
            ",".join(ADMIN_COLUMNS + (PERMISSION_SELECT,)),
        )
        if record is not None:
            record["permissions"] = record.pop("admin_permissions", None) or []
        return record

    async def _patch_profile(self, user_id: str, changes: Record) -> bool:
        if not changes:
            return await self.get_user_record_by_id(user_id) is not None
        response = await self._request(
            "PATCH",
            "profiles",
            params=[("id", f"eq.{user_id}")],
            json_data={**changes, "updated_at": datetime.now()},
            prefer="return=representation",
        )
        return bool(response.json())

    async def update_user_record(self, user_id: str, changes: Record) -> Record | None:
        if not await self._patch_profile(user_id, changes):
            return None
        return await self.get_user_record_by_id(user_id)

    async def update_agent_record(
        self, user_id: str, changes: Record
    ) -> Record | None:
        if not await self._patch_profile(user_id, changes):
            return None
        return await self.get_agent_record_by_id(user_id)

    async def update_admin_record(
        self, user_id: str, changes: Record
    ) -> Record | None:
        values = dict(changes)
        permissions = values.pop("permissions", None)

        if not await self._patch_profile(user_id, values):
            return None

        if permissions is not None:
            await self._request(
                "DELETE", "admin_permissions", params=[("user_id", f"eq.{user_id}")]
            )
            if permissions:
                await self._request(
                    "POST",
                    "admin_permissions",
                    json_data=[{**p, "user_id": user_id} for p in permissions],
                    prefer="return=minimal",
                )
            logger.debug(f"Replaced {len(permissions)} permissions for {user_id}")

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

        offset = (page - 1) * page_size
        params: Params = [("select", "*,user_roles!inner(role)")]
        params.extend(self._filter_params(query, filters))
        params.extend(
            [
                ("order", f"{sort_by}.{sort_order},id.asc"),
                ("offset", str(offset)),
                ("limit", str(page_size)),
            ]
        )

        response = await self._request(
            "GET", "profiles", params=params, prefer="count=exact"
        )

        records = []
        for row in response.json():
            record = dict(row)
            record["role"] = _role_of(record)
            records.append(record)

        total = _parse_total(
            response.headers.get("content-range"), offset + len(records)
        )
        return SearchPage(records=records, total_count=total)

    @staticmethod
    def _filter_params(query: str, filters: UserSearchFilters) -> Params:
        params: Params = []
        if filters.role:
            params.append(("user_roles.role", f"eq.{filters.role}"))
        if filters.active is not None:
            params.append(("active", f"eq.{str(filters.active).lower()}"))
        if filters.profile_completed is not None:
            params.append(
                ("profile_completed", f"eq.{str(filters.profile_completed).lower()}")
            )
        if filters.service_areas:
            areas = ",".join(_quote(a) for a in filters.service_areas)
            params.append(("service_areas", f"ov.{{{areas}}}"))
        if filters.specialization:
            params.append(("specialization", f"ilike.*{filters.specialization}*"))
        if filters.created_after:
            params.append(("created_at", f"gte.{filters.created_after.isoformat()}"))
        if filters.created_before:
            params.append(("created_at", f"lte.{filters.created_before.isoformat()}"))

        text = query.strip()
        if text:
            pattern = _quote(f"*{text}*")
            columns = ("name", "email", "bio", "specialization")
            params.append(
                ("or", "(" + ",".join(f"{c}.ilike.{pattern}" for c in columns) + ")")
            )
        return params

    async def close(self) -> None:
        """Close the HTTP client if this repository created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None
