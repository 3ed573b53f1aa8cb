"""
Tests for the SQL repository against a throwaway SQLite database.
"""

from datetime import datetime

import pytest

from profile_service.datastore.engine import close_db, init_db
from profile_service.datastore.models import AdminPermissionDB, ProfileDB, UserRoleDB
from profile_service.datastore.repositories import SqlProfileRepository
from profile_service.services import ProfileService
from profile_service.services.errors import RepositoryError
from profile_service.types import AdminProfile, AgentProfile, UserSearchFilters


@pytest.fixture
async def session_factory(tmp_path):
    factory = await init_db(f"sqlite+aiosqlite:///{tmp_path / 'profiles.db'}")

    async with factory() as session:
        async with session.begin():
            session.add_all(
                [
                    UserRoleDB(user_id="alice", role="user"),
                    UserRoleDB(user_id="bob", role="agent"),
                    UserRoleDB(user_id="carol", role="admin"),
                    UserRoleDB(user_id="dave", role="agent"),
                    ProfileDB(
                        id="alice",
                        email="alice@example.com",
                        name="Alice",
                        bio="Looking for a 2BHK",
                        created_at=datetime(2024, 1, 1),
                        updated_at=datetime(2024, 1, 1),
                    ),
                    ProfileDB(
                        id="bob",
                        email="bob@example.com",
                        name="Bob",
                        specialization="Luxury Villas",
                        service_areas=["Goa", "Mumbai"],
                        commission_rate=2.5,
                        created_at=datetime(2024, 2, 1),
                        updated_at=datetime(2024, 2, 1),
                    ),
                    ProfileDB(
                        id="carol",
                        email="carol@example.com",
                        name="Carol",
                        department="Operations",
                        created_at=datetime(2024, 1, 15),
                        updated_at=datetime(2024, 1, 15),
                    ),
                    ProfileDB(
                        id="dave",
                        email="dave@example.com",
                        name="Dave",
                        active=False,
                        specialization="Commercial",
                        service_areas=["Pune"],
                        created_at=datetime(2024, 3, 1),
                        updated_at=datetime(2024, 3, 1),
                    ),
                    AdminPermissionDB(
                        user_id="carol", resource="listings", actions=["read", "write"]
                    ),
                ]
            )

    yield factory
    await close_db()


@pytest.fixture
def sql_repository(session_factory) -> SqlProfileRepository:
    return SqlProfileRepository(session_factory)


async def _search(
    repo, query="", sort_by="name", sort_order="asc", page=1, page_size=20, **filters
):
    return await repo.search_records(
        query, UserSearchFilters(**filters), sort_by, sort_order, page, page_size
    )


class TestLookups:
    async def test_role(self, sql_repository):
        role = await sql_repository.get_role_by_user_id("bob")

        assert role.role == "agent"
        assert role.assigned_at is not None
        assert await sql_repository.get_role_by_user_id("ghost") is None

    async def test_user_record_has_common_columns_only(self, sql_repository):
        record = await sql_repository.get_user_record_by_id("alice")

        assert record["email"] == "alice@example.com"
        assert record["active"] is True
        assert "service_areas" not in record
        assert await sql_repository.get_user_record_by_id("ghost") is None

    async def test_agent_record(self, sql_repository):
        record = await sql_repository.get_agent_record_by_id("bob")

        assert record["service_areas"] == ["Goa", "Mumbai"]
        assert record["commission_rate"] == 2.5

    async def test_admin_record_includes_permissions(self, sql_repository):
        record = await sql_repository.get_admin_record_by_id("carol")

        assert record["department"] == "Operations"
        assert [p["resource"] for p in record["permissions"]] == ["listings"]
        assert record["permissions"][0]["actions"] == ["read", "write"]


class TestUpdates:
    async def test_update_user_record(self, sql_repository):
        record = await sql_repository.update_user_record(
            "alice", {"name": "Alice K", "phone": "+91 98765"}
        )

        assert record["name"] == "Alice K"
        assert record["phone"] == "+91 98765"
        assert record["updated_at"] > datetime(2024, 1, 1)

    async def test_update_missing_profile(self, sql_repository):
        assert await sql_repository.update_user_record("ghost", {"name": "X"}) is None

    async def test_rejects_fields_outside_role(self, sql_repository):
        with pytest.raises(RepositoryError) as exc_info:
            await sql_repository.update_user_record("alice", {"service_areas": []})

        assert exc_info.value.status_code == 400

    async def test_update_agent_record(self, sql_repository):
        record = await sql_repository.update_agent_record(
            "bob", {"service_areas": ["Goa"], "whatsapp": "+91 11111"}
        )

        assert record["service_areas"] == ["Goa"]
        assert record["whatsapp"] == "+91 11111"

    async def test_update_admin_replaces_permissions(self, sql_repository):
        record = await sql_repository.update_admin_record(
            "carol",
            {
                "department": "Sales",
                "permissions": [{"resource": "users", "actions": ["read"]}],
            },
        )

        assert record["department"] == "Sales"
        assert [p["resource"] for p in record["permissions"]] == ["users"]


class TestSearch:
    async def test_all_sorted_by_name(self, sql_repository):
        page = await _search(sql_repository)

        assert [r["id"] for r in page.records] == ["alice", "bob", "carol", "dave"]
        assert page.total_count == 4
        assert page.records[1]["role"] == "agent"

    async def test_pagination_keeps_full_total(self, sql_repository):
        page = await _search(sql_repository, page=2, page_size=3)

        assert [r["id"] for r in page.records] == ["dave"]
        assert page.total_count == 4

    async def test_sort_descending(self, sql_repository):
        page = await _search(sql_repository, sort_by="created_at", sort_order="desc")

        assert [r["id"] for r in page.records] == ["dave", "bob", "carol", "alice"]

    async def test_role_filter(self, sql_repository):
        page = await _search(sql_repository, role="agent")

        assert [r["id"] for r in page.records] == ["bob", "dave"]

    @pytest.mark.parametrize(
        "areas, expected",
        [(["Goa"], ["bob"]), (["Pune", "Goa"], ["bob", "dave"]), (["Delhi"], [])],
    )
    async def test_service_area_overlap(self, sql_repository, areas, expected):
        page = await _search(sql_repository, service_areas=areas)

        assert [r["id"] for r in page.records] == expected

    async def test_active_and_date_filters(self, sql_repository):
        inactive = await _search(sql_repository, active=False)
        recent = await _search(sql_repository, created_after=datetime(2024, 1, 20))

        assert [r["id"] for r in inactive.records] == ["dave"]
        assert [r["id"] for r in recent.records] == ["bob", "dave"]

    @pytest.mark.parametrize(
        "query, expected",
        [
            ("villas", ["bob"]),
            ("CAROL@", ["carol"]),
            ("2bhk", ["alice"]),
            ("%", []),
        ],
    )
    async def test_text_query(self, sql_repository, query, expected):
        page = await _search(sql_repository, query=query)

        assert [r["id"] for r in page.records] == expected

    async def test_rejects_unknown_sort_column(self, sql_repository):
        with pytest.raises(RepositoryError):
            await _search(sql_repository, sort_by="email")


class TestServiceOverSql:
    async def test_fetch_update_and_cache(self, sql_repository, config, clock):
        service = ProfileService(sql_repository, config, clock=clock)

        agent = await service.get_user_profile("bob")
        assert isinstance(agent.data, AgentProfile)
        assert agent.data.service_areas == ["Goa", "Mumbai"]

        updated = await service.update_user_profile(
            "bob", {"service_areas": ["Goa"]}, role="agent"
        )
        assert updated.ok
        assert updated.data.service_areas == ["Goa"]

        after = await service.get_user_profile("bob")
        assert after.cached is False
        assert after.data.service_areas == ["Goa"]
        assert (await service.get_user_profile("bob")).cached is True

    async def test_admin_profile(self, sql_repository, config, clock):
        service = ProfileService(sql_repository, config, clock=clock)

        result = await service.get_user_profile("carol")

        assert isinstance(result.data, AdminProfile)
        assert result.data.access_level == "admin"
        assert result.data.can("listings", "write")
        assert not result.data.can("users", "read")

    async def test_search(self, sql_repository, config, clock):
        service = ProfileService(sql_repository, config, clock=clock)

        result = await service.search_users({"filters": {"role": "agent"}})

        assert result.total_count == 2
        assert all(isinstance(p, AgentProfile) for p in result.data)
