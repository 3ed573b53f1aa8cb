"""
Profile types using Pydantic models.

A profile is exactly one of ``UserProfile``, ``AgentProfile`` or
``AdminProfile``; the ``role`` field is the discriminator.
"""

from datetime import datetime
from typing import Annotated, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

UserRoleName = Literal["user", "agent", "admin", "super_admin"]
AccessLevel = Literal["read", "write", "admin", "super_admin"]
SortField = Literal["name", "created_at", "updated_at", "last_login"]
SortOrder = Literal["asc", "desc"]

ADMIN_ROLES: frozenset[str] = frozenset({"admin", "super_admin"})
SORTABLE_FIELDS: tuple[str, ...] = get_args(SortField)


class UserRole(BaseModel):
    """Role assignment for a user."""

    user_id: str
    role: UserRoleName
    assigned_at: datetime | None = None
    assigned_by: str | None = None


class NotificationPreferences(BaseModel):
    email: bool = True
    sms: bool = False
    push: bool = False


class PrivacyPreferences(BaseModel):
    profile_visibility: Literal["public", "private", "agents_only"] = "public"
    contact_visibility: bool = True


class CommunicationPreferences(BaseModel):
    preferred_language: str = "en"
    timezone: str = "UTC"


class UserPreferences(BaseModel):
    """User-controlled notification, privacy and locale settings."""

    notifications: NotificationPreferences = Field(
        default_factory=NotificationPreferences
    )
    privacy: PrivacyPreferences = Field(default_factory=PrivacyPreferences)
    communication: CommunicationPreferences = Field(
        default_factory=CommunicationPreferences
    )


class AgentPerformanceMetrics(BaseModel):
    total_sales: float = 0
    properties_sold: int = 0
    average_rating: float = 0
    total_reviews: int = 0
    response_time_hours: float = 0
    active_listings: int = 0


class AdminPermission(BaseModel):
    """A permission grant on one resource."""

    resource: str
    actions: list[str] = Field(default_factory=list)
    granted_at: datetime | None = None
    granted_by: str | None = None


class UserProfile(BaseModel):
    """Fields shared by every profile."""

    role: Literal["user"] = "user"
    id: str
    email: str
    name: str = ""
    phone: str | None = None
    bio: str | None = None
    profile_image: str | None = None
    active: bool = True
    profile_completed: bool = False
    created_at: datetime
    updated_at: datetime
    last_login: datetime | None = None
    preferences: UserPreferences | None = None


class AgentProfile(UserProfile):
    """Profile of a listing agent."""

    role: Literal["agent"] = "agent"  # type: ignore[assignment]
    specialization: str | None = None
    service_areas: list[str] = Field(default_factory=list)
    whatsapp: str | None = None
    linkedin: str | None = None
    instagram: str | None = None
    license_number: str | None = None
    commission_rate: float | None = None
    performance_metrics: AgentPerformanceMetrics | None = None


class AdminProfile(UserProfile):
    """Profile of an administrator."""

    role: Literal["admin", "super_admin"] = "admin"  # type: ignore[assignment]
    permissions: list[AdminPermission] = Field(default_factory=list)
    department: str | None = None
    access_level: AccessLevel = "admin"

    def can(self, resource: str, action: str) -> bool:
        """Check whether any grant allows ``action`` on ``resource``."""
        if self.access_level == "super_admin":
            return True
        return any(
            p.resource in (resource, "*") and (action in p.actions or "*" in p.actions)
            for p in self.permissions
        )


Profile = Annotated[
    Union[UserProfile, AgentProfile, AdminProfile],
    Field(discriminator="role"),
]

profile_adapter: TypeAdapter[Profile] = TypeAdapter(Profile)


class UserProfileUpdate(BaseModel):
    """Editable fields common to every profile."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1)
    phone: str | None = None
    profile_image: str | None = None
    bio: str | None = None
    preferences: UserPreferences | None = None


class AgentProfileUpdate(UserProfileUpdate):
    specialization: str | None = None
    service_areas: list[str] | None = None
    whatsapp: str | None = None
    linkedin: str | None = None
    instagram: str | None = None
    license_number: str | None = None
    commission_rate: float | None = Field(default=None, ge=0, le=100)


class AdminProfileUpdate(UserProfileUpdate):
    permissions: list[AdminPermission] | None = None
    department: str | None = None
    access_level: AccessLevel | None = None


class UserSearchFilters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: UserRoleName | None = None
    active: bool | None = None
    profile_completed: bool | None = None
    service_areas: list[str] | None = None
    specialization: str | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None


class UserSearchOptions(BaseModel):
    """Free-text query, filters, sort and pagination for a user search."""

    model_config = ConfigDict(extra="forbid")

    query: str = ""
    filters: UserSearchFilters = Field(default_factory=UserSearchFilters)
    sort_by: SortField = "created_at"
    sort_order: SortOrder = "desc"
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
