"""
Database models for profiles and role assignments.
Uses SQLAlchemy 2.0+ declarative mapping.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""

    pass


class UserRoleDB(Base):
    """Role assignment table (one row per user)."""

    __tablename__ = "user_roles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="user")
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, nullable=False
    )
    assigned_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<UserRole(user_id={self.user_id}, role={self.role})>"


class ProfileDB(Base):
    """
    Profile table.

    One wide table for every role; agent and admin columns stay null for
    plain users.
    """

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile_image: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    profile_completed: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )
    last_login: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    preferences: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Agent columns
    specialization: Mapped[str | None] = mapped_column(String(255), nullable=True)
    service_areas: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    whatsapp: Mapped[str | None] = mapped_column(String(50), nullable=True)
    linkedin: Mapped[str | None] = mapped_column(String(255), nullable=True)
    instagram: Mapped[str | None] = mapped_column(String(255), nullable=True)
    license_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    commission_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    performance_metrics: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True
    )

    # Admin columns
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    access_level: Mapped[str | None] = mapped_column(String(32), nullable=True)

    permissions: Mapped[list["AdminPermissionDB"]] = relationship(
        back_populates="profile",
        cascade="all, delete-orphan",
        order_by="AdminPermissionDB.id",
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, email={self.email})>"


class AdminPermissionDB(Base):
    """Permission grants for admin profiles."""

    __tablename__ = "admin_permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), index=True
    )
    resource: Mapped[str] = mapped_column(String(255), nullable=False)
    actions: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    granted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    granted_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    profile: Mapped[ProfileDB] = relationship(back_populates="permissions")

    def __repr__(self) -> str:
        return f"<AdminPermission(user_id={self.user_id}, resource={self.resource})>"


BASE_COLUMNS: tuple[str, ...] = (
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
    "preferences",
)

AGENT_COLUMNS: tuple[str, ...] = BASE_COLUMNS + (
    "specialization",
    "service_areas",
    "whatsapp",
    "linkedin",
    "instagram",
    "license_number",
    "commission_rate",
    "performance_metrics",
)

ADMIN_COLUMNS: tuple[str, ...] = BASE_COLUMNS + ("department", "access_level")

ALL_COLUMNS: tuple[str, ...] = AGENT_COLUMNS + ("department", "access_level")
