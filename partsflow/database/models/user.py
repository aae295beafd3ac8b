"""
User model mirrored from the external authentication provider.
"""

import enum
from typing import Optional

from sqlalchemy import Boolean, Enum as SQLEnum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from partsflow.database.base import BaseModel


class UserRole(str, enum.Enum):
    """Role asserted by the auth provider in the session token."""

    USER = "USER"
    STAFF = "STAFF"
    ADMIN = "ADMIN"

    @classmethod
    def from_string(cls, value: str) -> "UserRole":
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValueError(f"Invalid user role: {value}")

    @property
    def is_staff(self) -> bool:
        return self in (UserRole.STAFF, UserRole.ADMIN)


class User(BaseModel):
    """Customer or back-office account."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        comment="Login and contact email",
    )

    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole, name="user_role", native_enum=False, length=20),
        nullable=False,
        default=UserRole.USER,
        comment="Authorization role",
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_users_role", "role"),
        {"comment": "Accounts known to the storefront"},
    )
