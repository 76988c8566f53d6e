"""
User model with authentication and role management.
"""

import enum
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import BaseModel

if TYPE_CHECKING:
    from marketplace.database.models.comment import Comment
    from marketplace.database.models.order import Order


class UserRole(str, enum.Enum):
    """User role enumeration for role-based access control."""

    USER = "user"
    ADMIN = "admin"

    @classmethod
    def from_string(cls, value: str) -> "UserRole":
        """
        Convert string to UserRole enum.

        Raises:
            ValueError: If value is not a valid role
        """
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"Invalid role: {value}")


class User(BaseModel):
    """
    Marketplace account.

    Attributes:
        id: Integer user identifier
        full_name: Display name
        email: Unique login email
        password_hash: bcrypt hash of the password
        role: Access role (user or admin)
        is_active: Whether the account may authenticate
    """

    __tablename__ = "users"

    full_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="User's full name",
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="User email address (unique, stored lower-case)",
    )

    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Bcrypt hashed password",
    )

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(
            UserRole,
            name="user_role",
            native_enum=False,
            length=20,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=UserRole.USER,
        comment="User role for access control",
    )

    is_active: Mapped[bool] = mapped_column(
        default=True,
        nullable=False,
        comment="Account active status",
    )

    orders: Mapped[list["Order"]] = relationship(
        "Order",
        back_populates="user",
        lazy="noload",
    )

    comments: Mapped[list["Comment"]] = relationship(
        "Comment",
        back_populates="user",
        lazy="noload",
    )

    __table_args__ = (
        CheckConstraint("length(email) >= 3", name="ck_users_email_min_length"),
        CheckConstraint("role IN ('user', 'admin')", name="ck_users_role"),
    )

    @property
    def is_admin(self) -> bool:
        """Check if user has the admin role."""
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role.value})>"
