"""
Database models package initialization.

Models are imported here to ensure they are registered with the Base metadata
for Alembic and for relationship resolution.
"""

from marketplace.database.base import (
    Base,
    BaseModel,
    IntegerIDMixin,
    TimestampMixin,
)
from marketplace.database.models.comment import Comment
from marketplace.database.models.order import Order, OrderStatusHistory
from marketplace.database.models.site import Site
from marketplace.database.models.user import User, UserRole

__all__ = [
    "Base",
    "BaseModel",
    "IntegerIDMixin",
    "TimestampMixin",
    "Comment",
    "Order",
    "OrderStatusHistory",
    "Site",
    "User",
    "UserRole",
]
