"""
Review left by a buyer or renter on a site.
"""

from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import BaseModel

if TYPE_CHECKING:
    from marketplace.database.models.site import Site
    from marketplace.database.models.user import User


class Comment(BaseModel):
    """Site review with a 1-5 rating, one per user and site."""

    __tablename__ = "comments"

    rating: Mapped[int] = mapped_column(Integer, nullable=False)

    comment_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    site_id: Mapped[int] = mapped_column(
        ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user: Mapped["User"] = relationship("User", back_populates="comments", lazy="noload")

    site: Mapped["Site"] = relationship("Site", back_populates="comments", lazy="noload")

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_comments_rating_range"),
        UniqueConstraint("user_id", "site_id", name="uq_comments_user_site"),
    )
