"""
Site model: a pre-built website offered for sale or rent.
"""

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import BaseModel

if TYPE_CHECKING:
    from marketplace.database.models.comment import Comment
    from marketplace.database.models.order import Order


class Site(BaseModel):
    """
    Catalog entry for a site product.

    A price of zero (or NULL) means the site is not offered for that purchase
    type.

    Attributes:
        id: Integer site identifier
        name: Display name
        description: Long description
        price_sale: Price to buy the site outright
        price_rent: Price of one rental period
        main_image_url: URL of the hosted cover image
        site_link: URL of the live demo
        additional_links: Extra demo or gallery links
        is_available: Whether the site is listed and purchasable
    """

    __tablename__ = "sites"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False)

    price_sale: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2),
        nullable=True,
        default=Decimal("0.00"),
        comment="Sale price, zero when not for sale",
    )

    price_rent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2),
        nullable=True,
        default=Decimal("0.00"),
        comment="Rental price per period, zero when not for rent",
    )

    main_image_url: Mapped[str] = mapped_column(String(1024), nullable=False)

    site_link: Mapped[str] = mapped_column(String(1024), nullable=False)

    additional_links: Mapped[list[Any]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    is_available: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    comments: Mapped[list["Comment"]] = relationship(
        "Comment",
        back_populates="site",
        lazy="noload",
        order_by="Comment.created_at.desc()",
    )

    orders: Mapped[list["Order"]] = relationship(
        "Order",
        back_populates="site",
        lazy="noload",
    )

    __table_args__ = (
        CheckConstraint(
            "price_sale IS NULL OR price_sale >= 0",
            name="ck_sites_price_sale_non_negative",
        ),
        CheckConstraint(
            "price_rent IS NULL OR price_rent >= 0",
            name="ck_sites_price_rent_non_negative",
        ),
        Index("ix_sites_available_created", "is_available", "created_at"),
    )
