"""
Site catalog schemas for request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_serializer, model_validator


class SiteCreate(BaseModel):
    """
    Schema for creating a catalog entry.

    The cover image must already be hosted; its URL is stored as given.
    """

    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    price_sale: Optional[Decimal] = Field(
        default=None,
        ge=0,
        max_digits=10,
        decimal_places=2,
        description="Sale price, omit or 0 when not for sale",
    )
    price_rent: Optional[Decimal] = Field(
        default=None,
        ge=0,
        max_digits=10,
        decimal_places=2,
        description="Rental price per period, omit or 0 when not for rent",
    )
    main_image_url: HttpUrl
    site_link: HttpUrl
    additional_links: list[str] = Field(default_factory=list)
    is_available: bool = True

    @model_validator(mode="after")
    def require_a_price(self) -> "SiteCreate":
        if not (self.price_sale or self.price_rent):
            raise ValueError("A site must have a sale price or a rental price")
        return self


class SiteSummary(BaseModel):
    """Catalog listing entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    price_sale: Optional[Decimal]
    price_rent: Optional[Decimal]
    main_image_url: str
    site_link: str
    additional_links: list[Any] = Field(default_factory=list)
    is_available: bool
    created_at: datetime

    @field_serializer("price_sale", "price_rent")
    def serialize_price(self, value: Optional[Decimal]) -> Optional[str]:
        return f"{value:.2f}" if value is not None else None


class ReviewResponse(BaseModel):
    """A review as shown on the site page."""

    id: int
    rating: int
    comment_text: Optional[str]
    author_name: Optional[str]
    created_at: datetime


class SiteDetail(SiteSummary):
    """Site page: catalog entry with its reviews and rating summary."""

    reviews: list[ReviewResponse] = Field(default_factory=list)
    average_rating: Optional[float] = None
    review_count: int = 0
