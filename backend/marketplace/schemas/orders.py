"""
Order history and review schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from marketplace.services.orders.enums import OrderStatus, PaymentMethod, PurchaseType


class OrderSiteInfo(BaseModel):
    """Site fields shown next to an order."""

    id: int
    name: str
    site_link: str
    main_image_url: str


class OrderResponse(BaseModel):
    """An order as listed in the buyer's history."""

    id: int
    purchase_type: PurchaseType
    transaction_amount: Decimal
    status: OrderStatus
    payment_method: PaymentMethod
    gateway_reference: Optional[str] = None
    rent_expiry_date: Optional[datetime] = None
    created_at: datetime
    site: Optional[OrderSiteInfo] = None

    @field_serializer("transaction_amount")
    def serialize_amount(self, value: Decimal) -> str:
        return f"{value:.2f}"


class ReviewCreate(BaseModel):
    """Schema for reviewing a bought or rented site."""

    rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5")
    comment_text: Optional[str] = Field(default=None, max_length=2000)


class ReviewCreatedResponse(BaseModel):
    id: int
    site_id: int
    rating: int
    comment_text: Optional[str]
    created_at: datetime
