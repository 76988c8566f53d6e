"""
Order model for purchase and rental tracking.

This module defines the Order model, a buyer's intent to purchase or rent a
site together with the settlement state mirrored from the payment gateway,
and OrderStatusHistory, the append-only audit trail of applied transitions.
Orders are never deleted.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import Base, BaseModel
from marketplace.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PurchaseType,
)

if TYPE_CHECKING:
    from marketplace.database.models.site import Site
    from marketplace.database.models.user import User


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


def order_status_type() -> SQLEnum:
    return SQLEnum(
        OrderStatus,
        name="order_status",
        native_enum=False,
        length=20,
        values_callable=_enum_values,
    )


class Order(BaseModel):
    """
    Purchase or rental of a site, settled through the payment gateway.

    Attributes:
        id: Integer order identifier, also the gateway correlation key
        user_id: Buyer
        site_id: Purchased or rented site
        purchase_type: sale or rent
        transaction_amount: Amount charged, fixed at creation
        status: pending, completed, rented or rejected
        payment_method: card or pix
        gateway_reference: Processor payment id, assigned once
        rent_expiry_date: End of the rental period, set only while rented
    """

    __tablename__ = "orders"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Customer who placed the order",
    )

    site_id: Mapped[int] = mapped_column(
        ForeignKey("sites.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Site being purchased or rented",
    )

    purchase_type: Mapped[PurchaseType] = mapped_column(
        SQLEnum(
            PurchaseType,
            name="purchase_type",
            native_enum=False,
            length=10,
            values_callable=_enum_values,
        ),
        nullable=False,
        comment="sale or rent",
    )

    transaction_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Charged amount, immutable after creation",
    )

    status: Mapped[OrderStatus] = mapped_column(
        order_status_type(),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Settlement status mirrored from the gateway",
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(
            PaymentMethod,
            name="payment_method",
            native_enum=False,
            length=10,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=PaymentMethod.CARD,
        comment="card or pix",
    )

    gateway_reference: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Payment gateway identifier, assigned at most once",
    )

    rent_expiry_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Rental end, set iff status is rented",
    )

    user: Mapped["User"] = relationship("User", back_populates="orders", lazy="noload")

    site: Mapped["Site"] = relationship("Site", back_populates="orders", lazy="noload")

    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        lazy="noload",
        order_by="OrderStatusHistory.id",
    )

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_user_site_status", "user_id", "site_id", "status"),
        CheckConstraint(
            "transaction_amount > 0",
            name="ck_orders_amount_positive",
        ),
        CheckConstraint(
            "status IN ('pending', 'completed', 'rented', 'rejected')",
            name="ck_orders_status",
        ),
        CheckConstraint(
            "purchase_type IN ('sale', 'rent')",
            name="ck_orders_purchase_type",
        ),
        CheckConstraint(
            "(status = 'rented' AND rent_expiry_date IS NOT NULL) "
            "OR (status <> 'rented' AND rent_expiry_date IS NULL)",
            name="ck_orders_rent_expiry_iff_rented",
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal()

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, status={self.status.value}, "
            f"purchase_type={self.purchase_type.value}, "
            f"gateway_reference={self.gateway_reference!r})>"
        )


class OrderStatusHistory(Base):
    """
    Audit record of one applied order status transition.

    Written in the same transaction as the status change it records.
    """

    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        comment="Parent order identifier",
    )

    from_status: Mapped[OrderStatus] = mapped_column(
        order_status_type(),
        nullable=False,
        comment="Previous status",
    )

    to_status: Mapped[OrderStatus] = mapped_column(
        order_status_type(),
        nullable=False,
        comment="New status",
    )

    gateway_payment_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Gateway payment that triggered the change",
    )

    gateway_status: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Normalised gateway status at the time of the change",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    order: Mapped["Order"] = relationship(
        "Order",
        back_populates="status_history",
        lazy="noload",
    )

    __table_args__ = (
        Index("ix_order_status_history_order_created", "order_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrderStatusHistory(id={self.id}, order_id={self.order_id}, "
            f"from_status={self.from_status.value}, to_status={self.to_status.value})>"
        )
