"""
Order data access repository.

This module implements the OrderRepository class, the only writer of order
rows. Every mutating method is its own unit of work and commits before it
returns, so the pending insert made at checkout is durable before the payment
gateway is contacted. Status changes are applied with a conditional UPDATE
keyed on the status the caller last observed; losing that race is reported
to the caller instead of overwriting the winner.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from marketplace.core.logging import get_logger
from marketplace.database.models.order import Order, OrderStatusHistory
from marketplace.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PurchaseType,
)

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when order is not found."""

    pass


class OrderCreationError(OrderRepositoryError):
    """Raised when order creation fails."""

    pass


class OrderUpdateError(OrderRepositoryError):
    """Raised when order update fails."""

    pass


class OrderRepository:
    """
    Repository for order data access operations.

    Orders are inserted and mutated here only; rows are never deleted.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    async def create_pending_order(
        self,
        user_id: int,
        site_id: int,
        purchase_type: PurchaseType,
        transaction_amount: Decimal,
        payment_method: PaymentMethod,
    ) -> Order:
        """
        Insert a new order in pending status and commit it.

        Args:
            user_id: Buyer
            site_id: Site being purchased or rented
            purchase_type: sale or rent
            transaction_amount: Amount to charge
            payment_method: card or pix

        Returns:
            Persisted order with its id assigned

        Raises:
            OrderCreationError: If the insert fails
        """
        try:
            order = Order(
                user_id=user_id,
                site_id=site_id,
                purchase_type=purchase_type,
                transaction_amount=transaction_amount,
                payment_method=payment_method,
                status=OrderStatus.PENDING,
                gateway_reference=None,
                rent_expiry_date=None,
            )
            self.session.add(order)
            await self.session.commit()

            logger.info(
                "Pending order created",
                order_id=order.id,
                user_id=user_id,
                site_id=site_id,
                purchase_type=purchase_type.value,
                amount=str(transaction_amount),
            )

            return order

        except IntegrityError as e:
            await self.session.rollback()
            logger.error(
                "Order creation failed - integrity error",
                user_id=user_id,
                site_id=site_id,
                error=str(e),
            )
            raise OrderCreationError(
                "Order creation failed due to data integrity violation",
                user_id=user_id,
                site_id=site_id,
                error=str(e),
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Order creation failed - database error",
                user_id=user_id,
                site_id=site_id,
                error=str(e),
            )
            raise OrderCreationError(
                "Order creation failed due to database error",
                user_id=user_id,
                site_id=site_id,
                error=str(e),
            ) from e

    async def assign_gateway_reference(self, order_id: int, gateway_reference: str) -> bool:
        """
        Store the gateway reference on an order that has none yet.

        Args:
            order_id: Order identifier
            gateway_reference: Processor payment identifier

        Returns:
            True if the reference was stored, False if the order already had one

        Raises:
            OrderUpdateError: If the update fails
        """
        try:
            stmt = (
                update(Order)
                .where(
                    and_(
                        Order.id == order_id,
                        Order.gateway_reference.is_(None),
                    )
                )
                .values(gateway_reference=gateway_reference, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            await self.session.commit()

            assigned = result.rowcount == 1
            if assigned:
                logger.info(
                    "Gateway reference assigned",
                    order_id=order_id,
                    gateway_reference=gateway_reference,
                )
            else:
                logger.warning(
                    "Gateway reference already set, keeping existing value",
                    order_id=order_id,
                    gateway_reference=gateway_reference,
                )
            return assigned

        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to assign gateway reference",
                order_id=order_id,
                error=str(e),
            )
            raise OrderUpdateError(
                "Failed to assign gateway reference",
                order_id=order_id,
                error=str(e),
            ) from e

    async def get_order(self, order_id: int) -> Optional[Order]:
        """
        Get order by ID, always reloading column values from the database.

        Returns:
            Order if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            stmt = (
                select(Order)
                .where(Order.id == order_id)
                .execution_options(populate_existing=True)
            )
            result = await self.session.execute(stmt)
            order = result.scalar_one_or_none()

            if order:
                logger.debug("Order found", order_id=order_id, status=order.status.value)
            else:
                logger.debug("Order not found", order_id=order_id)

            return order

        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=order_id, error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order",
                order_id=order_id,
                error=str(e),
            ) from e

    async def transition_status(
        self,
        order_id: int,
        expected_status: OrderStatus,
        new_status: OrderStatus,
        rent_expiry_date: Optional[datetime] = None,
        gateway_payment_id: Optional[str] = None,
        gateway_status: Optional[str] = None,
        only_if_expiry_missing: bool = False,
    ) -> bool:
        """
        Atomically move an order from expected_status to new_status.

        The UPDATE only matches while the row still has expected_status (and,
        when only_if_expiry_missing is set, a NULL rent_expiry_date). The
        history row is written in the same transaction.

        Args:
            order_id: Order identifier
            expected_status: Status the caller observed
            new_status: Status to write
            rent_expiry_date: Expiry to write alongside the status
            gateway_payment_id: Payment that triggered the change
            gateway_status: Normalised gateway status that triggered the change
            only_if_expiry_missing: Restrict the update to a missing expiry

        Returns:
            True if this call applied the transition, False if the row changed
            underneath the caller

        Raises:
            OrderUpdateError: If the update fails
        """
        conditions = [Order.id == order_id, Order.status == expected_status]
        if only_if_expiry_missing:
            conditions.append(Order.rent_expiry_date.is_(None))

        try:
            stmt = (
                update(Order)
                .where(and_(*conditions))
                .values(
                    status=new_status,
                    rent_expiry_date=rent_expiry_date,
                    updated_at=func.now(),
                )
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)

            if result.rowcount != 1:
                await self.session.rollback()
                logger.info(
                    "Order status changed concurrently, transition not applied",
                    order_id=order_id,
                    expected_status=expected_status.value,
                    new_status=new_status.value,
                )
                return False

            self.session.add(
                OrderStatusHistory(
                    order_id=order_id,
                    from_status=expected_status,
                    to_status=new_status,
                    gateway_payment_id=gateway_payment_id,
                    gateway_status=gateway_status,
                )
            )
            await self.session.commit()

            logger.info(
                "Order status updated",
                order_id=order_id,
                from_status=expected_status.value,
                to_status=new_status.value,
                rent_expiry_date=rent_expiry_date.isoformat() if rent_expiry_date else None,
            )
            return True

        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to update order status",
                order_id=order_id,
                new_status=new_status.value,
                error=str(e),
            )
            raise OrderUpdateError(
                "Failed to update order status",
                order_id=order_id,
                new_status=new_status.value,
                error=str(e),
            ) from e

    async def get_status_history(self, order_id: int) -> Sequence[OrderStatusHistory]:
        """
        Get status history for order, oldest first.

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            stmt = (
                select(OrderStatusHistory)
                .where(OrderStatusHistory.order_id == order_id)
                .order_by(OrderStatusHistory.id.asc())
            )
            result = await self.session.execute(stmt)
            return result.scalars().all()

        except SQLAlchemyError as e:
            logger.error("Failed to fetch status history", order_id=order_id, error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch status history",
                order_id=order_id,
                error=str(e),
            ) from e

    async def list_orders_for_user(self, user_id: int) -> Sequence[Order]:
        """
        Get a user's orders newest first, with their sites loaded.

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            stmt = (
                select(Order)
                .where(Order.user_id == user_id)
                .options(selectinload(Order.site))
                .order_by(Order.created_at.desc(), Order.id.desc())
            )
            result = await self.session.execute(stmt)
            orders = result.scalars().all()

            logger.debug("User orders fetched", user_id=user_id, count=len(orders))

            return orders

        except SQLAlchemyError as e:
            logger.error("Failed to fetch user orders", user_id=user_id, error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch user orders",
                user_id=user_id,
                error=str(e),
            ) from e

    async def has_settled_order(self, user_id: int, site_id: int) -> bool:
        """
        Check whether the user bought or rented the site.

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            stmt = (
                select(func.count())
                .select_from(Order)
                .where(
                    and_(
                        Order.user_id == user_id,
                        Order.site_id == site_id,
                        Order.status.in_([OrderStatus.COMPLETED, OrderStatus.RENTED]),
                    )
                )
            )
            result = await self.session.execute(stmt)
            return result.scalar_one() > 0

        except SQLAlchemyError as e:
            logger.error(
                "Failed to check settled orders",
                user_id=user_id,
                site_id=site_id,
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to check settled orders",
                user_id=user_id,
                site_id=site_id,
                error=str(e),
            ) from e
