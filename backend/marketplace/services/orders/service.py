"""
Order history and review service.

Read-side companion of the reconciler: lists a buyer's orders and lets a
buyer review a site once the purchase or rental has settled.
"""

from typing import Any, Optional

from marketplace.core.logging import get_logger
from marketplace.database.models.comment import Comment
from marketplace.schemas.orders import OrderResponse, OrderSiteInfo
from marketplace.services.orders.repository import OrderRepository
from marketplace.services.sites.repository import DuplicateReviewError, SiteRepository

logger = get_logger(__name__)


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class ReviewNotAllowedError(OrderServiceError):
    """Raised when the user has no settled order for the site."""

    pass


class ReviewAlreadyExistsError(OrderServiceError):
    """Raised when the user already reviewed the site."""

    pass


class OrderService:
    """Buyer-facing order queries and reviews."""

    def __init__(self, order_repository: OrderRepository, site_repository: SiteRepository):
        self.order_repository = order_repository
        self.site_repository = site_repository

    async def list_user_orders(self, user_id: int) -> list[OrderResponse]:
        orders = await self.order_repository.list_orders_for_user(user_id)
        return [
            OrderResponse(
                id=order.id,
                purchase_type=order.purchase_type,
                transaction_amount=order.transaction_amount,
                status=order.status,
                payment_method=order.payment_method,
                gateway_reference=order.gateway_reference,
                rent_expiry_date=order.rent_expiry_date,
                created_at=order.created_at,
                site=(
                    OrderSiteInfo(
                        id=order.site.id,
                        name=order.site.name,
                        site_link=order.site.site_link,
                        main_image_url=order.site.main_image_url,
                    )
                    if order.site is not None
                    else None
                ),
            )
            for order in orders
        ]

    async def add_review(
        self,
        user_id: int,
        site_id: int,
        rating: int,
        comment_text: Optional[str] = None,
    ) -> Comment:
        """
        Review a site the user bought or is renting.

        Raises:
            ReviewNotAllowedError: If the user has no completed or rented order for the site
            ReviewAlreadyExistsError: If the user already reviewed the site
        """
        if not await self.order_repository.has_settled_order(user_id, site_id):
            logger.info("Review refused - no settled order", user_id=user_id, site_id=site_id)
            raise ReviewNotAllowedError(
                "You can only review sites you have bought or rented",
                user_id=user_id,
                site_id=site_id,
            )

        if await self.site_repository.has_review(user_id, site_id):
            raise ReviewAlreadyExistsError(
                "You have already reviewed this site",
                user_id=user_id,
                site_id=site_id,
            )

        try:
            return await self.site_repository.add_review(
                user_id=user_id,
                site_id=site_id,
                rating=rating,
                comment_text=comment_text,
            )
        except DuplicateReviewError as e:
            raise ReviewAlreadyExistsError(str(e), user_id=user_id, site_id=site_id) from e
