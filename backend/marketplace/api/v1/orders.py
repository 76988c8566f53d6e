"""
Order history and review API endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from marketplace.api.deps import CurrentUser, get_order_service
from marketplace.core.logging import get_logger
from marketplace.schemas.orders import OrderResponse, ReviewCreate, ReviewCreatedResponse
from marketplace.services.orders.service import (
    OrderService,
    ReviewAlreadyExistsError,
    ReviewNotAllowedError,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/orders", tags=["orders"])


@router.get(
    "/my",
    response_model=list[OrderResponse],
    summary="Orders of the current user",
)
async def list_my_orders(
    current_user: CurrentUser,
    service: Annotated[OrderService, Depends(get_order_service)],
) -> list[OrderResponse]:
    return await service.list_user_orders(current_user.id)


@router.post(
    "/{site_id}/review",
    response_model=ReviewCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Review a bought or rented site",
)
async def create_review(
    site_id: int,
    review: ReviewCreate,
    current_user: CurrentUser,
    service: Annotated[OrderService, Depends(get_order_service)],
) -> ReviewCreatedResponse:
    """
    Review a site the current user has bought or is renting.

    Raises:
        HTTPException: 403 without a settled order, 400 on a second review
    """
    try:
        comment = await service.add_review(
            user_id=current_user.id,
            site_id=site_id,
            rating=review.rating,
            comment_text=review.comment_text,
        )
    except ReviewNotAllowedError as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": e.message, "code": "REVIEW_NOT_ALLOWED"},
        )
    except ReviewAlreadyExistsError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": e.message, "code": "REVIEW_EXISTS"},
        )

    return ReviewCreatedResponse(
        id=comment.id,
        site_id=comment.site_id,
        rating=comment.rating,
        comment_text=comment.comment_text,
        created_at=comment.created_at,
    )
