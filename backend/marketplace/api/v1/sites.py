"""
Site catalog API endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from marketplace.api.deps import CurrentAdmin, get_site_service
from marketplace.core.logging import get_logger
from marketplace.schemas.sites import SiteCreate, SiteDetail, SiteSummary
from marketplace.services.sites.service import SiteNotFoundError, SiteService

logger = get_logger(__name__)
router = APIRouter(prefix="/sites", tags=["sites"])


@router.get(
    "",
    response_model=list[SiteSummary],
    summary="List available sites",
)
async def list_sites(
    service: Annotated[SiteService, Depends(get_site_service)],
) -> list[SiteSummary]:
    return await service.list_sites()


@router.get(
    "/{site_id}",
    response_model=SiteDetail,
    summary="Site details with reviews",
)
async def get_site(
    site_id: int,
    service: Annotated[SiteService, Depends(get_site_service)],
) -> SiteDetail:
    """
    Get an available site with its reviews and average rating.

    Raises:
        HTTPException: 404 if the site is missing or unavailable
    """
    try:
        return await service.get_site_detail(site_id)
    except SiteNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": e.message, "code": "SITE_NOT_FOUND"},
        )


@router.post(
    "",
    response_model=SiteSummary,
    status_code=status.HTTP_201_CREATED,
    summary="Add a site to the catalog (admin)",
)
async def create_site(
    site_data: SiteCreate,
    admin: CurrentAdmin,
    service: Annotated[SiteService, Depends(get_site_service)],
) -> SiteSummary:
    site = await service.create_site(site_data)
    logger.info("Site added by admin", site_id=site.id, admin_id=admin.id)
    return SiteSummary.model_validate(site)
