"""
Site catalog service.

Builds the catalog listing and the site page (reviews plus rating summary)
on top of SiteRepository.
"""

from typing import Any, Optional, Sequence

from marketplace.core.logging import get_logger
from marketplace.database.models.comment import Comment
from marketplace.database.models.site import Site
from marketplace.schemas.sites import ReviewResponse, SiteCreate, SiteDetail, SiteSummary
from marketplace.services.sites.repository import SiteRepository

logger = get_logger(__name__)


class SiteServiceError(Exception):
    """Base exception for site service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class SiteNotFoundError(SiteServiceError):
    """Raised when a site is missing or not available."""

    pass


def average_rating(comments: Sequence[Comment]) -> Optional[float]:
    """Mean rating rounded to one decimal, None without reviews."""
    if not comments:
        return None
    return round(sum(comment.rating for comment in comments) / len(comments), 1)


class SiteService:
    """Catalog reads and admin writes."""

    def __init__(self, repository: SiteRepository):
        self.repository = repository

    async def list_sites(self) -> list[SiteSummary]:
        sites = await self.repository.list_available_sites()
        return [SiteSummary.model_validate(site) for site in sites]

    async def get_site_detail(self, site_id: int) -> SiteDetail:
        """
        Get an available site with its reviews.

        Raises:
            SiteNotFoundError: If the site is missing or not available
        """
        site = await self.repository.get_site(site_id)
        if site is None or not site.is_available:
            raise SiteNotFoundError("Site not found", site_id=site_id)

        comments = await self.repository.list_reviews(site_id)
        reviews = [
            ReviewResponse(
                id=comment.id,
                rating=comment.rating,
                comment_text=comment.comment_text,
                author_name=comment.user.full_name if comment.user else None,
                created_at=comment.created_at,
            )
            for comment in comments
        ]

        summary = SiteSummary.model_validate(site)
        return SiteDetail(
            **summary.model_dump(),
            reviews=reviews,
            average_rating=average_rating(comments),
            review_count=len(comments),
        )

    async def create_site(self, site_data: SiteCreate) -> Site:
        site = await self.repository.create_site(
            name=site_data.name,
            description=site_data.description,
            price_sale=site_data.price_sale,
            price_rent=site_data.price_rent,
            main_image_url=str(site_data.main_image_url),
            site_link=str(site_data.site_link),
            additional_links=site_data.additional_links,
            is_available=site_data.is_available,
        )
        logger.info("Catalog entry added", site_id=site.id)
        return site
