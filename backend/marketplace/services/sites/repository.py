"""
Site catalog and review data access.

The order reconciler only reads from this repository; catalog writes and
review inserts come from the admin and review endpoints.
"""

from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from marketplace.core.logging import get_logger
from marketplace.database.models.comment import Comment
from marketplace.database.models.site import Site

logger = get_logger(__name__)


class SiteRepositoryError(Exception):
    """Base exception for site repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class DuplicateReviewError(SiteRepositoryError):
    """Raised when a user reviews the same site twice."""

    pass


class SiteRepository:
    """Repository for sites and their reviews."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_site(self, site_id: int) -> Optional[Site]:
        """
        Get site by ID regardless of availability.

        Raises:
            SiteRepositoryError: If query fails
        """
        try:
            result = await self.session.execute(select(Site).where(Site.id == site_id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch site", site_id=site_id, error=str(e))
            raise SiteRepositoryError(
                "Failed to fetch site",
                site_id=site_id,
                error=str(e),
            ) from e

    async def list_available_sites(self) -> Sequence[Site]:
        """
        Get available sites, newest first.

        Raises:
            SiteRepositoryError: If query fails
        """
        try:
            stmt = (
                select(Site)
                .where(Site.is_available.is_(True))
                .order_by(Site.created_at.desc(), Site.id.desc())
            )
            result = await self.session.execute(stmt)
            return result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Failed to list sites", error=str(e))
            raise SiteRepositoryError("Failed to list sites", error=str(e)) from e

    async def create_site(
        self,
        name: str,
        description: str,
        price_sale: Optional[Decimal],
        price_rent: Optional[Decimal],
        main_image_url: str,
        site_link: str,
        additional_links: Optional[list[Any]] = None,
        is_available: bool = True,
    ) -> Site:
        """
        Insert a catalog entry and commit it.

        Raises:
            SiteRepositoryError: If the insert fails
        """
        try:
            site = Site(
                name=name,
                description=description,
                price_sale=price_sale,
                price_rent=price_rent,
                main_image_url=main_image_url,
                site_link=site_link,
                additional_links=additional_links or [],
                is_available=is_available,
            )
            self.session.add(site)
            await self.session.commit()
            await self.session.refresh(site)

            logger.info("Site created", site_id=site.id, name=name)
            return site

        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Site creation failed", name=name, error=str(e))
            raise SiteRepositoryError("Site creation failed", name=name, error=str(e)) from e

    async def list_reviews(self, site_id: int) -> Sequence[Comment]:
        """
        Get a site's reviews newest first, with their authors loaded.

        Raises:
            SiteRepositoryError: If query fails
        """
        try:
            stmt = (
                select(Comment)
                .where(Comment.site_id == site_id)
                .options(selectinload(Comment.user))
                .order_by(Comment.created_at.desc(), Comment.id.desc())
            )
            result = await self.session.execute(stmt)
            return result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Failed to list reviews", site_id=site_id, error=str(e))
            raise SiteRepositoryError(
                "Failed to list reviews",
                site_id=site_id,
                error=str(e),
            ) from e

    async def has_review(self, user_id: int, site_id: int) -> bool:
        try:
            stmt = (
                select(func.count())
                .select_from(Comment)
                .where(and_(Comment.user_id == user_id, Comment.site_id == site_id))
            )
            result = await self.session.execute(stmt)
            return result.scalar_one() > 0
        except SQLAlchemyError as e:
            logger.error(
                "Failed to check existing review",
                user_id=user_id,
                site_id=site_id,
                error=str(e),
            )
            raise SiteRepositoryError(
                "Failed to check existing review",
                user_id=user_id,
                site_id=site_id,
                error=str(e),
            ) from e

    async def add_review(
        self,
        user_id: int,
        site_id: int,
        rating: int,
        comment_text: Optional[str],
    ) -> Comment:
        """
        Insert a review and commit it.

        Raises:
            DuplicateReviewError: If the user already reviewed the site
            SiteRepositoryError: If the insert fails
        """
        try:
            comment = Comment(
                user_id=user_id,
                site_id=site_id,
                rating=rating,
                comment_text=comment_text,
            )
            self.session.add(comment)
            await self.session.commit()
            await self.session.refresh(comment)

            logger.info("Review created", comment_id=comment.id, site_id=site_id, rating=rating)
            return comment

        except IntegrityError as e:
            await self.session.rollback()
            logger.warning("Duplicate review rejected", user_id=user_id, site_id=site_id)
            raise DuplicateReviewError(
                "You have already reviewed this site",
                user_id=user_id,
                site_id=site_id,
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Review creation failed", site_id=site_id, error=str(e))
            raise SiteRepositoryError(
                "Review creation failed",
                site_id=site_id,
                error=str(e),
            ) from e
