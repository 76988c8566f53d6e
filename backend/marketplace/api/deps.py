"""
FastAPI dependencies for authentication, authorization and service wiring.

Services are assembled per request from the request's database session, the
process-wide gateway client and the cached settings. Tests replace any of
these through ``app.dependency_overrides``.
"""

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import Settings, get_settings
from marketplace.core.logging import get_logger, set_user_id
from marketplace.core.security import TokenError, decode_access_token
from marketplace.database.connection import get_db
from marketplace.database.models.user import User, UserRole
from marketplace.services.auth.service import AuthService
from marketplace.services.orders.reconciler import OrderReconciler
from marketplace.services.orders.repository import OrderRepository
from marketplace.services.orders.service import OrderService
from marketplace.services.payments.stripe_client import StripeGatewayClient
from marketplace.services.sites.repository import SiteRepository
from marketplace.services.sites.service import SiteService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: DatabaseSession,
) -> User:
    """
    Validate JWT token and retrieve current authenticated user.

    Raises:
        HTTPException: 401 if token is invalid, expired, or user not found
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"message": "Could not validate credentials", "code": "UNAUTHORIZED"},
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        payload = decode_access_token(credentials.credentials)
    except TokenError as e:
        logger.warning("Authentication failed: token rejected", code=e.code)
        raise credentials_exception

    try:
        user_id = int(payload.get("sub", ""))
    except (TypeError, ValueError):
        logger.warning("Authentication failed: Invalid subject claim", sub=payload.get("sub"))
        raise credentials_exception

    user = await db.get(User, user_id)

    if user is None:
        logger.warning("Authentication failed: User not found", user_id=user_id)
        raise credentials_exception

    if not user.is_active:
        logger.warning("Authentication failed: User account is inactive", user_id=user.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "Inactive user account", "code": "INACTIVE_USER"},
        )

    set_user_id(user.id)
    return user


def require_role(*allowed_roles: UserRole):
    """
    Create a dependency that requires specific user roles.

    Example:
        @router.post("/", dependencies=[Depends(require_role(UserRole.ADMIN))])
        async def create_site(): ...
    """

    async def role_checker(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if current_user.role not in allowed_roles:
            logger.warning(
                "Access denied: Insufficient permissions",
                user_id=current_user.id,
                user_role=current_user.role.value,
                required_roles=[role.value for role in allowed_roles],
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"message": "Insufficient permissions", "code": "FORBIDDEN"},
            )
        return current_user

    return role_checker


CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentAdmin = Annotated[User, Depends(require_role(UserRole.ADMIN))]


@lru_cache
def get_gateway_client() -> StripeGatewayClient:
    """Process-wide Stripe client; the SDK keeps its own HTTP session."""
    return StripeGatewayClient()


GatewayClient = Annotated[StripeGatewayClient, Depends(get_gateway_client)]


def get_auth_service(db: DatabaseSession) -> AuthService:
    return AuthService(db)


def get_site_service(db: DatabaseSession) -> SiteService:
    return SiteService(SiteRepository(db))


def get_order_service(db: DatabaseSession) -> OrderService:
    return OrderService(
        order_repository=OrderRepository(db),
        site_repository=SiteRepository(db),
    )


def get_order_reconciler(
    db: DatabaseSession,
    gateway: GatewayClient,
    settings: AppSettings,
) -> OrderReconciler:
    """
    Dependency building the reconciler with its collaborators.
    """
    return OrderReconciler(
        order_repository=OrderRepository(db),
        site_repository=SiteRepository(db),
        gateway=gateway,
        settings=settings,
    )
