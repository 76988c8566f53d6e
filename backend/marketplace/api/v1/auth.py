"""
Authentication API endpoints.

- Registration returning a token for immediate use
- Login with JWT token generation (rate limited per client address)
- Profile of the authenticated user
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from marketplace.api.deps import CurrentUser, get_auth_service
from marketplace.api.limiter import limiter, login_rate_limit
from marketplace.core.logging import get_logger
from marketplace.schemas.auth import TokenResponse, UserCreate, UserLogin, UserResponse
from marketplace.services.auth.service import AuthService, LoginError, RegistrationError

logger = get_logger(__name__)
router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register new user account",
)
async def register(
    user_data: UserCreate,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> TokenResponse:
    """
    Register a new user account and return an access token.

    Raises:
        HTTPException: 400 if the email is already registered
    """
    try:
        user = await auth_service.register_user(user_data)
    except RegistrationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": e.message, "code": e.code},
        )

    return auth_service.issue_token(user)


@router.post(
    "/login",
    response_model=TokenResponse,
    status_code=status.HTTP_200_OK,
    summary="User login",
)
@limiter.limit(login_rate_limit)
async def login(
    request: Request,
    credentials: UserLogin,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> TokenResponse:
    """
    Authenticate user and generate a JWT access token.

    Raises:
        HTTPException: 401 for invalid credentials or inactive accounts
    """
    try:
        return await auth_service.login_user(credentials)
    except LoginError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": e.message, "code": e.code},
            headers={"WWW-Authenticate": "Bearer"},
        )


@router.get(
    "/profile",
    response_model=UserResponse,
    summary="Current user profile",
)
async def profile(current_user: CurrentUser) -> UserResponse:
    return UserResponse.model_validate(current_user)
