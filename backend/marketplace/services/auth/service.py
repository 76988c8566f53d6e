"""
Authentication service implementation.

Registration, login and principal lookup. Passwords are hashed with bcrypt
through passlib and access tokens are JWTs whose subject is the user id.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.config import get_settings
from marketplace.core.logging import get_logger
from marketplace.core.security import (
    create_access_token,
    hash_password,
    verify_password,
)
from marketplace.database.models.user import User, UserRole
from marketplace.schemas.auth import TokenResponse, UserCreate, UserLogin, UserResponse

logger = get_logger(__name__)


class AuthenticationError(Exception):
    """Base exception for authentication errors."""

    def __init__(self, message: str, code: str = "AUTH_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class RegistrationError(AuthenticationError):
    """Exception raised during user registration."""

    def __init__(self, message: str):
        super().__init__(message, code="REGISTRATION_ERROR")


class LoginError(AuthenticationError):
    """Exception raised during login."""

    def __init__(self, message: str):
        super().__init__(message, code="LOGIN_ERROR")


class AuthService:
    """
    Authentication service for user management and authentication.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize authentication service.

        Args:
            session: Async database session for operations
        """
        self.session = session
        self.logger = logger.bind(service="auth")

    def issue_token(self, user: User) -> TokenResponse:
        """Create the access token response for an authenticated user."""
        settings = get_settings()
        access_token = create_access_token(
            subject=user.id,
            extra_claims={"role": user.role.value},
        )
        return TokenResponse(
            access_token=access_token,
            token_type="bearer",
            expires_in=settings.jwt_access_token_expire_days * 24 * 60 * 60,
            user=UserResponse.model_validate(user),
        )

    async def register_user(
        self,
        user_data: UserCreate,
        role: UserRole = UserRole.USER,
    ) -> User:
        """
        Register a new user with email uniqueness validation.

        Args:
            user_data: User registration data
            role: Role to grant, USER unless seeding an administrator

        Returns:
            Created user instance

        Raises:
            RegistrationError: If email already exists or persistence fails
        """
        email = user_data.email.lower().strip()
        self.logger.info("User registration started", email=email, role=role.value)

        existing_user = await self.get_user_by_email(email)
        if existing_user:
            self.logger.warning("Registration failed - email already exists", email=email)
            raise RegistrationError("Email already registered")

        try:
            user = User(
                full_name=user_data.full_name,
                email=email,
                password_hash=hash_password(user_data.password),
                role=role,
                is_active=True,
            )
            self.session.add(user)
            await self.session.commit()
            await self.session.refresh(user)

        except IntegrityError as e:
            await self.session.rollback()
            self.logger.warning("Registration failed - concurrent duplicate", email=email)
            raise RegistrationError("Email already registered") from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error("User registration failed", email=email, error=str(e))
            raise RegistrationError(f"Registration failed: {str(e)}") from e

        self.logger.info(
            "User registered successfully",
            user_id=user.id,
            email=user.email,
            role=user.role.value,
        )
        return user

    async def login_user(self, login_data: UserLogin) -> TokenResponse:
        """
        Authenticate user and generate a JWT access token.

        Raises:
            LoginError: If credentials are invalid or the account is inactive
        """
        email = login_data.email.lower().strip()
        self.logger.info("Login attempt", email=email)

        user = await self.get_user_by_email(email)
        if not user:
            self.logger.warning("Login failed - user not found", email=email)
            raise LoginError("Invalid email or password")

        if not verify_password(login_data.password, user.password_hash):
            self.logger.warning("Login failed - invalid password", user_id=user.id)
            raise LoginError("Invalid email or password")

        if not user.is_active:
            self.logger.warning("Login failed - account inactive", user_id=user.id)
            raise LoginError("Account is inactive")

        self.logger.info("Login successful", user_id=user.id, role=user.role.value)
        return self.issue_token(user)

    async def get_user(self, user_id: int) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(
            select(User).where(User.email == email.lower().strip())
        )
        return result.scalar_one_or_none()

    async def ensure_admin(self, email: str, password: str, full_name: str = "Administrator") -> User:
        """
        Create the configured administrator if the account does not exist yet.

        An existing account with that email is promoted to admin.
        """
        user = await self.get_user_by_email(email)
        if user is None:
            user = await self.register_user(
                UserCreate(full_name=full_name, email=email, password=password),
                role=UserRole.ADMIN,
            )
            self.logger.info("Administrator account created", user_id=user.id)
            return user

        if user.role != UserRole.ADMIN:
            user.role = UserRole.ADMIN
            await self.session.commit()
            self.logger.info("Existing account promoted to administrator", user_id=user.id)
        return user
