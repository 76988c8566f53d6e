"""
Security utilities for password hashing and JWT access tokens.

Password hashing is delegated to passlib's bcrypt scheme and tokens are signed
with python-jose. Tokens carry the user id in the ``sub`` claim; the API layer
resolves it to a principal on every authenticated request.
"""

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from passlib.context import CryptContext

from marketplace.core.config import get_settings
from marketplace.core.logging import get_logger

logger = get_logger(__name__)


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class TokenError(SecurityError):
    """Exception raised for token-related errors."""

    pass


class PasswordError(SecurityError):
    """Exception raised for password-related errors."""

    pass


@lru_cache
def get_password_context() -> CryptContext:
    """Build the bcrypt hashing context from settings."""
    settings = get_settings()
    return CryptContext(
        schemes=["bcrypt"],
        deprecated="auto",
        bcrypt__rounds=settings.password_hash_rounds,
        bcrypt__ident="2b",
    )


def hash_password(password: str) -> str:
    """
    Hash a password with bcrypt.

    Raises:
        PasswordError: If the password is empty or hashing fails
    """
    if not password:
        raise PasswordError("Password cannot be empty", code="EMPTY_PASSWORD")

    try:
        return get_password_context().hash(password)
    except (TypeError, ValueError) as e:
        logger.error(
            "Password hashing failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise PasswordError(
            "Failed to hash password",
            code="HASH_FAILED",
        ) from e


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against its bcrypt hash.

    Returns:
        True if the password matches, False otherwise (including empty input)
    """
    if not plain_password or not hashed_password:
        return False

    try:
        return get_password_context().verify(plain_password, hashed_password)
    except (TypeError, ValueError) as e:
        logger.warning(
            "Password verification failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        return False


def create_access_token(
    subject: Any,
    extra_claims: Optional[Dict[str, Any]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed JWT access token.

    Args:
        subject: Token subject, stored as a string in ``sub``
        extra_claims: Additional claims to embed
        expires_delta: Custom lifetime, defaults to the configured days

    Returns:
        Encoded JWT string
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(days=settings.jwt_access_token_expire_days)
    )

    claims: Dict[str, Any] = dict(extra_claims or {})
    claims.update(
        {
            "sub": str(subject),
            "exp": expire,
            "iat": now,
            "type": "access",
        }
    )

    token = jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)

    logger.debug(
        "Access token created",
        subject=str(subject),
        expires_at=expire.isoformat(),
    )
    return token


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT access token.

    Raises:
        TokenError: If the token is empty, expired, malformed or not an access token
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()

    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except ExpiredSignatureError as e:
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        raise TokenError(
            "Invalid token",
            code="TOKEN_INVALID",
            error_type=type(e).__name__,
        ) from e

    if payload.get("type") != "access":
        raise TokenError("Unexpected token type", code="TOKEN_TYPE_INVALID")

    return payload


def get_security_headers() -> Dict[str, str]:
    """Response headers added to every API response."""
    return {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    }
