"""
Authentication schemas for request/response validation.

This module defines Pydantic schemas for registration, login, token and
profile responses.
"""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from marketplace.database.models.user import UserRole


class UserCreate(BaseModel):
    """
    Schema for user registration requests.

    Validates email format and password strength requirements.
    """

    full_name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="User full name",
        examples=["Maria Silva"]
    )
    email: EmailStr = Field(
        ...,
        description="User email address",
        examples=["maria@example.com"]
    )
    password: str = Field(
        ...,
        min_length=8,
        max_length=128,
        description="User password (8-128 characters)",
        examples=["SecurePass123"]
    )

    @field_validator("full_name")
    @classmethod
    def strip_full_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Full name cannot be blank")
        return value

    @field_validator("password")
    @classmethod
    def validate_password_strength(cls, value: str) -> str:
        """
        Validate password meets security requirements.

        Requirements:
        - At least one letter
        - At least one digit

        Raises:
            ValueError: If password doesn't meet requirements
        """
        if not re.search(r"[A-Za-z]", value):
            raise ValueError("Password must contain at least one letter")

        if not re.search(r"\d", value):
            raise ValueError("Password must contain at least one digit")

        return value

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "full_name": "Maria Silva",
                    "email": "maria@example.com",
                    "password": "SecurePass123"
                }
            ]
        }
    }


class UserLogin(BaseModel):
    """
    Schema for user login requests.
    """

    email: EmailStr = Field(
        ...,
        description="User email address",
        examples=["maria@example.com"]
    )
    password: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="User password",
    )


class UserResponse(BaseModel):
    """
    Public view of a user account.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    email: EmailStr
    role: UserRole
    created_at: datetime


class TokenResponse(BaseModel):
    """
    Schema for authentication token responses.
    """

    access_token: str = Field(
        ...,
        description="JWT access token for API authentication",
        examples=["eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9..."]
    )
    token_type: str = Field(
        default="bearer",
        description="Token type (always 'bearer')",
        examples=["bearer"]
    )
    expires_in: int = Field(
        ...,
        description="Access token expiration time in seconds",
        examples=[2592000]
    )
    user: UserResponse
