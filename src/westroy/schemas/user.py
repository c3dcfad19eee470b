"""User schemas for request/response validation."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class UserRegister(BaseModel):
    """Schema for user registration request.

    Admin accounts are provisioned out of band, never through registration.
    """

    email: EmailStr
    password: str = Field(..., min_length=8)
    name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field("", max_length=30)
    role: Literal["client", "producer"] = "client"

    model_config = {"extra": "forbid"}


class UserLogin(BaseModel):
    """Schema for user login request."""

    email: EmailStr
    password: str


class UserResponse(BaseModel):
    """Schema for user response."""

    user_id: UUID
    email: str
    name: str
    phone: str
    role: str
    created_at: datetime

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    """Schema for login token response."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int = 3600
