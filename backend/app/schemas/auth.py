"""
SnipSafe Backend — Auth & Admin Schemas
=========================================

What:  Request/response models for /api/auth and /api/admin.
How:   Pydantic v2 models; FastAPI validates bodies against them and any failure
       is reported as a 400 invalid_input by the global handler.
"""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


# ══════════════════════════════════════════════════════════════════════════
# Users
# ══════════════════════════════════════════════════════════════════════════


class UserResponse(BaseModel):
    """Public profile of an account. Never includes the password hash."""
    id: uuid.UUID
    username: str
    email: str
    organization: str
    role: str
    auth_provider: str
    is_active: bool = True
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int


class RoleUpdateRequest(BaseModel):
    role: Literal["user", "admin"]


# ══════════════════════════════════════════════════════════════════════════
# Authentication
# ══════════════════════════════════════════════════════════════════════════


class RegisterRequest(BaseModel):
    """
    Local account registration.

    organization is optional; the runtime default organization is used when it
    is missing or blank.
    """
    username: str = Field(min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    organization: Optional[str] = Field(default=None, max_length=100)

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Username must be at least 3 characters")
        return v

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("organization")
    @classmethod
    def strip_organization(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()


class AzureLoginRequest(BaseModel):
    """Work account credentials, exchanged with Azure AD (ROPC flow)."""
    username: str = Field(min_length=1, description="user@tenant-domain")
    password: str = Field(min_length=1)


class TokenResponse(BaseModel):
    token: str = Field(description="Bearer token (JWT)")
    user: UserResponse


# ══════════════════════════════════════════════════════════════════════════
# Runtime Configuration
# ══════════════════════════════════════════════════════════════════════════


class AzureAdPublicConfig(BaseModel):
    enabled: bool
    client_id: str
    tenant_id: str


class AuthConfigResponse(BaseModel):
    """What the sign-in page needs to know. Never carries the client secret."""
    auth_mode: str
    allow_registration: bool
    azure_ad: AzureAdPublicConfig


class AdminConfigResponse(AuthConfigResponse):
    default_organization: str
    azure_ad_secret_set: bool = Field(
        description="Whether an Azure AD client secret is stored (the value is never returned)"
    )
    updated_at: Optional[datetime] = None


class AzureAdConfigUpdate(BaseModel):
    enabled: Optional[bool] = None
    client_id: Optional[str] = Field(default=None, max_length=255)
    client_secret: Optional[str] = Field(default=None, max_length=255)
    tenant_id: Optional[str] = Field(default=None, max_length=255)


class AdminConfigUpdate(BaseModel):
    """Partial update; fields left out keep their current value."""
    auth_mode: Optional[Literal["local", "azure_ad"]] = None
    allow_registration: Optional[bool] = None
    default_organization: Optional[str] = Field(default=None, min_length=1, max_length=100)
    azure_ad: Optional[AzureAdConfigUpdate] = None
