"""
SnipSafe Backend — Authentication Routes
==========================================

What:  /api/auth: sign-in page configuration, local registration and login,
       Azure AD login, and the current user's profile.
How:   The runtime configuration is resolved per request (get_runtime_config) and
       passed to AuthService, which decides whether each sign-in path is open.

Endpoints:
    GET  /api/auth/config       public sign-in configuration (no secrets)
    POST /api/auth/register     local account, returns a token (201)
    POST /api/auth/login        local e-mail/password sign-in
    POST /api/auth/azure/login  Azure AD work-account sign-in
    GET  /api/auth/me           current user
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.models.user import User
from app.schemas.auth import (
    AuthConfigResponse,
    AzureLoginRequest,
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from app.schemas.common import ErrorResponse
from app.services.auth_service import auth_service, get_current_user
from app.services.config_service import RuntimeConfig, config_service, get_runtime_config

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.get(
    "/config",
    response_model=AuthConfigResponse,
    summary="Sign-in configuration",
    description="Which sign-in methods are available. Never includes the Azure AD secret.",
)
async def get_auth_config(
    config: RuntimeConfig = Depends(get_runtime_config),
) -> AuthConfigResponse:
    return config_service.public_view(config)


@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid input", "model": ErrorResponse},
        403: {"description": "Registration not available", "model": ErrorResponse},
        409: {"description": "User already exists", "model": ErrorResponse},
    },
    summary="Register a local account",
)
async def register(
    data: RegisterRequest,
    config: RuntimeConfig = Depends(get_runtime_config),
    db: AsyncSession = Depends(get_db_session),
) -> TokenResponse:
    return await auth_service.register(db, config, data)


@router.post(
    "/login",
    response_model=TokenResponse,
    responses={
        401: {"description": "Invalid credentials", "model": ErrorResponse},
        403: {"description": "Local login disabled", "model": ErrorResponse},
    },
    summary="Sign in with e-mail and password",
)
async def login(
    data: LoginRequest,
    config: RuntimeConfig = Depends(get_runtime_config),
    db: AsyncSession = Depends(get_db_session),
) -> TokenResponse:
    return await auth_service.login(db, config, data)


@router.post(
    "/azure/login",
    response_model=TokenResponse,
    responses={
        401: {"description": "Credentials rejected by Azure AD", "model": ErrorResponse},
        403: {"description": "Azure AD sign-in not enabled", "model": ErrorResponse},
        503: {"description": "Azure AD unavailable", "model": ErrorResponse},
    },
    summary="Sign in with an Azure AD work account",
)
async def azure_login(
    data: AzureLoginRequest,
    config: RuntimeConfig = Depends(get_runtime_config),
    db: AsyncSession = Depends(get_db_session),
) -> TokenResponse:
    return await auth_service.azure_login(db, config, data)


@router.get(
    "/me",
    response_model=UserResponse,
    responses={401: {"description": "Missing or invalid token", "model": ErrorResponse}},
    summary="Current user",
)
async def me(user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(user)
