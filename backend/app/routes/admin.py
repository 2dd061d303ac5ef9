"""
SnipSafe Backend — Administration Routes
==========================================

What:  /api/admin: runtime configuration and user roles.
Who:   Admin users only; every route depends on require_admin (403 otherwise).

Admin rights cover these routes only. They do not widen access to snippets.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.schemas.auth import (
    AdminConfigResponse,
    AdminConfigUpdate,
    RoleUpdateRequest,
    UserListResponse,
    UserResponse,
)
from app.schemas.common import ErrorResponse
from app.services.access_control import Identity
from app.services.auth_service import auth_service, require_admin
from app.services.config_service import config_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["Administration"],
    responses={
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        403: {"description": "Admin access required", "model": ErrorResponse},
    },
)


@router.get("/config", response_model=AdminConfigResponse, summary="Current runtime configuration")
async def get_config(
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> AdminConfigResponse:
    row = await config_service.get_row(db)
    return config_service.admin_view(row)


@router.put(
    "/config",
    response_model=AdminConfigResponse,
    summary="Update runtime configuration",
    description="Partial update. Fields left out keep their current value.",
)
async def update_config(
    data: AdminConfigUpdate,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> AdminConfigResponse:
    row = await config_service.update(db, data)
    logger.info("Runtime configuration changed by admin %s", admin.id)
    return config_service.admin_view(row)


@router.get("/users", response_model=UserListResponse, summary="List all users")
async def list_users(
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> UserListResponse:
    users = await auth_service.list_users(db)
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        total=len(users),
    )


@router.put(
    "/users/{user_id}/role",
    response_model=UserResponse,
    responses={404: {"description": "User not found", "model": ErrorResponse}},
    summary="Change a user's role",
)
async def set_user_role(
    user_id: UUID,
    data: RoleUpdateRequest,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    user = await auth_service.set_role(db, admin, user_id, data.role)
    return UserResponse.model_validate(user)
