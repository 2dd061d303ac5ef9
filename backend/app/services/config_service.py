"""
SnipSafe Backend — Runtime Configuration Service
==================================================

What:  Reads and writes the singleton app_config row and hands routes an immutable
       RuntimeConfig value for the current request.
How:   The row is created from the environment Settings on first use; from then on
       it is the source of truth. `get_runtime_config` is a FastAPI dependency, so
       each request sees one consistent snapshot and there is no process-wide copy
       to invalidate when an admin changes it.
Who:   Auth routes (mode and registration checks), admin routes (view/update).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db_session, store_error
from app.models.app_config import SINGLETON_ID, AppConfig
from app.schemas.auth import (
    AdminConfigResponse,
    AdminConfigUpdate,
    AuthConfigResponse,
    AzureAdPublicConfig,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeConfig:
    """Snapshot of the app_config row, passed explicitly to whoever needs it."""
    auth_mode: str
    allow_registration: bool
    default_organization: str
    azure_ad_enabled: bool
    azure_ad_client_id: str
    azure_ad_client_secret: str
    azure_ad_tenant_id: str

    @classmethod
    def from_row(cls, row: AppConfig) -> "RuntimeConfig":
        return cls(
            auth_mode=row.auth_mode,
            allow_registration=row.allow_registration,
            default_organization=row.default_organization,
            azure_ad_enabled=row.azure_ad_enabled,
            azure_ad_client_id=row.azure_ad_client_id,
            azure_ad_client_secret=row.azure_ad_client_secret,
            azure_ad_tenant_id=row.azure_ad_tenant_id,
        )

    @property
    def local_auth(self) -> bool:
        return self.auth_mode == "local"

    @property
    def azure_ad_ready(self) -> bool:
        return (
            self.auth_mode == "azure_ad"
            and self.azure_ad_enabled
            and bool(self.azure_ad_client_id and self.azure_ad_client_secret and self.azure_ad_tenant_id)
        )


class ConfigService:

    async def get_row(self, db: AsyncSession) -> AppConfig:
        """Fetch the singleton row, creating it from Settings the first time."""
        try:
            row = await db.get(AppConfig, SINGLETON_ID)
            if row is not None:
                return row

            row = AppConfig(
                id=SINGLETON_ID,
                auth_mode=settings.auth_mode,
                allow_registration=settings.allow_registration,
                default_organization=settings.default_organization,
                azure_ad_enabled=settings.azure_ad_configured,
                azure_ad_client_id=settings.azure_ad_client_id,
                azure_ad_client_secret=settings.azure_ad_client_secret,
                azure_ad_tenant_id=settings.azure_ad_tenant_id,
            )
            db.add(row)
            try:
                await db.flush()
            except IntegrityError:
                # Another request created it first
                await db.rollback()
                result = await db.execute(select(AppConfig).where(AppConfig.id == SINGLETON_ID))
                return result.scalar_one()

            logger.info(
                "Runtime configuration initialized: auth_mode=%s, allow_registration=%s",
                row.auth_mode,
                row.allow_registration,
            )
            return row

        except SQLAlchemyError as e:
            logger.error("Could not load runtime configuration: %s", str(e))
            raise store_error(e, "Could not load the service configuration.")

    async def get_runtime_config(self, db: AsyncSession) -> RuntimeConfig:
        return RuntimeConfig.from_row(await self.get_row(db))

    async def update(self, db: AsyncSession, data: AdminConfigUpdate) -> AppConfig:
        """Apply a partial update from PUT /api/admin/config."""
        row = await self.get_row(db)

        if data.auth_mode is not None:
            row.auth_mode = data.auth_mode
        if data.allow_registration is not None:
            row.allow_registration = data.allow_registration
        if data.default_organization is not None:
            row.default_organization = data.default_organization.strip()
        if data.azure_ad is not None:
            azure = data.azure_ad
            if azure.enabled is not None:
                row.azure_ad_enabled = azure.enabled
            if azure.client_id is not None:
                row.azure_ad_client_id = azure.client_id.strip()
            if azure.client_secret is not None:
                row.azure_ad_client_secret = azure.client_secret
            if azure.tenant_id is not None:
                row.azure_ad_tenant_id = azure.tenant_id.strip()
        row.updated_at = datetime.now(timezone.utc)

        try:
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Could not update runtime configuration: %s", str(e))
            raise store_error(e, "Could not save the configuration.")

        # Never log the client secret
        logger.info(
            "Runtime configuration updated: auth_mode=%s, allow_registration=%s, "
            "default_organization=%s, azure_ad_enabled=%s",
            row.auth_mode,
            row.allow_registration,
            row.default_organization,
            row.azure_ad_enabled,
        )
        return row

    # ── Views ─────────────────────────────────────────────────────────────

    def public_view(self, config: RuntimeConfig) -> AuthConfigResponse:
        return AuthConfigResponse(
            auth_mode=config.auth_mode,
            allow_registration=config.allow_registration,
            azure_ad=AzureAdPublicConfig(
                enabled=config.azure_ad_enabled,
                client_id=config.azure_ad_client_id,
                tenant_id=config.azure_ad_tenant_id,
            ),
        )

    def admin_view(self, row: AppConfig) -> AdminConfigResponse:
        return AdminConfigResponse(
            auth_mode=row.auth_mode,
            allow_registration=row.allow_registration,
            azure_ad=AzureAdPublicConfig(
                enabled=row.azure_ad_enabled,
                client_id=row.azure_ad_client_id,
                tenant_id=row.azure_ad_tenant_id,
            ),
            default_organization=row.default_organization,
            azure_ad_secret_set=bool(row.azure_ad_client_secret),
            updated_at=row.updated_at,
        )


config_service = ConfigService()


async def get_runtime_config(db: AsyncSession = Depends(get_db_session)) -> RuntimeConfig:
    """FastAPI dependency: the configuration snapshot for this request."""
    return await config_service.get_runtime_config(db)
