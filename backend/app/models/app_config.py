"""
SnipSafe Backend — Runtime Configuration Model
================================================

What:  The singleton `app_config` row (id = 1) holding settings an admin can change
       while the service runs: authentication mode, the registration toggle, the
       default organization for new accounts and the Azure AD application.
Who:   Read through ConfigService.get_runtime_config() once per request; written
       only by PUT /api/admin/config.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

SINGLETON_ID = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AppConfig(Base):
    __tablename__ = "app_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SINGLETON_ID)

    # 'local' or 'azure_ad'
    auth_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="local")
    allow_registration: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    default_organization: Mapped[str] = mapped_column(String(100), nullable=False, default="Default")

    # ── Azure AD application ──────────────────────────────────────────────
    azure_ad_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    azure_ad_client_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # Never returned by any endpoint
    azure_ad_client_secret: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    azure_ad_tenant_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<AppConfig(auth_mode='{self.auth_mode}', "
            f"allow_registration={self.allow_registration})>"
        )
