"""
SnipSafe Backend — Authentication Service
===========================================

What:  Account registration, local and Azure AD sign-in, bearer-token checks and the
       FastAPI dependencies that turn a request into an Identity.
How:   Passwords are bcrypt hashes (passlib); tokens are HS256 JWTs (python-jose)
       whose subject is the user id. Every authenticated request re-reads the user
       row, so a deactivated account or a role change takes effect immediately.
Who:   /api/auth routes, /api/admin routes and every snippet route (through the
       dependencies at the bottom of this module).

Dependencies:
    get_current_user       User row, 401 when the token is missing/invalid/expired
                           or the account is unknown/inactive
    get_current_identity   Identity built from that user
    get_optional_identity  Identity, or None when no Authorization header is sent.
                           A token that IS sent but does not validate is still a 401.
    require_admin          Identity of an admin, 403 otherwise
"""

import logging
import re
import uuid
from typing import List, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session, store_error
from app.exceptions import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    SnipSafeError,
)
from app.models.user import PROVIDER_AZURE_AD, PROVIDER_LOCAL, ROLE_ADMIN, User
from app.schemas.auth import (
    AzureLoginRequest,
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from app.services.access_control import Identity
from app.services.azure_ad_service import azure_ad_service
from app.services.config_service import RuntimeConfig
from app.services.identity_base import IdentityProvider
from app.utils.security import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password,
)

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_USERNAME_CLEANUP = re.compile(r"[^A-Za-z0-9._-]+")


class AuthService:
    """
    Stateless; the identity provider is injectable so tests can substitute one.
    """

    def __init__(self, identity_provider: IdentityProvider = azure_ad_service):
        self.identity_provider = identity_provider

    # ── Token helpers ─────────────────────────────────────────────────────

    def issue(self, user: User) -> TokenResponse:
        return TokenResponse(
            token=create_access_token(user.id),
            user=UserResponse.model_validate(user),
        )

    async def user_from_token(self, db: AsyncSession, token: str) -> User:
        user_id = decode_access_token(token)
        if user_id is None:
            raise AuthenticationError(message="Invalid token")

        user = await self.get_user(db, user_id)
        if user is None or not user.is_active:
            raise AuthenticationError(message="Invalid token")
        return user

    # ── Lookups ───────────────────────────────────────────────────────────

    async def get_user(self, db: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
        try:
            return await db.get(User, user_id)
        except SQLAlchemyError as e:
            logger.error("Database error loading user %s: %s", user_id, str(e))
            raise store_error(e, "Could not load the account.")

    async def get_user_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
        return result.scalar_one_or_none()

    # ── Local accounts ────────────────────────────────────────────────────

    async def register(
        self, db: AsyncSession, config: RuntimeConfig, data: RegisterRequest
    ) -> TokenResponse:
        """
        Create a local account and sign it in.

        Raises:
            ForbiddenError: Azure AD mode, or registration switched off
            ConflictError:  e-mail or username already taken
        """
        if not config.local_auth:
            logger.info("Registration blocked: auth_mode=%s", config.auth_mode)
            raise ForbiddenError(
                message="Registration not available. Please sign in with your Microsoft account."
            )
        if not config.allow_registration:
            logger.info("Registration blocked: registration disabled")
            raise ForbiddenError(message="Registration not allowed")

        try:
            existing = await db.execute(
                select(User.id).where(
                    or_(func.lower(User.email) == data.email, User.username == data.username)
                )
            )
            if existing.first() is not None:
                raise ConflictError(message="User already exists")

            user = User(
                username=data.username,
                email=data.email,
                password_hash=get_password_hash(data.password),
                organization=data.organization or config.default_organization,
                auth_provider=PROVIDER_LOCAL,
            )
            db.add(user)
            await db.flush()

        except SnipSafeError:
            raise
        except IntegrityError:
            await db.rollback()
            raise ConflictError(message="User already exists")
        except SQLAlchemyError as e:
            logger.error("Database error during registration: %s", str(e))
            raise store_error(e, "Could not create the account.")

        logger.info("User registered: %s (%s)", user.id, user.organization)
        return self.issue(user)

    async def login(
        self, db: AsyncSession, config: RuntimeConfig, data: LoginRequest
    ) -> TokenResponse:
        """
        Local e-mail/password sign-in.

        Raises:
            ForbiddenError:      not in local mode
            AuthenticationError: unknown e-mail, wrong password or inactive account
        """
        if not config.local_auth:
            raise ForbiddenError(
                message="Local login not allowed. Please use Azure AD authentication."
            )

        try:
            result = await db.execute(
                select(User).where(
                    func.lower(User.email) == data.email,
                    User.is_active.is_(True),
                    User.auth_provider == PROVIDER_LOCAL,
                )
            )
            user = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error during login: %s", str(e))
            raise store_error(e, "Could not sign in. Please try again.")

        if user is None or not verify_password(data.password, user.password_hash):
            logger.info("Failed local login")
            raise AuthenticationError(message="Invalid credentials")

        logger.info("Local login: %s", user.id)
        return self.issue(user)

    # ── Azure AD ──────────────────────────────────────────────────────────

    async def azure_login(
        self, db: AsyncSession, config: RuntimeConfig, data: AzureLoginRequest
    ) -> TokenResponse:
        """
        Verify credentials with Azure AD, then find or create the matching account.

        New accounts land in the default organization with a username derived from
        the directory display name (suffixed -2, -3, ... when taken).

        Raises:
            ForbiddenError:          Azure AD sign-in not enabled
            AuthenticationError:     credentials rejected (401)
            IdentityProviderError:   provider down (503)
            CircuitBreakerOpenError: provider failing repeatedly (503)
        """
        if not config.azure_ad_ready:
            raise ForbiddenError(message="Azure AD authentication not enabled")

        profile = await self.identity_provider.authenticate(
            client_id=config.azure_ad_client_id,
            client_secret=config.azure_ad_client_secret,
            tenant_id=config.azure_ad_tenant_id,
            username=data.username,
            password=data.password,
        )

        try:
            user = await self.get_user_by_email(db, profile.email)
            if user is None:
                username = await self._unique_username(
                    db, profile.display_name or profile.email.split("@")[0]
                )
                user = User(
                    username=username,
                    email=profile.email,
                    password_hash=None,
                    organization=config.default_organization,
                    auth_provider=PROVIDER_AZURE_AD,
                    azure_id=profile.external_id,
                )
                db.add(user)
                await db.flush()
                logger.info("Azure AD account created: %s (%s)", user.id, user.organization)
            else:
                if not user.is_active:
                    raise AuthenticationError(message="Account is disabled")
                user.azure_id = profile.external_id
                await db.flush()

        except SnipSafeError:
            raise
        except IntegrityError:
            await db.rollback()
            raise ConflictError(message="Account is being created by another sign-in. Please retry.")
        except SQLAlchemyError as e:
            logger.error("Database error during Azure AD sign-in: %s", str(e))
            raise store_error(e, "Could not sign in. Please try again.")

        logger.info("Azure AD login: %s", user.id)
        return self.issue(user)

    async def _unique_username(self, db: AsyncSession, base: str) -> str:
        base = _USERNAME_CLEANUP.sub("-", base.strip()).strip("-")[:44] or "user"
        if len(base) < 3:
            base = f"{base}-user"
        candidate = base
        suffix = 2
        while True:
            result = await db.execute(select(User.id).where(User.username == candidate))
            if result.first() is None:
                return candidate
            candidate = f"{base}-{suffix}"
            suffix += 1

    # ── Administration ────────────────────────────────────────────────────

    async def list_users(self, db: AsyncSession) -> List[User]:
        try:
            result = await db.execute(select(User).order_by(User.created_at.desc()))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing users: %s", str(e))
            raise store_error(e, "Could not list users.")

    async def set_role(
        self, db: AsyncSession, admin: Identity, user_id: uuid.UUID, role: str
    ) -> User:
        user = await self.get_user(db, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))

        user.role = role
        try:
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error updating role of %s: %s", user_id, str(e))
            raise store_error(e, "Could not update the role.")

        logger.info("Role of user %s set to %s by %s", user.id, role, admin.id)
        return user


auth_service = AuthService()


# ══════════════════════════════════════════════════════════════════════════
# FastAPI Dependencies
# ══════════════════════════════════════════════════════════════════════════


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError(message="No token, authorization denied")
    return await auth_service.user_from_token(db, credentials.credentials)


async def get_current_identity(user: User = Depends(get_current_user)) -> Identity:
    return Identity.from_user(user)


async def get_optional_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> Optional[Identity]:
    if credentials is None or not credentials.credentials:
        if request.headers.get("Authorization"):
            raise AuthenticationError(message="Invalid token")
        return None
    user = await auth_service.user_from_token(db, credentials.credentials)
    return Identity.from_user(user)


async def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if identity.role != ROLE_ADMIN:
        raise ForbiddenError(message="Admin access required")
    return identity
