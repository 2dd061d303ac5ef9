"""Security utilities for password hashing and bearer tokens."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.config import settings

# Configure password hashing context with bcrypt
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """
    Verify a plain text password against a hashed password.

    Accounts without a local password (Azure AD) never verify.
    """
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a plain text password using bcrypt."""
    return pwd_context.hash(password)


def create_access_token(user_id: uuid.UUID, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed JWT whose subject is the user's id.

    Args:
        user_id: Account the token identifies
        expires_delta: Optional custom lifetime (default JWT_EXPIRATION_MINUTES)
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_expiration_minutes))
    claims = {"sub": str(user_id), "iat": now, "exp": expire}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[uuid.UUID]:
    """
    Validate a JWT and return the user id it names.

    Returns None when the token is malformed, has a bad signature, is expired
    or carries no usable subject.
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    subject = payload.get("sub")
    if not subject:
        return None
    try:
        return uuid.UUID(subject)
    except ValueError:
        return None
