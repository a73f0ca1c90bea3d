"""
Authentication and Authorization for the coordination server.

Supports:
- Email/Password login with bcrypt password hashes
- JWT session management with Redis revocation list
- Bearer JWT for non-browser clients (field apps, scripts)
- Role-based authorization dependencies
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
import structlog
from fastapi import Depends, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import AuthenticationRequired, PermissionDenied
from app.core.middleware import SESSION_COOKIE
from app.core.redis import get_redis
from app.models.user import User
from dms_shared.schemas.common import Role

log = structlog.get_logger()
settings = get_settings()

authorization_header = APIKeyHeader(name="Authorization", auto_error=False)

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode(), hashed.encode())


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    user_id: uuid.UUID,
    role: str,
    *,
    expires_delta: timedelta | None = None,
) -> tuple[str, str]:
    """Create a signed JWT. Returns (token, jti)."""
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": exp,
        "jti": jti,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


# ---------------------------------------------------------------------------
# JWT Revocation (Redis)
# ---------------------------------------------------------------------------

async def revoke_jwt(jti: str, ttl_seconds: int = 3600) -> None:
    """Add a JWT ID to the revocation list in Redis."""
    redis = await get_redis()
    await redis.setex(f"jwt:revoked:{jti}", ttl_seconds, "1")


async def is_jwt_revoked(jti: str) -> bool:
    """Check if a JWT ID has been revoked."""
    redis = await get_redis()
    return await redis.exists(f"jwt:revoked:{jti}") > 0


# ---------------------------------------------------------------------------
# CSRF Token
# ---------------------------------------------------------------------------

def generate_csrf_token() -> str:
    """Generate a random CSRF token."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

class AuthenticatedUser:
    """Container for an authenticated user and their role."""

    def __init__(self, user: User):
        self.user = user
        self.user_id = user.id
        self.name = user.name
        self.role = Role(user.role)

    @property
    def is_coordinator(self) -> bool:
        return self.role in (Role.COORDINATOR, Role.ADMIN)


async def _authenticate_jwt(token: str, session: AsyncSession) -> AuthenticatedUser:
    try:
        payload = decode_jwt(token)
    except jwt.PyJWTError:
        raise AuthenticationRequired("Invalid or expired session")

    jti = payload.get("jti")
    if jti and await is_jwt_revoked(jti):
        raise AuthenticationRequired("Session has been revoked")

    user = await session.get(User, uuid.UUID(payload["sub"]))
    if not user:
        raise AuthenticationRequired("User not found")
    return AuthenticatedUser(user)


async def get_authenticated_user(
    request: Request,
    authorization: Optional[str] = Depends(authorization_header),
    session: AsyncSession = Depends(get_session),
) -> AuthenticatedUser:
    """Main authentication dependency. Tries a Bearer JWT first, then the session cookie."""
    if authorization and authorization.startswith("Bearer "):
        auth_user = await _authenticate_jwt(authorization[7:].strip(), session)
        request.state.auth = auth_user
        return auth_user

    token = request.cookies.get(SESSION_COOKIE)
    if token:
        auth_user = await _authenticate_jwt(token, session)
        request.state.auth = auth_user
        return auth_user

    raise AuthenticationRequired()


# ---------------------------------------------------------------------------
# Authorization dependencies (role checks)
# ---------------------------------------------------------------------------

async def require_coordinator(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
) -> AuthenticatedUser:
    """Requires coordinator or admin role."""
    if not auth.is_coordinator:
        log.warning("auth.forbidden", user_id=str(auth.user_id), role=auth.role.value)
        raise PermissionDenied()
    return auth


async def require_admin(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
) -> AuthenticatedUser:
    """Requires admin role."""
    if auth.role != Role.ADMIN:
        raise PermissionDenied("Administrator access required")
    return auth


def ensure_acting_coordinator(
    auth: AuthenticatedUser, coordinator_id: Optional[uuid.UUID]
) -> None:
    """Refuse a request body that claims to act as someone other than the caller."""
    if coordinator_id is not None and coordinator_id != auth.user_id:
        raise PermissionDenied("coordinatorId does not match the authenticated user")


def ensure_donor_access(auth: AuthenticatedUser, donor_id: uuid.UUID) -> None:
    """Donors may only read their own achievements; coordinators may read any."""
    if auth.is_coordinator:
        return
    if auth.role != Role.DONOR or auth.user_id != donor_id:
        raise PermissionDenied("Access to this donor's achievements is not allowed")
