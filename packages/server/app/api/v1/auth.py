"""
Authentication endpoints.

- Email/Password registration & login
- JWT session management (refresh, logout)
- Current user with role-based dashboard sections
"""

from __future__ import annotations

import uuid

import jwt
import structlog
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import (
    AuthenticatedUser,
    create_jwt,
    decode_jwt,
    generate_csrf_token,
    get_authenticated_user,
    is_jwt_revoked,
    revoke_jwt,
)
from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import AuthenticationRequired
from app.core.middleware import CSRF_COOKIE, SESSION_COOKIE
from app.services.users import authenticate, register_user, session_info
from dms_shared.schemas.users import LoginRequest, RegisterRequest, SessionInfo

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()

# Cookie config
COOKIE_KWARGS = {
    "httponly": True,
    "secure": not settings.debug,  # allow non-HTTPS in dev
    "samesite": "lax",
    "path": "/",
    "max_age": settings.jwt_expire_minutes * 60,
}


def _set_session_cookies(response: Response, token: str, csrf: str) -> None:
    """Set the session JWT and CSRF cookies on a response."""
    response.set_cookie(key=SESSION_COOKIE, value=token, **COOKIE_KWARGS)
    response.set_cookie(
        key=CSRF_COOKIE,
        value=csrf,
        httponly=False,  # JS must read this
        secure=not settings.debug,
        samesite="lax",
        path="/",
        max_age=settings.jwt_expire_minutes * 60,
    )


@router.post("/register", response_model=SessionInfo, status_code=201)
async def register(
    body: RegisterRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Register a field user (assessor, responder or donor) and start a session."""
    user = await register_user(body, session)
    token, _jti = create_jwt(user.id, user.role)
    _set_session_cookies(response, token, generate_csrf_token())
    return session_info(user)


@router.post("/login", response_model=SessionInfo)
async def login(
    body: LoginRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    """Authenticate with email/password and receive a JWT session."""
    user = await authenticate(body.email, body.password, session)
    token, _jti = create_jwt(user.id, user.role)
    _set_session_cookies(response, token, generate_csrf_token())
    log.info("auth.login_success", user_id=str(user.id), role=user.role)
    return session_info(user)


@router.get("/me", response_model=SessionInfo)
async def me(auth: AuthenticatedUser = Depends(get_authenticated_user)):
    """Current user, role, and the dashboard sections for that role."""
    return session_info(auth.user)


@router.post("/refresh")
async def refresh_session(request: Request, response: Response):
    """Refresh the current JWT session by issuing a new token."""
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        raise AuthenticationRequired("No active session")

    try:
        payload = decode_jwt(token)
    except jwt.PyJWTError:
        raise AuthenticationRequired("Invalid or expired session")

    jti = payload.get("jti")
    if jti and await is_jwt_revoked(jti):
        raise AuthenticationRequired("Session has been revoked")

    new_token, _new_jti = create_jwt(uuid.UUID(payload["sub"]), payload["role"])
    if jti:
        await revoke_jwt(jti)

    _set_session_cookies(response, new_token, generate_csrf_token())
    return {"message": "Session refreshed"}


@router.post("/logout")
async def logout(request: Request, response: Response):
    """Invalidate the current session."""
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        try:
            payload = decode_jwt(token)
        except jwt.PyJWTError:
            payload = {}  # already invalid, just clear cookies
        jti = payload.get("jti")
        if jti:
            await revoke_jwt(jti)

    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(CSRF_COOKIE, path="/")
    return {"message": "Logged out"}
