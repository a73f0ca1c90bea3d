"""
User service: registration, credential checks, and role-based dashboard layout.
"""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.auth import hash_password, verify_password
from app.core.errors import AuthenticationRequired, ValidationError
from app.models.user import User
from dms_shared.schemas.common import Role
from dms_shared.schemas.users import DashboardSection, RegisterRequest, SessionInfo, UserRead

log = structlog.get_logger()

# Dashboard sections shown to each role, in display order
ROLE_DASHBOARDS: dict[Role, list[DashboardSection]] = {
    Role.ASSESSOR: [
        DashboardSection(key="assessment-types", title="Assessment Types", path="/assessments/new"),
        DashboardSection(key="my-assessments", title="Assessments", path="/assessments"),
        DashboardSection(key="feedback", title="Coordinator Feedback", path="/feedback"),
    ],
    Role.RESPONDER: [
        DashboardSection(key="response-management", title="Response Management", path="/responses/plan"),
        DashboardSection(key="deliveries", title="Track Deliveries", path="/responses/tracking"),
        DashboardSection(key="feedback", title="Coordinator Feedback", path="/feedback"),
    ],
    Role.COORDINATOR: [
        DashboardSection(key="verification", title="Verification Dashboard", path="/verification/queue"),
        DashboardSection(key="response-verification", title="Response Verification", path="/verification/responses/queue"),
        DashboardSection(key="auto-approval", title="System Configuration", path="/coordinator/auto-approval"),
        DashboardSection(key="donor-coordination", title="Donor Coordination", path="/coordinator/donors"),
        DashboardSection(key="monitoring", title="Monitoring Tools", path="/monitoring"),
    ],
    Role.DONOR: [
        DashboardSection(key="contributions", title="Contribution Tracking", path="/donor"),
        DashboardSection(key="achievements", title="Achievements", path="/donor/achievements"),
        DashboardSection(key="performance", title="Performance Metrics", path="/donor/performance"),
    ],
    Role.ADMIN: [
        DashboardSection(key="verification", title="Verification Dashboard", path="/verification/queue"),
        DashboardSection(key="auto-approval", title="System Configuration", path="/coordinator/auto-approval"),
        DashboardSection(key="user-management", title="User Management", path="/admin/users"),
        DashboardSection(key="audit-logs", title="Audit Logs", path="/admin/audit"),
    ],
}


def to_user_read(user: User) -> UserRead:
    return UserRead(
        id=user.id,
        email=user.email,
        name=user.name,
        role=Role(user.role),
        organization=user.organization,
        reputation_score=user.reputation_score,
    )


def session_info(user: User) -> SessionInfo:
    return SessionInfo(user=to_user_read(user), dashboard=ROLE_DASHBOARDS[Role(user.role)])


async def register_user(body: RegisterRequest, session: AsyncSession) -> User:
    """Create a field user. Coordinator and admin accounts are created by operators."""
    if body.role in (Role.COORDINATOR, Role.ADMIN):
        raise ValidationError("Coordinator and admin accounts cannot self-register")

    result = await session.execute(select(User).where(User.email == body.email))
    if result.scalar_one_or_none():
        raise ValidationError("Email already registered")

    user = User(
        email=body.email,
        name=body.name,
        role=body.role.value,
        password_hash=hash_password(body.password),
    )
    session.add(user)
    await session.flush()
    log.info("user.registered", user_id=str(user.id), role=user.role)
    return user


async def authenticate(email: str, password: str, session: AsyncSession) -> User:
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if not user or not user.password_hash:
        raise AuthenticationRequired("Invalid email or password")

    if not verify_password(password, user.password_hash):
        log.warning("auth.login_failure", email=email, reason="bad_password")
        raise AuthenticationRequired("Invalid email or password")

    return user
