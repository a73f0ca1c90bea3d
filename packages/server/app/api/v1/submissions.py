"""
Intake endpoints for assessments and responses.

Each submission runs through the auto-approval matcher and comes back either
AUTO_VERIFIED (with the matching rule id) or PENDING in the manual queue.
"""

from __future__ import annotations

from typing import Any, List

from fastapi import APIRouter, Depends

from app.api.deps import get_matcher, get_notifier, get_verification_service
from app.core.auth import AuthenticatedUser, get_authenticated_user
from app.core.errors import PermissionDenied
from app.services.auto_approval import AutoApprovalMatcher
from app.services.notifications import Notifier
from app.services.submissions import submit
from app.services.verification import VerificationService
from dms_shared.schemas.common import Role
from dms_shared.schemas.items import AssessmentCreate, ResponseCreate, SubmissionResult

router = APIRouter()

ASSESSMENT_ROLES = {Role.ASSESSOR, Role.COORDINATOR, Role.ADMIN}
RESPONSE_ROLES = {Role.RESPONDER, Role.COORDINATOR, Role.ADMIN}


@router.post("/assessments", response_model=SubmissionResult, status_code=201)
async def create_assessment_endpoint(
    body: AssessmentCreate,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    service: VerificationService = Depends(get_verification_service),
    matcher: AutoApprovalMatcher = Depends(get_matcher),
):
    if auth.role not in ASSESSMENT_ROLES:
        raise PermissionDenied("Assessor access required")
    return await submit(service, matcher, auth, body)


@router.post("/responses", response_model=SubmissionResult, status_code=201)
async def create_response_endpoint(
    body: ResponseCreate,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    service: VerificationService = Depends(get_verification_service),
    matcher: AutoApprovalMatcher = Depends(get_matcher),
):
    if auth.role not in RESPONSE_ROLES:
        raise PermissionDenied("Responder access required")
    return await submit(service, matcher, auth, body)


@router.get("/notifications", response_model=List[dict[str, Any]])
async def list_notifications_endpoint(
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    notifier: Notifier = Depends(get_notifier),
):
    """Most recent notifications buffered for the caller."""
    return await notifier.recent(auth.user_id)
