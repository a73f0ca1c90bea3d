"""
Feedback endpoints. Submitters see feedback addressed to them; coordinators see all.
Mark-read and mark-resolved are idempotent.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_verification_service
from app.core.auth import AuthenticatedUser, get_authenticated_user
from app.core.errors import PermissionDenied
from app.services.verification import VerificationService
from dms_shared.schemas.common import VerifiableType
from dms_shared.schemas.feedback import FeedbackRead

router = APIRouter()


async def _check_access(
    service: VerificationService, feedback_id: uuid.UUID, auth: AuthenticatedUser
) -> None:
    if auth.is_coordinator:
        return
    feedback = await service.get_feedback_or_404(feedback_id)
    if feedback.recipient_id != auth.user_id:
        raise PermissionDenied("This feedback is addressed to another user")


@router.get("", response_model=List[FeedbackRead])
async def list_feedback_endpoint(
    target_type: Optional[VerifiableType] = Query(None, alias="targetType"),
    target_id: Optional[uuid.UUID] = Query(None, alias="targetId"),
    unread: bool = False,
    unresolved: bool = False,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    service: VerificationService = Depends(get_verification_service),
):
    return await service.repo.list_feedback(
        target_type=target_type,
        target_id=target_id,
        recipient_id=None if auth.is_coordinator else auth.user_id,
        unread_only=unread,
        unresolved_only=unresolved,
    )


@router.post("/{feedback_id}/read", response_model=FeedbackRead)
async def mark_read_endpoint(
    feedback_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    service: VerificationService = Depends(get_verification_service),
):
    await _check_access(service, feedback_id, auth)
    return await service.mark_feedback_read(feedback_id)


@router.post("/{feedback_id}/resolve", response_model=FeedbackRead)
async def mark_resolved_endpoint(
    feedback_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    service: VerificationService = Depends(get_verification_service),
):
    await _check_access(service, feedback_id, auth)
    return await service.mark_feedback_resolved(feedback_id)
