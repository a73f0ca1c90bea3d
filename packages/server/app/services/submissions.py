"""
Assessment and response intake.

A new submission is stored PENDING, then the auto-approval matcher decides
whether it is auto-verified straight away or waits in the manual queue.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Union

import structlog

from app.core.auth import AuthenticatedUser
from app.core.errors import DomainError, DownstreamFailure
from app.services.auto_approval import AutoApprovalMatcher
from app.services.quality import compute_completeness
from app.services.verification import VerificationService
from dms_shared.schemas.common import VerifiableType
from dms_shared.schemas.items import (
    AssessmentCreate,
    ResponseCreate,
    SubmissionResult,
    VerifiableItem,
)

log = structlog.get_logger()


def build_item(
    submitter: AuthenticatedUser,
    body: Union[AssessmentCreate, ResponseCreate],
    now: datetime,
) -> VerifiableItem:
    if isinstance(body, AssessmentCreate):
        target_type, subtype = VerifiableType.ASSESSMENT, body.assessment_type.value
        extra = {}
    else:
        target_type, subtype = VerifiableType.RESPONSE, body.response_type.value
        extra = {
            "donor_id": body.donor_id,
            "commitment_id": body.commitment_id,
            "beneficiaries_served": body.beneficiaries_served,
        }

    completeness = body.completeness
    if completeness is None:
        completeness = compute_completeness(target_type, subtype, body.data)

    return VerifiableItem(
        id=uuid.uuid4(),
        target_type=target_type,
        subtype=subtype,
        submitter_id=submitter.user_id,
        submitter_name=submitter.name,
        submitter_reputation=submitter.user.reputation_score,
        submitted_at=now,
        completeness=completeness,
        gps_accuracy_meters=body.gps_accuracy_meters,
        media_count=len(body.media_attachments),
        data=body.data,
        **extra,
    )


async def submit(
    service: VerificationService,
    matcher: AutoApprovalMatcher,
    submitter: AuthenticatedUser,
    body: Union[AssessmentCreate, ResponseCreate],
) -> SubmissionResult:
    now = datetime.now(timezone.utc)
    item = build_item(submitter, body, now)
    match = await matcher.match(item, now)

    try:
        async with service.repo.unit():
            stored = await service.repo.add_item(item, body.media_attachments)
    except Exception as exc:
        if match is not None:
            await matcher.release(match, now)
        log.error("submission.store_failed", target_type=item.target_type.value, error=str(exc))
        if isinstance(exc, DomainError):
            raise
        raise DownstreamFailure.from_exception(exc) from exc

    log.info(
        "submission.created",
        target_type=stored.target_type.value,
        item_id=str(stored.id),
        subtype=stored.subtype,
        completeness=stored.completeness,
    )

    if match is None:
        return SubmissionResult(item=stored, auto_verified=False)

    try:
        verified = await service.auto_verify(stored, match)
    except Exception as exc:
        await matcher.release(match, now)
        log.error("submission.auto_verify_failed", item_id=str(stored.id), rule_id=match.rule_id, error=str(exc))
        if isinstance(exc, DomainError):
            raise
        raise DownstreamFailure.from_exception(exc) from exc
    if verified is None:
        await matcher.release(match, now)
        return SubmissionResult(item=stored, auto_verified=False)
    return SubmissionResult(item=verified, auto_verified=True, rule_id=match.rule_id)
