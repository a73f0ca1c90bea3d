"""
Verification queue endpoints: queue listing, single and batch decisions.

Queues: /verification/assessments and /verification/responses.
- approve/reject only from PENDING (409 otherwise)
- reject requires non-blank comments (400 "Comments Required")
- one batch at a time per queue (409 BATCH_IN_PROGRESS)
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_verification_service
from app.core.auth import AuthenticatedUser, ensure_acting_coordinator, require_coordinator
from app.core.errors import NotFound
from app.services.verification import Coordinator, VerificationService
from dms_shared.schemas.common import QueuePriority, VerifiableType, VerificationStatus
from dms_shared.schemas.items import VerifiableItem
from dms_shared.schemas.verification import (
    ApprovalRequest,
    BatchApprovalRequest,
    BatchProgress,
    BatchRejectionRequest,
    BatchResult,
    DecisionResult,
    QueueFilters,
    QueuePage,
    RejectionRequest,
)

router = APIRouter()


class Queue(str, Enum):
    assessments = "assessments"
    responses = "responses"

    @property
    def target_type(self) -> VerifiableType:
        return VerifiableType.ASSESSMENT if self is Queue.assessments else VerifiableType.RESPONSE


def _coordinator(auth: AuthenticatedUser, coordinator_id: Optional[uuid.UUID], name: Optional[str]) -> Coordinator:
    ensure_acting_coordinator(auth, coordinator_id)
    return Coordinator(id=auth.user_id, name=(name or "").strip() or auth.name)


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


@router.get("/{queue}/queue", response_model=QueuePage)
async def list_queue_endpoint(
    queue: Queue,
    status: List[VerificationStatus] = Query([VerificationStatus.PENDING]),
    subtype: List[str] = Query([]),
    priority: List[QueuePriority] = Query([]),
    submitter_id: Optional[uuid.UUID] = Query(None, alias="submitterId"),
    sort_by: Literal["priority", "date", "type", "submitter"] = Query("priority", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    auth: AuthenticatedUser = Depends(require_coordinator),
    service: VerificationService = Depends(get_verification_service),
):
    """List the queue with filters, sorting, pagination and queue-wide stats."""
    filters = QueueFilters(
        statuses=status,
        subtypes=[s.upper() for s in subtype],
        priorities=priority,
        submitter_id=submitter_id,
    )
    return await service.list_queue(
        queue.target_type,
        filters,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size,
    )


# ---------------------------------------------------------------------------
# Batches (declared before /{item_id} routes so "batch" is not read as an id)
# ---------------------------------------------------------------------------


@router.get("/{queue}/batch/progress", response_model=BatchProgress)
async def batch_progress_endpoint(
    queue: Queue,
    auth: AuthenticatedUser = Depends(require_coordinator),
    service: VerificationService = Depends(get_verification_service),
):
    return await service.batch_progress(queue.target_type)


@router.post("/{queue}/batch/approve", response_model=BatchResult)
async def batch_approve_endpoint(
    queue: Queue,
    body: BatchApprovalRequest,
    auth: AuthenticatedUser = Depends(require_coordinator),
    service: VerificationService = Depends(get_verification_service),
):
    """Approve items one by one. Non-PENDING items are skipped, failures are reported per item."""
    coordinator = _coordinator(auth, body.coordinator_id, body.coordinator_name)
    return await service.batch_approve(queue.target_type, coordinator, body)


@router.post("/{queue}/batch/reject", response_model=BatchResult)
async def batch_reject_endpoint(
    queue: Queue,
    body: BatchRejectionRequest,
    auth: AuthenticatedUser = Depends(require_coordinator),
    service: VerificationService = Depends(get_verification_service),
):
    coordinator = _coordinator(auth, body.coordinator_id, body.coordinator_name)
    return await service.batch_reject(queue.target_type, coordinator, body)


# ---------------------------------------------------------------------------
# Single items
# ---------------------------------------------------------------------------


@router.get("/{queue}/{item_id}", response_model=VerifiableItem)
async def get_item_endpoint(
    queue: Queue,
    item_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_coordinator),
    service: VerificationService = Depends(get_verification_service),
):
    item = await service.repo.get_item(queue.target_type, item_id)
    if item is None:
        raise NotFound(f"{queue.target_type.value.capitalize()} {item_id} not found")
    return item


@router.post("/{queue}/{item_id}/approve", response_model=DecisionResult)
async def approve_endpoint(
    queue: Queue,
    item_id: uuid.UUID,
    body: Optional[ApprovalRequest] = None,
    auth: AuthenticatedUser = Depends(require_coordinator),
    service: VerificationService = Depends(get_verification_service),
):
    body = body or ApprovalRequest()
    coordinator = _coordinator(auth, body.coordinator_id, body.coordinator_name)
    return await service.approve(queue.target_type, item_id, coordinator, body)


@router.post("/{queue}/{item_id}/reject", response_model=DecisionResult)
async def reject_endpoint(
    queue: Queue,
    item_id: uuid.UUID,
    body: RejectionRequest,
    auth: AuthenticatedUser = Depends(require_coordinator),
    service: VerificationService = Depends(get_verification_service),
):
    coordinator = _coordinator(auth, body.coordinator_id, body.coordinator_name)
    return await service.reject(queue.target_type, item_id, coordinator, body)
