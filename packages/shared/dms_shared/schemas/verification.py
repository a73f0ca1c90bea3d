"""Verification workflow schemas: decisions, batches, overrides, and the queue."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import AliasChoices, Field, field_validator

from .achievements import AchievementRead
from .common import (
    CamelModel,
    FeedbackPriority,
    OverrideReason,
    Pagination,
    QueuePriority,
    RejectionReason,
    VerifiableType,
    VerificationStatus,
)
from .feedback import FeedbackRead
from .items import VerifiableItem


_NOTIFY_ALIASES = AliasChoices(
    "notifyAssessor", "notifyResponder", "notifySubmitter", "notify_submitter"
)
_ITEM_IDS_ALIASES = AliasChoices("assessmentIds", "responseIds", "itemIds", "item_ids")


# ---------------------------------------------------------------------------
# Single-item decisions
# ---------------------------------------------------------------------------

class ApprovalRequest(CamelModel):
    """Request body for POST /verification/{assessments|responses}/{id}/approve."""
    coordinator_id: Optional[uuid.UUID] = None
    coordinator_name: Optional[str] = None
    approval_note: Optional[str] = None
    notify_submitter: bool = Field(default=True, validation_alias=_NOTIFY_ALIASES)


class RejectionRequest(CamelModel):
    """Request body for POST /verification/{assessments|responses}/{id}/reject.

    Blank comments are refused by the service with "Comments Required".
    """
    coordinator_id: Optional[uuid.UUID] = None
    coordinator_name: Optional[str] = None
    rejection_reason: RejectionReason = RejectionReason.DATA_QUALITY
    rejection_comments: str = ""
    priority: FeedbackPriority = FeedbackPriority.NORMAL
    requires_resubmission: bool = True
    notify_submitter: bool = Field(default=True, validation_alias=_NOTIFY_ALIASES)


class DecisionResult(CamelModel):
    item: VerifiableItem
    feedback: Optional[FeedbackRead] = None
    new_achievements: List[AchievementRead] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------

class BatchApprovalRequest(ApprovalRequest):
    item_ids: List[uuid.UUID] = Field(min_length=1, validation_alias=_ITEM_IDS_ALIASES)


class BatchRejectionRequest(RejectionRequest):
    item_ids: List[uuid.UUID] = Field(min_length=1, validation_alias=_ITEM_IDS_ALIASES)


class BatchItemStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class BatchItemOutcome(CamelModel):
    item_id: uuid.UUID
    status: BatchItemStatus
    new_status: Optional[VerificationStatus] = None
    error: Optional[str] = None


class BatchProgress(CamelModel):
    processed: int = 0
    total: int = 0
    current_operation: str = ""
    active: bool = False


class BatchResult(CamelModel):
    operation: str  # APPROVE | REJECT
    total: int
    succeeded: int
    skipped: int
    failed: int
    outcomes: List[BatchItemOutcome] = Field(default_factory=list)
    progress: BatchProgress


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------

class OverrideRequest(CamelModel):
    """Request body for POST /verification/auto-approval/override."""
    target_type: VerifiableType
    target_ids: List[uuid.UUID] = Field(min_length=1)
    new_status: VerificationStatus = VerificationStatus.PENDING
    reason: OverrideReason = OverrideReason.QUALITY_CONCERN
    justification: str = Field(
        default="", validation_alias=AliasChoices("justification", "reasonDetails")
    )
    coordinator_id: Optional[uuid.UUID] = None
    coordinator_name: Optional[str] = None

    @field_validator("target_ids")
    @classmethod
    def _dedupe(cls, v: List[uuid.UUID]) -> List[uuid.UUID]:
        return list(dict.fromkeys(v))


class OverrideRead(CamelModel):
    id: uuid.UUID
    target_type: VerifiableType
    target_ids: List[uuid.UUID]
    original_status: VerificationStatus
    new_status: VerificationStatus
    reason: OverrideReason
    justification: str
    coordinator_id: uuid.UUID
    coordinator_name: str
    created_at: datetime


class OverrideResult(CamelModel):
    overrides: List[OverrideRead]
    items: List[VerifiableItem]


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------

class QueueFilters(CamelModel):
    statuses: List[VerificationStatus] = Field(
        default_factory=lambda: [VerificationStatus.PENDING]
    )
    subtypes: List[str] = Field(default_factory=list)
    priorities: List[QueuePriority] = Field(default_factory=list)
    submitter_id: Optional[uuid.UUID] = None


class QueueItem(CamelModel):
    item: VerifiableItem
    priority: QueuePriority
    requires_attention: bool
    feedback_count: int
    waiting_minutes: int


class QueueStats(CamelModel):
    total_pending: int = 0
    high_priority: int = 0
    requires_attention: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)


class QueuePage(CamelModel):
    queue: List[QueueItem]
    queue_stats: QueueStats
    pagination: Pagination
