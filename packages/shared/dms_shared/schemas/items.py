"""Assessment and response schemas: intake requests and the verifiable item snapshot."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from .common import AssessmentType, CamelModel, ResponseType, VerifiableType, VerificationStatus


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

class VerifiableItem(CamelModel):
    """A submitted assessment or response as seen by the verification workflow."""
    id: uuid.UUID
    target_type: VerifiableType
    subtype: str  # AssessmentType or ResponseType value
    submitter_id: uuid.UUID
    submitter_name: str = ""
    submitter_reputation: Optional[float] = None
    submitted_at: datetime
    completeness: float = Field(default=0.0, ge=0, le=100)
    gps_accuracy_meters: Optional[float] = Field(default=None, ge=0)
    media_count: int = Field(default=0, ge=0)
    data: Dict[str, Any] = Field(default_factory=dict)
    verification_status: VerificationStatus = VerificationStatus.PENDING
    auto_approval_rule_id: Optional[str] = None
    verified_by: Optional[uuid.UUID] = None
    verified_at: Optional[datetime] = None
    auto_verified_at: Optional[datetime] = None  # kept through overrides and later decisions
    donor_id: Optional[uuid.UUID] = None
    commitment_id: Optional[uuid.UUID] = None
    beneficiaries_served: int = 0
    unresolved_feedback: int = 0

    @property
    def has_donor_commitment(self) -> bool:
        return (
            self.target_type == VerifiableType.RESPONSE
            and self.donor_id is not None
            and self.commitment_id is not None
        )


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------

class SubmissionBase(CamelModel):
    data: Dict[str, Any] = Field(default_factory=dict)
    completeness: Optional[float] = Field(default=None, ge=0, le=100)
    gps_accuracy_meters: Optional[float] = Field(default=None, ge=0)
    media_attachments: List[str] = Field(default_factory=list)


class AssessmentCreate(SubmissionBase):
    """Request body for POST /assessments."""
    assessment_type: AssessmentType


class ResponseCreate(SubmissionBase):
    """Request body for POST /responses."""
    response_type: ResponseType
    donor_id: Optional[uuid.UUID] = None
    commitment_id: Optional[uuid.UUID] = None
    beneficiaries_served: int = Field(default=0, ge=0)


class SubmissionResult(CamelModel):
    item: VerifiableItem
    auto_verified: bool
    rule_id: Optional[str] = None
