"""Auto-approval configuration schemas: thresholds, rules, global settings, dry-run reports."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator

from .common import AssessmentType, CamelModel, ResponseType, VerifiableType, VerificationStatus


# ---------------------------------------------------------------------------
# Configuration document
# ---------------------------------------------------------------------------

class QualityThreshold(CamelModel):
    """Minimum-quality bar an item must clear to be auto-verified.

    Optional fields that are left unset disable their check.
    """
    model_config = ConfigDict(frozen=True)

    completeness_percentage: float = Field(default=80, ge=0, le=100)
    required_fields_complete: bool = True
    has_media_attachments: bool = False
    gps_accuracy_meters: Optional[float] = Field(default=None, gt=0)
    assessor_reputation_score: Optional[float] = Field(default=None, ge=0, le=100)
    time_since_submission: Optional[int] = Field(default=None, ge=0)  # minutes
    max_batch_size: Optional[int] = Field(default=None, ge=1)


class AutoApprovalRule(CamelModel):
    id: str = Field(min_length=1)
    type: VerifiableType
    assessment_type: Optional[AssessmentType] = None
    response_type: Optional[ResponseType] = None
    enabled: bool = True
    quality_thresholds: QualityThreshold = Field(default_factory=QualityThreshold)
    priority: int = Field(default=0, ge=0)  # lower runs first
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id")
    @classmethod
    def _strip_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Rule id must not be blank")
        return v

    @model_validator(mode="after")
    def _subtype_matches_type(self) -> "AutoApprovalRule":
        if self.type == VerifiableType.ASSESSMENT and self.response_type is not None:
            raise ValueError("Assessment rules cannot set responseType")
        if self.type == VerifiableType.RESPONSE and self.assessment_type is not None:
            raise ValueError("Response rules cannot set assessmentType")
        return self

    @property
    def subtype(self) -> Optional[str]:
        chosen = self.assessment_type or self.response_type
        return chosen.value if chosen else None


class GlobalSettings(CamelModel):
    max_auto_approvals_per_hour: Optional[int] = Field(default=50, ge=0)
    require_coordinator_online: bool = True
    emergency_override_enabled: bool = True
    audit_log_retention_days: int = Field(default=30, ge=1)


class AutoApprovalConfig(CamelModel):
    enabled: bool = False
    rules: List[AutoApprovalRule] = Field(default_factory=list)
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings)

    @model_validator(mode="after")
    def _unique_rule_ids(self) -> "AutoApprovalConfig":
        seen: set[str] = set()
        for rule in self.rules:
            if rule.id in seen:
                raise ValueError(f"Duplicate rule id: {rule.id}")
            seen.add(rule.id)
        return self


class AutoApprovalConfigRead(AutoApprovalConfig):
    version: int = 0
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Matcher verdict
# ---------------------------------------------------------------------------

class RuleMatch(CamelModel):
    rule_id: str
    verdict: VerificationStatus = VerificationStatus.AUTO_VERIFIED


# ---------------------------------------------------------------------------
# Dry-run
# ---------------------------------------------------------------------------

class RuleTestRequest(CamelModel):
    """Request body for POST /verification/auto-approval/test."""
    rules: List[AutoApprovalRule] = Field(min_length=1)
    sample_size: int = Field(default=50, ge=1, le=1000)
    target_type: Literal["ASSESSMENT", "RESPONSE", "BOTH"] = "BOTH"


class SampleMatch(CamelModel):
    item_id: str
    item_type: VerifiableType
    matched: bool
    qualified: bool
    score: float
    reasons: List[str] = Field(default_factory=list)


class RuleTestResult(CamelModel):
    rule_id: str
    rule_name: str
    matched: int
    qualified: int
    match_rate: float
    qualification_rate: float
    average_score: float
    sample_matches: List[SampleMatch] = Field(default_factory=list)


class RuleTestOverall(CamelModel):
    total_matched: int
    total_qualified: int
    average_match_rate: float
    average_qualification_rate: float


class RuleTestReport(CamelModel):
    test_id: str
    total_samples: int
    rules_executed: int
    results: List[RuleTestResult]
    overall_stats: RuleTestOverall
    recommendations: List[str]


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

class AutoApprovalStats(CamelModel):
    window_hours: int
    total_auto_verified: int
    total_overridden: int
    override_rate: float
    by_rule: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)
