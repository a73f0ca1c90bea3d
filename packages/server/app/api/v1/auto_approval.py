"""
Auto-approval endpoints: configuration, rule dry-runs, stats, and overrides.

Overrides are the only way out of AUTO_VERIFIED; each reversed item gets one
append-only audit record.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_repository, get_verification_service
from app.core.auth import AuthenticatedUser, ensure_acting_coordinator, require_coordinator
from app.services.auto_approval import compute_stats, get_effective_config, run_rule_test, save_config
from app.services.repository import VerificationRepository
from app.services.verification import Coordinator, VerificationService
from dms_shared.schemas.auto_approval import (
    AutoApprovalConfig,
    AutoApprovalConfigRead,
    AutoApprovalStats,
    RuleTestReport,
    RuleTestRequest,
)
from dms_shared.schemas.verification import OverrideRead, OverrideRequest, OverrideResult

router = APIRouter()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@router.get("/config", response_model=AutoApprovalConfigRead)
async def get_config_endpoint(
    auth: AuthenticatedUser = Depends(require_coordinator),
    repo: VerificationRepository = Depends(get_repository),
):
    return await get_effective_config(repo)


@router.put("/config", response_model=AutoApprovalConfigRead)
async def update_config_endpoint(
    body: AutoApprovalConfig,
    auth: AuthenticatedUser = Depends(require_coordinator),
    repo: VerificationRepository = Depends(get_repository),
):
    """Save a new configuration version. Earlier versions are kept unchanged."""
    return await save_config(repo, body, updated_by=str(auth.user_id))


@router.post("/test", response_model=RuleTestReport)
async def test_rules_endpoint(
    body: RuleTestRequest,
    auth: AuthenticatedUser = Depends(require_coordinator),
    repo: VerificationRepository = Depends(get_repository),
):
    """Dry-run rules against the most recent submissions. Nothing is changed."""
    return await run_rule_test(repo, body)


@router.get("/stats", response_model=AutoApprovalStats)
async def stats_endpoint(
    hours: int = Query(24, ge=1, le=720),
    auth: AuthenticatedUser = Depends(require_coordinator),
    repo: VerificationRepository = Depends(get_repository),
):
    return await compute_stats(repo, hours)


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------


@router.post("/override", response_model=OverrideResult)
async def override_endpoint(
    body: OverrideRequest,
    auth: AuthenticatedUser = Depends(require_coordinator),
    service: VerificationService = Depends(get_verification_service),
):
    ensure_acting_coordinator(auth, body.coordinator_id)
    coordinator = Coordinator(id=auth.user_id, name=(body.coordinator_name or "").strip() or auth.name)
    return await service.override(coordinator, body)


@router.get("/overrides", response_model=List[OverrideRead])
async def list_overrides_endpoint(
    hours: int = Query(24 * 30, ge=1),
    limit: int = Query(100, ge=1, le=1000),
    auth: AuthenticatedUser = Depends(require_coordinator),
    repo: VerificationRepository = Depends(get_repository),
):
    """Audit log of overrides, newest first."""
    since = datetime.now(timezone.utc) - timedelta(hours=hours)
    return await repo.list_overrides(since=since, limit=limit)
