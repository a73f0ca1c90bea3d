"""Donor achievement endpoints."""

from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_achievement_engine
from app.core.auth import AuthenticatedUser, ensure_donor_access, get_authenticated_user, require_coordinator
from app.services.achievements import AchievementEngine
from dms_shared.schemas.achievements import (
    AchievementCalculation,
    AchievementProgress,
    AchievementRead,
    DonorVerificationStats,
)

router = APIRouter()


@router.get("/{donor_id}/achievements", response_model=List[AchievementRead])
async def list_achievements_endpoint(
    donor_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    engine: AchievementEngine = Depends(get_achievement_engine),
):
    ensure_donor_access(auth, donor_id)
    return await engine.list_achievements(donor_id)


@router.get("/{donor_id}/achievements/progress", response_model=List[AchievementProgress])
async def achievement_progress_endpoint(
    donor_id: uuid.UUID,
    limit: int = Query(5, ge=1, le=20),
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    engine: AchievementEngine = Depends(get_achievement_engine),
):
    """Unearned achievements closest to completion."""
    ensure_donor_access(auth, donor_id)
    return await engine.get_progress(donor_id, limit=limit)


@router.get("/{donor_id}/verification-stats", response_model=DonorVerificationStats)
async def verification_stats_endpoint(
    donor_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(get_authenticated_user),
    engine: AchievementEngine = Depends(get_achievement_engine),
):
    ensure_donor_access(auth, donor_id)
    return await engine.donor_stats(donor_id)


@router.post("/{donor_id}/achievements/calculate", response_model=AchievementCalculation)
async def calculate_achievements_endpoint(
    donor_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_coordinator),
    engine: AchievementEngine = Depends(get_achievement_engine),
):
    """Re-run the engine for a donor. Safe to repeat: earned badges are never duplicated."""
    return await engine.trigger_calculation(donor_id)
