"""
FastAPI dependency providers for the verification services.

Routers depend on these instead of building services themselves so tests can
swap any collaborator through ``app.dependency_overrides``.
"""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_session
from app.core.redis import get_redis
from app.services.achievements import AchievementEngine
from app.services.auto_approval import AutoApprovalMatcher, get_effective_config
from app.services.coordination import ApprovalCounter, BatchGuard, RedisApprovalCounter, RedisBatchGuard
from app.services.notifications import Notifier, RedisNotifier
from app.services.repository import SqlAchievementStore, SqlVerificationRepository, VerificationRepository
from app.services.verification import VerificationService


async def get_repository(session: AsyncSession = Depends(get_session)) -> VerificationRepository:
    return SqlVerificationRepository(session)


async def get_achievement_engine(session: AsyncSession = Depends(get_session)) -> AchievementEngine:
    return AchievementEngine(SqlAchievementStore(session))


async def get_notifier() -> Notifier:
    return RedisNotifier(await get_redis())


async def get_batch_guard() -> BatchGuard:
    return RedisBatchGuard(await get_redis(), ttl_seconds=get_settings().batch_lock_ttl_seconds)


async def get_approval_counter() -> ApprovalCounter:
    return RedisApprovalCounter(await get_redis())


async def get_verification_service(
    repo: VerificationRepository = Depends(get_repository),
    notifier: Notifier = Depends(get_notifier),
    achievements: AchievementEngine = Depends(get_achievement_engine),
    batch_guard: BatchGuard = Depends(get_batch_guard),
) -> VerificationService:
    return VerificationService(
        repo,
        notifier,
        achievements,
        batch_guard,
        attention_hours=get_settings().queue_attention_hours,
    )


async def get_matcher(
    repo: VerificationRepository = Depends(get_repository),
    counter: ApprovalCounter = Depends(get_approval_counter),
) -> AutoApprovalMatcher:
    return AutoApprovalMatcher(await get_effective_config(repo), counter)
