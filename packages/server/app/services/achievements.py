"""
Donor achievement engine.

Recomputes a donor's cumulative verified-delivery statistics and awards any
badge whose condition is now met. Awarding is idempotent: an existing
(donor, type) achievement is never created twice, so the engine can run on
every verification event.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from app.services.repository import AchievementExists, AchievementStore
from dms_shared.schemas.achievements import (
    AchievementCalculation,
    AchievementCategory,
    AchievementProgress,
    AchievementRead,
    AchievementType,
    DonorVerificationStats,
)
from dms_shared.schemas.common import VerificationStatus
from dms_shared.schemas.items import VerifiableItem

log = structlog.get_logger()

VERIFIED_STATUSES = (VerificationStatus.VERIFIED, VerificationStatus.AUTO_VERIFIED)


@dataclass(frozen=True)
class AchievementRule:
    type: AchievementType
    title: str
    description: str
    category: AchievementCategory
    badge_icon: str
    metric: Callable[[DonorVerificationStats], float]
    target: float

    def is_met(self, stats: DonorVerificationStats) -> bool:
        return self.metric(stats) >= self.target


# Evaluated in this order; new achievements are returned in the same order.
ACHIEVEMENT_RULES: tuple[AchievementRule, ...] = (
    AchievementRule(
        type=AchievementType.FIRST_VERIFIED_DELIVERY,
        title="Verified Contributor",
        description="Your first delivery has been verified by coordinators",
        category=AchievementCategory.DELIVERY,
        badge_icon="✅",
        metric=lambda s: s.total_verified_deliveries,
        target=1,
    ),
    AchievementRule(
        type=AchievementType.VERIFICATION_STREAK_5,
        title="Quality Streak",
        description="5 consecutive deliveries verified without a rejection",
        category=AchievementCategory.CONSISTENCY,
        badge_icon="🔥",
        metric=lambda s: s.current_verification_streak,
        target=5,
    ),
    AchievementRule(
        type=AchievementType.VERIFICATION_STREAK_10,
        title="Quality Champion",
        description="10 consecutive deliveries verified without a rejection",
        category=AchievementCategory.CONSISTENCY,
        badge_icon="🏆",
        metric=lambda s: s.current_verification_streak,
        target=10,
    ),
    AchievementRule(
        type=AchievementType.HEALTH_SPECIALIST,
        title="Health Specialist",
        description="10 verified health deliveries",
        category=AchievementCategory.SPECIALIZATION,
        badge_icon="🏥",
        metric=lambda s: s.response_type_deliveries.get("HEALTH", 0),
        target=10,
    ),
    AchievementRule(
        type=AchievementType.WASH_EXPERT,
        title="WASH Expert",
        description="10 verified water, sanitation and hygiene deliveries",
        category=AchievementCategory.SPECIALIZATION,
        badge_icon="💧",
        metric=lambda s: s.response_type_deliveries.get("WASH", 0),
        target=10,
    ),
    AchievementRule(
        type=AchievementType.IMPACT_50_VERIFIED,
        title="Community Helper",
        description="Verified deliveries reached 50 beneficiaries",
        category=AchievementCategory.IMPACT,
        badge_icon="🤝",
        metric=lambda s: s.total_beneficiaries_helped,
        target=50,
    ),
    AchievementRule(
        type=AchievementType.IMPACT_200_VERIFIED,
        title="Impact Champion",
        description="Verified deliveries reached 200 beneficiaries",
        category=AchievementCategory.IMPACT,
        badge_icon="🌟",
        metric=lambda s: s.total_beneficiaries_helped,
        target=200,
    ),
)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def compute_donor_stats(responses: list[VerifiableItem]) -> DonorVerificationStats:
    """Cumulative statistics over every response tied to one donor."""
    verified = [r for r in responses if r.verification_status in VERIFIED_STATUSES]
    decided = [
        r
        for r in responses
        if r.verification_status in VERIFIED_STATUSES
        or r.verification_status == VerificationStatus.REJECTED
    ]

    # Streak: most recent decisions backwards until the first rejection
    decided.sort(key=lambda r: r.verified_at or r.submitted_at, reverse=True)
    streak = 0
    for r in decided:
        if r.verification_status == VerificationStatus.REJECTED:
            break
        streak += 1

    by_type: dict[str, int] = {}
    for r in verified:
        by_type[r.subtype] = by_type.get(r.subtype, 0) + 1

    verified_times = [r.verified_at for r in verified if r.verified_at]
    return DonorVerificationStats(
        total_verified_deliveries=len(verified),
        total_beneficiaries_helped=sum(r.beneficiaries_served for r in verified),
        verification_rate=round(len(verified) * 100.0 / len(decided), 2) if decided else 0.0,
        current_verification_streak=streak,
        response_type_deliveries=by_type,
        latest_verification=max(verified_times) if verified_times else None,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class AchievementEngine:
    def __init__(self, store: AchievementStore, rules: tuple[AchievementRule, ...] = ACHIEVEMENT_RULES):
        self.store = store
        self.rules = rules

    async def donor_stats(self, donor_id: uuid.UUID) -> DonorVerificationStats:
        return compute_donor_stats(await self.store.donor_responses(donor_id))

    async def calculate_for_verified_response(
        self,
        donor_id: uuid.UUID,
        response_id: Optional[uuid.UUID] = None,
        verification_id: Optional[str] = None,
    ) -> list[AchievementRead]:
        """Award every newly-met achievement. Returns only the ones created by this call."""
        stats = await self.donor_stats(donor_id)
        awarded: list[AchievementRead] = []

        for rule in self.rules:
            if not rule.is_met(stats):
                continue
            if await self.store.get_achievement(donor_id, rule.type.value):
                continue
            try:
                achievement = await self.store.create_achievement(
                    donor_id=donor_id,
                    type=rule.type.value,
                    title=rule.title,
                    description=rule.description,
                    category=rule.category.value,
                    badge_icon=rule.badge_icon,
                    response_id=response_id,
                    verification_id=verification_id,
                )
            except AchievementExists:
                # concurrent calculation got there first
                continue
            awarded.append(achievement)
            log.info(
                "achievement.awarded",
                donor_id=str(donor_id),
                type=rule.type.value,
                response_id=str(response_id) if response_id else None,
            )

        return awarded

    async def trigger_calculation(
        self,
        donor_id: uuid.UUID,
        response_id: Optional[uuid.UUID] = None,
        verification_id: Optional[str] = None,
    ) -> AchievementCalculation:
        new = await self.calculate_for_verified_response(donor_id, response_id, verification_id)
        total = await self.store.count_achievements(donor_id)
        return AchievementCalculation(new_achievements=new, total_achievements=total)

    async def list_achievements(self, donor_id: uuid.UUID) -> list[AchievementRead]:
        return await self.store.list_achievements(donor_id)

    async def get_progress(self, donor_id: uuid.UUID, limit: int = 5) -> list[AchievementProgress]:
        """Unearned achievements closest to completion."""
        stats = await self.donor_stats(donor_id)
        earned = {a.type for a in await self.store.list_achievements(donor_id)}

        progress = []
        for rule in self.rules:
            if rule.type in earned:
                continue
            current = rule.metric(stats)
            progress.append(
                AchievementProgress(
                    type=rule.type,
                    title=rule.title,
                    category=rule.category,
                    current=current,
                    target=rule.target,
                    progress=round(min(100.0, current * 100.0 / rule.target), 2),
                )
            )
        # stable sort keeps rule order among ties
        progress.sort(key=lambda p: p.progress, reverse=True)
        return progress[:limit]
