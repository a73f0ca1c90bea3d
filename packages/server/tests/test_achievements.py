"""
Tests for the donor achievement engine.

Covers:
- Donor statistics (verified totals, streaks, per-type counts)
- Idempotent awarding: each (donor, type) is earned once
- Progress towards unearned achievements
"""

from __future__ import annotations

import uuid
from datetime import timedelta

from app.services.achievements import ACHIEVEMENT_RULES, AchievementEngine, compute_donor_stats
from app.services.repository import AchievementExists
from dms_shared.schemas.achievements import AchievementType
from dms_shared.schemas.common import VerificationStatus

from fakes import NOW, make_response

VERIFIED = VerificationStatus.VERIFIED


def delivery(donor_id, status=VERIFIED, minutes=0, **fields):
    return make_response(
        donor_id=donor_id,
        verification_status=status,
        verified_at=NOW + timedelta(minutes=minutes),
        **fields,
    )


async def seed(repo, donor_id, count, **fields):
    for i in range(count):
        await repo.add_item(delivery(donor_id, minutes=i, **fields))


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class TestDonorStats:
    def test_auto_verified_counts_as_verified(self):
        donor = uuid.uuid4()
        stats = compute_donor_stats([
            delivery(donor, VERIFIED, beneficiaries_served=20),
            delivery(donor, VerificationStatus.AUTO_VERIFIED, 1, beneficiaries_served=5),
            delivery(donor, VerificationStatus.PENDING, 2, beneficiaries_served=100),
        ])
        assert stats.total_verified_deliveries == 2
        assert stats.total_beneficiaries_helped == 25

    def test_streak_stops_at_latest_rejection(self):
        donor = uuid.uuid4()
        responses = [
            delivery(donor, VERIFIED, 0),
            delivery(donor, VerificationStatus.REJECTED, 1),
            delivery(donor, VERIFIED, 2),
            delivery(donor, VERIFIED, 3),
        ]
        stats = compute_donor_stats(responses)
        assert stats.current_verification_streak == 2
        assert stats.verification_rate == 75.0

    def test_per_type_counts(self):
        donor = uuid.uuid4()
        stats = compute_donor_stats([
            delivery(donor, subtype="HEALTH"),
            delivery(donor, subtype="HEALTH"),
            delivery(donor, subtype="WASH"),
        ])
        assert stats.response_type_deliveries == {"HEALTH": 2, "WASH": 1}

    def test_no_responses(self):
        stats = compute_donor_stats([])
        assert stats.total_verified_deliveries == 0
        assert stats.latest_verification is None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class TestEngine:
    async def test_first_verified_delivery(self, repo, achievement_store):
        donor = uuid.uuid4()
        await seed(repo, donor, 1)
        engine = AchievementEngine(achievement_store)
        new = await engine.calculate_for_verified_response(donor, uuid.uuid4(), "v-1")
        assert [a.type for a in new] == [AchievementType.FIRST_VERIFIED_DELIVERY]
        assert new[0].title == "Verified Contributor"
        assert new[0].verification_id == "v-1"

    async def test_second_call_returns_nothing(self, repo, achievement_store):
        donor = uuid.uuid4()
        await seed(repo, donor, 1)
        engine = AchievementEngine(achievement_store)
        assert len(await engine.calculate_for_verified_response(donor)) == 1
        assert await engine.calculate_for_verified_response(donor) == []
        assert await achievement_store.count_achievements(donor) == 1

    async def test_rules_evaluated_in_order(self, repo, achievement_store):
        donor = uuid.uuid4()
        await seed(repo, donor, 10, subtype="HEALTH", beneficiaries_served=25)
        new = await AchievementEngine(achievement_store).calculate_for_verified_response(donor)
        assert [a.type for a in new] == [
            AchievementType.FIRST_VERIFIED_DELIVERY,
            AchievementType.VERIFICATION_STREAK_5,
            AchievementType.VERIFICATION_STREAK_10,
            AchievementType.HEALTH_SPECIALIST,
            AchievementType.IMPACT_50_VERIFIED,
            AchievementType.IMPACT_200_VERIFIED,
        ]

    async def test_only_new_achievements_returned(self, repo, achievement_store):
        donor = uuid.uuid4()
        engine = AchievementEngine(achievement_store)
        await seed(repo, donor, 1, beneficiaries_served=0)
        await engine.calculate_for_verified_response(donor)
        await seed(repo, donor, 4, beneficiaries_served=0)
        new = await engine.calculate_for_verified_response(donor)
        assert [a.type for a in new] == [AchievementType.VERIFICATION_STREAK_5]

    async def test_concurrent_award_is_skipped(self, repo, achievement_store):
        donor = uuid.uuid4()
        await seed(repo, donor, 1)

        async def raced(**fields):
            raise AchievementExists("already there")

        achievement_store.create_achievement = raced
        assert await AchievementEngine(achievement_store).calculate_for_verified_response(donor) == []

    async def test_trigger_calculation_totals(self, repo, achievement_store):
        donor = uuid.uuid4()
        await seed(repo, donor, 5, beneficiaries_served=0)
        engine = AchievementEngine(achievement_store)
        first = await engine.trigger_calculation(donor)
        again = await engine.trigger_calculation(donor)
        assert len(first.new_achievements) == 2
        assert again.new_achievements == []
        assert again.total_achievements == 2


class TestProgress:
    async def test_closest_unearned_first(self, repo, achievement_store):
        donor = uuid.uuid4()
        await seed(repo, donor, 4, subtype="WASH", beneficiaries_served=12)
        engine = AchievementEngine(achievement_store)
        await engine.calculate_for_verified_response(donor)
        progress = await engine.get_progress(donor)
        assert len(progress) == 5
        assert AchievementType.FIRST_VERIFIED_DELIVERY not in {p.type for p in progress}
        assert progress[0].type == AchievementType.IMPACT_50_VERIFIED
        assert progress[0].progress == 96.0
        assert progress == sorted(progress, key=lambda p: p.progress, reverse=True)

    async def test_all_rules_listed_for_new_donor(self, achievement_store):
        progress = await AchievementEngine(achievement_store).get_progress(uuid.uuid4(), limit=20)
        assert len(progress) == len(ACHIEVEMENT_RULES)
        assert all(p.progress == 0 for p in progress)
