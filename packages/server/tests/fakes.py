"""
In-memory stand-ins for the persistence and Redis collaborators.

FakeRepository follows the SQL repository's semantics closely enough for
service tests: compare-and-set transitions, unresolved-feedback counts, and a
``unit()`` that restores every store when the block raises.
"""

from __future__ import annotations

import copy
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from app.core.errors import DownstreamFailure
from app.models.user import User
from app.services.repository import AchievementExists
from dms_shared.schemas.achievements import AchievementRead
from dms_shared.schemas.auto_approval import AutoApprovalConfig, AutoApprovalConfigRead
from dms_shared.schemas.common import Role, VerifiableType, VerificationStatus
from dms_shared.schemas.feedback import FeedbackRead
from dms_shared.schemas.items import VerifiableItem
from dms_shared.schemas.verification import OverrideRead

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_item(**overrides: Any) -> VerifiableItem:
    fields: dict[str, Any] = {
        "id": uuid.uuid4(),
        "target_type": VerifiableType.ASSESSMENT,
        "subtype": "HEALTH",
        "submitter_id": uuid.uuid4(),
        "submitter_name": "Field Assessor",
        "submitter_reputation": 80.0,
        "submitted_at": NOW,
        "completeness": 100.0,
        "gps_accuracy_meters": 5.0,
        "media_count": 1,
        "data": {},
    }
    fields.update(overrides)
    return VerifiableItem(**fields)


def make_response(**overrides: Any) -> VerifiableItem:
    fields: dict[str, Any] = {
        "target_type": VerifiableType.RESPONSE,
        "subtype": "FOOD",
        "donor_id": uuid.uuid4(),
        "commitment_id": uuid.uuid4(),
        "beneficiaries_served": 10,
    }
    fields.update(overrides)
    return make_item(**fields)


def make_user(role: Role = Role.COORDINATOR, **fields: Any) -> User:
    return User(
        id=fields.pop("id", uuid.uuid4()),
        email=fields.pop("email", f"{uuid.uuid4().hex[:8]}@example.org"),
        name=fields.pop("name", role.value.title()),
        role=role.value,
        reputation_score=fields.pop("reputation_score", 75.0),
        **fields,
    )


class FakeRepository:
    def __init__(self) -> None:
        self.items: dict[uuid.UUID, VerifiableItem] = {}
        self.feedback: dict[uuid.UUID, FeedbackRead] = {}
        self.overrides: list[OverrideRead] = []
        self.configs: list[AutoApprovalConfigRead] = []
        self.transition_calls = 0

    @asynccontextmanager
    async def unit(self):
        snapshot = copy.deepcopy((self.items, self.feedback, self.overrides, self.configs))
        try:
            yield
        except BaseException:
            self.items, self.feedback, self.overrides, self.configs = snapshot
            raise

    def _with_counts(self, item: VerifiableItem) -> VerifiableItem:
        unresolved = sum(
            1 for f in self.feedback.values() if f.target_id == item.id and not f.is_resolved
        )
        return item.model_copy(update={"unresolved_feedback": unresolved})

    # -- items ---------------------------------------------------------------

    async def add_item(self, item: VerifiableItem, media_attachments: Sequence[str] = ()) -> VerifiableItem:
        self.items[item.id] = item
        return self._with_counts(item)

    async def get_item(self, target_type: VerifiableType, item_id: uuid.UUID) -> Optional[VerifiableItem]:
        item = self.items.get(item_id)
        if item is None or item.target_type != target_type:
            return None
        return self._with_counts(item)

    async def list_items(
        self,
        target_type: VerifiableType,
        *,
        statuses: Optional[Sequence[VerificationStatus]] = None,
        subtypes: Optional[Sequence[str]] = None,
        submitter_id: Optional[uuid.UUID] = None,
        limit: Optional[int] = None,
    ) -> list[VerifiableItem]:
        found = [
            self._with_counts(i)
            for i in self.items.values()
            if i.target_type == target_type
            and (not statuses or i.verification_status in statuses)
            and (not subtypes or i.subtype in subtypes)
            and (submitter_id is None or i.submitter_id == submitter_id)
        ]
        found.sort(key=lambda i: i.submitted_at, reverse=True)
        return found[:limit] if limit else found

    async def transition_status(
        self,
        target_type: VerifiableType,
        item_id: uuid.UUID,
        expected: VerificationStatus,
        new: VerificationStatus,
        *,
        verified_by: Optional[uuid.UUID] = None,
        rule_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[VerifiableItem]:
        self.transition_calls += 1
        item = self.items.get(item_id)
        if item is None or item.target_type != target_type or item.verification_status != expected:
            return None
        now = now or datetime.now(timezone.utc)
        changes: dict[str, Any] = {"verification_status": new}
        if new in (VerificationStatus.VERIFIED, VerificationStatus.REJECTED):
            changes.update(verified_by=verified_by, verified_at=now)
        elif new == VerificationStatus.AUTO_VERIFIED:
            changes.update(
                verified_by=None, verified_at=now, auto_verified_at=now, auto_approval_rule_id=rule_id
            )
        else:
            changes.update(verified_by=None)
        self.items[item_id] = item.model_copy(update=changes)
        return self._with_counts(self.items[item_id])

    # -- feedback ------------------------------------------------------------

    async def add_feedback(self, **fields: Any) -> FeedbackRead:
        now = datetime.now(timezone.utc)
        feedback = FeedbackRead(id=uuid.uuid4(), created_at=now, updated_at=now, **fields)
        self.feedback[feedback.id] = feedback
        return feedback

    async def get_feedback(self, feedback_id: uuid.UUID) -> Optional[FeedbackRead]:
        return self.feedback.get(feedback_id)

    async def update_feedback(self, feedback_id: uuid.UUID, **changes: Any) -> Optional[FeedbackRead]:
        if feedback_id not in self.feedback:
            return None
        changes["updated_at"] = datetime.now(timezone.utc)
        self.feedback[feedback_id] = self.feedback[feedback_id].model_copy(update=changes)
        return self.feedback[feedback_id]

    async def list_feedback(
        self,
        *,
        target_type: Optional[VerifiableType] = None,
        target_id: Optional[uuid.UUID] = None,
        recipient_id: Optional[uuid.UUID] = None,
        unread_only: bool = False,
        unresolved_only: bool = False,
    ) -> list[FeedbackRead]:
        return [
            f
            for f in self.feedback.values()
            if (target_type is None or f.target_type == target_type)
            and (target_id is None or f.target_id == target_id)
            and (recipient_id is None or f.recipient_id == recipient_id)
            and (not unread_only or not f.is_read)
            and (not unresolved_only or not f.is_resolved)
        ]

    # -- overrides -----------------------------------------------------------

    async def add_override(self, **fields: Any) -> OverrideRead:
        record = OverrideRead(id=uuid.uuid4(), created_at=datetime.now(timezone.utc), **fields)
        self.overrides.append(record)
        return record

    async def list_overrides(self, *, since: Optional[datetime] = None, limit: int = 100) -> list[OverrideRead]:
        found = [o for o in self.overrides if since is None or o.created_at >= since]
        return list(reversed(found))[:limit]

    async def auto_approval_counts(self, since: datetime) -> list[tuple[str, str]]:
        return [
            (i.auto_approval_rule_id, i.subtype)
            for i in self.items.values()
            if i.auto_approval_rule_id and i.auto_verified_at and i.auto_verified_at >= since
        ]

    # -- configuration -------------------------------------------------------

    async def get_config(self) -> Optional[AutoApprovalConfigRead]:
        return self.configs[-1] if self.configs else None

    async def save_config(self, config: AutoApprovalConfig, updated_by: Optional[str]) -> AutoApprovalConfigRead:
        saved = AutoApprovalConfigRead(
            **config.model_dump(),
            version=len(self.configs) + 1,
            updated_by=updated_by,
            updated_at=datetime.now(timezone.utc),
        )
        self.configs.append(saved)
        return saved


class FakeAchievementStore:
    """Reads donor responses straight from a FakeRepository."""

    def __init__(self, repo: FakeRepository):
        self.repo = repo
        self.achievements: dict[tuple[uuid.UUID, str], AchievementRead] = {}
        self.fail = False

    async def donor_responses(self, donor_id: uuid.UUID) -> list[VerifiableItem]:
        if self.fail:
            raise RuntimeError("achievement store unavailable")
        return [
            i
            for i in self.repo.items.values()
            if i.target_type == VerifiableType.RESPONSE and i.donor_id == donor_id
        ]

    async def get_achievement(self, donor_id: uuid.UUID, type: str) -> Optional[AchievementRead]:
        return self.achievements.get((donor_id, type))

    async def create_achievement(self, **fields: Any) -> AchievementRead:
        key = (fields["donor_id"], fields["type"])
        if key in self.achievements:
            raise AchievementExists(str(key))
        achievement = AchievementRead(id=uuid.uuid4(), earned_at=datetime.now(timezone.utc), **fields)
        self.achievements[key] = achievement
        return achievement

    async def list_achievements(self, donor_id: uuid.UUID) -> list[AchievementRead]:
        return [a for (d, _), a in self.achievements.items() if d == donor_id]

    async def count_achievements(self, donor_id: uuid.UUID) -> int:
        return len(await self.list_achievements(donor_id))


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[uuid.UUID, str, dict[str, Any]]] = []

    async def notify(self, recipient_id: uuid.UUID, event_type: str, payload: dict[str, Any]) -> None:
        self.sent.append((recipient_id, event_type, payload))

    async def recent(self, recipient_id: uuid.UUID, limit: int = 50) -> list[dict[str, Any]]:
        return [
            {"recipient_id": str(r), "type": t, "payload": p}
            for r, t, p in reversed(self.sent)
            if r == recipient_id
        ][:limit]


class FailingNotifier(RecordingNotifier):
    async def notify(self, recipient_id: uuid.UUID, event_type: str, payload: dict[str, Any]) -> None:
        raise DownstreamFailure("Notification delivery failed: connection refused")


class FakeRedis:
    """Just enough of redis.asyncio for the JWT revocation list."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.store[key] = value

    async def exists(self, key: str) -> int:
        return 1 if key in self.store else 0
