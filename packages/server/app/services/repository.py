"""
Persistence adapter for the verification workflow.

Services depend on the ``VerificationRepository`` and ``AchievementStore``
protocols; the SQL implementations below convert SQLModel rows to the shared
wire schemas so no ORM object leaves this module.

Status changes go through ``transition_status``, an atomic compare-and-set
(``UPDATE ... WHERE verification_status = :expected``). ``unit()`` wraps a
single decision in a savepoint so a failure rolls back every write of it.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional, Protocol, Sequence, Union

import structlog
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.achievement import DonorAchievement
from app.models.assessment import RapidAssessment
from app.models.auto_approval import AutoApprovalConfigRecord, AutoApprovalOverride
from app.models.feedback import Feedback
from app.models.response import RapidResponse
from app.models.user import User
from dms_shared.schemas.achievements import AchievementRead
from dms_shared.schemas.auto_approval import AutoApprovalConfig, AutoApprovalConfigRead
from dms_shared.schemas.common import VerifiableType, VerificationStatus
from dms_shared.schemas.feedback import FeedbackRead
from dms_shared.schemas.items import VerifiableItem
from dms_shared.schemas.verification import OverrideRead

log = structlog.get_logger()

ItemModel = Union[RapidAssessment, RapidResponse]


class AchievementExists(Exception):
    """A (donor, type) achievement row already exists."""


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

class VerificationRepository(Protocol):
    def unit(self) -> Any:
        """Async context manager: all writes inside commit or roll back together."""
        ...

    async def add_item(self, item: VerifiableItem, media_attachments: Sequence[str] = ()) -> VerifiableItem: ...

    async def get_item(self, target_type: VerifiableType, item_id: uuid.UUID) -> Optional[VerifiableItem]: ...

    async def list_items(
        self,
        target_type: VerifiableType,
        *,
        statuses: Optional[Sequence[VerificationStatus]] = None,
        subtypes: Optional[Sequence[str]] = None,
        submitter_id: Optional[uuid.UUID] = None,
        limit: Optional[int] = None,
    ) -> list[VerifiableItem]: ...

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
        """Compare-and-set. Returns the updated item, or None if the status was not ``expected``."""
        ...

    async def add_feedback(self, **fields: Any) -> FeedbackRead: ...

    async def get_feedback(self, feedback_id: uuid.UUID) -> Optional[FeedbackRead]: ...

    async def update_feedback(self, feedback_id: uuid.UUID, **changes: Any) -> Optional[FeedbackRead]: ...

    async def list_feedback(
        self,
        *,
        target_type: Optional[VerifiableType] = None,
        target_id: Optional[uuid.UUID] = None,
        recipient_id: Optional[uuid.UUID] = None,
        unread_only: bool = False,
        unresolved_only: bool = False,
    ) -> list[FeedbackRead]: ...

    async def add_override(self, **fields: Any) -> OverrideRead: ...

    async def list_overrides(self, *, since: Optional[datetime] = None, limit: int = 100) -> list[OverrideRead]: ...

    async def auto_approval_counts(self, since: datetime) -> list[tuple[str, str]]:
        """(rule id, subtype) for every item auto-verified since ``since``."""
        ...

    async def get_config(self) -> Optional[AutoApprovalConfigRead]: ...

    async def save_config(self, config: AutoApprovalConfig, updated_by: Optional[str]) -> AutoApprovalConfigRead: ...


class AchievementStore(Protocol):
    async def donor_responses(self, donor_id: uuid.UUID) -> list[VerifiableItem]:
        """All responses tied to the donor, oldest first."""
        ...

    async def get_achievement(self, donor_id: uuid.UUID, type: str) -> Optional[AchievementRead]: ...

    async def create_achievement(self, **fields: Any) -> AchievementRead:
        """Insert an achievement. Raises AchievementExists on a duplicate (donor, type)."""
        ...

    async def list_achievements(self, donor_id: uuid.UUID) -> list[AchievementRead]: ...

    async def count_achievements(self, donor_id: uuid.UUID) -> int: ...


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------

def _model_for(target_type: VerifiableType) -> type:
    return RapidAssessment if target_type == VerifiableType.ASSESSMENT else RapidResponse


def _to_item(
    row: ItemModel, reputation: Optional[float] = None, unresolved_feedback: int = 0
) -> VerifiableItem:
    if isinstance(row, RapidAssessment):
        target_type, subtype = VerifiableType.ASSESSMENT, row.assessment_type
        extra: dict[str, Any] = {}
    else:
        target_type, subtype = VerifiableType.RESPONSE, row.response_type
        extra = {
            "donor_id": row.donor_id,
            "commitment_id": row.commitment_id,
            "beneficiaries_served": row.beneficiaries_served,
        }
    return VerifiableItem(
        id=row.id,
        target_type=target_type,
        subtype=subtype,
        submitter_id=row.submitter_id,
        submitter_name=row.submitter_name,
        submitter_reputation=reputation,
        submitted_at=_as_utc(row.submitted_at),
        completeness=row.completeness,
        gps_accuracy_meters=row.gps_accuracy_meters,
        media_count=len(row.media_attachments or []),
        data=row.data or {},
        verification_status=VerificationStatus(row.verification_status),
        auto_approval_rule_id=row.auto_approval_rule_id,
        verified_by=row.verified_by,
        verified_at=_as_utc(row.verified_at),
        auto_verified_at=_as_utc(row.auto_verified_at),
        unresolved_feedback=unresolved_feedback,
        **extra,
    )


def _to_feedback(row: Feedback) -> FeedbackRead:
    return FeedbackRead(
        id=row.id,
        target_type=VerifiableType(row.target_type),
        target_id=row.target_id,
        recipient_id=row.recipient_id,
        coordinator_id=row.coordinator_id,
        coordinator_name=row.coordinator_name,
        type=row.type,
        reason=row.reason,
        comments=row.comments,
        priority=row.priority,
        requires_resubmission=row.requires_resubmission,
        is_read=row.is_read,
        is_resolved=row.is_resolved,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
        read_at=_as_utc(row.read_at),
        resolved_at=_as_utc(row.resolved_at),
    )


def _to_override(row: AutoApprovalOverride) -> OverrideRead:
    return OverrideRead(
        id=row.id,
        target_type=VerifiableType(row.target_type),
        target_ids=[uuid.UUID(t) for t in row.target_ids],
        original_status=VerificationStatus(row.original_status),
        new_status=VerificationStatus(row.new_status),
        reason=row.reason,
        justification=row.justification,
        coordinator_id=row.coordinator_id,
        coordinator_name=row.coordinator_name,
        created_at=_as_utc(row.created_at),
    )


def _to_achievement(row: DonorAchievement) -> AchievementRead:
    return AchievementRead(
        id=row.id,
        donor_id=row.donor_id,
        type=row.type,
        title=row.title,
        description=row.description,
        category=row.category,
        badge_icon=row.badge_icon,
        earned_at=_as_utc(row.earned_at),
        response_id=row.response_id,
        verification_id=row.verification_id,
    )


# ---------------------------------------------------------------------------
# SQL implementation
# ---------------------------------------------------------------------------

class SqlVerificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def unit(self) -> AsyncIterator[None]:
        async with self.session.begin_nested():
            yield

    # -- items ---------------------------------------------------------------

    def _unresolved_feedback_count(self, model: type):
        return (
            select(func.count(Feedback.id))
            .where(Feedback.target_id == model.id, Feedback.is_resolved.is_(False))
            .correlate(model)
            .scalar_subquery()
        )

    async def add_item(self, item: VerifiableItem, media_attachments: Sequence[str] = ()) -> VerifiableItem:
        common = dict(
            id=item.id,
            submitter_id=item.submitter_id,
            submitter_name=item.submitter_name,
            submitted_at=item.submitted_at,
            completeness=item.completeness,
            gps_accuracy_meters=item.gps_accuracy_meters,
            media_attachments=list(media_attachments),
            data=item.data,
            verification_status=item.verification_status.value,
            auto_approval_rule_id=item.auto_approval_rule_id,
            verified_by=item.verified_by,
            verified_at=item.verified_at,
            auto_verified_at=item.auto_verified_at,
        )
        if item.target_type == VerifiableType.ASSESSMENT:
            row: ItemModel = RapidAssessment(assessment_type=item.subtype, **common)
        else:
            row = RapidResponse(
                response_type=item.subtype,
                donor_id=item.donor_id,
                commitment_id=item.commitment_id,
                beneficiaries_served=item.beneficiaries_served,
                **common,
            )
        self.session.add(row)
        await self.session.flush()
        return _to_item(row, item.submitter_reputation)

    async def get_item(self, target_type: VerifiableType, item_id: uuid.UUID) -> Optional[VerifiableItem]:
        model = _model_for(target_type)
        result = await self.session.execute(
            select(model, User.reputation_score, self._unresolved_feedback_count(model))
            .outerjoin(User, User.id == model.submitter_id)
            .where(model.id == item_id)
            .execution_options(populate_existing=True)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return _to_item(row[0], row[1], row[2] or 0)

    async def list_items(
        self,
        target_type: VerifiableType,
        *,
        statuses: Optional[Sequence[VerificationStatus]] = None,
        subtypes: Optional[Sequence[str]] = None,
        submitter_id: Optional[uuid.UUID] = None,
        limit: Optional[int] = None,
    ) -> list[VerifiableItem]:
        model = _model_for(target_type)
        subtype_col = model.assessment_type if model is RapidAssessment else model.response_type
        stmt = (
            select(model, User.reputation_score, self._unresolved_feedback_count(model))
            .outerjoin(User, User.id == model.submitter_id)
            .order_by(model.submitted_at.desc())
        )
        if statuses:
            stmt = stmt.where(model.verification_status.in_([s.value for s in statuses]))
        if subtypes:
            stmt = stmt.where(subtype_col.in_(list(subtypes)))
        if submitter_id:
            stmt = stmt.where(model.submitter_id == submitter_id)
        if limit:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [_to_item(r[0], r[1], r[2] or 0) for r in result.all()]

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
        model = _model_for(target_type)
        now = now or datetime.now(timezone.utc)
        values: dict[str, Any] = {"verification_status": new.value, "updated_at": now}
        if new in (VerificationStatus.VERIFIED, VerificationStatus.REJECTED):
            values.update(verified_by=verified_by, verified_at=now)
        elif new == VerificationStatus.AUTO_VERIFIED:
            values.update(
                verified_by=None, verified_at=now, auto_verified_at=now, auto_approval_rule_id=rule_id
            )
        elif new == VerificationStatus.PENDING:
            # rule id and auto-verification time stay for traceability
            values.update(verified_by=None)

        result = await self.session.execute(
            update(model)
            .where(model.id == item_id, model.verification_status == expected.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        log.debug(
            "verification.status_changed",
            item_id=str(item_id),
            expected=expected.value,
            new=new.value,
        )
        return await self.get_item(target_type, item_id)

    # -- feedback ------------------------------------------------------------

    async def add_feedback(self, **fields: Any) -> FeedbackRead:
        row = Feedback(**fields)
        self.session.add(row)
        await self.session.flush()
        return _to_feedback(row)

    async def get_feedback(self, feedback_id: uuid.UUID) -> Optional[FeedbackRead]:
        row = await self.session.get(Feedback, feedback_id)
        return _to_feedback(row) if row else None

    async def update_feedback(self, feedback_id: uuid.UUID, **changes: Any) -> Optional[FeedbackRead]:
        row = await self.session.get(Feedback, feedback_id)
        if row is None:
            return None
        for key, value in changes.items():
            setattr(row, key, value)
        row.updated_at = datetime.now(timezone.utc)
        self.session.add(row)
        await self.session.flush()
        return _to_feedback(row)

    async def list_feedback(
        self,
        *,
        target_type: Optional[VerifiableType] = None,
        target_id: Optional[uuid.UUID] = None,
        recipient_id: Optional[uuid.UUID] = None,
        unread_only: bool = False,
        unresolved_only: bool = False,
    ) -> list[FeedbackRead]:
        stmt = select(Feedback).order_by(Feedback.created_at.desc())
        if target_type:
            stmt = stmt.where(Feedback.target_type == target_type.value)
        if target_id:
            stmt = stmt.where(Feedback.target_id == target_id)
        if recipient_id:
            stmt = stmt.where(Feedback.recipient_id == recipient_id)
        if unread_only:
            stmt = stmt.where(Feedback.is_read.is_(False))
        if unresolved_only:
            stmt = stmt.where(Feedback.is_resolved.is_(False))
        result = await self.session.execute(stmt)
        return [_to_feedback(r) for r in result.scalars().all()]

    # -- overrides -----------------------------------------------------------

    async def add_override(self, **fields: Any) -> OverrideRead:
        fields["target_ids"] = [str(t) for t in fields.get("target_ids", [])]
        row = AutoApprovalOverride(**fields)
        self.session.add(row)
        await self.session.flush()
        return _to_override(row)

    async def list_overrides(self, *, since: Optional[datetime] = None, limit: int = 100) -> list[OverrideRead]:
        stmt = select(AutoApprovalOverride).order_by(AutoApprovalOverride.created_at.desc())
        if since:
            stmt = stmt.where(AutoApprovalOverride.created_at >= since)
        result = await self.session.execute(stmt.limit(limit))
        return [_to_override(r) for r in result.scalars().all()]

    async def auto_approval_counts(self, since: datetime) -> list[tuple[str, str]]:
        rows: list[tuple[str, str]] = []
        for model, subtype_col in (
            (RapidAssessment, RapidAssessment.assessment_type),
            (RapidResponse, RapidResponse.response_type),
        ):
            result = await self.session.execute(
                select(model.auto_approval_rule_id, subtype_col).where(
                    model.auto_approval_rule_id.is_not(None),
                    model.auto_verified_at >= since,
                )
            )
            rows.extend((r[0], r[1]) for r in result.all())
        return rows

    # -- configuration -------------------------------------------------------

    async def get_config(self) -> Optional[AutoApprovalConfigRead]:
        result = await self.session.execute(
            select(AutoApprovalConfigRecord)
            .order_by(AutoApprovalConfigRecord.version.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return AutoApprovalConfigRead.model_validate(
            {
                **row.document,
                "version": row.version,
                "updatedBy": row.updated_by,
                "updatedAt": _as_utc(row.created_at),
            }
        )

    async def save_config(self, config: AutoApprovalConfig, updated_by: Optional[str]) -> AutoApprovalConfigRead:
        result = await self.session.execute(
            select(func.max(AutoApprovalConfigRecord.version))
        )
        version = (result.scalar() or 0) + 1
        row = AutoApprovalConfigRecord(
            version=version,
            document=config.model_dump(mode="json", by_alias=True),
            updated_by=updated_by,
        )
        self.session.add(row)
        await self.session.flush()
        log.info("auto_approval.config_saved", version=version, updated_by=updated_by)
        return AutoApprovalConfigRead(
            **config.model_dump(),
            version=version,
            updated_by=updated_by,
            updated_at=_as_utc(row.created_at),
        )


class SqlAchievementStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def donor_responses(self, donor_id: uuid.UUID) -> list[VerifiableItem]:
        result = await self.session.execute(
            select(RapidResponse)
            .where(RapidResponse.donor_id == donor_id)
            .order_by(RapidResponse.submitted_at.asc())
            .execution_options(populate_existing=True)
        )
        return [_to_item(r) for r in result.scalars().all()]

    async def get_achievement(self, donor_id: uuid.UUID, type: str) -> Optional[AchievementRead]:
        result = await self.session.execute(
            select(DonorAchievement).where(
                DonorAchievement.donor_id == donor_id, DonorAchievement.type == type
            )
        )
        row = result.scalar_one_or_none()
        return _to_achievement(row) if row else None

    async def create_achievement(self, **fields: Any) -> AchievementRead:
        row = DonorAchievement(**fields)
        try:
            async with self.session.begin_nested():
                self.session.add(row)
                await self.session.flush()
        except IntegrityError as exc:
            raise AchievementExists(f"{fields.get('donor_id')}:{fields.get('type')}") from exc
        return _to_achievement(row)

    async def list_achievements(self, donor_id: uuid.UUID) -> list[AchievementRead]:
        result = await self.session.execute(
            select(DonorAchievement)
            .where(DonorAchievement.donor_id == donor_id)
            .order_by(DonorAchievement.earned_at.asc())
        )
        return [_to_achievement(r) for r in result.scalars().all()]

    async def count_achievements(self, donor_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count(DonorAchievement.id)).where(DonorAchievement.donor_id == donor_id)
        )
        return result.scalar() or 0
