"""
Verification queue controller.

Owns every status change of an assessment or response after submission:
manual approve/reject (single and batch), auto-verification, and coordinator
overrides of auto-verified items. Persistence, notifications, the batch lock
and the achievement engine are injected so the state machine can be tested
without a database.

Each decision runs inside ``repo.unit()``; the status write is a
compare-and-set on the expected source status, so two coordinators racing on
the same item cannot both succeed.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional

import structlog

from app.core.errors import (
    BatchInProgress,
    DomainError,
    DownstreamFailure,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from app.services.achievements import AchievementEngine
from app.services.auto_approval import get_effective_config
from app.services.coordination import BatchGuard, RedisBatchGuard
from app.services.notifications import Notifier, RedisNotifier
from app.services.repository import (
    SqlAchievementStore,
    SqlVerificationRepository,
    VerificationRepository,
)
from dms_shared.schemas.achievements import AchievementRead
from dms_shared.schemas.auto_approval import RuleMatch
from dms_shared.schemas.common import (
    QUEUE_PRIORITY_RANK,
    FeedbackPriority,
    FeedbackType,
    OverrideReason,
    Pagination,
    QueuePriority,
    VerifiableType,
    VerificationStatus,
)
from dms_shared.schemas.feedback import FeedbackRead
from dms_shared.schemas.items import VerifiableItem
from dms_shared.schemas.verification import (
    ApprovalRequest,
    BatchApprovalRequest,
    BatchItemOutcome,
    BatchItemStatus,
    BatchRejectionRequest,
    BatchResult,
    DecisionResult,
    OverrideRequest,
    OverrideResult,
    QueueFilters,
    QueueItem,
    QueuePage,
    QueueStats,
    RejectionRequest,
)

log = structlog.get_logger()

# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[VerificationStatus, set[VerificationStatus]] = {
    VerificationStatus.PENDING: {
        VerificationStatus.VERIFIED,
        VerificationStatus.REJECTED,
        VerificationStatus.AUTO_VERIFIED,
    },
    # only through override()
    VerificationStatus.AUTO_VERIFIED: {
        VerificationStatus.PENDING,
        VerificationStatus.REJECTED,
    },
    VerificationStatus.VERIFIED: set(),
    VerificationStatus.REJECTED: set(),
}

OVERRIDE_TARGET_STATUSES = (VerificationStatus.PENDING, VerificationStatus.REJECTED)

SortField = Literal["priority", "date", "type", "submitter"]


def check_transition(current: VerificationStatus, new: VerificationStatus) -> None:
    if new not in VALID_TRANSITIONS[current]:
        raise InvalidStateTransition(
            f"Cannot transition from {current.value} to {new.value}"
        )


def check_manual_decision(current: VerificationStatus, new: VerificationStatus) -> None:
    """Coordinators decide PENDING items only; AUTO_VERIFIED leaves through override()."""
    if current != VerificationStatus.PENDING:
        raise InvalidStateTransition(
            f"Cannot transition from {current.value} to {new.value}: only PENDING items can be decided"
        )
    check_transition(current, new)


def queue_name(target_type: VerifiableType) -> str:
    return "assessments" if target_type == VerifiableType.ASSESSMENT else "responses"


def queue_priority(item: VerifiableItem, now: datetime, attention_hours: int) -> QueuePriority:
    """HIGH past the attention window, MEDIUM past a quarter of it, else LOW."""
    waited_hours = (now - item.submitted_at).total_seconds() / 3600.0
    if waited_hours > attention_hours:
        return QueuePriority.HIGH
    if waited_hours > attention_hours / 4:
        return QueuePriority.MEDIUM
    return QueuePriority.LOW


@dataclass(frozen=True)
class Coordinator:
    id: uuid.UUID
    name: str


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class VerificationService:
    def __init__(
        self,
        repo: VerificationRepository,
        notifier: Notifier,
        achievements: AchievementEngine,
        batch_guard: BatchGuard,
        *,
        attention_hours: int = 24,
    ):
        self.repo = repo
        self.notifier = notifier
        self.achievements = achievements
        self.batch_guard = batch_guard
        self.attention_hours = attention_hours

    # -- helpers -------------------------------------------------------------

    async def _get_item_or_404(self, target_type: VerifiableType, item_id: uuid.UUID) -> VerifiableItem:
        item = await self.repo.get_item(target_type, item_id)
        if item is None:
            raise NotFound(f"{target_type.value.capitalize()} {item_id} not found")
        return item

    async def _award_achievements(self, item: VerifiableItem, decision_id: str) -> list[AchievementRead]:
        """Run the engine for a verified donor-linked response. Never undoes the decision."""
        if not item.has_donor_commitment:
            return []
        try:
            return await self.achievements.calculate_for_verified_response(
                item.donor_id, item.id, decision_id
            )
        except Exception as exc:
            log.error(
                "achievement.calculation_failed",
                donor_id=str(item.donor_id),
                response_id=str(item.id),
                error=str(exc),
            )
            return []

    # -- single decisions ----------------------------------------------------

    async def approve(
        self,
        target_type: VerifiableType,
        item_id: uuid.UUID,
        coordinator: Coordinator,
        request: ApprovalRequest,
    ) -> DecisionResult:
        item = await self._get_item_or_404(target_type, item_id)
        check_manual_decision(item.verification_status, VerificationStatus.VERIFIED)
        decision_id = uuid.uuid4().hex
        note = (request.approval_note or "").strip()

        try:
            async with self.repo.unit():
                updated = await self.repo.transition_status(
                    target_type,
                    item_id,
                    VerificationStatus.PENDING,
                    VerificationStatus.VERIFIED,
                    verified_by=coordinator.id,
                )
                if updated is None:
                    raise InvalidStateTransition(f"{item_id} is no longer PENDING")

                feedback: Optional[FeedbackRead] = None
                if note:
                    feedback = await self.repo.add_feedback(
                        target_type=target_type.value,
                        target_id=item_id,
                        recipient_id=item.submitter_id,
                        coordinator_id=coordinator.id,
                        coordinator_name=coordinator.name,
                        type=FeedbackType.APPROVAL_NOTE.value,
                        comments=note,
                        priority=FeedbackPriority.NORMAL.value,
                        requires_resubmission=False,
                        is_resolved=True,
                    )
                if request.notify_submitter:
                    await self.notifier.notify(
                        item.submitter_id,
                        "verification.approved",
                        {
                            "targetType": target_type.value,
                            "targetId": str(item_id),
                            "coordinatorName": coordinator.name,
                            "note": note or None,
                        },
                    )
        except DomainError:
            raise
        except Exception as exc:
            log.error("verification.approve_failed", item_id=str(item_id), error=str(exc))
            raise DownstreamFailure.from_exception(exc) from exc

        log.info(
            "verification.approved",
            target_type=target_type.value,
            item_id=str(item_id),
            coordinator_id=str(coordinator.id),
        )
        new_achievements = await self._award_achievements(updated, decision_id)
        return DecisionResult(item=updated, feedback=feedback, new_achievements=new_achievements)

    async def reject(
        self,
        target_type: VerifiableType,
        item_id: uuid.UUID,
        coordinator: Coordinator,
        request: RejectionRequest,
    ) -> DecisionResult:
        comments = request.rejection_comments.strip()
        if not comments:
            raise ValidationError("Comments Required")

        item = await self._get_item_or_404(target_type, item_id)
        check_manual_decision(item.verification_status, VerificationStatus.REJECTED)

        try:
            async with self.repo.unit():
                updated = await self.repo.transition_status(
                    target_type,
                    item_id,
                    VerificationStatus.PENDING,
                    VerificationStatus.REJECTED,
                    verified_by=coordinator.id,
                )
                if updated is None:
                    raise InvalidStateTransition(f"{item_id} is no longer PENDING")

                feedback = await self.repo.add_feedback(
                    target_type=target_type.value,
                    target_id=item_id,
                    recipient_id=item.submitter_id,
                    coordinator_id=coordinator.id,
                    coordinator_name=coordinator.name,
                    type=FeedbackType.REJECTION.value,
                    reason=request.rejection_reason.value,
                    comments=comments,
                    priority=request.priority.value,
                    requires_resubmission=request.requires_resubmission,
                )
                # re-read so the returned snapshot counts the new feedback
                updated = await self.repo.get_item(target_type, item_id)
                if request.notify_submitter:
                    await self.notifier.notify(
                        item.submitter_id,
                        "verification.rejected",
                        {
                            "targetType": target_type.value,
                            "targetId": str(item_id),
                            "feedbackId": str(feedback.id),
                            "reason": request.rejection_reason.value,
                            "priority": request.priority.value,
                            "requiresResubmission": request.requires_resubmission,
                        },
                    )
        except DomainError:
            raise
        except Exception as exc:
            log.error("verification.reject_failed", item_id=str(item_id), error=str(exc))
            raise DownstreamFailure.from_exception(exc) from exc

        log.info(
            "verification.rejected",
            target_type=target_type.value,
            item_id=str(item_id),
            reason=request.rejection_reason.value,
            coordinator_id=str(coordinator.id),
        )
        return DecisionResult(item=updated, feedback=feedback)

    async def auto_verify(self, item: VerifiableItem, match: RuleMatch) -> Optional[VerifiableItem]:
        """Apply a matcher verdict to a stored PENDING item. None if someone decided it first."""
        check_transition(item.verification_status, VerificationStatus.AUTO_VERIFIED)
        async with self.repo.unit():
            updated = await self.repo.transition_status(
                item.target_type,
                item.id,
                VerificationStatus.PENDING,
                VerificationStatus.AUTO_VERIFIED,
                rule_id=match.rule_id,
            )
        if updated is None:
            return None
        log.info(
            "verification.auto_verified",
            target_type=item.target_type.value,
            item_id=str(item.id),
            rule_id=match.rule_id,
        )
        await self._award_achievements(updated, f"auto:{match.rule_id}")
        return updated

    # -- batches -------------------------------------------------------------

    async def _run_batch(
        self,
        target_type: VerifiableType,
        operation: Literal["APPROVE", "REJECT"],
        item_ids: list[uuid.UUID],
        decide,
    ) -> BatchResult:
        queue = queue_name(target_type)
        token = await self.batch_guard.acquire(queue, len(item_ids), operation)
        if token is None:
            raise BatchInProgress()

        log.info("batch.started", queue=queue, operation=operation, total=len(item_ids))
        outcomes: list[BatchItemOutcome] = []
        try:
            for index, item_id in enumerate(item_ids):
                await self.batch_guard.update(queue, token, index, f"{operation} {item_id}")
                try:
                    result = await decide(item_id)
                    outcomes.append(
                        BatchItemOutcome(
                            item_id=item_id,
                            status=BatchItemStatus.SUCCEEDED,
                            new_status=result.item.verification_status,
                        )
                    )
                except InvalidStateTransition as exc:
                    outcomes.append(
                        BatchItemOutcome(item_id=item_id, status=BatchItemStatus.SKIPPED, error=exc.message)
                    )
                except DomainError as exc:
                    log.warning("batch.item_failed", queue=queue, item_id=str(item_id), error=exc.message)
                    outcomes.append(
                        BatchItemOutcome(item_id=item_id, status=BatchItemStatus.FAILED, error=exc.message)
                    )
                except Exception as exc:
                    error = DownstreamFailure.from_exception(exc).message
                    log.error("batch.item_failed", queue=queue, item_id=str(item_id), error=error)
                    outcomes.append(
                        BatchItemOutcome(item_id=item_id, status=BatchItemStatus.FAILED, error=error)
                    )
            await self.batch_guard.update(queue, token, len(item_ids), "Completed")
        finally:
            await self.batch_guard.release(queue, token)

        result = BatchResult(
            operation=operation,
            total=len(item_ids),
            succeeded=sum(1 for o in outcomes if o.status == BatchItemStatus.SUCCEEDED),
            skipped=sum(1 for o in outcomes if o.status == BatchItemStatus.SKIPPED),
            failed=sum(1 for o in outcomes if o.status == BatchItemStatus.FAILED),
            outcomes=outcomes,
            progress=await self.batch_guard.progress(queue),
        )
        log.info(
            "batch.completed",
            queue=queue,
            operation=operation,
            succeeded=result.succeeded,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result

    async def batch_approve(
        self,
        target_type: VerifiableType,
        coordinator: Coordinator,
        request: BatchApprovalRequest,
    ) -> BatchResult:
        async def decide(item_id: uuid.UUID) -> DecisionResult:
            return await self.approve(target_type, item_id, coordinator, request)

        return await self._run_batch(target_type, "APPROVE", request.item_ids, decide)

    async def batch_reject(
        self,
        target_type: VerifiableType,
        coordinator: Coordinator,
        request: BatchRejectionRequest,
    ) -> BatchResult:
        # Same comments for every item, so refuse the whole batch up front
        if not request.rejection_comments.strip():
            raise ValidationError("Comments Required")

        async def decide(item_id: uuid.UUID) -> DecisionResult:
            return await self.reject(target_type, item_id, coordinator, request)

        return await self._run_batch(target_type, "REJECT", request.item_ids, decide)

    async def batch_progress(self, target_type: VerifiableType):
        return await self.batch_guard.progress(queue_name(target_type))

    # -- overrides -----------------------------------------------------------

    async def override(self, coordinator: Coordinator, request: OverrideRequest) -> OverrideResult:
        """Reverse auto-verifications. All targets are checked before any is changed."""
        justification = request.justification.strip()
        if not justification:
            raise ValidationError("Justification Required")
        if request.new_status not in OVERRIDE_TARGET_STATUSES:
            raise ValidationError("Overrides can only move items to PENDING or REJECTED")

        if request.reason == OverrideReason.EMERGENCY_OVERRIDE:
            config = await get_effective_config(self.repo)
            if not config.global_settings.emergency_override_enabled:
                raise ValidationError("Emergency overrides are disabled")

        items = [await self._get_item_or_404(request.target_type, i) for i in request.target_ids]
        for item in items:
            if item.verification_status != VerificationStatus.AUTO_VERIFIED:
                raise InvalidStateTransition(
                    f"{item.id} is {item.verification_status.value}; "
                    "only AUTO_VERIFIED items can be overridden"
                )

        records = []
        updated_items = []
        try:
            async with self.repo.unit():
                for item in items:
                    updated = await self.repo.transition_status(
                        request.target_type,
                        item.id,
                        VerificationStatus.AUTO_VERIFIED,
                        request.new_status,
                        verified_by=coordinator.id,
                    )
                    if updated is None:
                        raise InvalidStateTransition(f"{item.id} is no longer AUTO_VERIFIED")
                    records.append(
                        await self.repo.add_override(
                            target_type=request.target_type.value,
                            target_ids=[item.id],
                            original_status=VerificationStatus.AUTO_VERIFIED.value,
                            new_status=request.new_status.value,
                            reason=request.reason.value,
                            justification=justification,
                            coordinator_id=coordinator.id,
                            coordinator_name=coordinator.name,
                        )
                    )
                    if request.new_status == VerificationStatus.REJECTED:
                        await self.repo.add_feedback(
                            target_type=request.target_type.value,
                            target_id=item.id,
                            recipient_id=item.submitter_id,
                            coordinator_id=coordinator.id,
                            coordinator_name=coordinator.name,
                            type=FeedbackType.REJECTION.value,
                            reason=request.reason.value,
                            comments=justification,
                            priority=FeedbackPriority.NORMAL.value,
                            requires_resubmission=True,
                        )
                        updated = await self.repo.get_item(request.target_type, item.id)
                    await self.notifier.notify(
                        item.submitter_id,
                        "verification.overridden",
                        {
                            "targetType": request.target_type.value,
                            "targetId": str(item.id),
                            "newStatus": request.new_status.value,
                            "reason": request.reason.value,
                        },
                    )
                    updated_items.append(updated)
        except DomainError:
            raise
        except Exception as exc:
            log.error("override.failed", error=str(exc))
            raise DownstreamFailure.from_exception(exc) from exc

        log.info(
            "override.recorded",
            target_type=request.target_type.value,
            count=len(records),
            new_status=request.new_status.value,
            reason=request.reason.value,
            coordinator_id=str(coordinator.id),
        )
        return OverrideResult(overrides=records, items=updated_items)

    # -- queue ---------------------------------------------------------------

    def _to_queue_item(self, item: VerifiableItem, now: datetime) -> QueueItem:
        return QueueItem(
            item=item,
            priority=queue_priority(item, now, self.attention_hours),
            requires_attention=item.unresolved_feedback > 0,
            feedback_count=item.unresolved_feedback,
            waiting_minutes=max(0, int((now - item.submitted_at).total_seconds() // 60)),
        )

    async def list_queue(
        self,
        target_type: VerifiableType,
        filters: QueueFilters,
        *,
        sort_by: SortField = "priority",
        sort_order: Literal["asc", "desc"] = "desc",
        page: int = 1,
        page_size: int = 20,
        now: Optional[datetime] = None,
    ) -> QueuePage:
        now = now or datetime.now(timezone.utc)
        items = await self.repo.list_items(
            target_type,
            statuses=filters.statuses,
            subtypes=filters.subtypes,
            submitter_id=filters.submitter_id,
        )
        entries = [self._to_queue_item(i, now) for i in items]
        if filters.priorities:
            entries = [e for e in entries if e.priority in filters.priorities]

        if sort_by == "priority":
            # oldest first within a priority band
            entries.sort(key=lambda e: e.item.submitted_at)
            entries.sort(key=lambda e: QUEUE_PRIORITY_RANK[e.priority], reverse=sort_order == "desc")
        else:
            keys = {
                "date": lambda e: e.item.submitted_at,
                "type": lambda e: e.item.subtype,
                "submitter": lambda e: e.item.submitter_name.lower(),
            }
            entries.sort(key=keys[sort_by], reverse=sort_order == "desc")

        total = len(entries)
        start = (page - 1) * page_size
        pending = await self.repo.list_items(target_type, statuses=[VerificationStatus.PENDING])
        return QueuePage(
            queue=entries[start:start + page_size],
            queue_stats=self.queue_stats(pending, now),
            pagination=Pagination(
                page=page,
                page_size=page_size,
                total_pages=max(1, math.ceil(total / page_size)),
                total_count=total,
            ),
        )

    def queue_stats(self, pending: list[VerifiableItem], now: datetime) -> QueueStats:
        stats = QueueStats(total_pending=len(pending))
        for item in pending:
            if queue_priority(item, now, self.attention_hours) == QueuePriority.HIGH:
                stats.high_priority += 1
            if item.unresolved_feedback > 0:
                stats.requires_attention += 1
            stats.by_type[item.subtype] = stats.by_type.get(item.subtype, 0) + 1
        return stats

    # -- feedback ------------------------------------------------------------

    async def get_feedback_or_404(self, feedback_id: uuid.UUID) -> FeedbackRead:
        feedback = await self.repo.get_feedback(feedback_id)
        if feedback is None:
            raise NotFound(f"Feedback {feedback_id} not found")
        return feedback

    async def mark_feedback_read(self, feedback_id: uuid.UUID) -> FeedbackRead:
        feedback = await self.get_feedback_or_404(feedback_id)
        if feedback.is_read:
            return feedback
        updated = await self.repo.update_feedback(
            feedback_id, is_read=True, read_at=datetime.now(timezone.utc)
        )
        log.info("feedback.read", feedback_id=str(feedback_id))
        return updated

    async def mark_feedback_resolved(self, feedback_id: uuid.UUID) -> FeedbackRead:
        feedback = await self.get_feedback_or_404(feedback_id)
        if feedback.is_resolved:
            return feedback
        now = datetime.now(timezone.utc)
        changes = {"is_resolved": True, "resolved_at": now}
        if not feedback.is_read:
            changes.update(is_read=True, read_at=now)
        updated = await self.repo.update_feedback(feedback_id, **changes)
        log.info("feedback.resolved", feedback_id=str(feedback_id))
        return updated


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def build_verification_service(session, redis_client, settings) -> VerificationService:
    """Production wiring: SQL persistence, Redis notifications and batch lock."""
    return VerificationService(
        SqlVerificationRepository(session),
        RedisNotifier(redis_client),
        AchievementEngine(SqlAchievementStore(session)),
        RedisBatchGuard(redis_client, ttl_seconds=settings.batch_lock_ttl_seconds),
        attention_hours=settings.queue_attention_hours,
    )
