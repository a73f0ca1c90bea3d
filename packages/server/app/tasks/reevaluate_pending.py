"""
ARQ background task: re-run auto-approval over the manual queue.

After a coordinator changes the rules, items already waiting as PENDING may
now qualify. Items a coordinator has already commented on, and items an
override sent back from AUTO_VERIFIED, are left alone.

Scheduled to run periodically (every hour).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog

from app.core.config import get_settings
from app.core.database import get_session_context
from app.core.redis import get_redis
from app.services.auto_approval import AutoApprovalMatcher, get_effective_config
from app.services.coordination import RedisApprovalCounter
from app.services.verification import VerificationService, build_verification_service
from dms_shared.schemas.common import VerifiableType, VerificationStatus

log = structlog.get_logger()


async def reevaluate_queue(
    service: VerificationService,
    matcher: AutoApprovalMatcher,
    now: Optional[datetime] = None,
) -> int:
    """Auto-verify every untouched PENDING item that now matches a rule.

    Returns the number of items auto-verified.
    """
    now = now or datetime.now(timezone.utc)
    count = 0
    for target_type in VerifiableType:
        pending = await service.repo.list_items(target_type, statuses=[VerificationStatus.PENDING])
        for item in pending:
            if item.auto_approval_rule_id is not None:
                # overridden by a coordinator; only a manual decision moves it now
                continue
            feedback = await service.repo.list_feedback(target_type=target_type, target_id=item.id)
            if feedback:
                continue
            match = await matcher.match(item, now)
            if match is None:
                continue
            if await service.auto_verify(item, match) is None:
                await matcher.release(match, now)
                continue
            count += 1
    return count


async def reevaluate_pending_items(ctx: dict) -> int:
    """Hourly entry point. Returns the number of items auto-verified."""
    settings = get_settings()
    redis_client = await get_redis()

    async with get_session_context() as session:
        service = build_verification_service(session, redis_client, settings)
        config = await get_effective_config(service.repo)
        if not config.enabled:
            return 0
        matcher = AutoApprovalMatcher(config, RedisApprovalCounter(redis_client))
        count = await reevaluate_queue(service, matcher)

    if count:
        log.info("auto_approval.reevaluated", count=count)
    return count


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [reevaluate_pending_items]
    cron_jobs = [
        # Run every hour
        {
            "coroutine": reevaluate_pending_items,
            "hour": None,  # every hour
            "minute": 0,
        },
    ]
