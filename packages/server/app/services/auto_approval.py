"""
Auto-approval rule matching, configuration, dry-runs and statistics.

``select_rule`` is pure: first enabled rule (ascending priority, ties in list
order) matching the item's type and subtype whose quality threshold passes.
``AutoApprovalMatcher`` adds the hourly guards on top: the global
``maxAutoApprovalsPerHour`` cap and each rule's ``maxBatchSize``. A tripped
guard sends the item to the manual queue instead of failing the submission.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional

import structlog
import yaml

from app.core.config import get_settings
from app.core.errors import RateLimitExceeded
from app.services import quality
from app.services.coordination import ApprovalCounter, global_counter_key, rule_counter_key
from app.services.repository import VerificationRepository
from dms_shared.schemas.auto_approval import (
    AutoApprovalConfig,
    AutoApprovalConfigRead,
    AutoApprovalRule,
    AutoApprovalStats,
    RuleMatch,
    RuleTestOverall,
    RuleTestReport,
    RuleTestRequest,
    RuleTestResult,
    SampleMatch,
)
from dms_shared.schemas.common import VerifiableType
from dms_shared.schemas.items import VerifiableItem

log = structlog.get_logger()

SAMPLE_MATCH_LIMIT = 10


# ---------------------------------------------------------------------------
# Rule selection (pure)
# ---------------------------------------------------------------------------

def rule_applies(rule: AutoApprovalRule, item: VerifiableItem) -> bool:
    """Type and subtype match. A rule without a subtype covers every subtype."""
    if rule.type != item.target_type:
        return False
    return rule.subtype is None or rule.subtype == item.subtype


def candidate_rules(rules: Iterable[AutoApprovalRule], item: VerifiableItem) -> list[AutoApprovalRule]:
    # sorted() is stable, so equal priorities keep list order
    return sorted(
        (r for r in rules if r.enabled and rule_applies(r, item)),
        key=lambda r: r.priority,
    )


def select_rule(
    item: VerifiableItem,
    rules: Iterable[AutoApprovalRule],
    now: Optional[datetime] = None,
) -> Optional[AutoApprovalRule]:
    now = now or datetime.now(timezone.utc)
    for rule in candidate_rules(rules, item):
        if quality.evaluate(item, rule.quality_thresholds, now):
            return rule
    return None


# ---------------------------------------------------------------------------
# Matcher with hourly guards
# ---------------------------------------------------------------------------

class AutoApprovalMatcher:
    def __init__(self, config: AutoApprovalConfig, counter: ApprovalCounter):
        self.config = config
        self.counter = counter

    async def match(self, item: VerifiableItem, now: Optional[datetime] = None) -> Optional[RuleMatch]:
        """Return the auto-verification verdict, or None to leave the item PENDING."""
        if not self.config.enabled:
            return None
        now = now or datetime.now(timezone.utc)

        rule = select_rule(item, self.config.rules, now)
        if rule is None:
            log.debug("auto_approval.no_match", item_id=str(item.id), subtype=item.subtype)
            return None

        try:
            await self._reserve(rule, now)
        except RateLimitExceeded as exc:
            log.warning(
                "auto_approval.rate_limited",
                item_id=str(item.id),
                rule_id=rule.id,
                reason=exc.message,
            )
            return None

        log.info("auto_approval.matched", item_id=str(item.id), rule_id=rule.id)
        return RuleMatch(rule_id=rule.id)

    async def release(self, match: RuleMatch, now: Optional[datetime] = None) -> None:
        """Give back the slots taken for a match whose item was never stored."""
        now = now or datetime.now(timezone.utc)
        if self.config.global_settings.max_auto_approvals_per_hour is not None:
            await self.counter.release(global_counter_key(now))
        rule = next((r for r in self.config.rules if r.id == match.rule_id), None)
        if rule and rule.quality_thresholds.max_batch_size is not None:
            await self.counter.release(rule_counter_key(rule.id, now))

    async def _reserve(self, rule: AutoApprovalRule, now: datetime) -> None:
        cap = self.config.global_settings.max_auto_approvals_per_hour
        global_key = global_counter_key(now)
        if cap is not None and not await self.counter.reserve(global_key, cap):
            raise RateLimitExceeded(f"Global limit of {cap} auto-approvals per hour reached")

        batch_size = rule.quality_thresholds.max_batch_size
        if batch_size is not None and not await self.counter.reserve(rule_counter_key(rule.id, now), batch_size):
            if cap is not None:
                await self.counter.release(global_key)
            raise RateLimitExceeded(f"Rule {rule.id} reached its batch size of {batch_size} this hour")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def load_config_file(path: str | Path) -> AutoApprovalConfig:
    """Read an auto-approval document (camelCase keys, same shape as the API) from YAML."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    return AutoApprovalConfig.model_validate(raw)


async def get_effective_config(repo: VerificationRepository) -> AutoApprovalConfigRead:
    """Latest saved version, else the configured YAML default, else built-in defaults."""
    stored = await repo.get_config()
    if stored is not None:
        return stored
    path = get_settings().auto_approval_config_path
    if path:
        return AutoApprovalConfigRead(**load_config_file(path).model_dump())
    return AutoApprovalConfigRead()


async def save_config(
    repo: VerificationRepository, config: AutoApprovalConfig, updated_by: Optional[str]
) -> AutoApprovalConfigRead:
    now = datetime.now(timezone.utc)
    previous = {r.id: r for r in (await get_effective_config(repo)).rules}
    stamped = []
    for rule in config.rules:
        prior = previous.get(rule.id)
        stamped.append(
            rule.model_copy(
                update={
                    "created_by": rule.created_by or (prior.created_by if prior else updated_by),
                    "created_at": rule.created_at or (prior.created_at if prior else now),
                    "updated_at": now,
                }
            )
        )
    saved = await repo.save_config(config.model_copy(update={"rules": stamped}), updated_by)
    log.info(
        "auto_approval.config_updated",
        version=saved.version,
        enabled=saved.enabled,
        rules=len(saved.rules),
    )
    return saved


# ---------------------------------------------------------------------------
# Dry-run
# ---------------------------------------------------------------------------

def _rule_name(rule: AutoApprovalRule) -> str:
    return f"{rule.type.value} {rule.subtype or 'ALL'} Rule"


def _recommendations(results: list[RuleTestResult], overall: RuleTestOverall) -> list[str]:
    recs = []
    if overall.average_match_rate < 50:
        recs.append("Consider relaxing rule criteria to increase match rate")
    if overall.average_qualification_rate < 70:
        recs.append("Quality thresholds may be too strict - consider adjusting")
    if any(r.matched and r.average_score < 60 for r in results):
        recs.append("Some rules consistently produce low scores - review rule logic")
    if len(results) > 5:
        recs.append("Consider consolidating rules to reduce complexity")
    if not recs:
        recs.append("Rules appear to be well-configured for your data")
    return recs


async def _load_samples(repo: VerificationRepository, request: RuleTestRequest) -> list[VerifiableItem]:
    types = (
        [VerifiableType.ASSESSMENT, VerifiableType.RESPONSE]
        if request.target_type == "BOTH"
        else [VerifiableType(request.target_type)]
    )
    items: list[VerifiableItem] = []
    for target_type in types:
        items.extend(await repo.list_items(target_type, limit=request.sample_size))
    items.sort(key=lambda i: i.submitted_at, reverse=True)
    return items[: request.sample_size]


def evaluate_rules(
    rules: list[AutoApprovalRule], samples: list[VerifiableItem], now: Optional[datetime] = None
) -> RuleTestReport:
    """Score each rule against the samples without changing anything."""
    now = now or datetime.now(timezone.utc)
    total = len(samples)
    results = []

    for rule in rules:
        matches = []
        for item in samples:
            if not rule_applies(rule, item):
                continue
            reasons = quality.explain(item, rule.quality_thresholds, now)
            matches.append(
                SampleMatch(
                    item_id=str(item.id),
                    item_type=item.target_type,
                    matched=True,
                    qualified=not reasons,
                    score=quality.score(item, rule.quality_thresholds, now),
                    reasons=reasons,
                )
            )
        matched = len(matches)
        qualified = sum(1 for m in matches if m.qualified)
        results.append(
            RuleTestResult(
                rule_id=rule.id,
                rule_name=_rule_name(rule),
                matched=matched,
                qualified=qualified,
                match_rate=round(matched * 100.0 / total, 2) if total else 0.0,
                qualification_rate=round(qualified * 100.0 / matched, 2) if matched else 0.0,
                average_score=round(sum(m.score for m in matches) / matched, 2) if matched else 0.0,
                sample_matches=matches[:SAMPLE_MATCH_LIMIT],
            )
        )

    count = len(results) or 1
    overall = RuleTestOverall(
        total_matched=sum(r.matched for r in results),
        total_qualified=sum(r.qualified for r in results),
        average_match_rate=round(sum(r.match_rate for r in results) / count, 2),
        average_qualification_rate=round(sum(r.qualification_rate for r in results) / count, 2),
    )
    return RuleTestReport(
        test_id=f"test-{uuid.uuid4().hex[:12]}",
        total_samples=total,
        rules_executed=len(results),
        results=results,
        overall_stats=overall,
        recommendations=_recommendations(results, overall),
    )


async def run_rule_test(repo: VerificationRepository, request: RuleTestRequest) -> RuleTestReport:
    samples = await _load_samples(repo, request)
    report = evaluate_rules(request.rules, samples)
    log.info(
        "auto_approval.rules_tested",
        test_id=report.test_id,
        samples=report.total_samples,
        rules=report.rules_executed,
    )
    return report


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

async def compute_stats(
    repo: VerificationRepository, hours: int = 24, now: Optional[datetime] = None
) -> AutoApprovalStats:
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(hours=hours)

    by_rule: dict[str, int] = {}
    by_type: dict[str, int] = {}
    rows = await repo.auto_approval_counts(since)
    for rule_id, subtype in rows:
        by_rule[rule_id] = by_rule.get(rule_id, 0) + 1
        by_type[subtype] = by_type.get(subtype, 0) + 1

    overrides = await repo.list_overrides(since=since, limit=10_000)
    overridden = sum(len(o.target_ids) for o in overrides)
    total = len(rows)
    return AutoApprovalStats(
        window_hours=hours,
        total_auto_verified=total,
        total_overridden=overridden,
        override_rate=round(overridden * 100.0 / total, 2) if total else 0.0,
        by_rule=by_rule,
        by_type=by_type,
    )
