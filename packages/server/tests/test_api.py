"""
HTTP-level tests for the v1 API.

Services run against the in-memory fakes from ``fakes.py``; the dependency
providers in ``app.api.deps`` are swapped through ``app.dependency_overrides``.

Covers:
- Error envelope and status codes (400, 401, 403, 404, 409)
- camelCase request and response bodies
- Queue, decisions, batches, overrides, configuration
- Feedback and donor achievement access rules
- Intake
"""

from __future__ import annotations

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from app.api.deps import (
    get_achievement_engine,
    get_matcher,
    get_notifier,
    get_repository,
    get_verification_service,
)
from app.core.auth import AuthenticatedUser, get_authenticated_user
from app.core.database import get_session
from app.main import app
from app.services.achievements import AchievementEngine
from app.services.auto_approval import AutoApprovalMatcher, get_effective_config
from dms_shared.schemas.common import Role, VerifiableType, VerificationStatus

from fakes import make_item, make_response, make_user

BASE = "/api/v1"


class Caller:
    """Mutable stand-in for the authenticated user."""

    def __init__(self, auth: AuthenticatedUser):
        self.auth = auth

    def become(self, role: Role, **fields) -> AuthenticatedUser:
        self.auth = AuthenticatedUser(make_user(role, **fields))
        return self.auth


@pytest.fixture
def caller(coordinator_user) -> Caller:
    return Caller(coordinator_user)


@pytest.fixture
async def client(caller, service, repo, notifier, counter, achievement_store):
    async def _matcher():
        return AutoApprovalMatcher(await get_effective_config(repo), counter)

    app.dependency_overrides.update(
        {
            get_authenticated_user: lambda: caller.auth,
            get_verification_service: lambda: service,
            get_repository: lambda: repo,
            get_notifier: lambda: notifier,
            get_achievement_engine: lambda: AchievementEngine(achievement_store),
            get_matcher: _matcher,
        }
    )
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def seed(repo, *items):
    for item in items:
        await repo.add_item(item)
    return items


# ---------------------------------------------------------------------------
# Authentication and roles
# ---------------------------------------------------------------------------

class TestAccess:
    async def test_unauthenticated(self, client):
        async def _no_session():
            yield None

        del app.dependency_overrides[get_authenticated_user]
        app.dependency_overrides[get_session] = _no_session
        resp = await client.get(f"{BASE}/verification/assessments/queue")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "AUTHENTICATION_REQUIRED"

    async def test_field_roles_cannot_open_queue(self, client, caller):
        for role in (Role.ASSESSOR, Role.RESPONDER, Role.DONOR):
            caller.become(role)
            resp = await client.get(f"{BASE}/verification/assessments/queue")
            assert resp.status_code == 403
            assert resp.json()["error"] == {
                "code": "PERMISSION_DENIED",
                "message": "Coordinator access required",
                "status": 403,
            }

    async def test_unknown_queue(self, client):
        resp = await client.get(f"{BASE}/verification/commitments/queue")
        assert resp.status_code == 422

    async def test_body_cannot_impersonate(self, client, repo):
        (item,) = await seed(repo, make_item())
        resp = await client.post(
            f"{BASE}/verification/assessments/{item.id}/approve",
            json={"coordinatorId": str(uuid.uuid4())},
        )
        assert resp.status_code == 403
        assert repo.items[item.id].verification_status == VerificationStatus.PENDING


# ---------------------------------------------------------------------------
# Queue and single decisions
# ---------------------------------------------------------------------------

class TestQueueEndpoints:
    async def test_queue_page(self, client, repo):
        await seed(repo, make_item(), make_item(subtype="WASH"), make_item(verification_status=VerificationStatus.VERIFIED))
        resp = await client.get(f"{BASE}/verification/assessments/queue", params={"pageSize": 1})
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["queue"]) == 1
        assert data["queue"][0]["item"]["verificationStatus"] == "PENDING"
        assert data["queueStats"]["totalPending"] == 2
        assert data["pagination"] == {"page": 1, "pageSize": 1, "totalPages": 2, "totalCount": 2}

    async def test_queue_subtype_filter(self, client, repo):
        await seed(repo, make_item(), make_item(subtype="WASH"))
        resp = await client.get(f"{BASE}/verification/assessments/queue", params={"subtype": "wash"})
        assert [q["item"]["subtype"] for q in resp.json()["queue"]] == ["WASH"]

    async def test_get_item(self, client, repo):
        (item,) = await seed(repo, make_response())
        resp = await client.get(f"{BASE}/verification/responses/{item.id}")
        assert resp.status_code == 200
        assert resp.json()["targetType"] == "RESPONSE"

    async def test_get_item_wrong_queue(self, client, repo):
        (item,) = await seed(repo, make_response())
        resp = await client.get(f"{BASE}/verification/assessments/{item.id}")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_approve_without_body(self, client, repo, notifier):
        (item,) = await seed(repo, make_item())
        resp = await client.post(f"{BASE}/verification/assessments/{item.id}/approve")
        assert resp.status_code == 200
        assert resp.json()["item"]["verificationStatus"] == "VERIFIED"
        assert [r for r, _, _ in notifier.sent] == [item.submitter_id]

    async def test_approve_twice_conflicts(self, client, repo):
        (item,) = await seed(repo, make_item())
        await client.post(f"{BASE}/verification/assessments/{item.id}/approve")
        resp = await client.post(f"{BASE}/verification/assessments/{item.id}/approve")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INVALID_STATE_TRANSITION"

    async def test_reject_requires_comments(self, client, repo):
        (item,) = await seed(repo, make_item())
        resp = await client.post(
            f"{BASE}/verification/assessments/{item.id}/reject",
            json={"rejectionReason": "MISSING_INFO", "rejectionComments": "   "},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": {"code": "VALIDATION_ERROR", "message": "Comments Required", "status": 400}}
        assert repo.items[item.id].verification_status == VerificationStatus.PENDING

    async def test_reject_creates_feedback(self, client, repo):
        (item,) = await seed(repo, make_response())
        resp = await client.post(
            f"{BASE}/verification/responses/{item.id}/reject",
            json={"rejectionReason": "INSUFFICIENT_EVIDENCE", "rejectionComments": "No delivery photos", "notifyResponder": False},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["item"]["verificationStatus"] == "REJECTED"
        assert data["feedback"]["type"] == "REJECTION"
        assert data["feedback"]["comments"] == "No delivery photos"


# ---------------------------------------------------------------------------
# Batches and overrides
# ---------------------------------------------------------------------------

class TestBatchEndpoints:
    async def test_batch_approve(self, client, repo):
        pending, done = await seed(repo, make_item(), make_item(verification_status=VerificationStatus.REJECTED))
        resp = await client.post(
            f"{BASE}/verification/assessments/batch/approve",
            json={"assessmentIds": [str(pending.id), str(done.id)]},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert (data["succeeded"], data["skipped"], data["failed"]) == (1, 1, 0)
        assert data["progress"]["processed"] == 2

    async def test_batch_reject_requires_comments(self, client, repo):
        (item,) = await seed(repo, make_response())
        resp = await client.post(
            f"{BASE}/verification/responses/batch/reject",
            json={"responseIds": [str(item.id)], "rejectionComments": ""},
        )
        assert resp.status_code == 400

    async def test_empty_batch(self, client):
        resp = await client.post(f"{BASE}/verification/assessments/batch/approve", json={"assessmentIds": []})
        assert resp.status_code == 422

    async def test_batch_progress_idle(self, client):
        resp = await client.get(f"{BASE}/verification/assessments/batch/progress")
        assert resp.status_code == 200
        assert resp.json()["active"] is False


class TestOverrideEndpoints:
    async def test_override_reverts_auto_verified(self, client, repo):
        (item,) = await seed(
            repo, make_item(verification_status=VerificationStatus.AUTO_VERIFIED, auto_approval_rule_id="r1")
        )
        resp = await client.post(
            f"{BASE}/verification/auto-approval/override",
            json={
                "targetType": "ASSESSMENT",
                "targetIds": [str(item.id)],
                "reason": "QUALITY_CONCERN",
                "justification": "GPS fix looks wrong",
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["overrides"]) == 1
        assert data["overrides"][0]["originalStatus"] == "AUTO_VERIFIED"
        assert data["items"][0]["verificationStatus"] == "PENDING"

        log = await client.get(f"{BASE}/verification/auto-approval/overrides")
        assert [o["justification"] for o in log.json()] == ["GPS fix looks wrong"]

    async def test_override_requires_justification(self, client, repo):
        (item,) = await seed(repo, make_item(verification_status=VerificationStatus.AUTO_VERIFIED))
        resp = await client.post(
            f"{BASE}/verification/auto-approval/override",
            json={"targetType": "ASSESSMENT", "targetIds": [str(item.id)], "justification": " "},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Justification Required"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestConfigEndpoints:
    async def test_defaults(self, client):
        resp = await client.get(f"{BASE}/verification/auto-approval/config")
        assert resp.status_code == 200
        data = resp.json()
        assert data["enabled"] is False
        assert data["version"] == 0
        assert data["globalSettings"]["maxAutoApprovalsPerHour"] == 50

    async def test_update_creates_version(self, client, caller):
        body = {
            "enabled": True,
            "rules": [
                {
                    "id": "health-fast-track",
                    "type": "ASSESSMENT",
                    "assessmentType": "HEALTH",
                    "qualityThresholds": {"completenessPercentage": 90, "gpsAccuracyMeters": 10},
                }
            ],
        }
        resp = await client.put(f"{BASE}/verification/auto-approval/config", json=body)
        assert resp.status_code == 200
        data = resp.json()
        assert data["version"] == 1
        assert data["updatedBy"] == str(caller.auth.user_id)
        assert data["rules"][0]["createdBy"] == str(caller.auth.user_id)

        again = await client.put(f"{BASE}/verification/auto-approval/config", json={"enabled": False})
        assert again.json()["version"] == 2

    async def test_invalid_rule_rejected(self, client):
        body = {"rules": [{"id": "r1", "type": "ASSESSMENT", "responseType": "FOOD"}]}
        resp = await client.put(f"{BASE}/verification/auto-approval/config", json=body)
        assert resp.status_code == 422

    async def test_dry_run_changes_nothing(self, client, repo):
        (item,) = await seed(repo, make_item(data={"hasFunctionalClinic": True}))
        body = {"rules": [{"id": "r1", "type": "ASSESSMENT", "assessmentType": "HEALTH"}], "targetType": "ASSESSMENT"}
        resp = await client.post(f"{BASE}/verification/auto-approval/test", json=body)
        assert resp.status_code == 200
        assert repo.items[item.id].verification_status == VerificationStatus.PENDING
        assert repo.configs == []


# ---------------------------------------------------------------------------
# Feedback and donors
# ---------------------------------------------------------------------------

class TestFeedbackEndpoints:
    async def _rejected(self, client, repo, submitter_id):
        (item,) = await seed(repo, make_item(submitter_id=submitter_id))
        resp = await client.post(
            f"{BASE}/verification/assessments/{item.id}/reject",
            json={"rejectionComments": "Population figures missing"},
        )
        return resp.json()["feedback"]

    async def test_submitter_sees_own_feedback(self, client, repo, caller):
        assessor = make_user(Role.ASSESSOR)
        feedback = await self._rejected(client, repo, assessor.id)
        await self._rejected(client, repo, uuid.uuid4())

        caller.auth = AuthenticatedUser(assessor)
        resp = await client.get(f"{BASE}/feedback")
        assert [f["id"] for f in resp.json()] == [feedback["id"]]

        read = await client.post(f"{BASE}/feedback/{feedback['id']}/read")
        assert read.json()["isRead"] is True

    async def test_other_submitter_forbidden(self, client, repo, caller):
        feedback = await self._rejected(client, repo, uuid.uuid4())
        caller.become(Role.ASSESSOR)
        resp = await client.post(f"{BASE}/feedback/{feedback['id']}/resolve")
        assert resp.status_code == 403

    async def test_missing_feedback(self, client):
        resp = await client.post(f"{BASE}/feedback/{uuid.uuid4()}/read")
        assert resp.status_code == 404


class TestDonorEndpoints:
    async def test_donor_reads_own_achievements(self, client, repo, caller):
        donor = caller.become(Role.DONOR)
        await seed(repo, make_response(donor_id=donor.user_id, verification_status=VerificationStatus.VERIFIED))
        assert (await client.get(f"{BASE}/donors/{donor.user_id}/achievements")).json() == []

        stats = await client.get(f"{BASE}/donors/{donor.user_id}/verification-stats")
        assert stats.json()["totalVerifiedDeliveries"] == 1

    async def test_donor_cannot_read_other_donor(self, client, caller):
        caller.become(Role.DONOR)
        resp = await client.get(f"{BASE}/donors/{uuid.uuid4()}/achievements")
        assert resp.status_code == 403

    async def test_calculate_is_idempotent(self, client, repo):
        donor_id = uuid.uuid4()
        await seed(repo, make_response(donor_id=donor_id, verification_status=VerificationStatus.VERIFIED))
        first = await client.post(f"{BASE}/donors/{donor_id}/achievements/calculate")
        second = await client.post(f"{BASE}/donors/{donor_id}/achievements/calculate")
        assert first.status_code == 200
        assert [a["type"] for a in first.json()["newAchievements"]] == ["FIRST_VERIFIED_DELIVERY"]
        assert second.json()["newAchievements"] == []


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------

class TestIntakeEndpoints:
    async def test_assessment_queued(self, client, repo, caller):
        caller.become(Role.ASSESSOR)
        resp = await client.post(
            f"{BASE}/assessments",
            json={"assessmentType": "SHELTER", "data": {"shelterCondition": "damaged"}, "gpsAccuracyMeters": 4},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["autoVerified"] is False
        assert data["item"]["verificationStatus"] == "PENDING"
        assert len(repo.items) == 1

    async def test_donor_cannot_submit(self, client, caller):
        caller.become(Role.DONOR)
        resp = await client.post(f"{BASE}/assessments", json={"assessmentType": "HEALTH"})
        assert resp.status_code == 403

    async def test_response_by_responder(self, client, repo, caller):
        caller.become(Role.RESPONDER)
        resp = await client.post(
            f"{BASE}/responses",
            json={"responseType": "FOOD", "donorId": str(uuid.uuid4()), "commitmentId": str(uuid.uuid4()), "beneficiariesServed": 25},
        )
        assert resp.status_code == 201
        item = next(iter(repo.items.values()))
        assert item.target_type == VerifiableType.RESPONSE
        assert item.beneficiaries_served == 25

    async def test_notifications(self, client, repo, caller, notifier):
        assessor = make_user(Role.ASSESSOR)
        (item,) = await seed(repo, make_item(submitter_id=assessor.id))
        await client.post(f"{BASE}/verification/assessments/{item.id}/approve")
        caller.auth = AuthenticatedUser(assessor)
        resp = await client.get(f"{BASE}/notifications")
        assert resp.status_code == 200
        assert len(resp.json()) == 1
