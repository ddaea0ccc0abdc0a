"""Tests for the admin matching API.

Covers:
- HTTP Basic Auth (503 unconfigured, 401 missing/wrong, 200 correct)
- Re-run, per-profile matches, decisions, verification
- Notification retry/read endpoints and cleanup
"""

from __future__ import annotations

import base64
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from matching_factories import make_candidate
from organmatch.admin.web import router
from organmatch.config import SecuritySettings
from organmatch.db.engine import get_session
from organmatch.matching.store import MatchDecisionError
from organmatch.models.enums import MatchStatus, ProfileKind
from organmatch.schemas.matching import MatchingPassResult, PassSweepResult

# ── Fixtures ─────────────────────────────────────────────────────────


def _make_auth_header(username: str = "dr-rao", password: str = "testpass123") -> dict[str, str]:
    """Build HTTP Basic Auth header."""
    credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {credentials}"}


def _make_match(status: str = "pending"):
    match = MagicMock()
    match.id = uuid.uuid4()
    match.recipient_id = uuid.uuid4()
    match.donor_id = uuid.uuid4()
    match.urgency_score = 70
    match.location_score = 80
    match.wait_time_score = 70
    match.age_gap_score = 100
    match.total_score = Decimal("76.00")
    match.status = status
    match.decided_by = None
    match.decided_at = None
    match.created_at = datetime(2026, 10, 1, tzinfo=UTC)
    return match


@pytest.fixture
def mock_settings():
    """Patch settings to use test password."""
    with patch("organmatch.admin.auth.settings") as mock:
        mock.security.admin_web_password = "testpass123"
        mock.security.reviewer_names = []
        yield mock


@pytest.fixture
def mock_services():
    """Patch every collaborator the routes call."""
    with (
        patch("organmatch.admin.web.matching_service") as mock_matching,
        patch("organmatch.admin.web.match_store") as mock_store,
        patch("organmatch.admin.web.notifier") as mock_notifier,
        patch("organmatch.admin.web.verification_service") as mock_verification,
        patch("organmatch.admin.web.settings") as mock_web_settings,
        patch("organmatch.admin.web.emit", new_callable=AsyncMock) as mock_emit,
        patch("organmatch.admin.web.sweep_missed_passes", new_callable=AsyncMock) as mock_sweep,
    ):
        mock_matching.run_matching_pass = AsyncMock(return_value=MatchingPassResult(scope="all"))
        mock_matching.decide_match = AsyncMock(return_value=None)
        mock_store.list_for_profile = AsyncMock(return_value=[])
        mock_store.delete_for_profiles = AsyncMock(return_value=0)
        mock_notifier.retry_unsent = AsyncMock(return_value=0)
        mock_notifier.list_unread = AsyncMock(return_value=[])
        mock_notifier.mark_read = AsyncMock(return_value=True)
        mock_verification.verify_profile = AsyncMock(return_value=None)
        mock_web_settings.is_production = False
        mock_sweep.return_value = PassSweepResult()
        yield {
            "sweep": mock_sweep,
            "matching": mock_matching,
            "store": mock_store,
            "notifier": mock_notifier,
            "verification": mock_verification,
            "settings": mock_web_settings,
            "emit": mock_emit,
        }


@pytest.fixture
def mock_db():
    return AsyncMock()


@pytest.fixture
def client(mock_settings, mock_services, mock_db):
    """Create test client with all mocks in place."""
    test_app = FastAPI()
    test_app.include_router(router)

    async def fake_session():
        yield mock_db

    test_app.dependency_overrides[get_session] = fake_session
    return TestClient(test_app)


# ── Auth ─────────────────────────────────────────────────────────────


class TestAuth:
    def test_401_without_credentials(self, client):
        resp = client.post("/admin/matching/run", json={})
        assert resp.status_code == 401

    def test_401_wrong_password(self, client):
        resp = client.post("/admin/matching/run", json={}, headers=_make_auth_header(password="wrong"))
        assert resp.status_code == 401

    def test_200_correct_credentials(self, client):
        resp = client.post("/admin/matching/run", json={}, headers=_make_auth_header())
        assert resp.status_code == 200

    def test_503_when_password_unset(self, client, mock_settings):
        mock_settings.security.admin_web_password = ""
        resp = client.post("/admin/matching/run", json={}, headers=_make_auth_header())
        assert resp.status_code == 503

    def test_401_blank_username(self, client, mock_services):
        resp = client.post("/admin/matching/run", json={}, headers=_make_auth_header(username="   "))
        assert resp.status_code == 401
        mock_services["matching"].run_matching_pass.assert_not_awaited()

    def test_reviewer_name_is_normalized(self, client, mock_services):
        resp = client.post("/admin/matching/run", json={}, headers=_make_auth_header(username=" Dr-Rao "))
        assert resp.status_code == 200
        assert mock_services["matching"].run_matching_pass.await_args.kwargs["actor_id"] == "dr-rao"

    def test_403_outside_reviewer_allowlist(self, client, mock_settings, mock_services):
        mock_settings.security.reviewer_names = ["dr-rao", "dr-iyer"]
        resp = client.post("/admin/matching/run", json={}, headers=_make_auth_header(username="intern"))
        assert resp.status_code == 403
        mock_services["matching"].run_matching_pass.assert_not_awaited()

    def test_allowlisted_reviewer_accepted(self, client, mock_settings):
        mock_settings.security.reviewer_names = ["dr-rao", "dr-iyer"]
        resp = client.post("/admin/matching/run", json={}, headers=_make_auth_header(username="dr-rao"))
        assert resp.status_code == 200

    def test_reviewer_list_parsing(self):
        assert SecuritySettings(admin_reviewers=" Dr-Rao, ,dr-iyer").reviewer_names == ["dr-rao", "dr-iyer"]
        assert SecuritySettings(admin_reviewers="").reviewer_names == []


# ── Re-run ───────────────────────────────────────────────────────────


class TestRerun:
    def test_all_recipients(self, client, mock_services, mock_db):
        candidate = make_candidate("76.00")
        mock_services["matching"].run_matching_pass.return_value = MatchingPassResult(
            scope="all", candidates=[candidate], created=1
        )

        resp = client.post("/admin/matching/run", json={}, headers=_make_auth_header())

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["created"] == 1
        assert body["candidates"][0]["total_score"] == 76.0
        args, kwargs = mock_services["matching"].run_matching_pass.await_args
        assert args[0] is mock_db
        assert args[1].recipient_id is None
        assert kwargs["actor_id"] == "dr-rao"

    def test_single_recipient(self, client, mock_services):
        recipient_id = uuid.uuid4()
        resp = client.post(
            "/admin/matching/run", json={"recipient_id": str(recipient_id)}, headers=_make_auth_header()
        )
        assert resp.status_code == 200
        assert mock_services["matching"].run_matching_pass.await_args.args[1].recipient_id == recipient_id

    def test_failed_pass_is_503_with_body(self, client, mock_services):
        mock_services["matching"].run_matching_pass.return_value = MatchingPassResult(
            scope="all", error="profile load failed: OperationalError: down"
        )

        resp = client.post("/admin/matching/run", json={}, headers=_make_auth_header())

        assert resp.status_code == 503
        assert resp.json()["success"] is False
        assert "profile load failed" in resp.json()["error"]


# ── Matches and decisions ────────────────────────────────────────────


class TestProfileMatches:
    def test_lists_matches(self, client, mock_services):
        match = _make_match()
        mock_services["store"].list_for_profile.return_value = [match]
        profile_id = match.recipient_id

        resp = client.get(f"/admin/matching/profiles/{profile_id}/matches", headers=_make_auth_header())

        assert resp.status_code == 200
        body = resp.json()
        assert body["profile_id"] == str(profile_id)
        assert body["matches"][0]["total_score"] == 76.0
        assert body["matches"][0]["status"] == "pending"

    def test_invalid_uuid(self, client):
        resp = client.get("/admin/matching/profiles/not-a-uuid/matches", headers=_make_auth_header())
        assert resp.status_code == 422


class TestDecision:
    def test_approve(self, client, mock_services):
        match = _make_match(status="approved")
        mock_services["matching"].decide_match.return_value = match

        resp = client.post(
            f"/admin/matching/matches/{match.id}/decision", json={"decision": "approved"}, headers=_make_auth_header()
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"
        args, kwargs = mock_services["matching"].decide_match.await_args
        assert args[2] == MatchStatus.APPROVED
        assert kwargs["decided_by"] == "dr-rao"

    def test_not_found(self, client):
        resp = client.post(
            f"/admin/matching/matches/{uuid.uuid4()}/decision", json={"decision": "rejected"}, headers=_make_auth_header()
        )
        assert resp.status_code == 404

    def test_already_decided_is_conflict(self, client, mock_services):
        mock_services["matching"].decide_match.side_effect = MatchDecisionError("Match x is already approved")
        resp = client.post(
            f"/admin/matching/matches/{uuid.uuid4()}/decision", json={"decision": "rejected"}, headers=_make_auth_header()
        )
        assert resp.status_code == 409

    def test_pending_is_bad_request(self, client, mock_services):
        mock_services["matching"].decide_match.side_effect = ValueError("A decision must be approved or rejected")
        resp = client.post(
            f"/admin/matching/matches/{uuid.uuid4()}/decision", json={"decision": "pending"}, headers=_make_auth_header()
        )
        assert resp.status_code == 400

    def test_unknown_decision(self, client):
        resp = client.post(
            f"/admin/matching/matches/{uuid.uuid4()}/decision", json={"decision": "maybe"}, headers=_make_auth_header()
        )
        assert resp.status_code == 422


# ── Verification ─────────────────────────────────────────────────────


class TestVerify:
    def test_verifies(self, client, mock_services, mock_db):
        profile = MagicMock()
        profile.id = uuid.uuid4()
        profile.status = "verified"
        profile.verified_at = datetime(2026, 10, 19, tzinfo=UTC)
        profile.verified_by = "dr-rao"
        mock_services["verification"].verify_profile.return_value = profile

        resp = client.post(
            f"/admin/matching/profiles/donor/{profile.id}/verify", json={"notes": "docs ok"}, headers=_make_auth_header()
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "verified"
        mock_services["verification"].verify_profile.assert_awaited_once_with(
            mock_db, ProfileKind.DONOR, profile.id, verified_by="dr-rao", notes="docs ok"
        )

    def test_not_found(self, client):
        resp = client.post(f"/admin/matching/profiles/recipient/{uuid.uuid4()}/verify", json={}, headers=_make_auth_header())
        assert resp.status_code == 404

    def test_invalid_transition(self, client, mock_services):
        mock_services["verification"].verify_profile.side_effect = ValueError("Invalid transition: incomplete --verify--> ???")
        resp = client.post(f"/admin/matching/profiles/donor/{uuid.uuid4()}/verify", json={}, headers=_make_auth_header())
        assert resp.status_code == 409

    def test_unknown_kind(self, client):
        resp = client.post(f"/admin/matching/profiles/hospital/{uuid.uuid4()}/verify", json={}, headers=_make_auth_header())
        assert resp.status_code == 422


class TestVerificationSweep:
    def test_runs_owed_passes_as_reviewer(self, client, mock_services):
        mock_services["sweep"].return_value = PassSweepResult(owed=3, completed=2, failed=["donor:abc"])

        resp = client.post("/admin/matching/verification/sweep", headers=_make_auth_header())

        assert resp.status_code == 200
        assert resp.json() == {"owed": 3, "completed": 2, "failed": ["donor:abc"]}
        mock_services["sweep"].assert_awaited_once_with(actor_id="dr-rao")

    def test_requires_auth(self, client, mock_services):
        resp = client.post("/admin/matching/verification/sweep")
        assert resp.status_code == 401
        mock_services["sweep"].assert_not_awaited()


# ── Notifications ────────────────────────────────────────────────────


class TestNotifications:
    def test_retry(self, client, mock_services):
        mock_services["notifier"].retry_unsent.return_value = 3
        resp = client.post("/admin/matching/notifications/retry", headers=_make_auth_header())
        assert resp.status_code == 200
        assert resp.json() == {"notified": 3}

    def test_unread(self, client, mock_services):
        notification = MagicMock()
        notification.id = uuid.uuid4()
        notification.type = "match_found"
        notification.title = "Potential donor match found"
        notification.message = "..."
        notification.is_read = False
        notification.data = {"total_score": "76.00"}
        notification.created_at = datetime(2026, 10, 19, tzinfo=UTC)
        mock_services["notifier"].list_unread.return_value = [notification]
        user_id = uuid.uuid4()

        resp = client.get(f"/admin/matching/users/{user_id}/notifications", headers=_make_auth_header())

        assert resp.status_code == 200
        assert resp.json()["notifications"][0]["type"] == "match_found"

    def test_mark_read(self, client):
        resp = client.post(f"/admin/matching/notifications/{uuid.uuid4()}/read", headers=_make_auth_header())
        assert resp.status_code == 200
        assert resp.json() == {"is_read": True}

    def test_mark_read_missing(self, client, mock_services):
        mock_services["notifier"].mark_read.return_value = False
        resp = client.post(f"/admin/matching/notifications/{uuid.uuid4()}/read", headers=_make_auth_header())
        assert resp.status_code == 404


# ── Cleanup ──────────────────────────────────────────────────────────


class TestCleanup:
    def test_removes_matches(self, client, mock_services, mock_db):
        ids = [uuid.uuid4(), uuid.uuid4()]
        mock_services["store"].delete_for_profiles.return_value = 4

        resp = client.post("/admin/matching/cleanup", json={"profile_ids": [str(i) for i in ids]}, headers=_make_auth_header())

        assert resp.status_code == 200
        assert resp.json() == {"removed": 4}
        mock_services["store"].delete_for_profiles.assert_awaited_once_with(mock_db, ids)
        assert mock_services["emit"].await_args.args[0].data["removed"] == 4

    def test_empty_ids_rejected(self, client):
        resp = client.post("/admin/matching/cleanup", json={"profile_ids": []}, headers=_make_auth_header())
        assert resp.status_code == 422

    def test_forbidden_in_production(self, client, mock_services):
        mock_services["settings"].is_production = True
        resp = client.post("/admin/matching/cleanup", json={"profile_ids": [str(uuid.uuid4())]}, headers=_make_auth_header())
        assert resp.status_code == 403
        mock_services["store"].delete_for_profiles.assert_not_awaited()
