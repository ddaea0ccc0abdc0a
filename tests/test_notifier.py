"""Tests for match notifications — content, failure isolation, retry sweep."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from matching_factories import make_candidate
from organmatch.models.enums import MatchStatus, NotificationType
from organmatch.notifications.notifier import (
    Notifier,
    build_decision_notifications,
    build_match_notifications,
)
from organmatch.schemas.events import EventType


# ── Helpers ──────────────────────────────────────────────────────────


def _make_session():
    session = AsyncMock()
    session.add_all = MagicMock()
    return session


def _make_factory(session):
    """async_sessionmaker stand-in yielding `session`."""
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


def _make_store():
    store = MagicMock()
    store.mark_notified = AsyncMock()
    store.list_unnotified = AsyncMock(return_value=[])
    return store


# ── Builders ─────────────────────────────────────────────────────────


class TestBuildMatchNotifications:
    def test_one_per_party(self):
        candidate = make_candidate("76.00")
        notifications = build_match_notifications(candidate)

        assert [n.user_id for n in notifications] == [candidate.recipient_user_id, candidate.donor_user_id]
        assert all(n.type == NotificationType.MATCH_FOUND.value for n in notifications)
        assert all(n.is_read is False for n in notifications)
        assert "76.00" in notifications[0].message
        assert notifications[0].data == {
            "recipient_id": str(candidate.recipient_id),
            "donor_id": str(candidate.donor_id),
            "total_score": "76.00",
        }

    def test_updated_wording(self):
        notifications = build_match_notifications(make_candidate(), updated=True)
        assert all(n.type == NotificationType.MATCH_UPDATED.value for n in notifications)
        assert "updated" in notifications[0].title

    def test_missing_user_skipped(self):
        notifications = build_match_notifications(make_candidate(donor_user_id=None))
        assert len(notifications) == 1


class TestBuildDecisionNotifications:
    def test_approved(self):
        match = MagicMock(id=uuid.uuid4(), recipient_id=uuid.uuid4(), donor_id=uuid.uuid4(), status="approved")
        donor_user, recipient_user = uuid.uuid4(), uuid.uuid4()

        notifications = build_decision_notifications(match, donor_user, recipient_user)

        assert [n.user_id for n in notifications] == [recipient_user, donor_user]
        assert notifications[0].title == "Match approved"
        assert notifications[0].data["status"] == MatchStatus.APPROVED.value

    def test_rejected(self):
        match = MagicMock(id=uuid.uuid4(), recipient_id=uuid.uuid4(), donor_id=uuid.uuid4(), status="rejected")
        notifications = build_decision_notifications(match, None, uuid.uuid4())
        assert len(notifications) == 1
        assert notifications[0].title == "Match not approved"


# ── Notifier.notify ──────────────────────────────────────────────────


class TestNotify:
    @pytest.mark.asyncio()
    async def test_writes_marks_and_commits(self):
        session = _make_session()
        store = _make_store()
        candidate = make_candidate()
        notifier = Notifier(_make_factory(session), store)

        with patch("organmatch.notifications.notifier.emit", new_callable=AsyncMock) as mock_emit:
            assert await notifier.notify(candidate) is True

        added = session.add_all.call_args.args[0]
        assert len(added) == 2
        store.mark_notified.assert_awaited_once_with(session, candidate.recipient_id, candidate.donor_id)
        session.commit.assert_awaited_once()
        assert mock_emit.await_args.args[0].event_type == EventType.NOTIFICATION_SENT

    @pytest.mark.asyncio()
    async def test_failure_returns_false_and_emits(self):
        session = _make_session()
        session.commit = AsyncMock(side_effect=RuntimeError("smtp relay down"))
        notifier = Notifier(_make_factory(session), _make_store())

        with patch("organmatch.notifications.notifier.emit", new_callable=AsyncMock) as mock_emit:
            assert await notifier.notify(make_candidate()) is False

        event = mock_emit.await_args.args[0]
        assert event.event_type == EventType.NOTIFICATION_FAILED
        assert "smtp relay down" in event.data["error"]

    @pytest.mark.asyncio()
    async def test_decision_failure_does_not_raise(self):
        session = _make_session()
        session.commit = AsyncMock(side_effect=RuntimeError("db gone"))
        notifier = Notifier(_make_factory(session), _make_store())
        match = MagicMock(id=uuid.uuid4(), recipient_id=uuid.uuid4(), donor_id=uuid.uuid4(), status="approved")

        assert await notifier.notify_decision(match, uuid.uuid4(), uuid.uuid4()) is False


# ── Retry sweep and reads ────────────────────────────────────────────


class TestRetryUnsent:
    @pytest.mark.asyncio()
    async def test_counts_successes(self):
        store = _make_store()
        store.list_unnotified = AsyncMock(return_value=[make_candidate(), make_candidate(), make_candidate()])
        notifier = Notifier(_make_factory(_make_session()), store)
        db = AsyncMock()

        with patch.object(notifier, "notify", AsyncMock(side_effect=[True, False, True])):
            assert await notifier.retry_unsent(db) == 2

        assert store.list_unnotified.await_args.args[0] is db
        assert store.list_unnotified.await_args.kwargs["older_than"].total_seconds() > 0

    @pytest.mark.asyncio()
    async def test_nothing_pending(self):
        notifier = Notifier(_make_factory(_make_session()), _make_store())
        assert await notifier.retry_unsent(AsyncMock()) == 0


class TestReads:
    @pytest.mark.asyncio()
    async def test_list_unread(self):
        rows = [MagicMock(), MagicMock()]
        db = AsyncMock()
        result = MagicMock()
        result.scalars.return_value.all.return_value = rows
        db.execute = AsyncMock(return_value=result)

        assert await Notifier(_make_factory(_make_session()), _make_store()).list_unread(db, uuid.uuid4()) == rows

    @pytest.mark.asyncio()
    async def test_mark_read_missing(self):
        db = AsyncMock()
        db.execute = AsyncMock(return_value=MagicMock(rowcount=0))
        assert await Notifier(_make_factory(_make_session()), _make_store()).mark_read(db, uuid.uuid4()) is False

    @pytest.mark.asyncio()
    async def test_mark_read(self):
        db = AsyncMock()
        db.execute = AsyncMock(return_value=MagicMock(rowcount=1))
        assert await Notifier(_make_factory(_make_session()), _make_store()).mark_read(db, uuid.uuid4()) is True
