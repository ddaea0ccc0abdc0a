"""Match notifications — one in-app notification per side of a surfaced match.

Best-effort: runs in its own session after the match transaction has
committed, so a failure here never rolls back a match. Unsent matches keep
`notified_at` NULL and are picked up by `retry_unsent`.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from organmatch.admin.events import emit
from organmatch.config import settings
from organmatch.db.engine import async_session_factory
from organmatch.matching.store import MatchStore, match_store
from organmatch.models.enums import MatchStatus, NotificationType
from organmatch.models.match import MatchCandidate
from organmatch.models.notification import Notification
from organmatch.schemas.events import EventType, SystemEvent
from organmatch.schemas.matching import CandidateMatch

logger = logging.getLogger(__name__)


def _score_text(candidate: CandidateMatch) -> str:
    return f"{candidate.score.total:.2f}"


def build_match_notifications(candidate: CandidateMatch, updated: bool = False) -> list[Notification]:
    """Donor-side and recipient-side notifications for a new or re-scored match."""
    ntype = NotificationType.MATCH_UPDATED if updated else NotificationType.MATCH_FOUND
    verb = "updated" if updated else "found"
    data: dict[str, Any] = {
        "recipient_id": str(candidate.recipient_id),
        "donor_id": str(candidate.donor_id),
        "total_score": _score_text(candidate),
    }

    notifications: list[Notification] = []
    if candidate.recipient_user_id is not None:
        notifications.append(Notification(
            user_id=candidate.recipient_user_id,
            type=ntype.value,
            title=f"Potential donor match {verb}",
            message=(
                f"A compatible donor has been {verb} for you with a match score of "
                f"{_score_text(candidate)}. A doctor will review it before anything is confirmed."
            ),
            is_read=False,
            data=data,
        ))
    if candidate.donor_user_id is not None:
        notifications.append(Notification(
            user_id=candidate.donor_user_id,
            type=ntype.value,
            title=f"Potential recipient match {verb}",
            message=(
                f"Your donation profile matches a waiting recipient with a score of "
                f"{_score_text(candidate)}. A doctor will review it before anything is confirmed."
            ),
            is_read=False,
            data=data,
        ))
    return notifications


def build_decision_notifications(
    match: MatchCandidate,
    donor_user_id: uuid.UUID | None,
    recipient_user_id: uuid.UUID | None,
) -> list[Notification]:
    """Tell both parties a reviewer approved or rejected their match."""
    outcome = "approved" if match.status == MatchStatus.APPROVED.value else "not approved"
    data = {
        "match_id": str(match.id),
        "recipient_id": str(match.recipient_id),
        "donor_id": str(match.donor_id),
        "status": match.status,
    }
    return [
        Notification(
            user_id=user_id,
            type=NotificationType.MATCH_DECIDED.value,
            title=f"Match {outcome}",
            message=f"Your match was {outcome} after medical review.",
            is_read=False,
            data=data,
        )
        for user_id in (recipient_user_id, donor_user_id)
        if user_id is not None
    ]


class Notifier:
    """Writes notifications in a dedicated session per call."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        store: MatchStore | None = None,
    ) -> None:
        self._session_factory = session_factory or async_session_factory
        self._store = store or match_store

    async def notify(self, candidate: CandidateMatch, updated: bool = False) -> bool:
        """Notify both parties of a created or materially re-scored match.

        Returns True on success. Never raises — failures are logged and
        emitted so the retry sweep (not a new matching pass) can recover.
        """
        try:
            async with self._session_factory() as db:
                db.add_all(build_match_notifications(candidate, updated=updated))
                await self._store.mark_notified(db, candidate.recipient_id, candidate.donor_id)
                await db.commit()
        except Exception as exc:
            logger.exception(
                "Failed to notify match recipient=%s donor=%s",
                candidate.recipient_id,
                candidate.donor_id,
            )
            await emit(SystemEvent(
                event_type=EventType.NOTIFICATION_FAILED,
                profile_id=candidate.recipient_id,
                profile_kind="recipient",
                data={"donor_id": str(candidate.donor_id), "error": str(exc)},
                source_module="notifications.notifier",
            ))
            return False

        await emit(SystemEvent(
            event_type=EventType.NOTIFICATION_SENT,
            profile_id=candidate.recipient_id,
            profile_kind="recipient",
            data={"donor_id": str(candidate.donor_id), "updated": updated},
            source_module="notifications.notifier",
        ))
        return True

    async def notify_decision(
        self,
        match: MatchCandidate,
        donor_user_id: uuid.UUID | None,
        recipient_user_id: uuid.UUID | None,
    ) -> bool:
        """Best-effort decision notice; same failure contract as `notify`."""
        try:
            async with self._session_factory() as db:
                db.add_all(build_decision_notifications(match, donor_user_id, recipient_user_id))
                await db.commit()
        except Exception:
            logger.exception("Failed to send decision notifications for match %s", match.id)
            return False
        return True

    async def retry_unsent(self, db: AsyncSession) -> int:
        """Sweep: re-notify pending matches whose notification never landed.

        Only rows untouched for `notify_retry_after` seconds are picked up
        so an in-flight pass keeps ownership of its own notifications.
        Returns the number of matches successfully notified.
        """
        pending = await self._store.list_unnotified(
            db, older_than=timedelta(seconds=settings.matching.notify_retry_after)
        )
        sent = 0
        for candidate in pending:
            if await self.notify(candidate):
                sent += 1
        logger.info("Notification sweep: %d/%d matches notified", sent, len(pending))
        return sent

    # ── Reads for the profile-owning collaborator ─────────────────────

    async def list_unread(self, db: AsyncSession, user_id: uuid.UUID) -> list[Notification]:
        result = await db.execute(
            select(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .order_by(Notification.created_at.desc())
        )
        return list(result.scalars().all())

    async def mark_read(self, db: AsyncSession, notification_id: uuid.UUID) -> bool:
        result = await db.execute(
            update(Notification).where(Notification.id == notification_id).values(is_read=True)
        )
        return bool(result.rowcount)


notifier = Notifier()
