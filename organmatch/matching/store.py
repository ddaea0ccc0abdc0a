"""Match store — persisted match candidates and the idempotent upsert.

The write is a PostgreSQL INSERT … ON CONFLICT (recipient_id, donor_id)
DO UPDATE … WHERE status = 'pending'. Pending rows get refreshed scores,
approved/rejected rows are never touched, and the unique constraint keeps
concurrent passes from creating a second row for the same pair.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import case, delete, func, literal_column, null, or_, select, tuple_, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from organmatch.models.enums import MatchStatus, ProfileKind
from organmatch.models.match import MatchCandidate
from organmatch.models.profile import DonorProfile, RecipientProfile
from organmatch.profiles.repository import PROFILE_MODELS
from organmatch.schemas.matching import (
    CandidateMatch,
    MatchScore,
    UpsertOutcome,
    UpsertOutcomeKind,
)
from organmatch.verification.states import next_status

logger = logging.getLogger(__name__)

Pair = tuple[uuid.UUID, uuid.UUID]


class MatchDecisionError(ValueError):
    """A decision was requested for a match that is no longer pending."""


def _upsert_statement(candidate: CandidateMatch, notify_score_delta: Decimal) -> Any:
    score = candidate.score
    table = MatchCandidate.__table__
    stmt = pg_insert(MatchCandidate).values(
        recipient_id=candidate.recipient_id,
        donor_id=candidate.donor_id,
        urgency_score=score.urgency,
        location_score=score.location,
        wait_time_score=score.wait_time,
        age_gap_score=score.age_gap,
        total_score=score.total,
        status=MatchStatus.PENDING.value,
    )
    material_change = func.abs(stmt.excluded.total_score - table.c.total_score) >= notify_score_delta
    stmt = stmt.on_conflict_do_update(
        constraint="uq_matches_pair",
        set_={
            "urgency_score": stmt.excluded.urgency_score,
            "location_score": stmt.excluded.location_score,
            "wait_time_score": stmt.excluded.wait_time_score,
            "age_gap_score": stmt.excluded.age_gap_score,
            "total_score": stmt.excluded.total_score,
            "updated_at": func.now(),
            "scored_at": case((material_change, func.now()), else_=table.c.scored_at),
            # Re-arm notification when the score moved enough to tell both parties
            "notified_at": case((material_change, null()), else_=table.c.notified_at),
        },
        where=table.c.status == MatchStatus.PENDING.value,
    )
    # xmax = 0 only for freshly inserted tuples
    return stmt.returning(MatchCandidate.id, literal_column("(xmax = 0)").label("inserted"))


def classify(
    inserted: bool | None,
    prior_total: Decimal | None,
    new_total: Decimal,
    notify_score_delta: Decimal,
) -> UpsertOutcomeKind:
    """Decide what an upsert did from its RETURNING row and the pre-write snapshot.

    Args:
        inserted: RETURNING `(xmax = 0)`; None when no row came back (locked).
        prior_total: total_score read before the write; None if the row was unseen.
        new_total: total_score just written.
        notify_score_delta: Minimum change that counts as material.
    """
    if inserted is None:
        return UpsertOutcomeKind.LOCKED
    if inserted:
        return UpsertOutcomeKind.CREATED
    if prior_total is None:
        # Another pass inserted the row between our read and our write; it notifies.
        return UpsertOutcomeKind.UNCHANGED
    if abs(new_total - prior_total) >= notify_score_delta:
        return UpsertOutcomeKind.UPDATED
    return UpsertOutcomeKind.UNCHANGED


class MatchStore:
    """Stateless match persistence — AsyncSession passed per call."""

    async def load_existing(self, db: AsyncSession, pairs: Iterable[Pair]) -> dict[Pair, tuple[str, Decimal]]:
        """(status, total_score) for each already persisted pair."""
        pairs = list(pairs)
        if not pairs:
            return {}
        result = await db.execute(
            select(
                MatchCandidate.recipient_id,
                MatchCandidate.donor_id,
                MatchCandidate.status,
                MatchCandidate.total_score,
            ).where(tuple_(MatchCandidate.recipient_id, MatchCandidate.donor_id).in_(pairs))
        )
        return {(row[0], row[1]): (row[2], row[3]) for row in result.all()}

    async def _read_status(self, db: AsyncSession, pair: Pair) -> str | None:
        result = await db.execute(
            select(MatchCandidate.status).where(
                MatchCandidate.recipient_id == pair[0],
                MatchCandidate.donor_id == pair[1],
            )
        )
        return result.scalar_one_or_none()

    async def _execute_upsert(
        self,
        db: AsyncSession,
        candidate: CandidateMatch,
        notify_score_delta: Decimal,
        pair_timeout: float | None = None,
    ) -> tuple[uuid.UUID | None, bool | None]:
        async with db.begin_nested():
            result = await asyncio.wait_for(
                db.execute(_upsert_statement(candidate, notify_score_delta)), timeout=pair_timeout
            )
            row = result.first()
        if row is None:
            return None, None
        return row.id, bool(row.inserted)

    async def _upsert_one(
        self,
        db: AsyncSession,
        candidate: CandidateMatch,
        prior: tuple[str, Decimal] | None,
        notify_score_delta: Decimal,
        pair_timeout: float | None = None,
    ) -> UpsertOutcome:
        try:
            match_id, inserted = await self._execute_upsert(db, candidate, notify_score_delta, pair_timeout)
        except IntegrityError as exc:
            # Benign race against another writer: re-read and retry at most once
            status = await self._read_status(db, candidate.pair)
            if status is not None and status != MatchStatus.PENDING.value:
                logger.info("Pair %s decided concurrently (%s); discarding scores", candidate.pair, status)
                return UpsertOutcome(candidate=candidate, kind=UpsertOutcomeKind.LOCKED)
            logger.warning("Upsert conflict for pair %s, retrying once: %s", candidate.pair, exc.orig)
            try:
                match_id, inserted = await self._execute_upsert(db, candidate, notify_score_delta, pair_timeout)
            except IntegrityError as retry_exc:
                logger.error("Upsert for pair %s failed twice: %s", candidate.pair, retry_exc.orig)
                return UpsertOutcome(
                    candidate=candidate,
                    kind=UpsertOutcomeKind.SKIPPED,
                    reason=f"constraint violation: {retry_exc.orig}",
                )

        prior_total = prior[1] if prior is not None else None
        kind = classify(inserted, prior_total, candidate.score.total, notify_score_delta)
        return UpsertOutcome(candidate=candidate, kind=kind, match_id=match_id)

    async def upsert_candidates(
        self,
        db: AsyncSession,
        candidates: Sequence[CandidateMatch],
        notify_score_delta: Decimal = Decimal("1.00"),
        *,
        pair_timeout: float | None = None,
    ) -> list[UpsertOutcome]:
        """Write every candidate with the conflict-aware upsert.

        `pair_timeout` bounds each pair's statement, not the batch.
        A pair that overruns raises TimeoutError to the caller.

        Does not commit — the caller owns the transaction so a failure
        leaves nothing partially persisted. Candidates are written in
        (recipient_id, donor_id) order so concurrent passes lock rows in
        the same sequence.
        """
        existing = await self.load_existing(db, (c.pair for c in candidates))
        outcomes: list[UpsertOutcome] = []
        for candidate in sorted(candidates, key=lambda c: (str(c.recipient_id), str(c.donor_id))):
            outcome = await self._upsert_one(
                db, candidate, existing.get(candidate.pair), notify_score_delta, pair_timeout
            )
            outcomes.append(outcome)

        logger.info(
            "Upserted %d candidates: %s",
            len(outcomes),
            {kind.value: sum(1 for o in outcomes if o.kind == kind) for kind in UpsertOutcomeKind},
        )
        return outcomes

    # ── Reads ─────────────────────────────────────────────────────────

    async def get(self, db: AsyncSession, match_id: uuid.UUID) -> MatchCandidate | None:
        return await db.get(MatchCandidate, match_id)

    async def list_for_profile(self, db: AsyncSession, profile_id: uuid.UUID) -> list[MatchCandidate]:
        """Matches where the profile is the donor or the recipient, best first."""
        result = await db.execute(
            select(MatchCandidate)
            .where(or_(MatchCandidate.donor_id == profile_id, MatchCandidate.recipient_id == profile_id))
            .order_by(MatchCandidate.total_score.desc(), MatchCandidate.created_at)
        )
        return list(result.scalars().all())

    async def list_unnotified(self, db: AsyncSession, older_than: timedelta) -> list[CandidateMatch]:
        """Pending matches whose current scores were never delivered to both parties."""
        cutoff = datetime.now(UTC) - older_than
        result = await db.execute(
            select(MatchCandidate, RecipientProfile.user_id, DonorProfile.user_id)
            .join(RecipientProfile, RecipientProfile.id == MatchCandidate.recipient_id)
            .join(DonorProfile, DonorProfile.id == MatchCandidate.donor_id)
            .where(
                MatchCandidate.status == MatchStatus.PENDING.value,
                MatchCandidate.notified_at.is_(None),
                MatchCandidate.scored_at < cutoff,
            )
            .order_by(MatchCandidate.created_at)
        )
        return [
            CandidateMatch(
                recipient_id=match.recipient_id,
                donor_id=match.donor_id,
                recipient_user_id=recipient_user_id,
                donor_user_id=donor_user_id,
                score=MatchScore(
                    urgency=match.urgency_score,
                    location=match.location_score,
                    wait_time=match.wait_time_score,
                    age_gap=match.age_gap_score,
                    total=match.total_score,
                ),
            )
            for match, recipient_user_id, donor_user_id in result.all()
        ]

    # ── Writes outside the pass ───────────────────────────────────────

    async def mark_notified(self, db: AsyncSession, recipient_id: uuid.UUID, donor_id: uuid.UUID) -> None:
        await db.execute(
            update(MatchCandidate)
            .where(MatchCandidate.recipient_id == recipient_id, MatchCandidate.donor_id == donor_id)
            .values(notified_at=func.now())
        )

    async def decide(
        self,
        db: AsyncSession,
        match_id: uuid.UUID,
        decision: MatchStatus,
        decided_by: str,
    ) -> MatchCandidate | None:
        """Record a human approve/reject decision on a pending match.

        Approving also moves both profiles from verified to matched.
        Returns None if the match does not exist.

        Raises:
            MatchDecisionError: If the match was already decided.
            ValueError: If `decision` is PENDING, or a profile cannot move to matched.
        """
        if decision == MatchStatus.PENDING:
            msg = "A decision must be approved or rejected"
            raise ValueError(msg)

        match = await db.get(MatchCandidate, match_id, with_for_update=True)
        if match is None:
            return None
        if match.status != MatchStatus.PENDING.value:
            msg = f"Match {match_id} is already {match.status}"
            raise MatchDecisionError(msg)

        match.status = decision.value
        match.decided_by = decided_by
        match.decided_at = datetime.now(UTC)

        if decision == MatchStatus.APPROVED:
            for kind, profile_id in ((ProfileKind.DONOR, match.donor_id), (ProfileKind.RECIPIENT, match.recipient_id)):
                profile = await db.get(PROFILE_MODELS[kind], profile_id, with_for_update=True)
                if profile is not None:
                    profile.status = next_status(profile.status, "match").value

        await db.flush()
        logger.info("Match %s %s by %s", match_id, decision.value, decided_by)
        return match

    async def delete_for_profiles(self, db: AsyncSession, profile_ids: Sequence[uuid.UUID]) -> int:
        """Remove every match touching the given donor/recipient ids (admin/test teardown)."""
        if not profile_ids:
            return 0
        result = await db.execute(
            delete(MatchCandidate).where(
                or_(MatchCandidate.donor_id.in_(profile_ids), MatchCandidate.recipient_id.in_(profile_ids))
            )
        )
        return result.rowcount or 0


match_store = MatchStore()
