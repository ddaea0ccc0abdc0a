"""Matching pass — load verified profiles, rank, persist, notify.

One pass is one unit of work. Correctness under concurrent passes relies on
the store's upsert and unique constraint only; nothing here takes a lock.
A pass never raises to its caller: failures are reported in
MatchingPassResult.error.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from organmatch.admin.events import emit
from organmatch.config import MatchingSettings, settings
from organmatch.db.retry import with_retry
from organmatch.matching.engine import rank_candidates
from organmatch.matching.store import MatchStore, match_store
from organmatch.models.enums import MatchStatus, ProfileKind
from organmatch.models.match import MatchCandidate
from organmatch.notifications.notifier import Notifier
from organmatch.notifications.notifier import notifier as default_notifier
from organmatch.profiles.repository import ProfileRepository, profile_repository
from organmatch.schemas.events import EventType, SystemEvent
from organmatch.schemas.matching import (
    CandidateMatch,
    DonorSnapshot,
    MatchingPassResult,
    MatchScope,
    RecipientSnapshot,
    SkippedPair,
    UpsertOutcome,
    UpsertOutcomeKind,
)

logger = logging.getLogger(__name__)

# Failures that abort a pass: query errors, lost connections, timeouts
DATA_ACCESS_ERRORS: tuple[type[BaseException], ...] = (SQLAlchemyError, TimeoutError)


class MatchingService:
    """Runs matching passes. Collaborators are injected; the session is passed per call."""

    def __init__(
        self,
        profiles: ProfileRepository | None = None,
        store: MatchStore | None = None,
        notifier: Notifier | None = None,
        config: MatchingSettings | None = None,
    ) -> None:
        self._profiles = profiles or profile_repository
        self._store = store or match_store
        self._notifier = notifier or default_notifier
        self._config = config or settings.matching

    async def run_matching_pass(
        self,
        db: AsyncSession,
        scope: MatchScope | None = None,
        *,
        actor_id: str = "system",
    ) -> MatchingPassResult:
        """Find, score and persist every compatible pair in `scope`.

        Steps:
        1. Load verified donors and recipients (timeout + one retry each).
        2. Rank candidates with a single `now` for the whole pass.
        3. Upsert all candidates, stamp `last_pass_at` on the profiles the
           pass covered, and commit both together.
        4. Notify created / materially updated matches (best-effort).
        """
        scope = scope or MatchScope()
        cfg = self._config
        now = datetime.now(UTC)
        result = MatchingPassResult(scope=scope.label, started_at=now)

        await emit(SystemEvent(
            event_type=EventType.MATCHING_PASS_STARTED,
            profile_id=scope.recipient_id or scope.donor_id,
            profile_kind=_scope_kind(scope),
            actor_id=actor_id,
            data={"scope": scope.label},
            source_module="matching.service",
        ))

        # 1. Load
        try:
            donors = await with_retry(
                lambda: self._profiles.load_verified_donors(db, scope.donor_id),
                timeout=cfg.load_timeout,
                retries=cfg.transient_retries,
                label="load verified donors",
                on_retry=db.rollback,
            )
            recipients = await with_retry(
                lambda: self._profiles.load_verified_recipients(db, scope.recipient_id),
                timeout=cfg.load_timeout,
                retries=cfg.transient_retries,
                label="load verified recipients",
                on_retry=db.rollback,
            )
        except DATA_ACCESS_ERRORS as exc:
            return await self._fail(db, result, f"profile load failed: {type(exc).__name__}: {exc}", actor_id)

        result.donors_loaded = len(donors)
        result.recipients_loaded = len(recipients)

        # 2. Rank
        ranking = rank_candidates(donors, recipients, now, cfg.wait_time_anchor)
        result.candidates = ranking.candidates
        result.skipped = list(ranking.skipped)

        # 3. Persist matches and stamp the covered profiles in one transaction
        passed = _covered_profiles(scope, donors, recipients)
        outcomes: list[UpsertOutcome] = []
        if ranking.candidates or any(passed.values()):
            try:
                outcomes = await with_retry(
                    lambda: self._write(db, ranking.candidates, passed, now),
                    timeout=None,
                    retries=cfg.transient_retries,
                    label="persist matching pass",
                    on_retry=db.rollback,
                )
                await db.commit()
            except DATA_ACCESS_ERRORS as exc:
                return await self._fail(db, result, f"match upsert failed: {type(exc).__name__}: {exc}", actor_id)

        for outcome in outcomes:
            if outcome.kind == UpsertOutcomeKind.CREATED:
                result.created += 1
            elif outcome.kind == UpsertOutcomeKind.UPDATED:
                result.updated += 1
            elif outcome.kind == UpsertOutcomeKind.UNCHANGED:
                result.unchanged += 1
            elif outcome.kind == UpsertOutcomeKind.LOCKED:
                result.locked += 1
            else:
                result.skipped.append(SkippedPair(
                    recipient_id=outcome.candidate.recipient_id,
                    donor_id=outcome.candidate.donor_id,
                    reason=outcome.reason or "upsert failed",
                ))

        # 4. Notify — after commit, never rolls the matches back
        for outcome in outcomes:
            if not outcome.should_notify:
                continue
            updated = outcome.kind == UpsertOutcomeKind.UPDATED
            await emit(SystemEvent(
                event_type=EventType.MATCH_UPDATED if updated else EventType.MATCH_CREATED,
                profile_id=outcome.candidate.recipient_id,
                profile_kind=ProfileKind.RECIPIENT.value,
                actor_id=actor_id,
                data={
                    "match_id": str(outcome.match_id) if outcome.match_id else None,
                    "donor_id": str(outcome.candidate.donor_id),
                    "total_score": str(outcome.candidate.score.total),
                },
                source_module="matching.service",
            ))
            if not await self._notifier.notify(outcome.candidate, updated=updated):
                result.notifications_failed += 1

        await self._complete(result, actor_id)
        return result

    async def decide_match(
        self,
        db: AsyncSession,
        match_id: uuid.UUID,
        decision: MatchStatus,
        decided_by: str,
    ) -> MatchCandidate | None:
        """Apply a reviewer's decision, commit, and notify both parties.

        Raises the store's MatchDecisionError/ValueError unchanged.
        """
        match = await self._store.decide(db, match_id, decision, decided_by)
        if match is None:
            return None

        donor = await self._profiles.get_profile(db, ProfileKind.DONOR, match.donor_id)
        recipient = await self._profiles.get_profile(db, ProfileKind.RECIPIENT, match.recipient_id)
        await db.commit()

        await emit(SystemEvent(
            event_type=EventType.MATCH_DECIDED,
            profile_id=match.recipient_id,
            profile_kind=ProfileKind.RECIPIENT.value,
            actor_id=decided_by,
            actor_role="doctor",
            data={"match_id": str(match.id), "donor_id": str(match.donor_id), "decision": decision.value},
            source_module="matching.service",
        ))
        await self._notifier.notify_decision(
            match,
            donor_user_id=donor.user_id if donor is not None else None,
            recipient_user_id=recipient.user_id if recipient is not None else None,
        )
        return match

    # ── Helpers ───────────────────────────────────────────────────────

    async def _write(
        self,
        db: AsyncSession,
        candidates: list[CandidateMatch],
        passed: dict[ProfileKind, list[uuid.UUID]],
        now: datetime,
    ) -> list[UpsertOutcome]:
        cfg = self._config
        outcomes: list[UpsertOutcome] = []
        if candidates:
            outcomes = await self._store.upsert_candidates(
                db, candidates, cfg.notify_score_delta, pair_timeout=cfg.write_timeout
            )
        for kind, ids in passed.items():
            if ids:
                await asyncio.wait_for(self._profiles.mark_passed(db, kind, ids, now), timeout=cfg.write_timeout)
        return outcomes

    async def _fail(
        self, db: AsyncSession, result: MatchingPassResult, error: str, actor_id: str
    ) -> MatchingPassResult:
        await db.rollback()
        result.error = error
        result.candidates = []
        logger.error("Matching pass %s aborted: %s", result.scope, error)
        await emit(SystemEvent(
            event_type=EventType.MATCHING_PASS_FAILED,
            actor_id=actor_id,
            data={"scope": result.scope, "error": error},
            source_module="matching.service",
        ))
        return result

    async def _complete(self, result: MatchingPassResult, actor_id: str) -> None:
        logger.info(
            "Matching pass %s: %d candidates (created=%d updated=%d unchanged=%d locked=%d skipped=%d)",
            result.scope,
            len(result.candidates),
            result.created,
            result.updated,
            result.unchanged,
            result.locked,
            len(result.skipped),
        )
        await emit(SystemEvent(
            event_type=EventType.MATCHING_PASS_COMPLETED,
            actor_id=actor_id,
            data={
                "scope": result.scope,
                "donors": result.donors_loaded,
                "recipients": result.recipients_loaded,
                "candidates": len(result.candidates),
                "created": result.created,
                "updated": result.updated,
                "unchanged": result.unchanged,
                "locked": result.locked,
                "skipped": len(result.skipped),
                "notifications_failed": result.notifications_failed,
            },
            source_module="matching.service",
        ))


def _covered_profiles(
    scope: MatchScope,
    donors: list[DonorSnapshot],
    recipients: list[RecipientSnapshot],
) -> dict[ProfileKind, list[uuid.UUID]]:
    """Profiles whose owed pass this one discharges: the anchor, or everyone loaded."""
    if scope.recipient_id is not None:
        return {ProfileKind.RECIPIENT: [r.id for r in recipients]}
    if scope.donor_id is not None:
        return {ProfileKind.DONOR: [d.id for d in donors]}
    return {ProfileKind.DONOR: [d.id for d in donors], ProfileKind.RECIPIENT: [r.id for r in recipients]}


def _scope_kind(scope: MatchScope) -> str | None:
    if scope.recipient_id is not None:
        return ProfileKind.RECIPIENT.value
    if scope.donor_id is not None:
        return ProfileKind.DONOR.value
    return None


matching_service = MatchingService()
