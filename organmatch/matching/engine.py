"""Matching engine — ranks every compatible donor for each recipient.

Pure Python orchestrator. No DB access.
MatchingService loads the snapshots, persists the candidates and notifies.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

from organmatch.matching.compatibility import is_compatible
from organmatch.matching.scoring import ScoringError, score_pair
from organmatch.schemas.matching import (
    CandidateMatch,
    DonorSnapshot,
    RankingResult,
    RecipientSnapshot,
    SkippedPair,
)

logger = logging.getLogger(__name__)

# Sorts after every real timestamp so donors without created_at lose ties
_NO_TIMESTAMP = float("inf")


def _candidate_sort_key(candidate: CandidateMatch, donor: DonorSnapshot) -> tuple[object, ...]:
    """Total score descending, then first-registered donor, then donor id."""
    registered = _NO_TIMESTAMP
    if donor.created_at is not None:
        created = donor.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        registered = created.timestamp()
    return (-candidate.score.total, registered, str(donor.id))


def rank_for_recipient(
    recipient: RecipientSnapshot,
    donors: Iterable[DonorSnapshot],
    now: datetime,
    wait_time_anchor: str = "created_at",
) -> RankingResult:
    """Filter, score and order the donors for a single recipient."""
    result = RankingResult()
    scored: list[tuple[CandidateMatch, DonorSnapshot]] = []

    for donor in donors:
        if not is_compatible(donor, recipient):
            continue
        try:
            score = score_pair(donor, recipient, now, wait_time_anchor)
        except ScoringError as exc:
            logger.warning("Skipping pair recipient=%s donor=%s: %s", recipient.id, donor.id, exc)
            result.skipped.append(SkippedPair(recipient_id=recipient.id, donor_id=donor.id, reason=str(exc)))
            continue

        scored.append((
            CandidateMatch(
                recipient_id=recipient.id,
                donor_id=donor.id,
                score=score,
                recipient_user_id=recipient.user_id,
                donor_user_id=donor.user_id,
            ),
            donor,
        ))

    scored.sort(key=lambda pair: _candidate_sort_key(*pair))
    result.candidates = [candidate for candidate, _ in scored]
    return result


def rank_candidates(
    donors: Sequence[DonorSnapshot],
    recipients: Sequence[RecipientSnapshot],
    now: datetime,
    wait_time_anchor: str = "created_at",
) -> RankingResult:
    """Rank compatible donors for every recipient.

    Recipients are processed independently; candidates are grouped per
    recipient in input order, each group sorted best-first. Every candidate
    is returned, not only the top one — approval is a human decision.
    """
    combined = RankingResult()
    for recipient in recipients:
        per_recipient = rank_for_recipient(recipient, donors, now, wait_time_anchor)
        combined.candidates.extend(per_recipient.candidates)
        combined.skipped.extend(per_recipient.skipped)

    logger.debug(
        "Ranked %d candidates (%d skipped) for %d recipients x %d donors",
        len(combined.candidates),
        len(combined.skipped),
        len(recipients),
        len(donors),
    )
    return combined
