"""Multi-factor match scoring.

Each component is a step function returning 10–100; the total is a fixed
weighted sum (0.4 urgency, 0.3 location, 0.2 wait time, 0.1 age gap)
computed in Decimal so repeated passes store identical values.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from organmatch.schemas.matching import DonorSnapshot, MatchScore, RecipientSnapshot

URGENCY_WEIGHT = Decimal("0.4")
LOCATION_WEIGHT = Decimal("0.3")
WAIT_TIME_WEIGHT = Decimal("0.2")
AGE_GAP_WEIGHT = Decimal("0.1")

URGENCY_SCORES: dict[str, int] = {
    "critical": 100,
    "high": 70,
    "medium": 40,
}
DEFAULT_URGENCY_SCORE = 10

SAME_CITY_SCORE = 80
SAME_STATE_SCORE = 50
ELSEWHERE_SCORE = 20

# (minimum months waited, score) — checked top to bottom
WAIT_TIME_BUCKETS: tuple[tuple[int, int], ...] = ((12, 100), (6, 70), (1, 40))
DEFAULT_WAIT_TIME_SCORE = 10

# (maximum age difference, score) — checked top to bottom
AGE_GAP_BUCKETS: tuple[tuple[int, int], ...] = ((10, 100), (20, 70), (30, 40))
DEFAULT_AGE_GAP_SCORE = 10

SECONDS_PER_MONTH = 30 * 24 * 60 * 60
_CENTS = Decimal("0.01")


class ScoringError(ValueError):
    """A profile is missing or has invalid fields needed for scoring."""


def urgency_score(urgency_level: Any) -> int:
    if not isinstance(urgency_level, str):
        return DEFAULT_URGENCY_SCORE
    return URGENCY_SCORES.get(urgency_level.lower(), DEFAULT_URGENCY_SCORE)


def location_score(donor_city: Any, donor_state: Any, recipient_city: Any, recipient_state: Any) -> int:
    if donor_city and donor_city == recipient_city:
        return SAME_CITY_SCORE
    if donor_state and donor_state == recipient_state:
        return SAME_STATE_SCORE
    return ELSEWHERE_SCORE


def months_waited(since: datetime, now: datetime) -> float:
    """Elapsed 30-day months between `since` and `now`; naive datetimes are UTC."""
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now - since).total_seconds() / SECONDS_PER_MONTH


def wait_time_score(since: datetime, now: datetime) -> int:
    months = months_waited(since, now)
    for threshold, score in WAIT_TIME_BUCKETS:
        if months >= threshold:
            return score
    return DEFAULT_WAIT_TIME_SCORE


def age_gap_score(donor_age: int, recipient_age: int) -> int:
    gap = abs(donor_age - recipient_age)
    for limit, score in AGE_GAP_BUCKETS:
        if gap <= limit:
            return score
    return DEFAULT_AGE_GAP_SCORE


def weighted_total(urgency: int, location: int, wait_time: int, age_gap: int) -> Decimal:
    """Weighted sum of the four components, quantized to cents."""
    total = (
        URGENCY_WEIGHT * urgency
        + LOCATION_WEIGHT * location
        + WAIT_TIME_WEIGHT * wait_time
        + AGE_GAP_WEIGHT * age_gap
    )
    return total.quantize(_CENTS)


def _require_age(profile: DonorSnapshot | RecipientSnapshot, role: str) -> int:
    age = profile.age
    # bool is an int subclass but never a valid age
    if isinstance(age, bool) or not isinstance(age, int | float) or age < 0:
        msg = f"{role} {profile.id} has invalid age: {age!r}"
        raise ScoringError(msg)
    return int(age)


def _wait_anchor(recipient: RecipientSnapshot, anchor: str) -> datetime:
    since = recipient.verified_at if anchor == "verified_at" else None
    since = since or recipient.created_at
    if since is None:
        msg = f"recipient {recipient.id} has no created_at timestamp"
        raise ScoringError(msg)
    return since


def score_pair(
    donor: DonorSnapshot,
    recipient: RecipientSnapshot,
    now: datetime,
    wait_time_anchor: str = "created_at",
) -> MatchScore:
    """Score a compatible pair.

    Args:
        donor: Donor snapshot.
        recipient: Recipient snapshot.
        now: Reference time, captured once per matching pass.
        wait_time_anchor: "created_at" or "verified_at" — which recipient
            timestamp the wait is measured from.

    Raises:
        ScoringError: If an age or the wait-time timestamp is missing/invalid.
    """
    donor_age = _require_age(donor, "donor")
    recipient_age = _require_age(recipient, "recipient")
    since = _wait_anchor(recipient, wait_time_anchor)

    urgency = urgency_score(recipient.urgency_level)
    location = location_score(donor.city, donor.state, recipient.city, recipient.state)
    wait_time = wait_time_score(since, now)
    age_gap = age_gap_score(donor_age, recipient_age)

    return MatchScore(
        urgency=urgency,
        location=location,
        wait_time=wait_time,
        age_gap=age_gap,
        total=weighted_total(urgency, location, wait_time, age_gap),
    )
