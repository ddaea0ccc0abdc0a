"""Pydantic schemas for the matching engine.

Pure data classes — no DB dependencies. Snapshots are built from ORM rows
with `model_validate(row)` so the compatibility and scoring functions can be
unit-tested with in-memory fixtures.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Profile snapshots
# ---------------------------------------------------------------------------


class ProfileSnapshot(BaseModel):
    """Matching-relevant view of a donor or recipient profile.

    Fields are deliberately lenient: a malformed row must reach the scorer
    so the pair can be skipped and reported, not crash the whole load.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    user_id: uuid.UUID | None = None
    organ_type: str | None = None
    blood_group: str | None = None
    age: Any = None
    age_group: str | None = None
    city: str | None = None
    state: str | None = None
    status: str | None = None
    created_at: datetime | None = None
    verified_at: datetime | None = None


class DonorSnapshot(ProfileSnapshot):
    """A donor profile as seen by the engine."""


class RecipientSnapshot(ProfileSnapshot):
    """A recipient profile as seen by the engine."""

    urgency_level: str | None = None


# ---------------------------------------------------------------------------
# Scores and candidates
# ---------------------------------------------------------------------------


class MatchScore(BaseModel):
    """Four component scores and their weighted total."""

    model_config = ConfigDict(frozen=True)

    urgency: int = Field(ge=0, le=100)
    location: int = Field(ge=0, le=100)
    wait_time: int = Field(ge=0, le=100)
    age_gap: int = Field(ge=0, le=100)
    total: Decimal = Field(ge=0, le=100)


class CandidateMatch(BaseModel):
    """A scored (recipient, donor) pair ready to be upserted."""

    model_config = ConfigDict(frozen=True)

    recipient_id: uuid.UUID
    donor_id: uuid.UUID
    score: MatchScore
    recipient_user_id: uuid.UUID | None = None
    donor_user_id: uuid.UUID | None = None

    @property
    def pair(self) -> tuple[uuid.UUID, uuid.UUID]:
        return (self.recipient_id, self.donor_id)


class SkippedPair(BaseModel):
    """A pair the pass could not score — reported, never fatal."""

    recipient_id: uuid.UUID | None = None
    donor_id: uuid.UUID | None = None
    reason: str


class MatchScope(BaseModel):
    """Which profiles a matching pass covers.

    No ids → every verified recipient against every verified donor.
    """

    recipient_id: uuid.UUID | None = None
    donor_id: uuid.UUID | None = None

    @model_validator(mode="after")
    def _single_anchor(self) -> MatchScope:
        if self.recipient_id is not None and self.donor_id is not None:
            msg = "A matching scope is anchored on a recipient or a donor, not both"
            raise ValueError(msg)
        return self

    @property
    def label(self) -> str:
        if self.recipient_id is not None:
            return f"recipient:{self.recipient_id}"
        if self.donor_id is not None:
            return f"donor:{self.donor_id}"
        return "all"


# ---------------------------------------------------------------------------
# Store outcomes and pass results
# ---------------------------------------------------------------------------


class UpsertOutcomeKind(str, Enum):
    """What the conflict-aware upsert did to one pair."""

    CREATED = "created"
    UPDATED = "updated"      # scores changed by at least notify_score_delta
    UNCHANGED = "unchanged"  # refreshed, no material change
    LOCKED = "locked"        # approved/rejected row left untouched
    SKIPPED = "skipped"      # constraint violation survived the single retry


@dataclass
class UpsertOutcome:
    """Per-candidate result of MatchStore.upsert_candidates."""

    candidate: CandidateMatch
    kind: UpsertOutcomeKind
    match_id: uuid.UUID | None = None
    reason: str | None = None

    @property
    def should_notify(self) -> bool:
        return self.kind in (UpsertOutcomeKind.CREATED, UpsertOutcomeKind.UPDATED)


@dataclass
class RankingResult:
    """Output of the pure ranking step."""

    candidates: list[CandidateMatch] = field(default_factory=list)
    skipped: list[SkippedPair] = field(default_factory=list)


@dataclass
class MatchingPassResult:
    """Structured summary of one matching pass — returned, never raised."""

    scope: str = "all"
    started_at: datetime | None = None
    donors_loaded: int = 0
    recipients_loaded: int = 0
    candidates: list[CandidateMatch] = field(default_factory=list)
    skipped: list[SkippedPair] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    locked: int = 0
    notifications_failed: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation for the admin surface and audit events."""
        return {
            "scope": self.scope,
            "success": self.success,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "donors_loaded": self.donors_loaded,
            "recipients_loaded": self.recipients_loaded,
            "candidates": [
                {
                    "recipient_id": str(c.recipient_id),
                    "donor_id": str(c.donor_id),
                    "urgency_score": c.score.urgency,
                    "location_score": c.score.location,
                    "wait_time_score": c.score.wait_time,
                    "age_gap_score": c.score.age_gap,
                    "total_score": float(c.score.total),
                }
                for c in self.candidates
            ],
            "skipped": [s.model_dump(mode="json") for s in self.skipped],
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "locked": self.locked,
            "notifications_failed": self.notifications_failed,
            "error": self.error,
        }


@dataclass
class PassSweepResult:
    """Outcome of re-running passes owed to verified profiles."""

    owed: int = 0
    completed: int = 0
    failed: list[str] = field(default_factory=list)  # scope labels still owed
