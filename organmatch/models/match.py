"""MatchCandidate model — a scored (recipient, donor) pairing awaiting a human decision.

At most one row per (recipient_id, donor_id): enforced by uq_matches_pair and
relied upon by the conflict-aware upsert in organmatch.matching.store.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from organmatch.models.base import Base, TimestampMixin
from organmatch.models.enums import MatchStatus


class MatchCandidate(TimestampMixin, Base):
    """One ranked donor for one recipient."""

    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("recipient_id", "donor_id", name="uq_matches_pair"),
        CheckConstraint("total_score >= 0 AND total_score <= 100", name="ck_matches_total_range"),
    )

    # Foreign keys
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("recipient_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    donor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("donor_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Component scores, each in [0, 100]
    urgency_score: Mapped[int] = mapped_column(Integer, nullable=False)
    location_score: Mapped[int] = mapped_column(Integer, nullable=False)
    wait_time_score: Mapped[int] = mapped_column(Integer, nullable=False)
    age_gap_score: Mapped[int] = mapped_column(Integer, nullable=False)
    total_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, index=True)

    # Last time the scores materially changed. Unlike updated_at, an
    # unchanged re-score leaves it alone.
    scored_at: Mapped[datetime] = mapped_column(server_default=func.now(), index=True)

    # Human decision
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=MatchStatus.PENDING.value)
    decided_by: Mapped[str | None] = mapped_column(String(100))
    decided_at: Mapped[datetime | None] = mapped_column()

    # Set once both parties have been notified of the current scores
    notified_at: Mapped[datetime | None] = mapped_column()

    def __repr__(self) -> str:
        return (
            f"<MatchCandidate recipient={self.recipient_id} donor={self.donor_id} "
            f"total={self.total_score} status={self.status}>"
        )
