"""DonorProfile and RecipientProfile models — one person's organ offer or need.

Both tables share the matching-relevant columns through ProfileMixin.
The matching engine only reads these rows; its single write is the
status/verified_at transition performed by the verification service.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from organmatch.models.base import Base, TimestampMixin
from organmatch.models.enums import AgeGroup, ProfileStatus, UrgencyLevel


class ProfileMixin:
    """Columns common to donor and recipient profiles."""

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )

    # Compatibility inputs
    organ_type: Mapped[str] = mapped_column(String(50), nullable=False)
    blood_group: Mapped[str] = mapped_column(String(3), nullable=False, comment="ABO/Rh, e.g. 'O-'")
    age: Mapped[int | None] = mapped_column(Integer)
    age_group: Mapped[str] = mapped_column(String(20), nullable=False, default=AgeGroup.ADULT.value)

    # Location
    city: Mapped[str | None] = mapped_column(String(100))
    state: Mapped[str | None] = mapped_column(String(100))

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProfileStatus.INCOMPLETE.value, index=True
    )
    verified_at: Mapped[datetime | None] = mapped_column()
    verified_by: Mapped[str | None] = mapped_column(String(100), comment="Doctor/admin ID or 'system'")
    verification_notes: Mapped[str | None] = mapped_column(Text)

    # Start of the last matching pass that committed with this profile in
    # scope. A verified profile with last_pass_at < verified_at still owes
    # its triggered pass.
    last_pass_at: Mapped[datetime | None] = mapped_column()


class DonorProfile(ProfileMixin, TimestampMixin, Base):
    """An organ offer."""

    __tablename__ = "donor_profiles"

    medical_history: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<DonorProfile id={self.id} organ={self.organ_type} status={self.status}>"


class RecipientProfile(ProfileMixin, TimestampMixin, Base):
    """An organ need, ranked by urgency."""

    __tablename__ = "recipient_profiles"

    urgency_level: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UrgencyLevel.MEDIUM.value
    )

    # Display-only context, never used for scoring
    medical_condition: Mapped[str | None] = mapped_column(Text)
    hospital_name: Mapped[str | None] = mapped_column(String(200))

    def __repr__(self) -> str:
        return (
            f"<RecipientProfile id={self.id} organ={self.organ_type} "
            f"urgency={self.urgency_level} status={self.status}>"
        )
