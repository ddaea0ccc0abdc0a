"""Read access to donor/recipient profiles for the matching engine.

Profiles are owned by the profile-management collaborator. This module
selects rows into engine snapshots, and stamps `last_pass_at` once a
matching pass covering a profile has committed.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from organmatch.models.enums import ProfileKind, ProfileStatus
from organmatch.models.profile import DonorProfile, RecipientProfile
from organmatch.schemas.matching import DonorSnapshot, RecipientSnapshot

PROFILE_MODELS: dict[ProfileKind, type[DonorProfile] | type[RecipientProfile]] = {
    ProfileKind.DONOR: DonorProfile,
    ProfileKind.RECIPIENT: RecipientProfile,
}


class ProfileRepository:
    """Stateless profile queries — AsyncSession passed per call."""

    async def load_verified_donors(
        self, db: AsyncSession, donor_id: uuid.UUID | None = None
    ) -> list[DonorSnapshot]:
        """All verified donors, or just `donor_id` if it is verified."""
        stmt = select(DonorProfile).where(DonorProfile.status == ProfileStatus.VERIFIED.value)
        if donor_id is not None:
            stmt = stmt.where(DonorProfile.id == donor_id)
        result = await db.execute(stmt.order_by(DonorProfile.created_at))
        return [DonorSnapshot.model_validate(row) for row in result.scalars().all()]

    async def load_verified_recipients(
        self, db: AsyncSession, recipient_id: uuid.UUID | None = None
    ) -> list[RecipientSnapshot]:
        """All verified recipients, or just `recipient_id` if it is verified."""
        stmt = select(RecipientProfile).where(RecipientProfile.status == ProfileStatus.VERIFIED.value)
        if recipient_id is not None:
            stmt = stmt.where(RecipientProfile.id == recipient_id)
        result = await db.execute(stmt.order_by(RecipientProfile.created_at))
        return [RecipientSnapshot.model_validate(row) for row in result.scalars().all()]

    async def get_profile(
        self,
        db: AsyncSession,
        kind: ProfileKind,
        profile_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> DonorProfile | RecipientProfile | None:
        """Fetch one profile row, optionally locking it for a status change."""
        return await db.get(PROFILE_MODELS[kind], profile_id, with_for_update=for_update)

    async def mark_passed(
        self, db: AsyncSession, kind: ProfileKind, profile_ids: Sequence[uuid.UUID], at: datetime
    ) -> None:
        """Record that a matching pass covering these profiles committed at `at`."""
        model = PROFILE_MODELS[kind]
        await db.execute(update(model).where(model.id.in_(profile_ids)).values(last_pass_at=at))

    async def list_owed_passes(self, db: AsyncSession) -> list[tuple[ProfileKind, uuid.UUID]]:
        """Verified profiles with no committed pass since their latest verification.

        These are PROFILE_VERIFIED triggers that were lost (crash before the
        event was handled) or whose pass failed on every delivery attempt.
        Oldest verification first.
        """
        owed: list[tuple[ProfileKind, uuid.UUID, datetime]] = []
        for kind, model in PROFILE_MODELS.items():
            result = await db.execute(
                select(model.id, model.verified_at).where(
                    model.status == ProfileStatus.VERIFIED.value,
                    model.verified_at.is_not(None),
                    or_(model.last_pass_at.is_(None), model.last_pass_at < model.verified_at),
                )
            )
            owed.extend((kind, profile_id, verified_at) for profile_id, verified_at in result.all())
        owed.sort(key=lambda row: row[2])
        return [(kind, profile_id) for kind, profile_id, _ in owed]


profile_repository = ProfileRepository()
