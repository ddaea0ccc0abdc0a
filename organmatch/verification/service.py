"""Profile verification — status transitions and the PROFILE_VERIFIED event.

Entering VERIFIED commits first and only then emits PROFILE_VERIFIED, so the
triggered pass (running in its own session) sees the new status. Repeating a
verification re-emits the event; delivery is at-least-once by contract and
the match upsert makes duplicates harmless.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from organmatch.admin.events import emit
from organmatch.models.enums import ProfileKind, ProfileStatus
from organmatch.models.profile import DonorProfile, RecipientProfile
from organmatch.profiles.repository import ProfileRepository, profile_repository
from organmatch.schemas.events import EventType, SystemEvent
from organmatch.verification.states import next_status

logger = logging.getLogger(__name__)


class VerificationService:
    """Stateless profile lifecycle operations — AsyncSession passed per call."""

    def __init__(self, profiles: ProfileRepository | None = None) -> None:
        self._profiles = profiles or profile_repository

    async def transition(
        self,
        db: AsyncSession,
        kind: ProfileKind,
        profile_id: uuid.UUID,
        trigger: str,
        actor_id: str = "system",
    ) -> DonorProfile | RecipientProfile | None:
        """Apply a lifecycle trigger ("submit", "verify", "reject", …) and commit.

        Returns None if the profile does not exist.

        Raises:
            ValueError: If the trigger is not valid from the current status.
        """
        profile = await self._profiles.get_profile(db, kind, profile_id, for_update=True)
        if profile is None:
            return None
        return await self._apply(db, kind, profile, trigger, actor_id)

    async def _apply(
        self,
        db: AsyncSession,
        kind: ProfileKind,
        profile: DonorProfile | RecipientProfile,
        trigger: str,
        actor_id: str,
    ) -> DonorProfile | RecipientProfile:
        profile_id = profile.id
        old_status = ProfileStatus(profile.status)
        new_status = next_status(old_status, trigger)
        profile.status = new_status.value
        if new_status == ProfileStatus.VERIFIED:
            profile.verified_at = datetime.now(UTC)
            profile.verified_by = actor_id
        await db.commit()

        logger.info(
            "Profile transition: %s %s --%s--> %s (actor=%s)",
            kind.value,
            profile_id,
            trigger,
            new_status.value,
            actor_id,
        )
        await emit(SystemEvent(
            event_type=EventType.PROFILE_STATUS_CHANGED,
            profile_id=profile_id,
            profile_kind=kind.value,
            actor_id=actor_id,
            data={"from": old_status.value, "to": new_status.value, "trigger": trigger},
            source_module="verification.service",
        ))
        if new_status == ProfileStatus.VERIFIED:
            await self._emit_verified(kind, profile_id, actor_id)
        return profile

    async def verify_profile(
        self,
        db: AsyncSession,
        kind: ProfileKind,
        profile_id: uuid.UUID,
        verified_by: str = "system",
        notes: str | None = None,
    ) -> DonorProfile | RecipientProfile | None:
        """Mark a pending profile verified and schedule its matching pass.

        An already verified profile is left as is and the event is re-emitted.
        """
        profile = await self._profiles.get_profile(db, kind, profile_id, for_update=True)
        if profile is None:
            return None

        if profile.status == ProfileStatus.VERIFIED.value:
            logger.info("%s %s already verified; re-emitting trigger", kind.value, profile_id)
            await self._emit_verified(kind, profile_id, verified_by)
            return profile

        if notes is not None:
            profile.verification_notes = notes
        return await self._apply(db, kind, profile, "verify", verified_by)

    async def _emit_verified(self, kind: ProfileKind, profile_id: uuid.UUID, actor_id: str) -> None:
        await emit(SystemEvent(
            event_type=EventType.PROFILE_VERIFIED,
            profile_id=profile_id,
            profile_kind=kind.value,
            actor_id=actor_id,
            source_module="verification.service",
        ))


verification_service = VerificationService()
