"""Verification trigger — turns PROFILE_VERIFIED events into matching passes.

Donor verified → that donor against all verified recipients.
Recipient verified → that recipient against all verified donors.
Each pass runs in its own session; concurrent triggers for the same pair
converge on one match row through the store upsert.

Delivery is at-least-once. A failed pass raises so the event bus
redelivers it with backoff. A pass that commits stamps the profile's
`last_pass_at`, so any verified profile whose `last_pass_at` is older than
its `verified_at` still owes a pass; `sweep_missed_passes` runs those at
startup and on demand. That covers events lost to a crash and events
whose redeliveries all failed.
"""

from __future__ import annotations

import logging
import uuid

from organmatch.admin.events import subscribe
from organmatch.config import settings
from organmatch.db.engine import async_session_factory
from organmatch.matching.service import matching_service
from organmatch.models.enums import ProfileKind
from organmatch.profiles.repository import profile_repository
from organmatch.schemas.events import EventType, SystemEvent
from organmatch.schemas.matching import MatchingPassResult, MatchScope, PassSweepResult

logger = logging.getLogger(__name__)


class TriggerPassError(RuntimeError):
    """A verification-triggered pass did not commit; the event should be redelivered."""

    def __init__(self, result: MatchingPassResult) -> None:
        super().__init__(f"matching pass {result.scope} failed: {result.error}")
        self.result = result


def scope_for(kind: ProfileKind, profile_id: uuid.UUID) -> MatchScope:
    if kind == ProfileKind.DONOR:
        return MatchScope(donor_id=profile_id)
    return MatchScope(recipient_id=profile_id)


def scope_for_event(event: SystemEvent) -> MatchScope | None:
    """Matching scope anchored on the verified profile, or None if the event is unusable."""
    if event.profile_id is None:
        return None
    try:
        kind = ProfileKind(event.profile_kind)
    except ValueError:
        return None
    return scope_for(kind, event.profile_id)


async def _run_pass(scope: MatchScope, actor_id: str) -> MatchingPassResult:
    async with async_session_factory() as db:
        return await matching_service.run_matching_pass(db, scope, actor_id=actor_id)


async def on_profile_verified(event: SystemEvent) -> None:
    """Event subscriber: run one matching pass for the newly verified profile.

    Raises:
        TriggerPassError: The pass failed; the bus redelivers the event.
    """
    scope = scope_for_event(event)
    if scope is None:
        logger.warning("Ignoring %s without a usable profile: %s", event.event_type.value, event.id)
        return

    result = await _run_pass(scope, event.actor_id or "system")
    if not result.success:
        raise TriggerPassError(result)

    logger.info(
        "Verification pass %s: %d candidates, %d new",
        result.scope,
        len(result.candidates),
        result.created,
    )


async def sweep_missed_passes(actor_id: str = "system") -> PassSweepResult:
    """Run the pass still owed to every verified profile, one session per pass.

    A failure is recorded and the sweep moves on; the profile stays owed
    and the next sweep tries it again.
    """
    async with async_session_factory() as db:
        owed = await profile_repository.list_owed_passes(db)

    sweep = PassSweepResult(owed=len(owed))
    if not owed:
        return sweep

    logger.info("%d verified profiles owe a matching pass", len(owed))
    for kind, profile_id in owed:
        result = await _run_pass(scope_for(kind, profile_id), actor_id)
        if result.success:
            sweep.completed += 1
        else:
            sweep.failed.append(result.scope)
            logger.error("Owed pass %s failed again: %s", result.scope, result.error)

    logger.info("Pass sweep: %d/%d completed", sweep.completed, sweep.owed)
    return sweep


def register_verification_trigger() -> None:
    """Subscribe the trigger to PROFILE_VERIFIED with redelivery. Call once at startup."""
    subscribe(
        on_profile_verified,
        event_types=[EventType.PROFILE_VERIFIED],
        retries=settings.matching.trigger_retries,
        retry_delay=settings.matching.trigger_retry_delay,
    )
