"""Audit log subscriber — persists every SystemEvent to the audit_log table.

Registered as a global subscriber (receives ALL events). This is the
system's immutable trail of verifications, passes, decisions and
notifications.

Never raises — failures are logged but never propagate to the event system.
"""

from __future__ import annotations

import logging

from organmatch.db.engine import async_session_factory
from organmatch.models.audit import AuditLog
from organmatch.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent to the audit_log table.

    Called by the event system for every emitted event.
    Failures are logged and swallowed — audit logging must never
    interrupt a matching pass or a verification.
    """
    try:
        async with async_session_factory() as db:
            audit = AuditLog(
                event_type=event.event_type.value,
                profile_id=str(event.profile_id) if event.profile_id else None,
                actor_id=event.actor_id,
                actor_role=event.actor_role,
                data={**event.data, "profile_kind": event.profile_kind} if event.profile_kind else event.data,
            )
            db.add(audit)
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (profile=%s)",
            event.event_type.value,
            event.profile_id,
        )
