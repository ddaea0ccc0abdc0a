"""SystemEvent schema — the core event type that flows through the entire system.

Every verification, matching pass, decision and notification emits a
SystemEvent. Subscribers (audit logger, verification trigger) consume these
events asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Profile lifecycle
    PROFILE_STATUS_CHANGED = "profile.status_changed"
    PROFILE_VERIFIED = "profile.verified"

    # Matching pass
    MATCHING_PASS_STARTED = "matching.pass_started"
    MATCHING_PASS_COMPLETED = "matching.pass_completed"
    MATCHING_PASS_FAILED = "matching.pass_failed"
    MATCH_CREATED = "matching.match_created"
    MATCH_UPDATED = "matching.match_updated"
    MATCH_DECIDED = "matching.match_decided"

    # Notifications
    NOTIFICATION_SENT = "notification.sent"
    NOTIFICATION_FAILED = "notification.failed"

    # Admin
    ADMIN_ACCESS = "admin.access"
    ADMIN_RERUN = "admin.rerun"
    ADMIN_CLEANUP = "admin.cleanup"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"


class SystemEvent(BaseModel):
    """Core event that flows through the entire matching system.

    Immutable once created. Consumed by:
    - audit_on_event → writes to audit_log table
    - on_profile_verified → schedules a matching pass
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional — not every event has a profile)
    profile_id: uuid.UUID | None = None
    profile_kind: str | None = None
    actor_id: str | None = None
    actor_role: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
