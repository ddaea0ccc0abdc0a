"""AuditLog model — immutable audit trail for every system event.

Every matching pass, verification, decision and notification emits a
SystemEvent which is persisted here. This table is append-only.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from organmatch.models.base import Base, TimestampMixin


class AuditLog(TimestampMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_log"

    # Event classification
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Context (all nullable — not every event relates to a profile or actor)
    profile_id: Mapped[str | None] = mapped_column(String(36), index=True)
    actor_id: Mapped[str | None] = mapped_column(String(100), comment="User ID, admin ID, or 'system'")
    actor_role: Mapped[str | None] = mapped_column(String(50), comment="doctor, admin, system")

    # Event data — flexible JSONB payload
    data: Mapped[dict[str, Any] | None] = mapped_column()

    def __repr__(self) -> str:
        return f"<AuditLog event={self.event_type} profile={self.profile_id}>"
