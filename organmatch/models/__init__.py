"""SQLAlchemy ORM models for the organ matching engine.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from organmatch.models.audit import AuditLog
from organmatch.models.base import Base
from organmatch.models.enums import (
    AgeGroup,
    MatchStatus,
    NotificationType,
    ProfileKind,
    ProfileStatus,
    UrgencyLevel,
    UserRole,
)
from organmatch.models.match import MatchCandidate
from organmatch.models.notification import Notification
from organmatch.models.profile import DonorProfile, RecipientProfile
from organmatch.models.user import User

__all__ = [
    # Base
    "Base",
    # Models
    "User",
    "DonorProfile",
    "RecipientProfile",
    "MatchCandidate",
    "Notification",
    "AuditLog",
    # Enums
    "UserRole",
    "ProfileKind",
    "ProfileStatus",
    "AgeGroup",
    "UrgencyLevel",
    "MatchStatus",
    "NotificationType",
]
