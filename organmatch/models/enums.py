"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization; columns store the `.value`.
"""

from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    """Who the account belongs to."""

    DONOR = "donor"
    RECIPIENT = "recipient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class ProfileKind(str, Enum):
    """Which side of a match a profile sits on."""

    DONOR = "donor"
    RECIPIENT = "recipient"


class ProfileStatus(str, Enum):
    """Donor/recipient profile lifecycle — only VERIFIED profiles are matched."""

    INCOMPLETE = "incomplete"
    PENDING = "pending"
    VERIFIED = "verified"
    MATCHED = "matched"
    REJECTED = "rejected"


class AgeGroup(str, Enum):
    """Coarse age class — pediatric organs go to pediatric recipients only."""

    PEDIATRIC = "pediatric"
    ADULT = "adult"


class UrgencyLevel(str, Enum):
    """Recipient-declared clinical priority tier."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MatchStatus(str, Enum):
    """Match candidate status — advanced only by a human decision."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class NotificationType(str, Enum):
    """Notification categories written by the notifier."""

    MATCH_FOUND = "match_found"
    MATCH_UPDATED = "match_updated"
    MATCH_DECIDED = "match_decided"
