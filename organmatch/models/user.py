"""User model — the account behind a donor, recipient, doctor, or admin."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from organmatch.models.base import Base, TimestampMixin
from organmatch.models.enums import UserRole

if TYPE_CHECKING:
    from organmatch.models.notification import Notification


class User(TimestampMixin, Base):
    """A person registered with the platform."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.DONOR.value)
    full_name: Mapped[str | None] = mapped_column(String(200))
    phone: Mapped[str | None] = mapped_column(String(20))

    # Relationships
    notifications: Mapped[list[Notification]] = relationship(
        "Notification", back_populates="user", lazy="noload"
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} role={self.role}>"
