"""Declarative base and the id/timestamp mixin shared by every table.

Python types map to PostgreSQL column types once, here: UUIDs are native
`uuid`, datetimes are always `timestamptz`, JSON payloads are JSONB.
Models only spell out a column type when it needs a length or precision.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""

    type_annotation_map = {
        uuid.UUID: UUID(as_uuid=True),
        datetime: DateTime(timezone=True),
        dict[str, Any]: JSONB,
    }


class TimestampMixin:
    """UUID primary key plus server-stamped created_at / updated_at.

    `updated_at` moves on every ORM update. Core upserts must set it
    themselves; `onupdate` is not applied to ON CONFLICT DO UPDATE.
    """

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id}>"
