"""Entity and room membership models backing the SQL entity directory."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from persona_resolver.models.base import Base


class EntityRecord(Base):
    """Canonical representation of one real-world actor.

    Platform identities live inside ``attributes["platform_identities"]``,
    keyed by platform tag. The resolver never writes this table directly;
    it goes through the EntityDirectory port.
    """

    __tablename__ = "entities"

    entity_id: Mapped[UUID] = mapped_column(primary_key=True)
    names: Mapped[list[str]] = mapped_column(default=list)
    """Display names in the order they were learned."""

    attributes: Mapped[dict[str, Any]] = mapped_column("metadata", default=dict)
    """Free-form metadata (column is named ``metadata``)."""

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class RoomParticipant(Base):
    """Membership of an entity in a conversation room."""

    __tablename__ = "room_participants"

    room_id: Mapped[UUID] = mapped_column(primary_key=True)
    entity_id: Mapped[UUID] = mapped_column(
        ForeignKey("entities.entity_id", ondelete="CASCADE"), primary_key=True, index=True
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
