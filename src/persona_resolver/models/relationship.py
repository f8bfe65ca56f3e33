"""Relationship model for edges between entities."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import DateTime, Float, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from persona_resolver.models.base import Base


class RelationshipRecord(Base):
    """A directed relationship between two entities.

    Merges redirect these edges from the absorbed entities to the survivor.
    At most one edge exists per (source, target) pair.
    """

    __tablename__ = "relationships"
    __table_args__ = (UniqueConstraint("source_entity_id", "target_entity_id"),)

    relationship_id: Mapped[UUID] = mapped_column(primary_key=True)
    source_entity_id: Mapped[UUID] = mapped_column(ForeignKey("entities.entity_id"), index=True)
    target_entity_id: Mapped[UUID] = mapped_column(ForeignKey("entities.entity_id"), index=True)
    kind: Mapped[str] = mapped_column(String(50))
    strength: Mapped[float] = mapped_column(Float, default=0.5)
    details: Mapped[dict[str, Any]] = mapped_column(default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
