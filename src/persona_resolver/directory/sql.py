"""SQL adapters for the entity directory and relationship collaborator.

Each call opens its own session from the injected factory and commits
before returning, so the adapters can be shared across a long-lived
resolver.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError

from persona_resolver.entity import Entity
from persona_resolver.errors import DirectoryError, EntityNotFoundError
from persona_resolver.models.entity import EntityRecord, RoomParticipant
from persona_resolver.models.relationship import RelationshipRecord

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


def _to_entity(record: EntityRecord) -> Entity:
    return Entity(
        id=record.entity_id,
        names=list(record.names or []),
        metadata=dict(record.attributes or {}),
    )


class SqlEntityDirectory:
    """EntityDirectory backed by the ``entities`` and ``room_participants`` tables.

    The agent's rooms are the distinct rooms that have participants.

    Usage:
        directory = SqlEntityDirectory(async_session_factory)
        entity = await directory.get_entity_by_id(entity_id)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_entity_by_id(self, entity_id: UUID) -> Entity | None:
        try:
            async with self._session_factory() as session:
                record = await session.get(EntityRecord, entity_id)
                return _to_entity(record) if record is not None else None
        except SQLAlchemyError as exc:
            raise DirectoryError(f"Could not load entity {entity_id}: {exc}") from exc

    async def create_entity(self, entity: Entity, *, room_id: UUID | None = None) -> UUID:
        try:
            async with self._session_factory() as session:
                session.add(
                    EntityRecord(
                        entity_id=entity.id,
                        names=list(entity.names),
                        attributes=dict(entity.metadata),
                    )
                )
                if room_id is not None:
                    session.add(RoomParticipant(room_id=room_id, entity_id=entity.id))
                await session.commit()
        except SQLAlchemyError as exc:
            raise DirectoryError(f"Could not create entity {entity.id}: {exc}") from exc
        return entity.id

    async def update_entity(self, entity: Entity) -> None:
        """Overwrite names and metadata of an existing entity.

        Raises:
            EntityNotFoundError: If the entity does not exist.
            DirectoryError: If the write fails.
        """
        try:
            async with self._session_factory() as session:
                record = await session.get(EntityRecord, entity.id)
                if record is None:
                    raise EntityNotFoundError(entity.id)
                record.names = list(entity.names)
                record.attributes = dict(entity.metadata)
                await session.commit()
        except SQLAlchemyError as exc:
            raise DirectoryError(f"Could not update entity {entity.id}: {exc}") from exc

    async def list_entities_for_room(self, room_id: UUID) -> list[Entity]:
        stmt = (
            select(EntityRecord)
            .join(RoomParticipant, RoomParticipant.entity_id == EntityRecord.entity_id)
            .where(RoomParticipant.room_id == room_id)
            .order_by(EntityRecord.created_at)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [_to_entity(record) for record in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise DirectoryError(f"Could not list entities for room {room_id}: {exc}") from exc

    async def list_rooms_for_agent(self) -> list[UUID]:
        stmt = select(RoomParticipant.room_id).distinct()
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise DirectoryError(f"Could not list rooms: {exc}") from exc

    async def add_to_room(self, entity_id: UUID, room_id: UUID) -> None:
        """Make an existing entity a participant of ``room_id`` (idempotent)."""
        try:
            async with self._session_factory() as session:
                existing = await session.get(RoomParticipant, (room_id, entity_id))
                if existing is None:
                    session.add(RoomParticipant(room_id=room_id, entity_id=entity_id))
                    await session.commit()
        except SQLAlchemyError as exc:
            raise DirectoryError(f"Could not add {entity_id} to room {room_id}: {exc}") from exc


def _swap(entity_id: UUID, moved_ids: set[UUID], to_id: UUID) -> UUID:
    return to_id if entity_id in moved_ids else entity_id


class SqlRelationshipRedirector:
    """Move relationship edges from merged-away entities onto the survivor.

    Edges that would become self-loops are dropped. When the survivor already
    has an edge for the same (source, target) pair the moved edge is dropped
    and the survivor keeps the higher strength.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def redirect(self, from_ids: Sequence[UUID], to_id: UUID) -> int:
        """Rewrite edges touching ``from_ids`` to touch ``to_id`` instead.

        Returns:
            Number of edges rewritten (dropped edges are not counted).
        """
        moved_ids = set(from_ids) - {to_id}
        if not moved_ids:
            return 0

        stmt = select(RelationshipRecord).where(
            or_(
                RelationshipRecord.source_entity_id.in_(moved_ids | {to_id}),
                RelationshipRecord.target_entity_id.in_(moved_ids | {to_id}),
            )
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                records = list(result.scalars().all())

                def _touches_moved(r: RelationshipRecord) -> bool:
                    return r.source_entity_id in moved_ids or r.target_entity_id in moved_ids

                occupied: dict[tuple[UUID, UUID], RelationshipRecord] = {
                    (r.source_entity_id, r.target_entity_id): r
                    for r in records
                    if not _touches_moved(r)
                }

                rewritten = 0
                dropped = 0
                for record in records:
                    if not _touches_moved(record):
                        continue
                    source = _swap(record.source_entity_id, moved_ids, to_id)
                    target = _swap(record.target_entity_id, moved_ids, to_id)

                    if source == target:
                        await session.delete(record)
                        dropped += 1
                        continue

                    survivor = occupied.get((source, target))
                    if survivor is not None:
                        survivor.strength = max(survivor.strength, record.strength)
                        await session.delete(record)
                        dropped += 1
                        continue

                    record.source_entity_id = source
                    record.target_entity_id = target
                    occupied[(source, target)] = record
                    rewritten += 1

                await session.commit()
        except SQLAlchemyError as exc:
            raise DirectoryError(f"Could not redirect relationships to {to_id}: {exc}") from exc

        logger.info(
            "Redirected %d relationships to %s (%d dropped)", rewritten, to_id, dropped
        )
        return rewritten
