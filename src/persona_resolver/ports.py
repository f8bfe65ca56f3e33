"""Collaborator ports consumed by the resolver.

Adapters for these live in ``persona_resolver.directory``,
``persona_resolver.clients`` and ``persona_resolver.events``; tests supply
in-memory doubles.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from uuid import UUID

    from persona_resolver.entity import Entity
    from persona_resolver.events import ResolverEvent


@runtime_checkable
class EntityDirectory(Protocol):
    """Persistent store of canonical entities (the source of durability)."""

    async def get_entity_by_id(self, entity_id: UUID) -> Entity | None: ...

    async def create_entity(self, entity: Entity, *, room_id: UUID | None = None) -> UUID: ...

    async def update_entity(self, entity: Entity) -> None: ...

    async def list_entities_for_room(self, room_id: UUID) -> list[Entity]: ...

    async def list_rooms_for_agent(self) -> list[UUID]: ...


@runtime_checkable
class SimilarityOracle(Protocol):
    """Natural-language judge. Replies are expected to contain a decimal in [0, 1]."""

    async def generate(self, prompt: str) -> str: ...


@runtime_checkable
class RelationshipRedirector(Protocol):
    """Moves relationship edges from absorbed entities onto the survivor."""

    async def redirect(self, from_ids: Sequence[UUID], to_id: UUID) -> int: ...


@runtime_checkable
class EventBus(Protocol):
    """Sink for resolver events."""

    async def emit(self, event: ResolverEvent) -> None: ...
