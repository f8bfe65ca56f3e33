"""Candidate retrieval from the entity directory.

Two lookups feed the candidate pool:
- name substring search scoped to the current room
- cross-room platform handle / user id scan when a platform hint is given

Directory failures are logged and swallowed per lookup, so a flaky
directory yields a shorter candidate list rather than a failed resolve.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from persona_resolver.resolution.types import EntityResolutionCandidate

if TYPE_CHECKING:
    from uuid import UUID

    from persona_resolver.entity import Entity
    from persona_resolver.ports import EntityDirectory
    from persona_resolver.resolution.types import ResolutionContext

logger = logging.getLogger(__name__)


def _names_overlap(names: list[str], identifier: str) -> bool:
    needle = identifier.lower()
    for name in names:
        hay = name.lower()
        if not hay:
            continue
        if needle in hay or hay in needle:
            return True
    return False


def _matches_platform(entity: Entity, platform: str, identifier: str) -> bool:
    identity = entity.platform_identities().get(platform)
    if identity is None:
        return False
    if identity.handle == identifier or (identity.user_id and identity.user_id == identifier):
        return True
    return bool(identity.handle) and identity.handle.lower() in identifier.lower()


class CandidateFinder:
    """Look up entities an identifier might refer to.

    Usage:
        finder = CandidateFinder(directory)
        candidates = await finder.find("alice", context, platform_hint="twitter")
    """

    def __init__(self, directory: EntityDirectory) -> None:
        self._directory = directory

    async def find(
        self,
        identifier: str,
        context: ResolutionContext,
        platform_hint: str | None = None,
    ) -> list[EntityResolutionCandidate]:
        """Return deduplicated, unscored candidates for ``identifier``.

        Args:
            identifier: Name, alias or handle being resolved.
            context: Resolution context; its room scopes the name search.
            platform_hint: Platform whose handles should be scanned across rooms.

        Returns:
            Candidate stubs in discovery order (room matches first).
        """
        candidates: list[EntityResolutionCandidate] = []
        seen: set[UUID] = set()

        for entity in await self.search_by_name(identifier, context):
            if entity.id not in seen:
                seen.add(entity.id)
                candidates.append(EntityResolutionCandidate.stub(entity))

        if platform_hint:
            for entity in await self.search_by_platform(platform_hint, identifier):
                if entity.id not in seen:
                    seen.add(entity.id)
                    candidates.append(EntityResolutionCandidate.stub(entity))

        return candidates

    async def search_by_name(self, identifier: str, context: ResolutionContext) -> list[Entity]:
        """Entities in the context room whose names contain (or are contained in) identifier."""
        if context.room_id is None:
            return []
        try:
            room_entities = await self._directory.list_entities_for_room(context.room_id)
        except Exception:
            logger.exception("Name search failed for room %s", context.room_id)
            return []
        return [entity for entity in room_entities if _names_overlap(entity.names, identifier)]

    async def search_by_platform(self, platform: str, identifier: str) -> list[Entity]:
        """Entities in any of the agent's rooms known by ``identifier`` on ``platform``."""
        matches: list[Entity] = []
        for entity in await self.known_entities():
            if _matches_platform(entity, platform, identifier):
                matches.append(entity)
        return matches

    async def known_entities(self, *, exclude: UUID | None = None) -> list[Entity]:
        """Every entity in every room the agent participates in, deduplicated.

        Rooms that fail to load are skipped; if the room list itself fails the
        result is empty.
        """
        try:
            room_ids = await self._directory.list_rooms_for_agent()
        except Exception:
            logger.exception("Could not list rooms for agent")
            return []

        entities: list[Entity] = []
        seen: set[UUID] = set()
        for room_id in room_ids:
            try:
                room_entities = await self._directory.list_entities_for_room(room_id)
            except Exception:
                logger.exception("Could not list entities for room %s", room_id)
                continue
            for entity in room_entities:
                if entity.id == exclude or entity.id in seen:
                    continue
                seen.add(entity.id)
                entities.append(entity)
        return entities
