"""Cross-reference detection between a new entity and the known population.

Confidence for one (entity, other) pair is the mean over the factors that
fired:
- each platform both entities are known on: 0.8 when handle or user id is
  equal, 0.4 when the entity's handle contains the other's
- name similarity of the two name sets, scaled by 0.6 (always counted)

Pairs above the low-confidence threshold are recorded on both graphs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from persona_resolver.identity.graph import CrossReference

if TYPE_CHECKING:
    from collections.abc import Sequence

    from persona_resolver.config import ResolverConfig
    from persona_resolver.entity import Entity
    from persona_resolver.identity.graph import IdentityGraph, IdentityGraphStore
    from persona_resolver.resolution.similarity import SimilarityJudge

logger = logging.getLogger(__name__)

SHARED_ACCOUNT_SCORE = 0.8
HANDLE_OVERLAP_SCORE = 0.4
NAME_SIMILARITY_SCALE = 0.6


class CrossReferenceDetector:
    """Find and record likely links between one entity and all others."""

    def __init__(
        self,
        judge: SimilarityJudge,
        graphs: IdentityGraphStore,
        config: ResolverConfig,
    ) -> None:
        self._judge = judge
        self._graphs = graphs
        self._config = config

    async def detect(self, entity: Entity, others: Sequence[Entity]) -> list[CrossReference]:
        """Score ``entity`` against ``others`` and record links above threshold.

        The entity's graph gets a forward reference and each target's graph a
        back reference, both marked bidirectional.

        Returns:
            The references added to ``entity``'s graph.
        """
        graph = self._graphs.get_or_create(entity.id)
        added: list[CrossReference] = []

        for other in others:
            if other.id == entity.id:
                continue
            try:
                name_similarity = await self._judge.name_similarity(
                    entity.names, " ".join(other.names)
                )
                confidence = self.confidence(graph, other, name_similarity)
            except Exception:
                logger.exception(
                    "Cross-reference scoring failed for %s -> %s", entity.id, other.id
                )
                continue

            if confidence <= self._config.low_confidence:
                continue

            factor = self.linking_factor(graph, other, name_similarity)
            ref = CrossReference(
                target_id=other.id,
                linking_factor=factor,
                confidence=confidence,
                bidirectional=True,
            )
            graph.add_cross_reference(ref)
            self._graphs.get_or_create(other.id).add_cross_reference(
                CrossReference(
                    target_id=entity.id,
                    linking_factor=factor,
                    confidence=confidence,
                    bidirectional=True,
                )
            )
            added.append(ref)
            logger.debug(
                "Added cross-reference: %s -> %s (confidence: %.2f)",
                entity.id,
                other.id,
                confidence,
            )

        return added

    def confidence(self, graph: IdentityGraph, other: Entity, name_similarity: float) -> float:
        total = 0.0
        factors = 0
        other_identities = other.platform_identities()

        for platform, identity in graph.platform_identities.items():
            target = other_identities.get(platform)
            if target is None:
                continue
            if identity.same_account(target):
                total += SHARED_ACCOUNT_SCORE
                factors += 1
            elif (
                identity.handle
                and target.handle
                and target.handle.lower() in identity.handle.lower()
            ):
                total += HANDLE_OVERLAP_SCORE
                factors += 1

        total += name_similarity * NAME_SIMILARITY_SCALE
        factors += 1
        return total / factors

    def linking_factor(self, graph: IdentityGraph, other: Entity, name_similarity: float) -> str:
        other_identities = other.platform_identities()
        for platform in graph.platform_identities:
            if platform in other_identities:
                return f"shared_platform_{platform}"
        if name_similarity > self._config.name_similarity_min:
            return "name_similarity"
        return "unknown_factor"
