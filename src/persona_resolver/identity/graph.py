"""Per-entity identity graphs and their in-memory store.

Edges (cross references, trust paths) refer to other entities by id only, so
graphs never hold references to each other and can be dropped independently.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from persona_resolver.entity import PlatformIdentity, prefer_identity

logger = logging.getLogger(__name__)


@dataclass
class CrossReference:
    """A suspected link from one entity to another."""

    target_id: UUID
    linking_factor: str
    """``shared_platform_<platform>``, ``name_similarity`` or ``unknown_factor``."""

    confidence: float
    bidirectional: bool = False


@dataclass
class TrustEdge:
    """A trust-network path from the graph owner to another entity."""

    target_id: UUID
    path: list[UUID] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    score: float = 0.0
    length: int = 0


@dataclass
class BehaviorFingerprint:
    """Observed behaviour of an entity.

    Tag lists are kept as de-duplicated sets; the numeric profiles are
    samples and keep every observation.
    """

    style_tags: list[str] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    activity_patterns: list[str] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    response_times: list[float] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    sentiment_samples: list[float] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    topic_affinities: list[str] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]

    def absorb(self, other: BehaviorFingerprint) -> None:
        self.style_tags = _union(self.style_tags, other.style_tags)
        self.activity_patterns = _union(self.activity_patterns, other.activity_patterns)
        self.topic_affinities = _union(self.topic_affinities, other.topic_affinities)
        self.response_times.extend(other.response_times)
        self.sentiment_samples.extend(other.sentiment_samples)


def _union(first: list[str], second: list[str]) -> list[str]:
    return list(dict.fromkeys([*first, *second]))


@dataclass
class IdentityGraph:
    """Platform identities and links known for one entity."""

    entity_id: UUID
    platform_identities: dict[str, PlatformIdentity] = field(default_factory=dict)  # pyright: ignore[reportUnknownVariableType]
    cross_references: list[CrossReference] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    trust_network: list[TrustEdge] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    fingerprint: BehaviorFingerprint = field(default_factory=BehaviorFingerprint)

    def set_identity(self, identity: PlatformIdentity) -> None:
        """Store an identity; one per platform, higher confidence wins."""
        existing = self.platform_identities.get(identity.platform)
        if existing is None:
            self.platform_identities[identity.platform] = identity
        else:
            self.platform_identities[identity.platform] = prefer_identity(existing, identity)

    def reference_to(self, target_id: UUID) -> CrossReference | None:
        for ref in self.cross_references:
            if ref.target_id == target_id:
                return ref
        return None

    def add_cross_reference(self, ref: CrossReference) -> None:
        """Record a link, replacing an older one to the same target."""
        existing = self.reference_to(ref.target_id)
        if existing is None:
            self.cross_references.append(ref)
            return
        existing.linking_factor = ref.linking_factor
        existing.confidence = ref.confidence
        existing.bidirectional = existing.bidirectional or ref.bidirectional


class IdentityGraphStore:
    """In-memory identity graphs keyed by entity id.

    Owned by one resolver instance. Canonical entities live in the entity
    directory; these graphs are derived working state.
    """

    def __init__(self) -> None:
        self._graphs: dict[UUID, IdentityGraph] = {}

    def __len__(self) -> int:
        return len(self._graphs)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._graphs

    def get(self, entity_id: UUID) -> IdentityGraph | None:
        return self._graphs.get(entity_id)

    def get_or_create(self, entity_id: UUID) -> IdentityGraph:
        graph = self._graphs.get(entity_id)
        if graph is None:
            graph = IdentityGraph(entity_id=entity_id)
            self._graphs[entity_id] = graph
        return graph

    def put(self, graph: IdentityGraph) -> None:
        self._graphs[graph.entity_id] = graph

    def delete(self, entity_id: UUID) -> bool:
        return self._graphs.pop(entity_id, None) is not None

    def all(self) -> list[IdentityGraph]:
        return list(self._graphs.values())

    def clear(self) -> None:
        self._graphs.clear()

    def fold_into(self, primary_id: UUID, candidate_id: UUID) -> IdentityGraph:
        """Merge the candidate's graph into the primary's.

        Platform identities keep the higher-confidence side. Cross references
        and trust edges are unioned by target id, skipping edges between the
        two merged entities. The candidate's graph is left in place; callers
        drop it once every candidate has been folded.

        Returns:
            The primary's graph (created if it did not exist).
        """
        primary = self.get_or_create(primary_id)
        candidate = self._graphs.get(candidate_id)
        if candidate is None:
            return primary

        for identity in candidate.platform_identities.values():
            primary.set_identity(identity)

        merged_ids = {primary_id, candidate_id}
        for ref in candidate.cross_references:
            if ref.target_id in merged_ids or primary.reference_to(ref.target_id):
                continue
            primary.cross_references.append(ref)
        primary.cross_references = [
            ref for ref in primary.cross_references if ref.target_id not in merged_ids
        ]

        known_targets = {edge.target_id for edge in primary.trust_network}
        for edge in candidate.trust_network:
            if edge.target_id in merged_ids or edge.target_id in known_targets:
                continue
            primary.trust_network.append(edge)
            known_targets.add(edge.target_id)

        primary.fingerprint.absorb(candidate.fingerprint)
        logger.debug("Folded identity graph %s into %s", candidate_id, primary_id)
        return primary
