"""Entity resolution facade.

``EntityResolver`` wires the pipeline together and exposes the public API:

    resolve_entity  -> candidate finder -> scorer (per candidate)
                    -> contextual disambiguation -> conflict detection
                    -> cache write -> entity-resolved event

    record_platform_claim / record_platform_confirmation
                    -> verification ledger -> merge proposals
                    -> auto-merge or review event

Each resolver instance owns its cache, identity graphs, ledger and pending
merge table; nothing is shared between instances.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from persona_resolver.config import ResolverConfig
from persona_resolver.entity import (
    PLATFORM_IDENTITIES_KEY,
    Entity,
    identities_to_metadata,
)
from persona_resolver.errors import EntityNotFoundError, MergeExecutionError
from persona_resolver.events import ResolverEvent, emit_safely
from persona_resolver.identity.graph import IdentityGraph, IdentityGraphStore
from persona_resolver.merging.executor import MergeExecutor, MergeOptions
from persona_resolver.merging.proposal import (
    EntityMergeProposal,
    PendingMergeTable,
    PreservedData,
    RiskAssessment,
    build_merge_proposal,
)
from persona_resolver.models.enums import (
    ClaimSource,
    ConfirmationMethod,
    EventType,
    MergeStrategy,
)
from persona_resolver.resolution.cache import ResolutionCache
from persona_resolver.resolution.candidate_pool import CandidateFinder
from persona_resolver.resolution.cross_reference import CrossReferenceDetector
from persona_resolver.resolution.disambiguation import (
    apply_contextual_disambiguation,
    detect_conflicts,
)
from persona_resolver.resolution.scoring import MatchScorer
from persona_resolver.resolution.similarity import SimilarityJudge
from persona_resolver.resolution.types import ResolutionContext
from persona_resolver.verification.ledger import VerificationLedger
from persona_resolver.verification.protocol import BidirectionalVerifier

if TYPE_CHECKING:
    from collections.abc import Sequence

    from persona_resolver.entity import PlatformIdentity
    from persona_resolver.ports import (
        EntityDirectory,
        EventBus,
        RelationshipRedirector,
        SimilarityOracle,
    )
    from persona_resolver.resolution.types import EntityResolutionCandidate
    from persona_resolver.verification.ledger import PlatformClaim, PlatformConfirmation

logger = logging.getLogger(__name__)

CREATED_BY = "entity-resolution"


class EntityResolver:
    """Resolve identifiers to canonical entities and reconcile duplicates.

    Usage:
        resolver = EntityResolver(directory, OpenAIOracle(), events=InMemoryEventBus())
        candidates = await resolver.resolve_entity("alice", ResolutionContext(room_id=room))
        claim_id = await resolver.record_platform_claim(
            claimed_by=speaker, claimed_from=speaker, claimed_about=speaker,
            platform="twitter", handle="@alice", confidence=0.8,
        )
    """

    def __init__(
        self,
        directory: EntityDirectory,
        oracle: SimilarityOracle,
        *,
        redirector: RelationshipRedirector | None = None,
        events: EventBus | None = None,
        config: ResolverConfig | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            directory: Store of canonical entities.
            oracle: Natural-language similarity judge.
            redirector: Relationship collaborator used during merges.
            events: Event sink; events are dropped when None.
            config: Thresholds and weights (default from settings).
        """
        self.config = config or ResolverConfig.from_settings()
        self._directory = directory
        self._events = events

        self.cache = ResolutionCache(max_size=self.config.cache_max_size)
        self.graphs = IdentityGraphStore()
        self.ledger = VerificationLedger()
        self.pending = PendingMergeTable()

        judge = SimilarityJudge(oracle, conversation_window=self.config.conversation_window)
        self._finder = CandidateFinder(directory)
        self._scorer = MatchScorer(judge, self.config)
        self._cross_references = CrossReferenceDetector(judge, self.graphs, self.config)
        self._executor = MergeExecutor(
            directory, self.graphs, redirector=redirector, events=events
        )
        self._verifier = BidirectionalVerifier(
            self.ledger,
            self.pending,
            directory,
            self._executor,
            self.config,
            events=events,
        )

    # ── Resolution ───────────────────────────────────────────────────────────

    async def resolve_entity(
        self,
        identifier: str,
        context: ResolutionContext | None = None,
        platform_hint: str | None = None,
    ) -> list[EntityResolutionCandidate]:
        """Rank the entities ``identifier`` may refer to.

        Never raises for directory or oracle faults; degraded collaborators
        yield shorter or lower-confidence lists instead.

        Args:
            identifier: Name, alias or platform handle.
            context: Situational context (room, conversation, trust).
            platform_hint: Platform whose handles should also be searched.

        Returns:
            Candidates sorted by descending confidence, at most
            ``config.max_candidates`` of them.
        """
        context = context or ResolutionContext()

        cached = self.cache.get(identifier, context, platform_hint)
        if cached is not None:
            logger.debug("Cache hit for identifier: %s", identifier)
            return cached

        logger.debug("Resolving entity: %s with platform hint: %s", identifier, platform_hint)
        try:
            candidates = await self._finder.find(identifier, context, platform_hint)
            population = await self._finder.known_entities() if candidates else []
            scored = await asyncio.gather(
                *(
                    self._scorer.score(c, identifier, context, population=population)
                    for c in candidates
                )
            )
            adjusted = apply_contextual_disambiguation(scored, context, self.config)
            ranked = detect_conflicts(adjusted, self.config)
        except Exception:
            logger.exception("Error resolving entity %s", identifier)
            return []

        self.cache.put(identifier, context, platform_hint, ranked)

        if ranked:
            best = ranked[0]
            await emit_safely(
                self._events,
                ResolverEvent(
                    type=EventType.ENTITY_RESOLVED,
                    entity_id=best.entity_id,
                    payload={
                        "identifier": identifier,
                        "confidence": best.confidence,
                        "candidate_count": len(ranked),
                        "platform_hint": platform_hint,
                        "room_id": str(context.room_id) if context.room_id else None,
                    },
                ),
            )

        return ranked

    async def create_entity_with_identity(
        self,
        name: str,
        context: ResolutionContext | None = None,
        platform_identities: Sequence[PlatformIdentity] = (),
        metadata: dict[str, Any] | None = None,
    ) -> UUID:
        """Create an entity, build its identity graph and link it to look-alikes.

        Raises:
            Exception: Whatever the directory raised when the write failed.
        """
        context = context or ResolutionContext()
        graph = IdentityGraph(entity_id=uuid4())
        for identity in platform_identities:
            graph.set_identity(identity)

        entity = Entity(
            id=graph.entity_id,
            names=[name],
            metadata={
                **(metadata or {}),
                "created_at": datetime.now(tz=UTC).isoformat(),
                "created_by": CREATED_BY,
                PLATFORM_IDENTITIES_KEY: identities_to_metadata(graph.platform_identities),
            },
        )

        try:
            entity_id = await self._directory.create_entity(entity, room_id=context.room_id)
        except Exception:
            logger.exception("Error creating entity %s", name)
            raise

        if entity_id != entity.id:
            entity = Entity(id=entity_id, names=entity.names, metadata=entity.metadata)
            graph.entity_id = entity_id
        self.graphs.put(graph)

        others = await self._finder.known_entities(exclude=entity_id)
        await self._cross_references.detect(entity, others)

        await emit_safely(
            self._events,
            ResolverEvent(
                type=EventType.ENTITY_CREATED,
                entity_id=entity_id,
                payload={
                    "name": name,
                    "platform_identities": len(graph.platform_identities),
                    "room_id": str(context.room_id) if context.room_id else None,
                },
            ),
        )

        logger.info(
            "Created entity %s with %d platform identities",
            entity_id,
            len(graph.platform_identities),
        )
        return entity_id

    # ── Merging ──────────────────────────────────────────────────────────────

    async def propose_entity_merges(self, entity_id: UUID) -> list[EntityMergeProposal]:
        """Proposals for cross references above the manual-review threshold.

        Returns an empty list for entities without an identity graph.
        """
        graph = self.graphs.get(entity_id)
        if graph is None:
            return []

        refs = sorted(
            (r for r in graph.cross_references if r.confidence > self.config.review_threshold),
            key=lambda r: r.confidence,
            reverse=True,
        )
        if not refs:
            return []

        proposals: list[EntityMergeProposal] = []
        try:
            primary = await self._directory.get_entity_by_id(entity_id)
            if primary is None:
                return []
            for ref in refs:
                candidate = await self._directory.get_entity_by_id(ref.target_id)
                if candidate is None:
                    continue
                proposals.append(build_merge_proposal(primary, candidate, ref.confidence))
        except Exception:
            logger.exception("Error proposing merges for %s", entity_id)
        return proposals

    async def execute_merge(
        self,
        proposal: EntityMergeProposal,
        *,
        update_relationships: bool = True,
    ) -> bool:
        """Apply ``proposal``; see ``MergeExecutor.execute``."""
        success = await self._executor.execute(
            proposal, update_relationships=update_relationships
        )
        if success:
            self.pending.discard(proposal.key)
        return success

    async def merge_entities(
        self,
        primary_id: UUID,
        candidate_ids: Sequence[UUID],
        options: MergeOptions | None = None,
    ) -> Entity:
        """Merge ``candidate_ids`` into ``primary_id`` without a proposal round.

        Raises:
            MergeExecutionError: If the merge could not be executed.
            EntityNotFoundError: If the merged entity cannot be reloaded.
        """
        options = options or MergeOptions()
        automatic = options.strategy == "automatic"
        proposal = EntityMergeProposal(
            primary_id=primary_id,
            candidate_ids=list(candidate_ids),
            confidence=1.0,
            strategy=MergeStrategy.ABSORB if automatic else MergeStrategy.MERGE,
            risk=RiskAssessment(
                data_loss=0.2, trust_impact=0.2, relationship_impact=0.3, overall=0.23
            ),
        )

        try:
            if options.preserve_history:
                proposal.preserved_data.extend(await self._preserve(proposal.candidate_ids))
            success = await self.execute_merge(
                proposal, update_relationships=options.update_relationships
            )
        except Exception as exc:
            raise MergeExecutionError(f"Failed to merge entities into {primary_id}: {exc}") from exc
        if not success:
            raise MergeExecutionError(f"Failed to merge entities into {primary_id}")

        merged = await self._directory.get_entity_by_id(primary_id)
        if merged is None:
            raise EntityNotFoundError(primary_id)
        return merged

    async def _preserve(self, candidate_ids: Sequence[UUID]) -> list[PreservedData]:
        preserved: list[PreservedData] = []
        for candidate_id in candidate_ids:
            candidate = await self._directory.get_entity_by_id(candidate_id)
            if candidate is None:
                continue
            preserved.append(
                PreservedData(
                    entity_id=candidate_id,
                    field="snapshot",
                    value={"names": list(candidate.names), "metadata": candidate.metadata},
                    reason="Preserved before merge",
                )
            )
        return preserved

    # ── Bidirectional verification ───────────────────────────────────────────

    async def record_platform_claim(
        self,
        *,
        claimed_by: UUID,
        claimed_from: UUID,
        claimed_about: UUID,
        platform: str,
        handle: str,
        confidence: float,
        source: ClaimSource = ClaimSource.USER_STATEMENT,
        evidence: str = "",
    ) -> str:
        """Record that ``claimed_by`` says ``platform:handle`` belongs to ``claimed_about``."""
        return await self._verifier.record_claim(
            claimed_by=claimed_by,
            claimed_from=claimed_from,
            claimed_about=claimed_about,
            platform=platform,
            handle=handle,
            confidence=confidence,
            source=source,
            evidence=evidence,
        )

    async def record_platform_confirmation(
        self,
        *,
        confirmed_by: UUID,
        confirms_entity: UUID,
        platform: str,
        handle: str,
        confirms_claim: str,
        confidence: float,
        method: ConfirmationMethod = ConfirmationMethod.DIRECT_STATEMENT,
        evidence: str = "",
    ) -> bool:
        """Record corroboration of a claim. True when verification completed."""
        return await self._verifier.record_confirmation(
            confirmed_by=confirmed_by,
            confirms_entity=confirms_entity,
            platform=platform,
            handle=handle,
            confirms_claim=confirms_claim,
            confidence=confidence,
            method=method,
            evidence=evidence,
        )

    async def get_pending_merges(self) -> list[EntityMergeProposal]:
        return self.pending.values()

    async def approve_pending_merge(self, key: str, approver_id: UUID) -> bool:
        return await self._verifier.approve(key, approver_id)

    async def get_platform_claims(
        self, platform: str | None = None, handle: str | None = None
    ) -> list[PlatformClaim]:
        return self.ledger.claims(platform, handle)

    async def get_platform_confirmations(
        self, platform: str | None = None, handle: str | None = None
    ) -> list[PlatformConfirmation]:
        return self.ledger.confirmations(platform, handle)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def stop(self) -> None:
        """Drop cached results, identity graphs and pending proposals."""
        self.cache.clear()
        self.graphs.clear()
        self.pending.clear()
        logger.info("Entity resolver stopped")
