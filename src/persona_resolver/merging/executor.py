"""Merge execution against the entity directory and identity graphs.

Loading, combining and persisting the primary entity happen before any
write and abort the merge on failure. Folding graphs, redirecting
relationships and dropping candidate graphs come after the single write;
they are best-effort and safe to re-run.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from persona_resolver.entity import (
    PLATFORM_IDENTITIES_KEY,
    Entity,
    identities_to_metadata,
    prefer_identity,
)
from persona_resolver.events import ResolverEvent, emit_safely
from persona_resolver.merging.proposal import METADATA_PREFIX
from persona_resolver.models.enums import ConflictRule, EventType

if TYPE_CHECKING:
    from uuid import UUID

    from persona_resolver.identity.graph import IdentityGraphStore
    from persona_resolver.merging.proposal import EntityMergeProposal
    from persona_resolver.ports import EntityDirectory, EventBus, RelationshipRedirector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeOptions:
    """Options for a direct (caller-requested) merge."""

    strategy: str = "automatic"
    """``"automatic"`` absorbs candidates; anything else merges field by field."""

    update_relationships: bool = True
    preserve_history: bool = True


def _merge_values(current: Any, incoming: Any) -> Any:
    """Union of two metadata values, primary side first."""
    if current is None:
        return copy.deepcopy(incoming)
    if isinstance(current, dict) and isinstance(incoming, dict):
        merged = copy.deepcopy(incoming)
        merged.update(current)
        return merged
    current_items = current if isinstance(current, list) else [current]
    incoming_items = incoming if isinstance(incoming, list) else [incoming]
    result: list[Any] = []
    for item in [*current_items, *incoming_items]:
        if item not in result:
            result.append(item)
    return result


class MergeExecutor:
    """Apply merge proposals.

    Usage:
        executor = MergeExecutor(directory, graphs, redirector=redirector, events=bus)
        ok = await executor.execute(proposal)
    """

    def __init__(
        self,
        directory: EntityDirectory,
        graphs: IdentityGraphStore,
        *,
        redirector: RelationshipRedirector | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._directory = directory
        self._graphs = graphs
        self._redirector = redirector
        self._events = events

    async def execute(
        self,
        proposal: EntityMergeProposal,
        *,
        update_relationships: bool = True,
    ) -> bool:
        """Fold the proposal's candidates into its primary entity.

        Args:
            proposal: A vetted merge proposal.
            update_relationships: Ask the relationship collaborator to move
                edges from the candidates onto the primary.

        Returns:
            True once the primary has been persisted. False when the primary
            is missing or loading, combining or persisting failed; nothing
            has been written in that case, or when the proposal still
            requires confirmation.
        """
        if proposal.requires_confirmation:
            logger.warning("Merge %s still requires confirmation; not executing", proposal.key)
            return False

        try:
            primary = await self._directory.get_entity_by_id(proposal.primary_id)
            if primary is None:
                logger.warning("Merge aborted: primary entity %s not found", proposal.primary_id)
                return False

            candidates: list[Entity] = []
            for candidate_id in proposal.candidate_ids:
                candidate = await self._directory.get_entity_by_id(candidate_id)
                if candidate is None:
                    logger.warning("Merge candidate %s not found; skipping", candidate_id)
                    continue
                candidates.append(candidate)

            logger.info(
                "Executing merge: %d entities into %s", len(candidates), proposal.primary_id
            )
            before = primary.snapshot()
            merged = self.combine(primary, candidates, proposal)
            await self._directory.update_entity(merged)
        except Exception:
            logger.exception("Error executing merge into %s", proposal.primary_id)
            return False

        folded = self._fold_graphs(proposal)
        if update_relationships:
            await self._redirect(proposal)
        for candidate_id in folded:
            self._graphs.delete(candidate_id)

        await emit_safely(
            self._events,
            ResolverEvent(
                type=EventType.ENTITY_MERGED,
                entity_id=proposal.primary_id,
                payload={
                    "merged_entity_ids": [str(c.id) for c in candidates],
                    "before": before,
                    "after": merged.snapshot(),
                    "merged_entities": [c.snapshot() for c in candidates],
                    "merge_strategy": proposal.strategy.value,
                    "confidence": proposal.confidence,
                    "risk_overall": proposal.risk.overall,
                },
            ),
        )

        logger.info(
            "Successfully merged %d entities into %s", len(candidates), proposal.primary_id
        )
        return True

    def combine(
        self,
        primary: Entity,
        candidates: list[Entity],
        proposal: EntityMergeProposal,
    ) -> Entity:
        """Build the merged primary without touching the inputs."""
        names = list(primary.names)
        for candidate in candidates:
            for name in candidate.names:
                if name not in names:
                    names.append(name)

        metadata = copy.deepcopy(primary.metadata)
        for conflict in proposal.conflict_resolution:
            if not conflict.field.startswith(METADATA_PREFIX):
                continue
            key = conflict.field.removeprefix(METADATA_PREFIX)
            if conflict.resolution == ConflictRule.MERGE_ALL:
                for value in conflict.candidate_values:
                    metadata[key] = _merge_values(metadata.get(key), value)
            elif conflict.resolution == ConflictRule.MANUAL_REVIEW:
                logger.warning(
                    "Unresolved field %s on %s left for manual review",
                    conflict.field,
                    primary.id,
                )

        identities = primary.platform_identities()
        for candidate in candidates:
            for platform, identity in candidate.platform_identities().items():
                existing = identities.get(platform)
                identities[platform] = (
                    identity if existing is None else prefer_identity(existing, identity)
                )
        if identities:
            metadata[PLATFORM_IDENTITIES_KEY] = identities_to_metadata(identities)

        metadata["merged_at"] = datetime.now(tz=UTC).isoformat()
        metadata["merged_from"] = [str(candidate_id) for candidate_id in proposal.candidate_ids]
        metadata["merge_strategy"] = proposal.strategy.value
        if proposal.preserved_data:
            history = list(metadata.get("merge_history") or [])
            history.extend(item.to_metadata() for item in proposal.preserved_data)
            metadata["merge_history"] = history

        return Entity(id=primary.id, names=names, metadata=metadata)

    def _fold_graphs(self, proposal: EntityMergeProposal) -> list[UUID]:
        """Fold each candidate graph into the primary's.

        Returns the candidates that folded. The others keep their graphs so a
        later re-run can finish the fold.
        """
        folded: list[UUID] = []
        for candidate_id in proposal.candidate_ids:
            try:
                self._graphs.fold_into(proposal.primary_id, candidate_id)
            except Exception:
                logger.warning(
                    "Could not fold identity graph %s into %s; keeping it",
                    candidate_id,
                    proposal.primary_id,
                    exc_info=True,
                )
                continue
            folded.append(candidate_id)
        return folded

    async def _redirect(self, proposal: EntityMergeProposal) -> None:
        if self._redirector is None:
            return
        try:
            moved = await self._redirector.redirect(proposal.candidate_ids, proposal.primary_id)
            logger.info("Redirected %d relationships to %s", moved, proposal.primary_id)
        except Exception:
            logger.warning(
                "Relationship redirect to %s failed", proposal.primary_id, exc_info=True
            )
