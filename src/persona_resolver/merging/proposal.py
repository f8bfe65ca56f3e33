"""Merge proposals: conflict analysis, risk assessment and the pending table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from persona_resolver.entity import PLATFORM_IDENTITIES_KEY
from persona_resolver.models.enums import ConflictRule, MergeStrategy

if TYPE_CHECKING:
    from persona_resolver.entity import Entity
    from persona_resolver.verification.evidence import BidirectionalEvidence

logger = logging.getLogger(__name__)

# Proposals more confident than this absorb candidates instead of merging fields
ABSORB_THRESHOLD = 0.9

# Metadata keys written by the merge executor itself; never reported as conflicts
BOOKKEEPING_KEYS = frozenset(
    {PLATFORM_IDENTITIES_KEY, "merged_at", "merged_from", "merge_strategy", "merge_history"}
)

NAMES_FIELD = "names"
METADATA_PREFIX = "metadata."


def pair_key(*entity_ids: UUID) -> str:
    """Order-independent key for a set of entities, e.g. ``"<a>:<b>"``."""
    return ":".join(sorted(str(entity_id) for entity_id in entity_ids))


@dataclass
class FieldConflict:
    """How one differing field is to be resolved during a merge."""

    field: str
    """``names`` or ``metadata.<key>``."""

    primary_value: Any
    candidate_values: list[Any]
    resolution: ConflictRule
    confidence: float


@dataclass
class PreservedData:
    """Audit record carried on a proposal and written to ``merge_history``."""

    entity_id: UUID
    field: str
    value: Any
    reason: str

    def to_metadata(self) -> dict[str, Any]:
        return {
            "entity_id": str(self.entity_id),
            "field": self.field,
            "value": self.value,
            "reason": self.reason,
        }


@dataclass
class RiskAssessment:
    data_loss: float
    trust_impact: float
    relationship_impact: float
    overall: float

    @classmethod
    def from_components(
        cls, data_loss: float, trust_impact: float, relationship_impact: float
    ) -> RiskAssessment:
        """Overall risk is the mean of the three components."""
        return cls(
            data_loss=data_loss,
            trust_impact=trust_impact,
            relationship_impact=relationship_impact,
            overall=(data_loss + trust_impact + relationship_impact) / 3,
        )


@dataclass
class PendingConfirmation:
    """A confirmation the proposal is still waiting on."""

    platform: str
    handle: str
    required_from: UUID
    claimed_by: UUID
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass
class EntityMergeProposal:
    """A pending decision to fold candidate entities into a primary entity."""

    primary_id: UUID
    candidate_ids: list[UUID]
    confidence: float
    strategy: MergeStrategy
    risk: RiskAssessment
    conflict_resolution: list[FieldConflict] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    preserved_data: list[PreservedData] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    bidirectional_evidence: BidirectionalEvidence | None = None
    requires_confirmation: bool = False
    pending_confirmations: list[PendingConfirmation] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]

    @property
    def key(self) -> str:
        return pair_key(self.primary_id, *self.candidate_ids)

    def involves(self, entity_id: UUID) -> bool:
        return entity_id == self.primary_id or entity_id in self.candidate_ids


def strategy_for(confidence: float) -> MergeStrategy:
    return MergeStrategy.ABSORB if confidence > ABSORB_THRESHOLD else MergeStrategy.MERGE


def analyze_entity_conflicts(primary: Entity, candidate: Entity) -> list[FieldConflict]:
    """List the fields where ``candidate`` disagrees with ``primary``.

    Names the primary lacks are merged; metadata values the primary already
    holds with a different value need manual review. Keys the primary does
    not set are not conflicts.
    """
    conflicts: list[FieldConflict] = []

    new_names = [name for name in candidate.names if name not in primary.names]
    if new_names:
        conflicts.append(
            FieldConflict(
                field=NAMES_FIELD,
                primary_value=list(primary.names),
                candidate_values=[new_names],
                resolution=ConflictRule.MERGE_ALL,
                confidence=0.9,
            )
        )

    for key, value in candidate.metadata.items():
        if key in BOOKKEEPING_KEYS:
            continue
        current = primary.metadata.get(key)
        if current and current != value:
            conflicts.append(
                FieldConflict(
                    field=f"{METADATA_PREFIX}{key}",
                    primary_value=current,
                    candidate_values=[value],
                    resolution=ConflictRule.MANUAL_REVIEW,
                    confidence=0.5,
                )
            )

    return conflicts


def build_merge_proposal(
    primary: Entity,
    candidate: Entity,
    confidence: float,
) -> EntityMergeProposal:
    """Proposal for folding ``candidate`` into ``primary`` at ``confidence``."""
    conflicts = analyze_entity_conflicts(primary, candidate)
    return EntityMergeProposal(
        primary_id=primary.id,
        candidate_ids=[candidate.id],
        confidence=confidence,
        strategy=strategy_for(confidence),
        conflict_resolution=conflicts,
        risk=RiskAssessment.from_components(
            data_loss=0.7 if len(conflicts) > 3 else 0.3,
            trust_impact=0.2,
            relationship_impact=0.4,
        ),
    )


class PendingMergeTable:
    """Proposals awaiting confirmation or review, keyed by sorted entity ids.

    Owned by one resolver instance. A proposal stays here until it is
    executed; rejected proposals are removed with ``discard``.
    """

    def __init__(self) -> None:
        self._proposals: dict[str, EntityMergeProposal] = {}

    def __len__(self) -> int:
        return len(self._proposals)

    def __contains__(self, key: object) -> bool:
        return key in self._proposals

    def get(self, key: str) -> EntityMergeProposal | None:
        return self._proposals.get(key)

    def put(self, proposal: EntityMergeProposal) -> None:
        self._proposals[proposal.key] = proposal

    def discard(self, key: str) -> EntityMergeProposal | None:
        return self._proposals.pop(key, None)

    def values(self) -> list[EntityMergeProposal]:
        return list(self._proposals.values())

    def touching(self, entity_id: UUID) -> list[EntityMergeProposal]:
        """Proposals that have ``entity_id`` as primary or candidate."""
        return [p for p in self._proposals.values() if p.involves(entity_id)]

    def clear(self) -> None:
        self._proposals.clear()
