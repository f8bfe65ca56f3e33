"""Bidirectional evidence derived from the claim/confirmation ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from uuid import UUID

from persona_resolver.verification.ledger import (
    PlatformClaim,
    PlatformConfirmation,
    platform_key,
)

if TYPE_CHECKING:
    from persona_resolver.verification.ledger import VerificationLedger

# Per-entity contribution to bidirectional strength
BOTH_SIDES_STRENGTH = 0.5
ONE_SIDE_STRENGTH = 0.2


@dataclass
class BidirectionalEvidence:
    """Combined claim and confirmation strength for one ``platform:handle`` key.

    Never stored on its own; always recomputed from the full ledger.
    """

    platform: str
    handle: str
    claims_by_entity: dict[UUID, list[PlatformClaim]] = field(default_factory=dict)  # pyright: ignore[reportUnknownVariableType]
    confirmations_by_entity: dict[UUID, list[PlatformConfirmation]] = field(default_factory=dict)  # pyright: ignore[reportUnknownVariableType]
    strength: float = 0.0
    required_confirmations: int = 0
    """Number of distinct entities with a claim or a confirmation on the key."""

    received_confirmations: int = 0
    """Number of distinct entities with at least one confirmation."""

    @property
    def key(self) -> str:
        return platform_key(self.platform, self.handle)

    @property
    def requires_confirmation(self) -> bool:
        return self.received_confirmations < self.required_confirmations


def compute_bidirectional_evidence(
    ledger: VerificationLedger,
    platform: str,
    handle: str,
) -> BidirectionalEvidence:
    """Recompute evidence for one key from every ledger entry on it.

    Each entity with both a claim and a confirmation adds 0.5; an entity with
    only one side adds 0.2. The sum is capped at 1.0.
    """
    claims_by_entity: dict[UUID, list[PlatformClaim]] = {}
    for claim in ledger.claims(platform, handle):
        claims_by_entity.setdefault(claim.claimed_about, []).append(claim)

    confirmations_by_entity: dict[UUID, list[PlatformConfirmation]] = {}
    for confirmation in ledger.confirmations(platform, handle):
        confirmations_by_entity.setdefault(confirmation.confirms_entity, []).append(confirmation)

    entities = list(dict.fromkeys([*claims_by_entity, *confirmations_by_entity]))
    strength = 0.0
    for entity_id in entities:
        has_claim = entity_id in claims_by_entity
        has_confirmation = entity_id in confirmations_by_entity
        if has_claim and has_confirmation:
            strength += BOTH_SIDES_STRENGTH
        else:
            strength += ONE_SIDE_STRENGTH

    return BidirectionalEvidence(
        platform=platform,
        handle=handle,
        claims_by_entity=claims_by_entity,
        confirmations_by_entity=confirmations_by_entity,
        strength=min(1.0, strength),
        required_confirmations=len(entities),
        received_confirmations=len(confirmations_by_entity),
    )
