"""Match and risk scoring for resolution candidates.

Confidence for one candidate:

    confidence = Σ(weight_i · confidence_i) / Σ(weight_i)      over match factors
               - Σ(penalty[severity_j] · confidence_j)          over risk factors

clamped to [0, 1]. Match factors:
- exact-name: case-insensitive equality with any display name (confidence 1.0)
- similar-name: oracle name similarity, accepted above ``name_similarity_min``
- platform-identity: handle equals identifier (1.0 verified, 0.8 otherwise)
- contextual-hint: oracle reading of the conversation window, accepted above
  ``context_hint_min``

Risk factors:
- potential-duplicate (medium): another known entity is name-similar or
  shares an account on the same platform
- identity-conflict (high): the entity's own platform identities disagree on
  one handle, or the identifier only partially matches a known handle
"""

from __future__ import annotations

import asyncio
import logging
from itertools import combinations
from typing import TYPE_CHECKING

from persona_resolver.models.enums import (
    MatchFactorType,
    RiskFactorType,
    RiskSeverity,
)
from persona_resolver.resolution.types import (
    CrossPlatformIndicator,
    EntityResolutionCandidate,
    MatchFactor,
    RiskFactor,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from persona_resolver.config import ResolverConfig
    from persona_resolver.entity import Entity
    from persona_resolver.resolution.similarity import SimilarityJudge
    from persona_resolver.resolution.types import ResolutionContext

logger = logging.getLogger(__name__)

# Risk factor confidences
DUPLICATE_RISK_CONFIDENCE = 0.7
CONFLICT_RISK_CONFIDENCE = 0.8

# Two identities on one handle disagreeing by more than this is a conflict
CONFIDENCE_MISMATCH_MARGIN = 0.3

UNVERIFIED_PLATFORM_CONFIDENCE = 0.8


def combine_confidence(
    match_factors: Sequence[MatchFactor],
    risk_factors: Sequence[RiskFactor],
    penalties: Mapping[RiskSeverity, float],
) -> float:
    """Weighted mean of match confidences minus risk penalties, clamped to [0, 1]."""
    total_weight = sum(factor.weight for factor in match_factors)
    confidence = 0.0
    if total_weight > 0:
        confidence = sum(f.confidence * f.weight for f in match_factors) / total_weight

    for risk in risk_factors:
        confidence -= penalties.get(risk.severity, 0.0) * risk.confidence

    return max(0.0, min(1.0, confidence))


def detect_identity_conflicts(entity: Entity, identifier: str) -> list[str]:
    """Describe disagreements among an entity's platform identities.

    Checks every pair of platforms that share a handle for mismatched
    verification or confidence, and flags identifiers that contain a known
    handle without being equal to it.
    """
    conflicts: list[str] = []
    identities = entity.platform_identities()

    for (p1, id1), (p2, id2) in combinations(identities.items(), 2):
        if not id1.handle or not id2.handle:
            continue
        if id1.handle.lower() == id2.handle.lower() and id1.verified != id2.verified:
            conflicts.append(
                f"Verification mismatch between {p1} and {p2} for handle {id1.handle}"
            )
        if (
            id1.handle == id2.handle
            and abs(id1.confidence - id2.confidence) > CONFIDENCE_MISMATCH_MARGIN
        ):
            conflicts.append(
                f"Confidence score mismatch for handle {id1.handle} between {p1} and {p2}"
            )

    needle = identifier.lower()
    for platform, identity in identities.items():
        if not identity.handle:
            continue
        handle = identity.handle.lower()
        if handle in needle and handle != needle:
            conflicts.append(
                f'Partial match between identifier "{identifier}" and known handle '
                f'"{identity.handle}" on {platform}'
            )

    return conflicts


def cross_platform_indicators(entity: Entity) -> list[CrossPlatformIndicator]:
    """One indicator per platform identity stored on the entity."""
    return [
        CrossPlatformIndicator(
            platform=platform,
            identifier=identity.identifier,
            verified=identity.verified,
            confidence=identity.confidence,
            linking_evidence=["Identity stored in entity metadata"],
            last_seen=identity.last_seen,
        )
        for platform, identity in entity.platform_identities().items()
    ]


class MatchScorer:
    """Turn candidate stubs into confidence-scored evidence bundles."""

    def __init__(self, judge: SimilarityJudge, config: ResolverConfig) -> None:
        self._judge = judge
        self._config = config

    async def score(
        self,
        candidate: EntityResolutionCandidate,
        identifier: str,
        context: ResolutionContext,
        *,
        population: Sequence[Entity] = (),
    ) -> EntityResolutionCandidate:
        """Score one candidate.

        Args:
            candidate: Unscored candidate stub.
            identifier: The identifier being resolved.
            context: Resolution context (conversation window is read here).
            population: Other known entities, used for duplicate detection.

        Returns:
            The candidate with factors, indicators and confidence filled in.
            Unexpected failures yield confidence 0 rather than an exception.
        """
        try:
            match_factors = await self.match_factors(candidate.entity, identifier, context)
            risk_factors = await self.risk_factors(candidate.entity, identifier, population)
            candidate.match_factors = match_factors
            candidate.risk_factors = risk_factors
            candidate.cross_platform_indicators = cross_platform_indicators(candidate.entity)
            candidate.confidence = combine_confidence(
                match_factors, risk_factors, self._config.risk_penalties
            )
        except Exception:
            logger.exception("Error scoring candidate %s", candidate.entity_id)
            candidate.confidence = 0.0
        return candidate

    async def match_factors(
        self,
        entity: Entity,
        identifier: str,
        context: ResolutionContext,
    ) -> list[MatchFactor]:
        weights = self._config.match_weights
        factors: list[MatchFactor] = []

        if any(name.lower() == identifier.lower() for name in entity.names):
            factors.append(
                MatchFactor(
                    type=MatchFactorType.EXACT_NAME,
                    confidence=1.0,
                    evidence=f"Exact name match: {identifier}",
                    weight=weights[MatchFactorType.EXACT_NAME],
                )
            )

        similarity = await self._judge.name_similarity(entity.names, identifier)
        if similarity > self._config.name_similarity_min:
            factors.append(
                MatchFactor(
                    type=MatchFactorType.SIMILAR_NAME,
                    confidence=similarity,
                    evidence=f"Similar name match with score: {similarity:.2f}",
                    weight=weights[MatchFactorType.SIMILAR_NAME],
                )
            )

        for platform, identity in entity.platform_identities().items():
            if identity.handle and identity.handle == identifier:
                factors.append(
                    MatchFactor(
                        type=MatchFactorType.PLATFORM_IDENTITY,
                        confidence=1.0 if identity.verified else UNVERIFIED_PLATFORM_CONFIDENCE,
                        evidence=f"Platform identity match on {platform}: {identity.handle}",
                        weight=weights[MatchFactorType.PLATFORM_IDENTITY],
                    )
                )

        if context.conversation_history:
            hint = await self._judge.contextual_hint(
                entity, identifier, context.conversation_history
            )
            if hint > self._config.context_hint_min:
                factors.append(
                    MatchFactor(
                        type=MatchFactorType.CONTEXTUAL_HINT,
                        confidence=hint,
                        evidence="Contextual evidence from conversation",
                        weight=weights[MatchFactorType.CONTEXTUAL_HINT],
                    )
                )

        return factors

    async def risk_factors(
        self,
        entity: Entity,
        identifier: str,
        population: Sequence[Entity],
    ) -> list[RiskFactor]:
        risks: list[RiskFactor] = []

        similar = await self.find_similar_entities(entity, population)
        if similar:
            risks.append(
                RiskFactor(
                    type=RiskFactorType.POTENTIAL_DUPLICATE,
                    severity=RiskSeverity.MEDIUM,
                    confidence=DUPLICATE_RISK_CONFIDENCE,
                    description=f"Found {len(similar)} similar entities",
                    evidence=[", ".join(other.names) for other in similar],
                )
            )

        conflicts = detect_identity_conflicts(entity, identifier)
        if conflicts:
            risks.append(
                RiskFactor(
                    type=RiskFactorType.IDENTITY_CONFLICT,
                    severity=RiskSeverity.HIGH,
                    confidence=CONFLICT_RISK_CONFIDENCE,
                    description="Conflicting identity information detected",
                    evidence=conflicts,
                )
            )

        return risks

    async def find_similar_entities(
        self,
        entity: Entity,
        population: Sequence[Entity],
    ) -> list[Entity]:
        """Other entities that share an account or look like the same name."""
        others = [other for other in population if other.id != entity.id]
        if not others:
            return []

        own_identities = entity.platform_identities()
        joined_names = " ".join(entity.names)
        scores = await asyncio.gather(
            *(self._judge.name_similarity(other.names, joined_names) for other in others)
        )

        similar: list[Entity] = []
        for other, score in zip(others, scores, strict=True):
            if score >= self._config.duplicate_similarity_min:
                similar.append(other)
                continue
            other_identities = other.platform_identities()
            if any(
                platform in other_identities and identity.same_account(other_identities[platform])
                for platform, identity in own_identities.items()
            ):
                similar.append(other)
        return similar
