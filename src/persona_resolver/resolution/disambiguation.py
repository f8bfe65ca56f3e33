"""Post-scoring adjustments: contextual disambiguation and conflict detection."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from persona_resolver.models.enums import RiskFactorType, RiskSeverity
from persona_resolver.resolution.types import RiskFactor

if TYPE_CHECKING:
    from collections.abc import Sequence

    from persona_resolver.config import ResolverConfig
    from persona_resolver.resolution.types import EntityResolutionCandidate, ResolutionContext

logger = logging.getLogger(__name__)

AMBIGUITY_RISK_CONFIDENCE = 0.9


def apply_contextual_disambiguation(
    candidates: Sequence[EntityResolutionCandidate],
    context: ResolutionContext,
    config: ResolverConfig,
) -> list[EntityResolutionCandidate]:
    """Scale candidate confidence by the situation the identifier came up in.

    An active room boosts every candidate; a security-sensitive context damps
    them. The result is re-clamped to 1.0.
    """
    for candidate in candidates:
        adjusted = candidate.confidence
        if context.room_id is not None:
            adjusted *= config.room_boost
        if context.security_sensitive:
            adjusted *= config.security_damping
        candidate.confidence = max(0.0, min(1.0, adjusted))
    return list(candidates)


def detect_conflicts(
    candidates: Sequence[EntityResolutionCandidate],
    config: ResolverConfig,
) -> list[EntityResolutionCandidate]:
    """Flag ties among high-confidence candidates and rank the list.

    When more than one candidate clears the high-confidence bar, each of them
    gets a high-severity identity-conflict risk factor so downstream consumers
    know the identifier is ambiguous.

    Returns:
        Candidates sorted by descending confidence, truncated to
        ``config.max_candidates``.
    """
    high = [c for c in candidates if c.confidence > config.high_confidence]
    medium = [
        c for c in candidates if config.medium_confidence < c.confidence <= config.high_confidence
    ]

    if len(high) > 1:
        logger.warning(
            "Multiple high-confidence candidates (%d); flagging as ambiguous", len(high)
        )
        for candidate in high:
            candidate.risk_factors.append(
                RiskFactor(
                    type=RiskFactorType.IDENTITY_CONFLICT,
                    severity=RiskSeverity.HIGH,
                    confidence=AMBIGUITY_RISK_CONFIDENCE,
                    description="Multiple high-confidence matches found",
                    evidence=[f"{len(high)} candidates with confidence > {config.high_confidence}"],
                )
            )
    elif medium:
        logger.debug("%d medium-confidence candidates", len(medium))

    ranked = sorted(candidates, key=lambda c: c.confidence, reverse=True)
    return ranked[: config.max_candidates]
