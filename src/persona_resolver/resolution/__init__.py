"""Entity resolution for PersonaResolver.

Submodules:
- candidate_pool: name and platform-handle lookups against the directory
- similarity: oracle-backed name and context judgements
- scoring: match/risk factors and combined confidence
- disambiguation: contextual adjustment and conflict detection
- cache: memoized resolve results
- cross_reference: links between new entities and the known population
- resolver: the EntityResolver facade
"""

from persona_resolver.resolution.cache import ResolutionCache
from persona_resolver.resolution.candidate_pool import CandidateFinder
from persona_resolver.resolution.resolver import EntityResolver
from persona_resolver.resolution.scoring import MatchScorer
from persona_resolver.resolution.similarity import SimilarityJudge
from persona_resolver.resolution.types import (
    ConversationTurn,
    EntityResolutionCandidate,
    PlatformContext,
    ResolutionContext,
    TrustRequirements,
)

__all__ = [
    "CandidateFinder",
    "ConversationTurn",
    "EntityResolutionCandidate",
    "EntityResolver",
    "MatchScorer",
    "PlatformContext",
    "ResolutionCache",
    "ResolutionContext",
    "SimilarityJudge",
    "TrustRequirements",
]
