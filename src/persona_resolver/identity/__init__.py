"""Identity graphs: platform identities, cross references and trust edges per entity."""

from persona_resolver.identity.graph import (
    BehaviorFingerprint,
    CrossReference,
    IdentityGraph,
    IdentityGraphStore,
    TrustEdge,
)

__all__ = [
    "BehaviorFingerprint",
    "CrossReference",
    "IdentityGraph",
    "IdentityGraphStore",
    "TrustEdge",
]
