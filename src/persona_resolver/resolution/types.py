"""Value types flowing through the resolution pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from persona_resolver.entity import Entity
from persona_resolver.models.enums import MatchFactorType, RiskFactorType, RiskSeverity


@dataclass(frozen=True)
class ConversationTurn:
    """One message from the recent conversation window."""

    speaker: str
    text: str


@dataclass(frozen=True)
class PlatformContext:
    """Where the conversation is happening."""

    platform: str
    channel_id: str | None = None
    server_id: str | None = None


@dataclass(frozen=True)
class TrustRequirements:
    """Trust constraints of the current interaction."""

    required_trust_level: float | None = None
    security_sensitive: bool = False


@dataclass
class ResolutionContext:
    """Situational context for one resolve call. Never persisted."""

    room_id: UUID | None = None
    world_id: UUID | None = None
    source_entity_id: UUID | None = None
    conversation_history: list[ConversationTurn] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    platform_context: PlatformContext | None = None
    trust: TrustRequirements | None = None

    @property
    def security_sensitive(self) -> bool:
        return self.trust is not None and self.trust.security_sensitive

    def fingerprint(self, platform_hint: str | None = None) -> str:
        """Cache-relevant parts of the context: room, platform and hint."""
        return "|".join(
            [
                str(self.room_id) if self.room_id else "no-room",
                self.platform_context.platform if self.platform_context else "no-platform",
                platform_hint or "no-hint",
            ]
        )


@dataclass
class MatchFactor:
    """A piece of evidence that the identifier refers to the candidate."""

    type: MatchFactorType
    confidence: float
    evidence: str
    weight: float


@dataclass
class RiskFactor:
    """A piece of evidence that the match may be wrong or unsafe."""

    type: RiskFactorType
    severity: RiskSeverity
    confidence: float
    description: str
    evidence: list[str] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]


@dataclass
class CrossPlatformIndicator:
    """A platform identity the candidate is known by."""

    platform: str
    identifier: str
    verified: bool
    confidence: float
    linking_evidence: list[str]
    last_seen: datetime
    conflicting_evidence: list[str] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]


@dataclass
class EntityResolutionCandidate:
    """A scored guess at which entity an identifier refers to."""

    entity_id: UUID
    entity: Entity
    confidence: float = 0.0
    match_factors: list[MatchFactor] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    risk_factors: list[RiskFactor] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    cross_platform_indicators: list[CrossPlatformIndicator] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]

    @classmethod
    def stub(cls, entity: Entity) -> EntityResolutionCandidate:
        """Unscored candidate straight from the finder."""
        return cls(entity_id=entity.id, entity=entity)

    def has_risk(self, risk_type: RiskFactorType) -> bool:
        return any(risk.type == risk_type for risk in self.risk_factors)
