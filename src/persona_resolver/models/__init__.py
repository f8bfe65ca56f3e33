"""Database models and enumerations for PersonaResolver."""

from persona_resolver.models.base import Base
from persona_resolver.models.entity import EntityRecord, RoomParticipant
from persona_resolver.models.enums import (
    ClaimSource,
    ConfirmationMethod,
    ConflictRule,
    EventType,
    MatchFactorType,
    MergeStrategy,
    RiskFactorType,
    RiskSeverity,
    StatementKind,
)
from persona_resolver.models.relationship import RelationshipRecord

__all__ = [
    "Base",
    "ClaimSource",
    "ConfirmationMethod",
    "ConflictRule",
    "EntityRecord",
    "EventType",
    "MatchFactorType",
    "MergeStrategy",
    "RelationshipRecord",
    "RiskFactorType",
    "RiskSeverity",
    "RoomParticipant",
    "StatementKind",
]
