"""Enumerations for the PersonaResolver data model."""

from enum import Enum


class MatchFactorType(str, Enum):
    """Kind of positive evidence linking an identifier to an entity."""

    EXACT_NAME = "exact-name"
    SIMILAR_NAME = "similar-name"
    PLATFORM_IDENTITY = "platform-identity"
    BEHAVIORAL_PATTERN = "behavioral-pattern"
    CONTEXTUAL_HINT = "contextual-hint"
    TRUST_CORRELATION = "trust-correlation"
    NETWORK_PROXIMITY = "network-proximity"


class RiskFactorType(str, Enum):
    """Kind of negative evidence that lowers trust in a match."""

    POTENTIAL_DUPLICATE = "potential-duplicate"
    IMPERSONATION_RISK = "impersonation-risk"
    IDENTITY_CONFLICT = "identity-conflict"
    TRUST_INCONSISTENCY = "trust-inconsistency"
    BEHAVIORAL_ANOMALY = "behavioral-anomaly"


class RiskSeverity(str, Enum):
    """Severity of a risk factor. Indexes the penalty table."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MergeStrategy(str, Enum):
    """How candidate entities are folded into the primary."""

    ABSORB = "absorb"  # Candidates disappear into primary
    MERGE = "merge"  # Data combined field by field
    LINK = "link"  # Kept separate, cross-referenced only


class ConflictRule(str, Enum):
    """Resolution rule for one conflicting field in a merge."""

    KEEP_PRIMARY = "keep_primary"
    MERGE_ALL = "merge_all"
    MANUAL_REVIEW = "manual_review"


class ClaimSource(str, Enum):
    """Where a platform identity claim came from."""

    USER_STATEMENT = "user_statement"
    PROFILE_LINK = "profile_link"
    CROSS_REFERENCE = "cross_reference"
    BEHAVIORAL_PATTERN = "behavioral_pattern"


class ConfirmationMethod(str, Enum):
    """How a platform identity claim was corroborated."""

    DIRECT_STATEMENT = "direct_statement"
    PROFILE_VERIFICATION = "profile_verification"
    BEHAVIORAL_MATCH = "behavioral_match"
    ADMIN_OVERRIDE = "admin_override"


class EventType(str, Enum):
    """Events published on the event bus."""

    ENTITY_RESOLVED = "entity-resolved"
    ENTITY_CREATED = "entity-created"
    ENTITY_MERGED = "entity-merged"
    MERGE_PROPOSAL_CREATED = "merge-proposal-created"
    MERGE_READY_FOR_REVIEW = "merge-ready-for-review"


class StatementKind(str, Enum):
    """What an identity statement in a message asserts."""

    CLAIM = "claim"  # "My twitter is @alice"
    CONFIRMATION = "confirmation"  # "Yes, that's me over on twitter"
    NONE = "none"
