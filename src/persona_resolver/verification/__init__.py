"""Bidirectional verification of platform identity claims."""

from persona_resolver.verification.evidence import (
    BidirectionalEvidence,
    compute_bidirectional_evidence,
)
from persona_resolver.verification.ledger import (
    PlatformClaim,
    PlatformConfirmation,
    VerificationLedger,
    platform_key,
)
from persona_resolver.verification.protocol import BidirectionalVerifier

__all__ = [
    "BidirectionalEvidence",
    "BidirectionalVerifier",
    "PlatformClaim",
    "PlatformConfirmation",
    "VerificationLedger",
    "compute_bidirectional_evidence",
    "platform_key",
]
