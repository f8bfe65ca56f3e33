"""Append-only ledger of platform identity claims and confirmations.

Entries go into one growth-only sequence; a secondary index maps each
``platform:handle`` key to the positions of its entries, and claim ids map
to their claim's position. Nothing is ever edited or removed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID

from persona_resolver.models.enums import ClaimSource, ConfirmationMethod

logger = logging.getLogger(__name__)


def platform_key(platform: str, handle: str) -> str:
    return f"{platform}:{handle}"


def _now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class PlatformClaim:
    """An unverified assertion that ``handle`` on ``platform`` belongs to an entity."""

    claim_id: str
    platform: str
    handle: str
    claimed_by: UUID
    """Who made the claim."""

    claimed_from: UUID
    """Entity the claim was made from (the speaker's own record)."""

    claimed_about: UUID
    """Entity the handle is claimed to belong to."""

    confidence: float
    source: ClaimSource
    evidence: str = ""
    timestamp: datetime = field(default_factory=_now)

    @property
    def key(self) -> str:
        return platform_key(self.platform, self.handle)


@dataclass(frozen=True)
class PlatformConfirmation:
    """Corroboration, from the other side, that ``handle`` belongs to an entity."""

    platform: str
    handle: str
    confirmed_by: UUID
    confirms_entity: UUID
    confirms_claim: str
    """Id of the claim being corroborated."""

    confidence: float
    method: ConfirmationMethod
    evidence: str = ""
    timestamp: datetime = field(default_factory=_now)

    @property
    def key(self) -> str:
        return platform_key(self.platform, self.handle)


LedgerEntry = PlatformClaim | PlatformConfirmation


def _check_confidence(confidence: float) -> None:
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"confidence must be in [0, 1], got {confidence}")


class VerificationLedger:
    """Growth-only log of claims and confirmations with a per-key index.

    Usage:
        ledger = VerificationLedger()
        claim = ledger.append_claim(
            platform="twitter", handle="@bob", claimed_by=a, claimed_from=a,
            claimed_about=x, confidence=0.8, source=ClaimSource.USER_STATEMENT,
        )
        ledger.claims("twitter", "@bob")
    """

    def __init__(self) -> None:
        self._entries: list[LedgerEntry] = []
        self._index: dict[str, list[int]] = {}
        self._claim_positions: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def append_claim(
        self,
        *,
        platform: str,
        handle: str,
        claimed_by: UUID,
        claimed_from: UUID,
        claimed_about: UUID,
        confidence: float,
        source: ClaimSource,
        evidence: str = "",
    ) -> PlatformClaim:
        _check_confidence(confidence)
        seq = len(self._entries)
        claim = PlatformClaim(
            claim_id=f"{platform_key(platform, handle)}:{claimed_by}:{seq}",
            platform=platform,
            handle=handle,
            claimed_by=claimed_by,
            claimed_from=claimed_from,
            claimed_about=claimed_about,
            confidence=confidence,
            source=source,
            evidence=evidence,
        )
        self._append(claim)
        return claim

    def append_confirmation(
        self,
        *,
        platform: str,
        handle: str,
        confirmed_by: UUID,
        confirms_entity: UUID,
        confirms_claim: str,
        confidence: float,
        method: ConfirmationMethod,
        evidence: str = "",
    ) -> PlatformConfirmation:
        _check_confidence(confidence)
        confirmation = PlatformConfirmation(
            platform=platform,
            handle=handle,
            confirmed_by=confirmed_by,
            confirms_entity=confirms_entity,
            confirms_claim=confirms_claim,
            confidence=confidence,
            method=method,
            evidence=evidence,
        )
        self._append(confirmation)
        return confirmation

    def claims(self, platform: str | None = None, handle: str | None = None) -> list[PlatformClaim]:
        """Claims, optionally narrowed to a platform, a handle or one key."""
        return [e for e in self._select(platform, handle) if isinstance(e, PlatformClaim)]

    def confirmations(
        self, platform: str | None = None, handle: str | None = None
    ) -> list[PlatformConfirmation]:
        """Confirmations, optionally narrowed to a platform, a handle or one key."""
        return [e for e in self._select(platform, handle) if isinstance(e, PlatformConfirmation)]

    def claims_by(self, claimed_by: UUID, *, since: datetime | None = None) -> list[PlatformClaim]:
        """Claims made by one speaker, newest last."""
        return [
            e
            for e in self._entries
            if isinstance(e, PlatformClaim)
            and e.claimed_by == claimed_by
            and (since is None or e.timestamp >= since)
        ]

    def get_claim(self, claim_id: str) -> PlatformClaim | None:
        position = self._claim_positions.get(claim_id)
        if position is None:
            return None
        entry = self._entries[position]
        return entry if isinstance(entry, PlatformClaim) else None

    def _append(self, entry: LedgerEntry) -> None:
        position = len(self._entries)
        self._index.setdefault(entry.key, []).append(position)
        if isinstance(entry, PlatformClaim):
            self._claim_positions[entry.claim_id] = position
        self._entries.append(entry)

    def _select(self, platform: str | None, handle: str | None) -> list[LedgerEntry]:
        if platform and handle:
            return [self._entries[i] for i in self._index.get(platform_key(platform, handle), [])]
        return [
            e
            for e in self._entries
            if (not platform or e.platform == platform) and (not handle or e.handle == handle)
        ]
