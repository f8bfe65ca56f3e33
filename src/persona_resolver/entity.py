"""Directory-facing entity view and platform identities.

The resolver never owns canonical entities. It reads and writes them through
the EntityDirectory port as plain ``Entity`` values; platform identities are
nested in the entity metadata under ``PLATFORM_IDENTITIES_KEY``.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

PLATFORM_IDENTITIES_KEY = "platform_identities"


class PlatformIdentity(BaseModel):
    """A handle or user id an entity is known by on one external platform."""

    platform: str = Field(description="Platform tag, e.g. 'twitter' or 'discord'")
    handle: str | None = Field(default=None, description="Public handle, e.g. '@alice'")
    user_id: str | None = Field(default=None, description="Platform-internal user id")
    verified: bool = False
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    last_seen: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def identifier(self) -> str:
        """Handle if known, else user id, else empty string."""
        return self.handle or self.user_id or ""

    def same_account(self, other: PlatformIdentity) -> bool:
        """True if both identities point at the same account on a platform."""
        if self.handle and other.handle and self.handle == other.handle:
            return True
        return bool(self.user_id and other.user_id and self.user_id == other.user_id)

    def to_metadata(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass
class Entity:
    """One canonical actor as the directory reports it."""

    id: UUID
    names: list[str] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    metadata: dict[str, Any] = field(default_factory=dict)  # pyright: ignore[reportUnknownVariableType]

    def platform_identities(self) -> dict[str, PlatformIdentity]:
        """Parse the platform identities nested in metadata.

        Malformed entries are skipped rather than failing the caller, since
        metadata may have been written by other components.
        """
        raw = self.metadata.get(PLATFORM_IDENTITIES_KEY) or {}
        if not isinstance(raw, dict):
            return {}

        identities: dict[str, PlatformIdentity] = {}
        for platform, value in raw.items():
            if not isinstance(value, dict):
                continue
            try:
                identities[platform] = PlatformIdentity.model_validate(
                    {"platform": platform, **value}
                )
            except ValidationError:
                logger.debug("Skipping malformed platform identity %s on %s", platform, self.id)
        return identities

    def snapshot(self) -> dict[str, Any]:
        """Deep copy suitable for event payloads and audit trails."""
        return {
            "id": str(self.id),
            "names": list(self.names),
            "metadata": copy.deepcopy(self.metadata),
        }


def identities_to_metadata(identities: dict[str, PlatformIdentity]) -> dict[str, Any]:
    """Serialize identities into the nested metadata representation."""
    return {platform: identity.to_metadata() for platform, identity in identities.items()}


def prefer_identity(existing: PlatformIdentity, incoming: PlatformIdentity) -> PlatformIdentity:
    """Pick the higher-confidence side when two entities know the same platform.

    The incoming identity only wins when it is strictly more confident; it is
    layered over the existing one so fields it lacks are kept.
    """
    if incoming.confidence <= existing.confidence:
        return existing
    merged = existing.model_dump()
    merged.update(incoming.model_dump(exclude_none=True))
    merged["confidence"] = max(existing.confidence, incoming.confidence)
    return PlatformIdentity.model_validate(merged)
