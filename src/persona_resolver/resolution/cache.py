"""Memoization of end-to-end resolve results."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from persona_resolver.resolution.types import EntityResolutionCandidate, ResolutionContext

logger = logging.getLogger(__name__)


def cache_key(identifier: str, context: ResolutionContext, platform_hint: str | None) -> str:
    return f"{identifier}:{context.fingerprint(platform_hint)}"


class ResolutionCache:
    """Bounded map from (identifier, context fingerprint) to ranked candidates.

    Once the size ceiling is exceeded the oldest half of the entries, by
    insertion order, is dropped in one sweep. Entries are never invalidated
    when entities change; a merged-away entity can be returned until its
    entry is evicted or the cache is cleared.

    Usage:
        cache = ResolutionCache(max_size=1000)
        cache.put("alice", context, None, candidates)
        hit = cache.get("alice", context, None)
    """

    def __init__(self, max_size: int = 1000) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self._max_size = max_size
        self._entries: dict[str, list[EntityResolutionCandidate]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(
        self,
        identifier: str,
        context: ResolutionContext,
        platform_hint: str | None = None,
    ) -> list[EntityResolutionCandidate] | None:
        entry = self._entries.get(cache_key(identifier, context, platform_hint))
        return list(entry) if entry is not None else None

    def put(
        self,
        identifier: str,
        context: ResolutionContext,
        platform_hint: str | None,
        candidates: list[EntityResolutionCandidate],
    ) -> None:
        self._entries[cache_key(identifier, context, platform_hint)] = list(candidates)
        if len(self._entries) > self._max_size:
            self._evict()

    def clear(self) -> None:
        self._entries.clear()

    def _evict(self) -> None:
        drop = len(self._entries) // 2
        for key in list(self._entries)[:drop]:
            del self._entries[key]
        logger.debug("Resolution cache evicted %d entries", drop)
