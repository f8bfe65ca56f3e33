"""Exception hierarchy for PersonaResolver.

Only mutation paths raise these to callers. Resolution paths catch
collaborator failures, log them, and degrade to partial results.
"""

from __future__ import annotations

from uuid import UUID


class ResolverError(RuntimeError):
    """Base class for resolver errors."""


class EntityNotFoundError(ResolverError):
    """Raised when a referenced entity is absent from the directory."""

    def __init__(self, entity_id: UUID) -> None:
        super().__init__(f"Entity {entity_id} not found")
        self.entity_id = entity_id


class OracleError(ResolverError):
    """Raised by oracle clients when the similarity judge is unavailable."""


class DirectoryError(ResolverError):
    """Raised by directory adapters when a lookup or write fails."""


class MergeExecutionError(ResolverError):
    """Raised when a requested merge could not be executed."""
