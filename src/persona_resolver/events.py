"""Resolver events and an in-process event bus."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from persona_resolver.models.enums import EventType

if TYPE_CHECKING:
    from persona_resolver.ports import EventBus

logger = logging.getLogger(__name__)


@dataclass
class ResolverEvent:
    """Something the resolver did that downstream consumers may care about."""

    type: EventType
    entity_id: UUID
    payload: dict[str, Any] = field(default_factory=dict)  # pyright: ignore[reportUnknownVariableType]
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    source: str = "entity-resolution"


EventHandler = Callable[[ResolverEvent], Awaitable[None]]


class InMemoryEventBus:
    """Fan events out to async subscribers in registration order.

    The most recent ``history_size`` events are kept in ``history`` for
    inspection. A failing subscriber is logged and skipped; it never fails
    the resolver operation that emitted the event.
    """

    def __init__(self, history_size: int = 1000) -> None:
        self._handlers: list[tuple[EventType | None, EventHandler]] = []
        self.history: deque[ResolverEvent] = deque(maxlen=history_size)

    def subscribe(self, handler: EventHandler, *, event_type: EventType | None = None) -> None:
        """Register a handler for one event type, or for all when None."""
        self._handlers.append((event_type, handler))

    def events_of(self, event_type: EventType) -> list[ResolverEvent]:
        return [event for event in self.history if event.type == event_type]

    async def emit(self, event: ResolverEvent) -> None:
        self.history.append(event)
        for wanted, handler in self._handlers:
            if wanted is not None and wanted != event.type:
                continue
            try:
                await handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.type.value)


async def emit_safely(bus: EventBus | None, event: ResolverEvent) -> None:
    """Emit on ``bus`` if there is one; a failing bus is logged, never raised."""
    if bus is None:
        return
    try:
        await bus.emit(event)
    except Exception:
        logger.exception("Failed to emit %s event", event.type.value)
