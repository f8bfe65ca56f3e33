"""Shared pytest fixtures for PersonaResolver tests."""

from __future__ import annotations

import copy
import re
from collections.abc import Sequence
from difflib import SequenceMatcher
from typing import Any
from uuid import UUID, uuid4

import pytest

from persona_resolver.config import ResolverConfig
from persona_resolver.entity import PLATFORM_IDENTITIES_KEY, Entity
from persona_resolver.errors import DirectoryError, OracleError
from persona_resolver.events import InMemoryEventBus
from persona_resolver.resolution.resolver import EntityResolver
from persona_resolver.resolution.similarity import SimilarityJudge

_IDENTIFIER_RE = re.compile(r'^Identifier: "(?P<value>.*)"$', re.MULTILINE)
_NAMES_RE = re.compile(r"^Names: (?P<value>.*)$", re.MULTILINE)


def lexical_similarity(names: Sequence[str], identifier: str) -> float:
    """Best difflib ratio between ``identifier`` and any of ``names``."""
    return max(
        (SequenceMatcher(None, n.lower(), identifier.lower()).ratio() for n in names),
        default=0.0,
    )


class LexicalOracle:
    """Deterministic stand-in for the language-model judge.

    Name-similarity prompts are answered with a difflib ratio; contextual
    prompts with ``context_score``. Every call is counted.
    """

    def __init__(self, *, context_score: float = 0.0) -> None:
        self.context_score = context_score
        self.calls = 0
        self.fail = False
        self.reply: str | None = None

    async def generate(self, prompt: str) -> str:
        self.calls += 1
        if self.fail:
            raise OracleError("oracle unavailable")
        if self.reply is not None:
            return self.reply
        if "Recent conversation:" in prompt:
            return f"{self.context_score:.4f}"

        identifier = _IDENTIFIER_RE.search(prompt)
        names = _NAMES_RE.search(prompt)
        if identifier is None or names is None:
            return "0.0"
        score = lexical_similarity(names.group("value").split(", "), identifier.group("value"))
        return f"{score:.4f}"


class FakeDirectory:
    """In-memory EntityDirectory with failure injection.

    Add an operation name (``get``, ``create``, ``update``, ``room``,
    ``rooms``) to ``fail_on`` to make it raise DirectoryError.
    """

    def __init__(self) -> None:
        self.entities: dict[UUID, Entity] = {}
        self.rooms: dict[UUID, list[UUID]] = {}
        self.fail_on: set[str] = set()
        self.updates: list[Entity] = []

    def add(
        self,
        *names: str,
        room_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Entity:
        entity = Entity(id=uuid4(), names=list(names), metadata=metadata or {})
        self.entities[entity.id] = copy.deepcopy(entity)
        if room_id is not None:
            self.rooms.setdefault(room_id, []).append(entity.id)
        return entity

    def _check(self, op: str) -> None:
        if op in self.fail_on:
            raise DirectoryError(f"{op} failed")

    async def get_entity_by_id(self, entity_id: UUID) -> Entity | None:
        self._check("get")
        entity = self.entities.get(entity_id)
        return copy.deepcopy(entity) if entity is not None else None

    async def create_entity(self, entity: Entity, *, room_id: UUID | None = None) -> UUID:
        self._check("create")
        self.entities[entity.id] = copy.deepcopy(entity)
        if room_id is not None:
            self.rooms.setdefault(room_id, []).append(entity.id)
        return entity.id

    async def update_entity(self, entity: Entity) -> None:
        self._check("update")
        self.updates.append(copy.deepcopy(entity))
        self.entities[entity.id] = copy.deepcopy(entity)

    async def list_entities_for_room(self, room_id: UUID) -> list[Entity]:
        self._check("room")
        return [copy.deepcopy(self.entities[i]) for i in self.rooms.get(room_id, [])]

    async def list_rooms_for_agent(self) -> list[UUID]:
        self._check("rooms")
        return list(self.rooms)


class RecordingRedirector:
    """RelationshipRedirector that records calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[list[UUID], UUID]] = []
        self.fail = False

    async def redirect(self, from_ids: Sequence[UUID], to_id: UUID) -> int:
        if self.fail:
            raise RuntimeError("relationship service down")
        self.calls.append((list(from_ids), to_id))
        return len(from_ids)


def identity_metadata(
    platform: str,
    handle: str | None = None,
    *,
    user_id: str | None = None,
    verified: bool = False,
    confidence: float = 0.5,
) -> dict[str, Any]:
    """Metadata entry for one platform identity."""
    entry: dict[str, Any] = {"verified": verified, "confidence": confidence}
    if handle is not None:
        entry["handle"] = handle
    if user_id is not None:
        entry["user_id"] = user_id
    return {platform: entry}


def with_identities(*entries: dict[str, Any], **extra: Any) -> dict[str, Any]:
    """Entity metadata holding the given platform identity entries."""
    identities: dict[str, Any] = {}
    for entry in entries:
        identities.update(entry)
    return {PLATFORM_IDENTITIES_KEY: identities, **extra}


@pytest.fixture
def room_id() -> UUID:
    return uuid4()


@pytest.fixture
def config() -> ResolverConfig:
    return ResolverConfig()


@pytest.fixture
def oracle() -> LexicalOracle:
    return LexicalOracle()


@pytest.fixture
def judge(oracle: LexicalOracle) -> SimilarityJudge:
    return SimilarityJudge(oracle)


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def redirector() -> RecordingRedirector:
    return RecordingRedirector()


@pytest.fixture
def events() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def resolver(
    directory: FakeDirectory,
    oracle: LexicalOracle,
    redirector: RecordingRedirector,
    events: InMemoryEventBus,
    config: ResolverConfig,
) -> EntityResolver:
    return EntityResolver(
        directory, oracle, redirector=redirector, events=events, config=config
    )
