"""Oracle-backed similarity judgements.

Wraps a SimilarityOracle with the two prompts the scorer needs:
- name similarity: do these names plausibly refer to the identifier?
- contextual hint: does the recent conversation point at this entity?

Every judgement degrades to 0.0 when the oracle is down or replies with
something that is not a number, so a flaky model never blocks resolution.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from persona_resolver.clients.llm import score_from_response

if TYPE_CHECKING:
    from collections.abc import Sequence

    from persona_resolver.entity import Entity
    from persona_resolver.ports import SimilarityOracle
    from persona_resolver.resolution.types import ConversationTurn

logger = logging.getLogger(__name__)


NAME_SIMILARITY_PROMPT = """\
Compare these names and determine similarity to the identifier.
Identifier: "{identifier}"
Names: {names}

Consider:
- Exact matches
- Nicknames and variations
- Phonetic similarity
- Common abbreviations

Return a similarity score from 0.0 to 1.0 where:
- 1.0 = identical or clear nickname/variation
- 0.8+ = high similarity (likely same person)
- 0.6+ = moderate similarity
- 0.4+ = some similarity
- <0.4 = low/no similarity

Respond with only the numeric score (e.g., "0.85")"""


CONTEXT_HINT_PROMPT = """\
Analyze this conversation context to determine if the identifier refers to this entity.
Identifier: "{identifier}"
Entity: {names} ({entity_type})
Entity metadata: {metadata}

Recent conversation:
{transcript}

Consider:
- Direct references by name
- Pronoun usage that might refer to this entity
- Context clues (roles, relationships, topics)
- Temporal references (recent interactions)

Return a confidence score from 0.0 to 1.0 where:
- 1.0 = very strong contextual evidence
- 0.7+ = good contextual match
- 0.5+ = moderate contextual hints
- 0.3+ = weak contextual hints
- <0.3 = no relevant context

Respond with only the numeric score (e.g., "0.65")"""


class SimilarityJudge:
    """Turns oracle replies into bounded similarity scores."""

    def __init__(self, oracle: SimilarityOracle, *, conversation_window: int = 10) -> None:
        self._oracle = oracle
        self._window = conversation_window

    async def name_similarity(self, names: Sequence[str], identifier: str) -> float:
        """Score how likely any of ``names`` refers to ``identifier``."""
        if not names:
            return 0.0
        prompt = NAME_SIMILARITY_PROMPT.format(identifier=identifier, names=", ".join(names))
        return await self._ask(prompt, "name similarity")

    async def contextual_hint(
        self,
        entity: Entity,
        identifier: str,
        history: Sequence[ConversationTurn],
    ) -> float:
        """Score how strongly the recent conversation points at ``entity``."""
        if not history:
            return 0.0
        recent = history[-self._window :]
        transcript = "\n".join(f"{turn.speaker}: {turn.text}" for turn in recent)
        prompt = CONTEXT_HINT_PROMPT.format(
            identifier=identifier,
            names=", ".join(entity.names),
            entity_type=entity.metadata.get("type", "unknown"),
            metadata=json.dumps(entity.metadata, indent=2, default=str),
            transcript=transcript,
        )
        return await self._ask(prompt, "contextual hint")

    async def _ask(self, prompt: str, purpose: str) -> float:
        try:
            response = await self._oracle.generate(prompt)
        except Exception:
            logger.exception("Similarity oracle failed during %s; scoring 0", purpose)
            return 0.0
        return score_from_response(response)
