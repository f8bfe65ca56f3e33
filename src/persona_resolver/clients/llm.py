"""Async chat client used as the similarity oracle."""

from __future__ import annotations

import logging
import re
import time

from openai import AsyncOpenAI, OpenAIError

from persona_resolver.config import settings
from persona_resolver.errors import OracleError

logger = logging.getLogger(__name__)

_DECIMAL_RE = re.compile(r"-?\d+(?:\.\d+)?|-?\.\d+")


def score_from_response(response: str | None) -> float:
    """Extract a similarity score from an oracle reply.

    The first decimal in the reply wins and is clamped to [0, 1].
    Replies without a number score 0.0.
    """
    if not response:
        return 0.0
    match = _DECIMAL_RE.search(response.strip())
    if match is None:
        return 0.0
    try:
        value = float(match.group(0))
    except ValueError:
        return 0.0
    return max(0.0, min(1.0, value))


class OpenAIOracle:
    """Similarity oracle backed by an OpenAI-compatible chat endpoint.

    Returns the raw completion text; scoring is left to the caller so that
    any judge honouring ``generate(prompt) -> str`` is interchangeable.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
    ) -> None:
        self._client = AsyncOpenAI(
            base_url=base_url or settings.llm_base_url,
            api_key=api_key or settings.llm_api_key,
        )
        self._model = model or settings.model_similarity
        self._temperature = settings.llm_temperature if temperature is None else temperature

    async def generate(self, prompt: str) -> str:
        """Send a single-turn prompt and return the reply text.

        Raises:
            OracleError: If the endpoint fails or returns no choices.
        """
        start_time = time.time()
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self._temperature,
            )
        except OpenAIError as exc:
            raise OracleError(f"Similarity oracle request failed: {exc}") from exc

        if not response.choices:
            raise OracleError("Similarity oracle returned no choices")
        text = response.choices[0].message.content or ""

        if settings.log_api_calls:
            elapsed = (time.time() - start_time) * 1000  # ms
            logger.info("[ORACLE] %s → %r (%.0fms)", self._model, text[:32], elapsed)

        return text
