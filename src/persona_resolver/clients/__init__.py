"""Clients for external model endpoints."""

from persona_resolver.clients.llm import OpenAIOracle, score_from_response

__all__ = ["OpenAIOracle", "score_from_response"]
