"""LLM extraction of identity statements from chat messages."""

from persona_resolver.extraction.statements import (
    IdentityStatement,
    IdentityStatementExtractor,
    IdentityStatementRecorder,
    RecordedStatement,
)

__all__ = [
    "IdentityStatement",
    "IdentityStatementExtractor",
    "IdentityStatementRecorder",
    "RecordedStatement",
]
