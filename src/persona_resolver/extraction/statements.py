"""Identity-statement extraction using pydantic-ai.

Reads one chat message and decides whether the speaker is claiming a
platform handle ("my twitter is @alice"), confirming one ("yes, that's me
on twitter"), or neither. ``IdentityStatementRecorder`` turns the result
into ledger entries on an EntityResolver.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field
from pydantic_ai import Agent, NativeOutput
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from persona_resolver.config import settings
from persona_resolver.models.enums import ClaimSource, ConfirmationMethod, StatementKind

if TYPE_CHECKING:
    from uuid import UUID

    from persona_resolver.resolution.resolver import EntityResolver

logger = logging.getLogger(__name__)


def _normalize_platform(v: Any) -> str | None:
    """Platforms are lower-case tags; blank means unknown."""
    if v is None:
        return None
    text = str(v).strip().lower()
    return text or None


def _normalize_handle(v: Any) -> str | None:
    if v is None:
        return None
    text = str(v).strip()
    return text or None


class IdentityStatement(BaseModel):
    """Structured reading of one message."""

    kind: StatementKind = Field(
        description="'claim' if the speaker asserts a handle is theirs, "
        "'confirmation' if they corroborate an earlier claim, otherwise 'none'"
    )
    platform: Annotated[str | None, BeforeValidator(_normalize_platform)] = Field(
        default=None, description="Platform tag such as 'twitter', 'discord' or 'github'"
    )
    handle: Annotated[str | None, BeforeValidator(_normalize_handle)] = Field(
        default=None, description="Handle or username exactly as written, e.g. '@alice'"
    )
    confidence: float = Field(
        default=0.8, ge=0.0, le=1.0, description="How explicit the statement is"
    )
    source: ClaimSource | None = Field(
        default=None, description="For claims: where the claim comes from"
    )
    method: ConfirmationMethod | None = Field(
        default=None, description="For confirmations: how the speaker is confirming"
    )
    reasoning: str = Field(default="", description="Brief justification")


IDENTITY_STATEMENT_SYSTEM_PROMPT = """\
You read chat messages and extract statements about platform identities.

A CLAIM is a speaker asserting that an account on some platform belongs to them:
- "My twitter is @alice" -> kind=claim, platform=twitter, handle=@alice
- "You can find me on github as alice-dev" -> kind=claim, platform=github, handle=alice-dev

A CONFIRMATION is a speaker corroborating an identity, usually from the other platform:
- "Yes, this is me, I'm the @alice from twitter" -> kind=confirmation, platform=twitter
- "Confirming, that's my account" -> kind=confirmation (platform and handle may be absent)

Anything else is kind=none.

Rules:
- platform is a lower-case tag (twitter, discord, github, telegram, instagram, ...)
- handle is copied exactly as written, including a leading '@'
- confidence reflects how explicit the statement is (0.9+ only for unambiguous statements)
- set source for claims (usually user_statement) and method for confirmations
  (usually direct_statement)
"""


def create_identity_statement_agent() -> Agent[None, IdentityStatement]:
    """Create the identity-statement extraction agent."""
    model = OpenAIChatModel(
        settings.model_extraction,
        provider=OpenAIProvider(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
        ),
    )

    return Agent(
        model,
        output_type=NativeOutput(IdentityStatement),
        system_prompt=IDENTITY_STATEMENT_SYSTEM_PROMPT,
        retries=3,
    )


class IdentityStatementExtractor:
    """High-level interface for identity-statement extraction.

    Usage:
        extractor = IdentityStatementExtractor()
        statement = await extractor.extract("my twitter is @alice", speaker_name="Alice")
    """

    def __init__(self) -> None:
        self._agent = create_identity_statement_agent()

    async def extract(
        self,
        message: str,
        *,
        speaker_name: str | None = None,
        platform: str | None = None,
    ) -> IdentityStatement:
        """Run extraction on one message.

        Args:
            message: Message text.
            speaker_name: Display name of the speaker, if known.
            platform: Platform the message was sent on, if known.
        """
        prompt = self._build_prompt(message, speaker_name=speaker_name, platform=platform)
        result = await self._agent.run(prompt)
        return result.output

    def _build_prompt(
        self,
        message: str,
        *,
        speaker_name: str | None,
        platform: str | None,
    ) -> str:
        parts = ["Extract the identity statement from this message.\n"]
        if speaker_name:
            parts.append(f"Speaker: {speaker_name}\n")
        if platform:
            parts.append(f"Sent on: {platform}\n")
        parts.append(f'\nMessage:\n"{message}"\n')
        return "".join(parts)


@dataclass
class RecordedStatement:
    """What the recorder did with one message."""

    statement: IdentityStatement
    claim_id: str | None = None
    """Id of the claim recorded, for claims."""

    completed: bool = False
    """For confirmations: whether verification completed."""

    platform: str | None = None
    handle: str | None = None


class IdentityStatementRecorder:
    """Record extracted statements as platform claims and confirmations.

    The speaker is both the claimant and the subject of the claim. A
    confirmation without a handle falls back to the speaker's most recent
    claim within ``fallback_window``, at reduced confidence.

    Usage:
        recorder = IdentityStatementRecorder(resolver)
        outcome = await recorder.record("my twitter is @alice", speaker_id=alice_id)
    """

    def __init__(
        self,
        resolver: EntityResolver,
        extractor: IdentityStatementExtractor | None = None,
        *,
        fallback_window: timedelta = timedelta(hours=24),
        fallback_confidence: float = 0.7,
    ) -> None:
        self._resolver = resolver
        self._extractor = extractor or IdentityStatementExtractor()
        self._fallback_window = fallback_window
        self._fallback_confidence = fallback_confidence

    async def record(
        self,
        message: str,
        *,
        speaker_id: UUID,
        speaker_name: str | None = None,
        platform: str | None = None,
    ) -> RecordedStatement:
        """Extract a statement from ``message`` and record it.

        Returns:
            The statement together with what was recorded. Nothing is
            recorded for ``none`` statements or claims without a handle.
        """
        statement = await self._extractor.extract(
            message, speaker_name=speaker_name, platform=platform
        )
        outcome = RecordedStatement(statement=statement)

        if statement.kind == StatementKind.CLAIM:
            if not statement.platform or not statement.handle:
                logger.info("Claim without platform or handle; nothing recorded")
                return outcome
            outcome.platform = statement.platform
            outcome.handle = statement.handle
            outcome.claim_id = await self._resolver.record_platform_claim(
                claimed_by=speaker_id,
                claimed_from=speaker_id,
                claimed_about=speaker_id,
                platform=statement.platform,
                handle=statement.handle,
                confidence=statement.confidence,
                source=statement.source or ClaimSource.USER_STATEMENT,
                evidence=message,
            )
        elif statement.kind == StatementKind.CONFIRMATION:
            await self._confirm(statement, message, speaker_id, outcome)

        return outcome

    async def _confirm(
        self,
        statement: IdentityStatement,
        message: str,
        speaker_id: UUID,
        outcome: RecordedStatement,
    ) -> None:
        method = statement.method or ConfirmationMethod.DIRECT_STATEMENT

        if statement.platform and statement.handle:
            platform, handle = statement.platform, statement.handle
            confidence = statement.confidence
            matching = [
                c
                for c in await self._resolver.get_platform_claims(platform, handle)
                if c.claimed_about == speaker_id
            ]
            claim_ref = matching[-1].claim_id if matching else f"{platform}:{handle}:confirmation"
        else:
            since = datetime.now(tz=UTC) - self._fallback_window
            recent = [
                c
                for c in self._resolver.ledger.claims_by(speaker_id, since=since)
                if statement.platform is None or c.platform == statement.platform
            ]
            if not recent:
                logger.info("Confirmation from %s matches no recent claim", speaker_id)
                return
            latest = recent[-1]
            platform, handle = latest.platform, latest.handle
            confidence = self._fallback_confidence
            claim_ref = latest.claim_id

        outcome.platform = platform
        outcome.handle = handle
        outcome.completed = await self._resolver.record_platform_confirmation(
            confirmed_by=speaker_id,
            confirms_entity=speaker_id,
            platform=platform,
            handle=handle,
            confirms_claim=claim_ref,
            confidence=confidence,
            method=method,
            evidence=message,
        )
