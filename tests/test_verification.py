"""Tests for the claim/confirmation ledger and the bidirectional protocol.

The end-to-end scenario: two different entities are claimed to own the
same twitter handle. A proposal is created but waits for confirmations;
once both sides confirm, the evidence is strong enough to auto-merge.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID, uuid4

import pytest

from persona_resolver.config import ResolverConfig
from persona_resolver.events import InMemoryEventBus
from persona_resolver.merging.proposal import pair_key
from persona_resolver.models.enums import (
    ClaimSource,
    ConfirmationMethod,
    EventType,
    MergeStrategy,
)
from persona_resolver.resolution.resolver import EntityResolver
from persona_resolver.verification import (
    VerificationLedger,
    compute_bidirectional_evidence,
)
from tests.conftest import FakeDirectory, LexicalOracle, RecordingRedirector


def claim_kwargs(claimed_by: UUID, about: UUID, handle: str = "@bob") -> dict:
    return {
        "claimed_by": claimed_by,
        "claimed_from": claimed_by,
        "claimed_about": about,
        "platform": "twitter",
        "handle": handle,
        "confidence": 0.8,
        "source": ClaimSource.USER_STATEMENT,
    }


def confirmation_kwargs(confirmed_by: UUID, entity: UUID, claim_id: str) -> dict:
    return {
        "confirmed_by": confirmed_by,
        "confirms_entity": entity,
        "platform": "twitter",
        "handle": "@bob",
        "confirms_claim": claim_id,
        "confidence": 0.9,
        "method": ConfirmationMethod.DIRECT_STATEMENT,
    }


# ─────────────────────────────────────────────────────────────────────────────
# Ledger
# ─────────────────────────────────────────────────────────────────────────────


class TestVerificationLedger:
    """Tests for the append-only ledger."""

    def test_claim_ids_are_unique_per_append(self) -> None:
        ledger = VerificationLedger()
        a, x = uuid4(), uuid4()
        first = ledger.append_claim(**claim_kwargs(a, x))
        second = ledger.append_claim(**claim_kwargs(a, x))

        assert first.claim_id == f"twitter:@bob:{a}:0"
        assert second.claim_id == f"twitter:@bob:{a}:1"
        assert ledger.get_claim(second.claim_id) == second

    def test_filter_by_key(self) -> None:
        ledger = VerificationLedger()
        a, x = uuid4(), uuid4()
        ledger.append_claim(**claim_kwargs(a, x, "@bob"))
        ledger.append_claim(**claim_kwargs(a, x, "@carol"))

        assert [c.handle for c in ledger.claims("twitter", "@bob")] == ["@bob"]
        assert len(ledger.claims()) == 2
        assert ledger.claims("github", "@bob") == []

    def test_filter_by_platform_or_handle_alone(self) -> None:
        ledger = VerificationLedger()
        a, x = uuid4(), uuid4()
        twitter = ledger.append_claim(**claim_kwargs(a, x, "@bob"))
        github = ledger.append_claim(**claim_kwargs(a, x, "@bob") | {"platform": "github"})
        ledger.append_confirmation(**confirmation_kwargs(x, x, twitter.claim_id))

        assert ledger.claims("twitter") == [twitter]
        assert ledger.claims("github") == [github]
        assert ledger.claims(handle="@bob") == [twitter, github]
        assert len(ledger.confirmations("twitter")) == 1
        assert ledger.confirmations("github") == []

    def test_get_claim_lookup(self) -> None:
        ledger = VerificationLedger()
        a, x = uuid4(), uuid4()
        first = ledger.append_claim(**claim_kwargs(a, x))
        ledger.append_confirmation(**confirmation_kwargs(x, x, first.claim_id))
        later = ledger.append_claim(**claim_kwargs(a, x, "@carol"))

        assert ledger.get_claim(first.claim_id) is first
        assert ledger.get_claim(later.claim_id) is later
        assert ledger.get_claim("twitter:@bob:unknown:0") is None

    def test_claims_and_confirmations_kept_apart(self) -> None:
        ledger = VerificationLedger()
        a, x = uuid4(), uuid4()
        claim = ledger.append_claim(**claim_kwargs(a, x))
        ledger.append_confirmation(**confirmation_kwargs(x, x, claim.claim_id))

        assert len(ledger) == 2
        assert ledger.claims("twitter", "@bob") == [claim]
        assert len(ledger.confirmations("twitter", "@bob")) == 1

    def test_claims_by_speaker(self) -> None:
        ledger = VerificationLedger()
        a, b, x = uuid4(), uuid4(), uuid4()
        ledger.append_claim(**claim_kwargs(a, x))
        ledger.append_claim(**claim_kwargs(b, x))

        assert [c.claimed_by for c in ledger.claims_by(a)] == [a]

    def test_confidence_out_of_range_rejected(self) -> None:
        ledger = VerificationLedger()
        kwargs = claim_kwargs(uuid4(), uuid4()) | {"confidence": 1.5}
        with pytest.raises(ValueError, match="confidence"):
            ledger.append_claim(**kwargs)
        assert len(ledger) == 0


class TestBidirectionalEvidence:
    """Tests for evidence strength."""

    def test_empty_key(self) -> None:
        evidence = compute_bidirectional_evidence(VerificationLedger(), "twitter", "@bob")
        assert evidence.strength == 0.0
        assert evidence.requires_confirmation is False

    def test_strength_progression(self) -> None:
        ledger = VerificationLedger()
        a, b, x, y = uuid4(), uuid4(), uuid4(), uuid4()
        claim_x = ledger.append_claim(**claim_kwargs(a, x))

        evidence = compute_bidirectional_evidence(ledger, "twitter", "@bob")
        assert evidence.strength == pytest.approx(0.2)

        claim_y = ledger.append_claim(**claim_kwargs(b, y))
        evidence = compute_bidirectional_evidence(ledger, "twitter", "@bob")
        assert evidence.strength == pytest.approx(0.4)
        assert evidence.required_confirmations == 2
        assert evidence.received_confirmations == 0

        ledger.append_confirmation(**confirmation_kwargs(x, x, claim_x.claim_id))
        evidence = compute_bidirectional_evidence(ledger, "twitter", "@bob")
        assert evidence.strength == pytest.approx(0.7)
        assert evidence.requires_confirmation is True

        ledger.append_confirmation(**confirmation_kwargs(y, y, claim_y.claim_id))
        evidence = compute_bidirectional_evidence(ledger, "twitter", "@bob")
        assert evidence.strength == pytest.approx(1.0)
        assert evidence.received_confirmations == evidence.required_confirmations
        assert evidence.requires_confirmation is False

    def test_strength_capped(self) -> None:
        ledger = VerificationLedger()
        for _ in range(3):
            entity = uuid4()
            claim = ledger.append_claim(**claim_kwargs(entity, entity))
            ledger.append_confirmation(**confirmation_kwargs(entity, entity, claim.claim_id))

        evidence = compute_bidirectional_evidence(ledger, "twitter", "@bob")
        assert evidence.strength == 1.0


# ─────────────────────────────────────────────────────────────────────────────
# Protocol through the resolver
# ─────────────────────────────────────────────────────────────────────────────


class TestBidirectionalProtocol:
    """Claims and confirmations recorded through EntityResolver."""

    @pytest.mark.asyncio
    async def test_single_claim_never_proposes(
        self, resolver: EntityResolver, directory: FakeDirectory, events: InMemoryEventBus
    ) -> None:
        x = directory.add("Xavier")
        await resolver.record_platform_claim(**claim_kwargs(x.id, x.id))

        assert await resolver.get_pending_merges() == []
        assert not events.history

    @pytest.mark.asyncio
    async def test_conflicting_claims_propose_and_wait(
        self, resolver: EntityResolver, directory: FakeDirectory, events: InMemoryEventBus
    ) -> None:
        a, b = uuid4(), uuid4()
        x = directory.add("Xavier")
        y = directory.add("Yolanda")

        await resolver.record_platform_claim(**claim_kwargs(a, x.id))
        await resolver.record_platform_claim(**claim_kwargs(b, y.id))

        (proposal,) = await resolver.get_pending_merges()
        assert proposal.key == pair_key(x.id, y.id)
        assert proposal.primary_id == y.id
        assert proposal.candidate_ids == [x.id]
        assert proposal.confidence == pytest.approx(0.4)
        assert proposal.strategy == MergeStrategy.MERGE
        assert proposal.requires_confirmation is True
        (pending,) = proposal.pending_confirmations
        assert pending.required_from == x.id
        assert pending.claimed_by == b

        (created,) = events.events_of(EventType.MERGE_PROPOSAL_CREATED)
        assert created.source == "bidirectional-verification"
        assert created.entity_id == y.id

    @pytest.mark.asyncio
    async def test_repeat_claim_refreshes_existing_proposal(
        self, resolver: EntityResolver, directory: FakeDirectory, events: InMemoryEventBus
    ) -> None:
        a, b = uuid4(), uuid4()
        x = directory.add("Xavier")
        y = directory.add("Yolanda")

        await resolver.record_platform_claim(**claim_kwargs(a, x.id))
        await resolver.record_platform_claim(**claim_kwargs(b, y.id))
        await resolver.record_platform_claim(**claim_kwargs(b, y.id))

        assert len(await resolver.get_pending_merges()) == 1
        assert len(events.events_of(EventType.MERGE_PROPOSAL_CREATED)) == 1

    @pytest.mark.asyncio
    async def test_missing_entity_means_no_proposal(
        self, resolver: EntityResolver, directory: FakeDirectory
    ) -> None:
        x = directory.add("Xavier")
        ghost = uuid4()

        await resolver.record_platform_claim(**claim_kwargs(uuid4(), x.id))
        await resolver.record_platform_claim(**claim_kwargs(uuid4(), ghost))

        assert await resolver.get_pending_merges() == []
        assert len(await resolver.get_platform_claims("twitter", "@bob")) == 2

    @pytest.mark.asyncio
    async def test_both_confirmations_auto_merge(
        self,
        resolver: EntityResolver,
        directory: FakeDirectory,
        events: InMemoryEventBus,
        redirector: RecordingRedirector,
    ) -> None:
        a, b = uuid4(), uuid4()
        x = directory.add("Xavier")
        y = directory.add("Yolanda")

        claim_x = await resolver.record_platform_claim(**claim_kwargs(a, x.id))
        claim_y = await resolver.record_platform_claim(**claim_kwargs(b, y.id))

        completed = await resolver.record_platform_confirmation(
            **confirmation_kwargs(x.id, x.id, claim_x)
        )
        assert completed is True
        (proposal,) = await resolver.get_pending_merges()
        assert proposal.confidence == pytest.approx(0.7)
        assert proposal.requires_confirmation is True
        assert events.events_of(EventType.ENTITY_MERGED) == []

        completed = await resolver.record_platform_confirmation(
            **confirmation_kwargs(y.id, y.id, claim_y)
        )
        assert completed is True
        assert await resolver.get_pending_merges() == []

        (merged,) = events.events_of(EventType.ENTITY_MERGED)
        assert merged.entity_id == y.id
        assert merged.payload["merge_strategy"] == "absorb"
        assert directory.entities[y.id].names == ["Yolanda", "Xavier"]
        assert redirector.calls == [([x.id], y.id)]

    @pytest.mark.asyncio
    async def test_confirmation_without_claim_does_not_complete(
        self, resolver: EntityResolver, directory: FakeDirectory
    ) -> None:
        x = directory.add("Xavier")
        completed = await resolver.record_platform_confirmation(
            **confirmation_kwargs(x.id, x.id, "twitter:@bob:unknown:0")
        )

        assert completed is False
        assert len(await resolver.get_platform_confirmations()) == 1

    @pytest.mark.asyncio
    async def test_ready_for_review_event(
        self, directory: FakeDirectory, oracle: LexicalOracle, events: InMemoryEventBus
    ) -> None:
        config = replace(ResolverConfig(), review_threshold=0.6)
        resolver = EntityResolver(directory, oracle, events=events, config=config)
        a, b = uuid4(), uuid4()
        x = directory.add("Xavier")
        y = directory.add("Yolanda")

        claim_x = await resolver.record_platform_claim(**claim_kwargs(a, x.id))
        await resolver.record_platform_claim(**claim_kwargs(b, y.id))
        await resolver.record_platform_confirmation(**confirmation_kwargs(x.id, x.id, claim_x))

        (review,) = events.events_of(EventType.MERGE_READY_FOR_REVIEW)
        assert review.payload["proposal_key"] == pair_key(x.id, y.id)
        assert review.payload["required_confirmations"] == 2
        assert review.payload["received_confirmations"] == 1
        assert len(await resolver.get_pending_merges()) == 1

    @pytest.mark.asyncio
    async def test_manual_approval_overrides_missing_confirmations(
        self, resolver: EntityResolver, directory: FakeDirectory
    ) -> None:
        admin = uuid4()
        x = directory.add("Xavier")
        y = directory.add("Yolanda")
        await resolver.record_platform_claim(**claim_kwargs(uuid4(), x.id))
        await resolver.record_platform_claim(**claim_kwargs(uuid4(), y.id))
        key = pair_key(x.id, y.id)

        assert await resolver.approve_pending_merge(key, admin) is True

        assert key not in resolver.pending
        history = directory.entities[y.id].metadata["merge_history"]
        assert history[-1]["field"] == "manual_approval"
        assert history[-1]["entity_id"] == str(admin)

    @pytest.mark.asyncio
    async def test_approving_unknown_key(self, resolver: EntityResolver) -> None:
        assert await resolver.approve_pending_merge("nope", uuid4()) is False

    @pytest.mark.asyncio
    async def test_confirmations_before_claims_auto_merge(
        self, resolver: EntityResolver, directory: FakeDirectory, events: InMemoryEventBus
    ) -> None:
        a, b = uuid4(), uuid4()
        x = directory.add("Xavier")
        y = directory.add("Yolanda")

        await resolver.record_platform_confirmation(
            **confirmation_kwargs(x.id, x.id, "twitter:@bob:pending:0")
        )
        await resolver.record_platform_confirmation(
            **confirmation_kwargs(y.id, y.id, "twitter:@bob:pending:1")
        )
        await resolver.record_platform_claim(**claim_kwargs(a, x.id))
        await resolver.record_platform_claim(**claim_kwargs(b, y.id))

        assert await resolver.get_pending_merges() == []
        (merged,) = events.events_of(EventType.ENTITY_MERGED)
        assert merged.entity_id == y.id
        assert directory.entities[y.id].names == ["Yolanda", "Xavier"]

    @pytest.mark.asyncio
    async def test_failed_approval_keeps_confirmation_gate(
        self, resolver: EntityResolver, directory: FakeDirectory
    ) -> None:
        x = directory.add("Xavier")
        y = directory.add("Yolanda")
        await resolver.record_platform_claim(**claim_kwargs(uuid4(), x.id))
        await resolver.record_platform_claim(**claim_kwargs(uuid4(), y.id))
        key = pair_key(x.id, y.id)
        directory.fail_on.add("update")

        assert await resolver.approve_pending_merge(key, uuid4()) is False

        proposal = resolver.pending.get(key)
        assert proposal is not None
        assert proposal.requires_confirmation is True
        assert proposal.preserved_data == []

        directory.fail_on.clear()
        assert await resolver.approve_pending_merge(key, uuid4()) is True
        assert key not in resolver.pending
