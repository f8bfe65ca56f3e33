"""Tests for candidate scoring.

Covers:
- Weighted-mean confidence with severity penalties, clamped to [0, 1]
- Match factors: exact name, oracle similarity, platform handle, context
- Risk factors: potential duplicates and identity conflicts
- Ranking of look-alike names once disambiguation runs
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch
from uuid import UUID, uuid4

import pytest

from persona_resolver.config import ResolverConfig
from persona_resolver.entity import Entity
from persona_resolver.models.enums import MatchFactorType, RiskFactorType, RiskSeverity
from persona_resolver.resolution.disambiguation import (
    apply_contextual_disambiguation,
    detect_conflicts,
)
from persona_resolver.resolution.scoring import (
    MatchScorer,
    combine_confidence,
    cross_platform_indicators,
    detect_identity_conflicts,
)
from persona_resolver.resolution.similarity import SimilarityJudge
from persona_resolver.resolution.types import (
    ConversationTurn,
    EntityResolutionCandidate,
    MatchFactor,
    ResolutionContext,
    RiskFactor,
)
from tests.conftest import LexicalOracle, identity_metadata, with_identities


def make_entity(*names: str, metadata: dict | None = None) -> Entity:
    return Entity(id=uuid4(), names=list(names), metadata=metadata or {})


def factor_types(candidate: EntityResolutionCandidate) -> set[MatchFactorType]:
    return {f.type for f in candidate.match_factors}


@pytest.fixture
def scorer(judge: SimilarityJudge, config: ResolverConfig) -> MatchScorer:
    return MatchScorer(judge, config)


# ─────────────────────────────────────────────────────────────────────────────
# combine_confidence
# ─────────────────────────────────────────────────────────────────────────────


class TestCombineConfidence:
    """Tests for the weighted-mean-minus-penalties formula."""

    def test_no_factors_scores_zero(self, config: ResolverConfig) -> None:
        assert combine_confidence([], [], config.risk_penalties) == 0.0

    def test_weighted_mean_of_match_factors(self, config: ResolverConfig) -> None:
        factors = [
            MatchFactor(MatchFactorType.EXACT_NAME, 1.0, "exact", 0.9),
            MatchFactor(MatchFactorType.CONTEXTUAL_HINT, 0.5, "context", 0.5),
        ]
        expected = (1.0 * 0.9 + 0.5 * 0.5) / (0.9 + 0.5)
        assert combine_confidence(factors, [], config.risk_penalties) == pytest.approx(expected)

    def test_risk_penalty_scaled_by_risk_confidence(self, config: ResolverConfig) -> None:
        factors = [MatchFactor(MatchFactorType.EXACT_NAME, 1.0, "exact", 0.9)]
        risks = [
            RiskFactor(RiskFactorType.IDENTITY_CONFLICT, RiskSeverity.HIGH, 0.5, "conflict"),
        ]
        result = combine_confidence(factors, risks, config.risk_penalties)
        assert result == pytest.approx(1.0 - 0.3 * 0.5)

    def test_clamped_at_zero(self, config: ResolverConfig) -> None:
        factors = [MatchFactor(MatchFactorType.CONTEXTUAL_HINT, 0.1, "weak", 0.5)]
        risks = [
            RiskFactor(RiskFactorType.IMPERSONATION_RISK, RiskSeverity.CRITICAL, 1.0, "x"),
        ]
        assert combine_confidence(factors, risks, config.risk_penalties) == 0.0

    def test_unknown_severity_costs_nothing(self) -> None:
        factors = [MatchFactor(MatchFactorType.EXACT_NAME, 1.0, "exact", 0.9)]
        risks = [RiskFactor(RiskFactorType.POTENTIAL_DUPLICATE, RiskSeverity.LOW, 1.0, "dup")]
        assert combine_confidence(factors, risks, {}) == 1.0


# ─────────────────────────────────────────────────────────────────────────────
# Identity conflicts and indicators
# ─────────────────────────────────────────────────────────────────────────────


class TestDetectIdentityConflicts:
    """Tests for disagreements among an entity's own platform identities."""

    def test_verification_mismatch_same_handle(self) -> None:
        entity = make_entity(
            "Alice",
            metadata=with_identities(
                identity_metadata("twitter", "alice", verified=True, confidence=0.9),
                identity_metadata("discord", "Alice", verified=False, confidence=0.8),
            ),
        )
        conflicts = detect_identity_conflicts(entity, "Alice")
        assert len(conflicts) == 1
        assert "Verification mismatch" in conflicts[0]

    def test_confidence_mismatch_same_handle(self) -> None:
        entity = make_entity(
            "Alice",
            metadata=with_identities(
                identity_metadata("twitter", "alice", confidence=0.9),
                identity_metadata("github", "alice", confidence=0.4),
            ),
        )
        conflicts = detect_identity_conflicts(entity, "Alice")
        assert len(conflicts) == 1
        assert "Confidence score mismatch" in conflicts[0]

    def test_small_confidence_gap_is_fine(self) -> None:
        entity = make_entity(
            "Alice",
            metadata=with_identities(
                identity_metadata("twitter", "alice", confidence=0.9),
                identity_metadata("github", "alice", confidence=0.7),
            ),
        )
        assert detect_identity_conflicts(entity, "Alice") == []

    def test_partial_identifier_match(self) -> None:
        entity = make_entity(
            "Alice", metadata=with_identities(identity_metadata("twitter", "alice"))
        )
        conflicts = detect_identity_conflicts(entity, "alice_fan")
        assert len(conflicts) == 1
        assert "Partial match" in conflicts[0]

    def test_exact_identifier_is_not_partial(self) -> None:
        entity = make_entity(
            "Alice", metadata=with_identities(identity_metadata("twitter", "alice"))
        )
        assert detect_identity_conflicts(entity, "ALICE") == []


class TestCrossPlatformIndicators:
    """Tests for indicator extraction from entity metadata."""

    def test_one_indicator_per_platform(self) -> None:
        entity = make_entity(
            "Alice",
            metadata=with_identities(
                identity_metadata("twitter", "@alice", verified=True, confidence=1.0),
                identity_metadata("discord", user_id="1234"),
            ),
        )
        indicators = {i.platform: i for i in cross_platform_indicators(entity)}

        assert set(indicators) == {"twitter", "discord"}
        assert indicators["twitter"].identifier == "@alice"
        assert indicators["twitter"].verified is True
        assert indicators["discord"].identifier == "1234"
        assert indicators["discord"].linking_evidence == ["Identity stored in entity metadata"]

    def test_malformed_identity_skipped(self) -> None:
        entity = make_entity(
            "Alice",
            metadata={"platform_identities": {"twitter": "not-a-dict", "github": {"handle": "a"}}},
        )
        assert [i.platform for i in cross_platform_indicators(entity)] == ["github"]


# ─────────────────────────────────────────────────────────────────────────────
# MatchScorer
# ─────────────────────────────────────────────────────────────────────────────


class TestMatchScorer:
    """Tests for MatchScorer.score."""

    @pytest.mark.asyncio
    async def test_exact_name_outscores_similarity_only(self, scorer: MatchScorer) -> None:
        exact = EntityResolutionCandidate.stub(make_entity("Alice"))
        similar = EntityResolutionCandidate.stub(make_entity("Alicia"))
        context = ResolutionContext()

        await scorer.score(exact, "Alice", context)
        await scorer.score(similar, "Alice", context)

        assert factor_types(exact) == {MatchFactorType.EXACT_NAME, MatchFactorType.SIMILAR_NAME}
        assert factor_types(similar) == {MatchFactorType.SIMILAR_NAME}
        assert exact.confidence >= similar.confidence

    @pytest.mark.asyncio
    async def test_dissimilar_name_has_no_factors(self, scorer: MatchScorer) -> None:
        candidate = EntityResolutionCandidate.stub(make_entity("Bob"))
        await scorer.score(candidate, "Alice", ResolutionContext())

        assert candidate.match_factors == []
        assert candidate.confidence == 0.0

    @pytest.mark.asyncio
    async def test_confidence_always_in_bounds(self, scorer: MatchScorer) -> None:
        population = [make_entity("Alice"), make_entity("Alice B"), make_entity("Alicia")]
        for entity in population:
            candidate = EntityResolutionCandidate.stub(entity)
            await scorer.score(candidate, "Alice", ResolutionContext(), population=population)
            assert 0.0 <= candidate.confidence <= 1.0

    @pytest.mark.asyncio
    async def test_unverified_platform_handle(self, scorer: MatchScorer) -> None:
        entity = make_entity(
            "Alice", metadata=with_identities(identity_metadata("twitter", "@wonder"))
        )
        candidate = EntityResolutionCandidate.stub(entity)
        await scorer.score(candidate, "@wonder", ResolutionContext())

        platform = [
            f for f in candidate.match_factors if f.type == MatchFactorType.PLATFORM_IDENTITY
        ]
        assert len(platform) == 1
        assert platform[0].confidence == 0.8
        assert platform[0].weight == 0.8
        assert candidate.cross_platform_indicators[0].platform == "twitter"

    @pytest.mark.asyncio
    async def test_verified_platform_handle(self, scorer: MatchScorer) -> None:
        entity = make_entity(
            "Alice",
            metadata=with_identities(identity_metadata("twitter", "@wonder", verified=True)),
        )
        candidate = EntityResolutionCandidate.stub(entity)
        await scorer.score(candidate, "@wonder", ResolutionContext())

        assert candidate.confidence == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_contextual_hint_counts_above_threshold(self, config: ResolverConfig) -> None:
        oracle = LexicalOracle(context_score=0.6)
        scorer = MatchScorer(SimilarityJudge(oracle), config)
        context = ResolutionContext(
            conversation_history=[ConversationTurn("bob", "Alice said she'd join later")]
        )
        candidate = EntityResolutionCandidate.stub(make_entity("Alice"))
        await scorer.score(candidate, "Alice", context)

        hints = [f for f in candidate.match_factors if f.type == MatchFactorType.CONTEXTUAL_HINT]
        assert len(hints) == 1
        assert hints[0].confidence == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_weak_contextual_hint_ignored(self, config: ResolverConfig) -> None:
        oracle = LexicalOracle(context_score=0.3)
        scorer = MatchScorer(SimilarityJudge(oracle), config)
        context = ResolutionContext(conversation_history=[ConversationTurn("bob", "hi")])
        candidate = EntityResolutionCandidate.stub(make_entity("Alice"))
        await scorer.score(candidate, "Alice", context)

        assert MatchFactorType.CONTEXTUAL_HINT not in factor_types(candidate)

    @pytest.mark.asyncio
    async def test_oracle_outage_keeps_exact_match(
        self, scorer: MatchScorer, oracle: LexicalOracle
    ) -> None:
        oracle.fail = True
        candidate = EntityResolutionCandidate.stub(make_entity("Alice"))
        await scorer.score(candidate, "alice", ResolutionContext())

        assert factor_types(candidate) == {MatchFactorType.EXACT_NAME}
        assert candidate.confidence == 1.0

    @pytest.mark.asyncio
    async def test_unparseable_oracle_reply_scores_zero(
        self, scorer: MatchScorer, oracle: LexicalOracle
    ) -> None:
        oracle.reply = "they look alike to me"
        candidate = EntityResolutionCandidate.stub(make_entity("Alicia"))
        await scorer.score(candidate, "Alice", ResolutionContext())

        assert candidate.match_factors == []
        assert candidate.confidence == 0.0

    @pytest.mark.asyncio
    async def test_scoring_failure_yields_zero(self, scorer: MatchScorer) -> None:
        candidate = EntityResolutionCandidate.stub(make_entity("Alice"))
        candidate.confidence = 0.5
        with patch.object(
            scorer, "match_factors", new=AsyncMock(side_effect=RuntimeError("boom"))
        ):
            result = await scorer.score(candidate, "Alice", ResolutionContext())

        assert result is candidate
        assert result.confidence == 0.0


class TestRiskFactors:
    """Tests for duplicate and conflict risk factors."""

    @pytest.mark.asyncio
    async def test_name_similar_population_member_is_duplicate(
        self, scorer: MatchScorer
    ) -> None:
        alice = make_entity("Alice")
        alicia = make_entity("Alicia")
        risks = await scorer.risk_factors(alice, "Alice", [alice, alicia])

        assert [r.type for r in risks] == [RiskFactorType.POTENTIAL_DUPLICATE]
        assert risks[0].severity == RiskSeverity.MEDIUM
        assert risks[0].confidence == 0.7
        assert risks[0].evidence == ["Alicia"]

    @pytest.mark.asyncio
    async def test_entity_never_duplicates_itself(self, scorer: MatchScorer) -> None:
        alice = make_entity("Alice")
        assert await scorer.find_similar_entities(alice, [alice]) == []

    @pytest.mark.asyncio
    async def test_shared_account_is_duplicate(self, scorer: MatchScorer) -> None:
        alice = make_entity("Alice", metadata=with_identities(identity_metadata("twitter", "@a")))
        other = make_entity("Zed", metadata=with_identities(identity_metadata("twitter", "@a")))

        similar = await scorer.find_similar_entities(alice, [other])
        assert similar == [other]

    @pytest.mark.asyncio
    async def test_identity_conflict_risk(self, scorer: MatchScorer) -> None:
        entity = make_entity(
            "Alice",
            metadata=with_identities(
                identity_metadata("twitter", "alice", verified=True),
                identity_metadata("discord", "alice", verified=False),
            ),
        )
        risks = await scorer.risk_factors(entity, "Alice", [])

        assert [r.type for r in risks] == [RiskFactorType.IDENTITY_CONFLICT]
        assert risks[0].severity == RiskSeverity.HIGH
        assert risks[0].confidence == 0.8


class TestLookAlikeRanking:
    """Two look-alike names scored, disambiguated and ranked together."""

    @pytest.mark.asyncio
    async def test_alice_ranks_above_alicia(
        self, scorer: MatchScorer, config: ResolverConfig, room_id: UUID
    ) -> None:
        alice = make_entity("Alice")
        alicia = make_entity("Alicia")
        population = [alice, alicia]
        context = ResolutionContext(room_id=room_id)

        scored = [
            await scorer.score(
                EntityResolutionCandidate.stub(e), "Alice", context, population=population
            )
            for e in population
        ]

        # Both see the other as a potential duplicate
        assert all(c.has_risk(RiskFactorType.POTENTIAL_DUPLICATE) for c in scored)
        assert scored[0].confidence == pytest.approx(1.0 - 0.15 * 0.7)
        assert scored[1].confidence == pytest.approx(8 / 11 - 0.15 * 0.7, abs=1e-3)

        ranked = detect_conflicts(
            apply_contextual_disambiguation(scored, context, config), config
        )

        assert [c.entity_id for c in ranked] == [alice.id, alicia.id]
        assert ranked[0].confidence > config.high_confidence
        assert ranked[1].confidence < config.high_confidence
        assert not any(c.has_risk(RiskFactorType.IDENTITY_CONFLICT) for c in ranked)
