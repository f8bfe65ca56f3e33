"""Two-sided verification of platform identities.

Per ``platform:handle`` key the protocol moves through:

    no evidence -> claim only -> claims about different entities
        -> merge proposed -> confirmations arrive
        -> auto-merged | ready for review | (rejected by an operator)

A single self-asserted claim never merges anything. A proposal only
executes on its own once every entity on the key has been confirmed and
the evidence strength clears the auto-merge threshold.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from persona_resolver.events import ResolverEvent, emit_safely
from persona_resolver.merging.proposal import (
    EntityMergeProposal,
    PendingConfirmation,
    PreservedData,
    RiskAssessment,
    pair_key,
    strategy_for,
)
from persona_resolver.models.enums import EventType
from persona_resolver.verification.evidence import compute_bidirectional_evidence

if TYPE_CHECKING:
    from uuid import UUID

    from persona_resolver.config import ResolverConfig
    from persona_resolver.merging.executor import MergeExecutor
    from persona_resolver.merging.proposal import PendingMergeTable
    from persona_resolver.models.enums import ClaimSource, ConfirmationMethod
    from persona_resolver.ports import EntityDirectory, EventBus
    from persona_resolver.verification.evidence import BidirectionalEvidence
    from persona_resolver.verification.ledger import PlatformClaim, VerificationLedger

logger = logging.getLogger(__name__)

EVENT_SOURCE = "bidirectional-verification"


def _claim_proposal_risk() -> RiskAssessment:
    """Fixed risk profile for proposals derived from platform claims."""
    return RiskAssessment(data_loss=0.2, trust_impact=0.3, relationship_impact=0.4, overall=0.3)


class BidirectionalVerifier:
    """Claim/confirmation ledger front-end that drives merge proposals.

    Usage:
        verifier = BidirectionalVerifier(ledger, pending, directory, executor, config)
        claim_id = await verifier.record_claim(...)
        completed = await verifier.record_confirmation(..., confirms_claim=claim_id, ...)
    """

    def __init__(
        self,
        ledger: VerificationLedger,
        pending: PendingMergeTable,
        directory: EntityDirectory,
        executor: MergeExecutor,
        config: ResolverConfig,
        *,
        events: EventBus | None = None,
    ) -> None:
        self._ledger = ledger
        self._pending = pending
        self._directory = directory
        self._executor = executor
        self._config = config
        self._events = events

    async def record_claim(
        self,
        *,
        claimed_by: UUID,
        claimed_from: UUID,
        claimed_about: UUID,
        platform: str,
        handle: str,
        confidence: float,
        source: ClaimSource,
        evidence: str = "",
    ) -> str:
        """Append a claim and propose merges with other entities claiming the same handle.

        Returns:
            The new claim's id.
        """
        claim = self._ledger.append_claim(
            platform=platform,
            handle=handle,
            claimed_by=claimed_by,
            claimed_from=claimed_from,
            claimed_about=claimed_about,
            confidence=confidence,
            source=source,
            evidence=evidence,
        )
        logger.info(
            "Recorded platform claim: %s claims %s for entity %s",
            claimed_by,
            claim.key,
            claimed_about,
        )

        others = list(
            dict.fromkeys(
                c.claimed_about
                for c in self._ledger.claims(platform, handle)
                if c.claimed_about != claimed_about
            )
        )
        if others:
            logger.info("Potential entity merge opportunity detected for %s", claim.key)
        for other in others:
            await self._propose(claim, other)

        return claim.claim_id

    async def record_confirmation(
        self,
        *,
        confirmed_by: UUID,
        confirms_entity: UUID,
        platform: str,
        handle: str,
        confirms_claim: str,
        confidence: float,
        method: ConfirmationMethod,
        evidence: str = "",
    ) -> bool:
        """Append a confirmation and advance proposals it completes.

        Returns:
            True when the key now has both a claim and a confirmation about
            ``confirms_entity``.
        """
        if self._ledger.get_claim(confirms_claim) is None:
            logger.warning("Confirmation references unknown claim %s", confirms_claim)

        confirmation = self._ledger.append_confirmation(
            platform=platform,
            handle=handle,
            confirmed_by=confirmed_by,
            confirms_entity=confirms_entity,
            confirms_claim=confirms_claim,
            confidence=confidence,
            method=method,
            evidence=evidence,
        )
        logger.info(
            "Recorded platform confirmation: %s confirms %s for entity %s",
            confirmed_by,
            confirmation.key,
            confirms_entity,
        )

        return await self._check_completed(confirms_entity, platform, handle)

    async def approve(self, key: str, approver_id: UUID) -> bool:
        """Execute a pending proposal on an operator's say-so.

        The approval is recorded on the executed copy and stands in for the
        confirmations it was still waiting on; a failed execution leaves the
        pending proposal untouched.
        """
        proposal = self._pending.get(key)
        if proposal is None:
            logger.warning("No pending merge found for key: %s", key)
            return False

        logger.info("Manual approval of merge %s by %s", key, approver_id)
        approved = replace(
            proposal,
            preserved_data=[
                *proposal.preserved_data,
                PreservedData(
                    entity_id=approver_id,
                    field="manual_approval",
                    value=True,
                    reason="Admin override approval",
                ),
            ],
            requires_confirmation=False,
        )

        # The pending proposal keeps its confirmation gate if execution fails
        success = await self._executor.execute(approved)
        if success:
            self._pending.discard(key)
        return success

    async def _check_completed(self, entity_id: UUID, platform: str, handle: str) -> bool:
        has_claim = any(c.claimed_about == entity_id for c in self._ledger.claims(platform, handle))
        has_confirmation = any(
            c.confirms_entity == entity_id for c in self._ledger.confirmations(platform, handle)
        )
        if not (has_claim and has_confirmation):
            return False

        logger.info(
            "Bidirectional verification completed for entity %s on %s:%s",
            entity_id,
            platform,
            handle,
        )
        await self._process_pending(entity_id)
        return True

    async def _propose(self, claim: PlatformClaim, other: UUID) -> None:
        key = pair_key(claim.claimed_about, other)
        existing = self._pending.get(key)
        if existing is not None:
            logger.debug("Merge proposal already exists for %s; refreshing evidence", key)
            evidence = self._refresh(existing)
            if evidence is not None:
                await self._advance(existing, evidence)
            return

        try:
            primary = await self._directory.get_entity_by_id(claim.claimed_about)
            candidate = await self._directory.get_entity_by_id(other)
        except Exception:
            logger.exception("Error loading entities for merge proposal %s", key)
            return
        if primary is None or candidate is None:
            logger.warning(
                "Could not find entities for merge proposal: %s, %s", claim.claimed_about, other
            )
            return

        evidence = compute_bidirectional_evidence(self._ledger, claim.platform, claim.handle)
        proposal = EntityMergeProposal(
            primary_id=primary.id,
            candidate_ids=[candidate.id],
            confidence=evidence.strength,
            strategy=strategy_for(evidence.strength),
            risk=_claim_proposal_risk(),
            bidirectional_evidence=evidence,
            requires_confirmation=evidence.requires_confirmation,
            pending_confirmations=[
                PendingConfirmation(
                    platform=claim.platform,
                    handle=claim.handle,
                    required_from=candidate.id,
                    claimed_by=claim.claimed_by,
                )
            ],
        )
        self._pending.put(proposal)
        logger.info(
            "Created bidirectional merge proposal for entities %s and %s via %s",
            primary.id,
            candidate.id,
            claim.key,
        )

        await emit_safely(
            self._events,
            ResolverEvent(
                type=EventType.MERGE_PROPOSAL_CREATED,
                entity_id=primary.id,
                payload={
                    "candidate_entity_id": str(candidate.id),
                    "platform": claim.platform,
                    "handle": claim.handle,
                    "proposal_key": proposal.key,
                    "requires_confirmation": proposal.requires_confirmation,
                    "pending_confirmations": len(proposal.pending_confirmations),
                },
                source=EVENT_SOURCE,
            ),
        )
        await self._advance(proposal, evidence)

    def _refresh(self, proposal: EntityMergeProposal) -> BidirectionalEvidence | None:
        """Recompute a proposal's evidence from the full ledger."""
        if proposal.bidirectional_evidence is None:
            return None
        evidence = compute_bidirectional_evidence(
            self._ledger,
            proposal.bidirectional_evidence.platform,
            proposal.bidirectional_evidence.handle,
        )
        proposal.bidirectional_evidence = evidence
        proposal.confidence = evidence.strength
        proposal.strategy = strategy_for(evidence.strength)
        proposal.requires_confirmation = evidence.requires_confirmation
        return evidence

    async def _process_pending(self, entity_id: UUID) -> None:
        for proposal in self._pending.touching(entity_id):
            evidence = self._refresh(proposal)
            if evidence is not None:
                await self._advance(proposal, evidence)

    async def _advance(
        self, proposal: EntityMergeProposal, evidence: BidirectionalEvidence
    ) -> None:
        """Auto-merge or announce a proposal whose evidence was just recomputed.

        Runs whenever the ledger changes for a proposal's key, so the order
        in which claims and confirmations arrive does not matter.
        """
        if (
            not proposal.requires_confirmation
            and proposal.confidence > self._config.auto_merge_threshold
        ):
            logger.info("Auto-executing bidirectional merge for %s", proposal.key)
            if await self._executor.execute(proposal):
                self._pending.discard(proposal.key)
        elif proposal.confidence > self._config.review_threshold:
            logger.info("Merge %s ready for manual review", proposal.key)
            await emit_safely(
                self._events,
                ResolverEvent(
                    type=EventType.MERGE_READY_FOR_REVIEW,
                    entity_id=proposal.primary_id,
                    payload={
                        "candidate_entity_ids": [str(c) for c in proposal.candidate_ids],
                        "proposal_key": proposal.key,
                        "platform": evidence.platform,
                        "handle": evidence.handle,
                        "confidence": proposal.confidence,
                        "required_confirmations": evidence.required_confirmations,
                        "received_confirmations": evidence.received_confirmations,
                    },
                    source=EVENT_SOURCE,
                ),
            )
