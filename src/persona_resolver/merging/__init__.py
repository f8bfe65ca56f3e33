"""Merge proposals and their execution."""

from persona_resolver.merging.executor import MergeExecutor, MergeOptions
from persona_resolver.merging.proposal import (
    EntityMergeProposal,
    FieldConflict,
    PendingConfirmation,
    PendingMergeTable,
    PreservedData,
    RiskAssessment,
    analyze_entity_conflicts,
    build_merge_proposal,
    pair_key,
)

__all__ = [
    "EntityMergeProposal",
    "FieldConflict",
    "MergeExecutor",
    "MergeOptions",
    "PendingConfirmation",
    "PendingMergeTable",
    "PreservedData",
    "RiskAssessment",
    "analyze_entity_conflicts",
    "build_merge_proposal",
    "pair_key",
]
