"""Consensus voting for MAKER.

Provides the First-to-Ahead-by-K engine and its strategy-independent
tally helpers.
"""

from maker.consensus.engine import ConsensusEngine, VoteCallback
from maker.consensus.voting import (
    build_outcome,
    is_decided,
    leader_margin,
    rank,
    record_vote,
)

__all__ = [
    "ConsensusEngine",
    "VoteCallback",
    "build_outcome",
    "is_decided",
    "leader_margin",
    "rank",
    "record_vote",
]
