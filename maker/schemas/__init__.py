"""MAKER schema definitions.

All Pydantic v2 models used by the engine, the orchestrator and the CLI.
"""

from maker.schemas.config import ConsensusStrategy, MakerConfig, ModelConfig
from maker.schemas.consensus import (
    Ballot,
    ConsensusOutcome,
    CountedBallot,
    FlaggedBallot,
    FlagReason,
    VoteKind,
    VoteTally,
)
from maker.schemas.messages import Completion, TokenUsage
from maker.schemas.run import RunResult, StepRecord, StepStatus

__all__ = [
    "Ballot",
    "Completion",
    "ConsensusOutcome",
    "ConsensusStrategy",
    "CountedBallot",
    "FlagReason",
    "FlaggedBallot",
    "MakerConfig",
    "ModelConfig",
    "RunResult",
    "StepRecord",
    "StepStatus",
    "TokenUsage",
    "VoteKind",
    "VoteTally",
]
