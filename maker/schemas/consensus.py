"""Consensus schemas.

Defines the ballot variants produced by the worker boundary, the vote
tally kept for one instruction, and the outcome of a decided step.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class VoteKind(StrEnum):
    """Progress tag reported once per consumed ballot."""

    COUNTED = "counted"
    FLAGGED = "flagged"


class FlagReason(StrEnum):
    """Why a worker reply was discarded."""

    CALL_FAILED = "call_failed"
    UNPARSEABLE = "unparseable"
    AGENT_ERROR = "agent_error"
    MALFORMED = "malformed"


class CountedBallot(BaseModel):
    """A usable worker result; counts as one vote."""

    kind: Literal["counted"] = "counted"
    value: Any = Field(description="The worker's JSON result")
    reasoning: str = Field(default="", description="Worker reasoning preceding the result")


class FlaggedBallot(BaseModel):
    """A discarded worker result; consumes an attempt, never a vote."""

    kind: Literal["flagged"] = "flagged"
    reason: FlagReason = Field(description="Why the reply was discarded")
    detail: str = Field(default="", description="Short diagnostic text")


Ballot = Annotated[CountedBallot | FlaggedBallot, Field(discriminator="kind")]


class VoteTally(BaseModel):
    """Canonical key -> number of counted ballots for one instruction.

    Grows monotonically while its step is resolving and is dropped when the
    step concludes.
    """

    counts: dict[str, int] = Field(
        default_factory=dict,
        description="Canonical key -> number of ballots that encoded to it",
    )

    @property
    def total(self) -> int:
        return sum(self.counts.values())


class ConsensusOutcome(BaseModel):
    """Result of a decided step."""

    value: Any = Field(description="Winning value, decoded from its canonical key")
    key: str = Field(description="Canonical key of the winning value")
    margin: int = Field(ge=0, description="Leader count minus runner-up count")
    attempts: int = Field(ge=0, description="Worker invocations consumed")
    votes: int = Field(ge=0, description="Counted (non-flagged) ballots")
    flagged: int = Field(default=0, ge=0, description="Flagged ballots consumed")
    counts: dict[str, int] = Field(
        default_factory=dict, description="Final tally at the moment of decision",
    )
