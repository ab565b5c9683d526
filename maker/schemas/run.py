"""Run schemas: per-step records and the final result of a run."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from maker.schemas.messages import TokenUsage


class StepStatus(StrEnum):
    """Lifecycle of one instruction within a run."""

    PENDING = "pending"
    RESOLVING = "resolving"
    MERGED = "merged"
    FAILED = "failed"


class StepRecord(BaseModel):
    """What happened to one instruction."""

    index: int = Field(ge=0, description="Zero-based position in the plan")
    instruction: str = Field(description="The instruction text")
    status: StepStatus = Field(default=StepStatus.PENDING)
    value: Any = Field(default=None, description="Accepted value (merged steps only)")
    margin: int = Field(default=0, ge=0, description="Winning vote margin")
    attempts: int = Field(default=0, ge=0, description="Worker invocations consumed")
    votes: int = Field(default=0, ge=0, description="Counted ballots")
    flagged: int = Field(default=0, ge=0, description="Flagged ballots")
    error: str = Field(default="", description="Failure reason (failed steps only)")
    duration_seconds: float = Field(default=0.0, ge=0.0)


class RunResult(BaseModel):
    """Result of a complete run: the final state plus step bookkeeping."""

    task: str = Field(description="The original task text")
    instructions: list[str] = Field(default_factory=list)
    state: dict[str, Any] = Field(default_factory=dict, description="Final merged state")
    steps: list[StepRecord] = Field(default_factory=list)
    duration_seconds: float = Field(default=0.0, ge=0.0)
    token_usage: TokenUsage = Field(
        default_factory=lambda: TokenUsage(prompt_tokens=0, completion_tokens=0),
        description="Tokens consumed by the plan and every worker call",
    )

    @property
    def total_tokens(self) -> int:
        return self.token_usage.total_tokens

    @property
    def total_attempts(self) -> int:
        return sum(s.attempts for s in self.steps)
