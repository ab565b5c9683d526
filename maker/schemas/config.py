"""Configuration schemas for MAKER runs.

Defines the model registry entries and the run configuration. A single
MakerConfig is built at startup (from defaults.toml, then CLI overrides)
and passed explicitly to the orchestrator, consensus engine, worker and
admission controller.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field, model_validator


class ConsensusStrategy(StrEnum):
    """How worker invocations for one instruction are scheduled."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class ModelConfig(BaseModel):
    """Configuration for a single LLM model in the registry.

    Loaded from models.toml. Each entry provides the LiteLLM routing
    information and the provider's request-per-minute ceiling.
    """

    provider: str = Field(description="Provider identifier (e.g. 'gemini', 'openai')")
    model: str = Field(description="LiteLLM model identifier (e.g. 'gemini/gemini-flash-lite-latest')")
    display_name: str = Field(description="Human-friendly model name for CLI output")
    api_key_env: str = Field(description="Environment variable name holding the API key")
    api_base: str = Field(default="", description="Custom API base URL (empty = provider default)")
    max_rpm: int = Field(gt=0, description="Maximum requests per minute allowed by the provider")
    temperature: float = Field(
        default=0.0, ge=0.0, le=2.0,
        description="Sampling temperature (0.0 keeps worker replies comparable)",
    )
    max_retries: int = Field(
        default=0, ge=0, le=5,
        description="Provider-level retries of a single call on transient errors",
    )


class MakerConfig(BaseModel):
    """Top-level configuration for a MAKER run.

    Loaded from defaults.toml and overridden by CLI flags. Controls the
    voting margin, the attempt ceiling, the execution strategy, rate
    limiting and pacing.
    """

    model: str = Field(
        default="gemini-flash-lite", description="Registry key of the worker model",
    )
    vote_margin_k: int = Field(
        default=10, ge=1,
        description="Votes the leader must be ahead of the runner-up to win",
    )
    max_attempts_per_step: int = Field(
        default=15, ge=1,
        description="Hard ceiling on worker invocations for one instruction",
    )
    strategy: ConsensusStrategy = Field(
        default=ConsensusStrategy.PARALLEL,
        description="Sequential or parallel-batched voting",
    )
    batch_size: int = Field(
        default=50, ge=1, description="Worker invocations submitted per parallel batch",
    )
    early_termination: bool = Field(
        default=True,
        description="Stop consuming a batch as soon as the margin is reached",
    )
    max_rpm: int | None = Field(
        default=None, gt=0,
        description="Override of the model's requests-per-minute ceiling",
    )
    cooldown_every: int = Field(
        default=0, ge=0,
        description="Pause after this many completed steps (0 = never)",
    )
    cooldown_seconds: float = Field(
        default=75.0, ge=0.0, description="Length of each cooldown pause in seconds",
    )
    default_timeout: int = Field(
        default=60, gt=0, description="Timeout in seconds per model call",
    )
    max_steps: int | None = Field(
        default=None, gt=0,
        description="Upper bound on the number of steps the planner may produce",
    )
    dev_mode: bool = Field(
        default=False, description="Log raw replies and failure details",
    )

    @model_validator(mode="after")
    def _margin_reachable(self) -> MakerConfig:
        if self.vote_margin_k > self.max_attempts_per_step:
            raise ValueError(
                f"vote_margin_k ({self.vote_margin_k}) can never be reached "
                f"within max_attempts_per_step ({self.max_attempts_per_step})"
            )
        return self

    def effective_rpm(self, model: ModelConfig) -> int:
        """Requests-per-minute ceiling to enforce for the given model."""
        return self.max_rpm or model.max_rpm
