"""Provider message schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class TokenUsage(BaseModel):
    """Token consumption for a single model call."""

    prompt_tokens: int = Field(ge=0, description="Number of input tokens consumed")
    completion_tokens: int = Field(ge=0, description="Number of output tokens generated")

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class Completion(BaseModel):
    """Text returned by a provider for one completion request."""

    content: str = Field(default="", description="Raw text content of the reply")
    model: str = Field(description="LiteLLM model identifier that produced the reply")
    token_usage: TokenUsage | None = Field(
        default=None, description="Token usage, when the provider reports it",
    )


class UsageMeter:
    """Running token totals shared by every call of a run.

    Calls that report no usage add nothing.
    """

    def __init__(self) -> None:
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.calls = 0

    def record(self, usage: TokenUsage | None) -> None:
        self.calls += 1
        if usage is None:
            return
        self.prompt_tokens += usage.prompt_tokens
        self.completion_tokens += usage.completion_tokens

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def snapshot(self) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
        )
