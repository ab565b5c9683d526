"""Stateless micro-agent: one worker invocation per ballot.

The worker renders the prompt for a state snapshot and an instruction,
calls the model through the admission controller, and decodes the reply
into a tagged ballot. Every failure mode (call error, unparseable text,
an explicit ``{"error": ...}`` reply, a reply missing its fields) becomes
a FlaggedBallot; nothing is raised to the consensus engine.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError, field_validator

from maker.canonical import canonical_key
from maker.prompts import render_prompt
from maker.providers.base import ModelProvider
from maker.ratelimit import AdmissionController
from maker.schemas.consensus import (
    Ballot,
    CountedBallot,
    FlaggedBallot,
    FlagReason,
)
from maker.schemas.messages import UsageMeter

logger = logging.getLogger(__name__)

# Markdown fences some models wrap around JSON despite instructions
_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

_USER_MESSAGE = "Process the instruction and return your JSON output."


class BallotSource(Protocol):
    """Anything that can cast one ballot for an instruction."""

    async def __call__(
        self,
        state: dict[str, Any],
        instruction: str,
        custom_prompt: str | None = None,
    ) -> Ballot: ...


class WorkerReply(BaseModel):
    """The reasoning-first reply shape every worker must produce."""

    reasoning: Any = Field(description="Working shown before the result")
    result: Any = Field(description="The step's JSON value")

    @field_validator("reasoning")
    @classmethod
    def _reasoning_present(cls, value: Any) -> Any:
        if not value:
            raise ValueError("reasoning must be non-empty")
        return value


def strip_fences(text: str) -> str:
    """Remove markdown code fences and surrounding whitespace."""
    return _FENCE_RE.sub("", text).strip()


def decode_ballot(text: str) -> Ballot:
    """Decode raw reply text into a counted or flagged ballot."""
    cleaned = strip_fences(text)
    try:
        parsed = json.loads(cleaned)
    except (ValueError, RecursionError) as e:
        # JSONDecodeError, oversized integers and runaway nesting
        return FlaggedBallot(
            reason=FlagReason.UNPARSEABLE, detail=f"{type(e).__name__}: {e}"[:200],
        )

    if isinstance(parsed, dict) and parsed.get("error"):
        return FlaggedBallot(
            reason=FlagReason.AGENT_ERROR, detail=str(parsed["error"])[:200],
        )

    try:
        reply = WorkerReply.model_validate(parsed)
    except ValidationError as e:
        return FlaggedBallot(
            reason=FlagReason.MALFORMED,
            detail=f"{e.error_count()} validation error(s)",
        )

    reasoning = reply.reasoning
    try:
        canonical_key(reply.result)
        if not isinstance(reasoning, str):
            reasoning = json.dumps(reasoning, ensure_ascii=False, default=str)
    except RecursionError:
        return FlaggedBallot(reason=FlagReason.MALFORMED, detail="reply nested too deeply")
    return CountedBallot(value=reply.result, reasoning=reasoning)


def build_prompt(
    state: dict[str, Any], instruction: str, custom_prompt: str | None = None,
) -> str:
    """Render the worker system prompt for one invocation."""
    context = json.dumps(state, indent=2, ensure_ascii=False, default=str)
    if custom_prompt:
        return render_prompt(
            "custom_worker",
            custom_prompt=custom_prompt,
            context=context,
            instruction=instruction,
        )
    return render_prompt("worker", context=context, instruction=instruction)


class MicroAgent:
    """Runs one stateless worker call per invocation.

    Implements the BallotSource protocol, so an instance can be handed
    straight to the ConsensusEngine.
    """

    def __init__(
        self,
        provider: ModelProvider,
        *,
        limiter: AdmissionController | None = None,
        timeout: int = 60,
        dev_mode: bool = False,
        usage: UsageMeter | None = None,
    ) -> None:
        self._provider = provider
        self._limiter = limiter
        self._timeout = timeout
        self._dev_mode = dev_mode
        self._usage = usage

    async def __call__(
        self,
        state: dict[str, Any],
        instruction: str,
        custom_prompt: str | None = None,
    ) -> Ballot:
        return await self.invoke(state, instruction, custom_prompt)

    async def invoke(
        self,
        state: dict[str, Any],
        instruction: str,
        custom_prompt: str | None = None,
    ) -> Ballot:
        """Perform one worker invocation and return its ballot."""
        system = build_prompt(state, instruction, custom_prompt)
        messages = [{"role": "user", "content": _USER_MESSAGE}]

        async def call():
            return await self._provider.complete(
                messages, system, timeout=self._timeout,
            )

        try:
            if self._limiter is not None:
                completion = await self._limiter.admit(call)
            else:
                completion = await call()
        except Exception as e:
            if self._dev_mode:
                logger.warning(
                    "Worker call failed for %r: %s", instruction, e, exc_info=True,
                )
            else:
                logger.debug("Worker call failed for %r: %s", instruction, e)
            return FlaggedBallot(reason=FlagReason.CALL_FAILED, detail=str(e)[:200])

        if self._usage is not None:
            self._usage.record(completion.token_usage)
        ballot = decode_ballot(completion.content)
        if isinstance(ballot, FlaggedBallot):
            if self._dev_mode:
                logger.warning(
                    "Flagged reply (%s) for %r: %s\nRaw reply: %s",
                    ballot.reason, instruction, ballot.detail, completion.content,
                )
            else:
                logger.debug("Flagged reply (%s) for %r", ballot.reason, instruction)
        return ballot
