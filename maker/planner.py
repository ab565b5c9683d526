"""Task decomposer — turns a free-text request into atomic instructions.

A single LLM call produces a JSON array of instruction strings. Any
failure here is fatal for the run: nothing executes without a plan.
"""

from __future__ import annotations

import json
import logging

from pydantic import TypeAdapter, ValidationError

from maker.errors import DecompositionError
from maker.prompts import render_prompt
from maker.providers.base import ModelProvider
from maker.schemas.messages import UsageMeter
from maker.worker import strip_fences

logger = logging.getLogger(__name__)

_PLAN_ADAPTER = TypeAdapter(list[str])


class TaskDecomposer:
    """Breaks a task into an ordered list of instructions."""

    def __init__(
        self,
        provider: ModelProvider,
        *,
        timeout: int = 90,
        max_steps: int | None = None,
        usage: UsageMeter | None = None,
    ) -> None:
        self._provider = provider
        self._timeout = timeout
        self._max_steps = max_steps
        self._usage = usage

    async def decompose(self, task_text: str) -> list[str]:
        """Return the ordered instructions for ``task_text``.

        Raises:
            DecompositionError: If the model call fails, its reply is not
                a non-empty JSON array of non-empty strings, or the plan is
                longer than max_steps.
        """
        system = render_prompt(
            "decomposer", task=task_text, max_steps=self._max_steps,
        )

        try:
            msg = await self._provider.complete(
                messages=[{
                    "role": "user",
                    "content": "Decompose this request into atomic steps.",
                }],
                system=system,
                timeout=self._timeout,
            )
        except Exception as e:
            raise DecompositionError(f"Failed to decompose task: {e}") from e

        if self._usage is not None:
            self._usage.record(msg.token_usage)

        steps = parse_plan(msg.content)
        if self._max_steps is not None and len(steps) > self._max_steps:
            raise DecompositionError(
                f"Failed to decompose task: the plan has {len(steps)} steps, "
                f"more than the allowed {self._max_steps}"
            )
        logger.info("Plan created with %d steps", len(steps))
        return steps


def parse_plan(text: str) -> list[str]:
    """Parse a planner reply into a list of instructions.

    Raises:
        DecompositionError: If the reply is not a usable plan.
    """
    try:
        steps = _PLAN_ADAPTER.validate_python(json.loads(strip_fences(text)))
    except (json.JSONDecodeError, ValidationError) as e:
        raise DecompositionError(f"Failed to decompose task: {e}") from e

    steps = [s.strip() for s in steps]
    if not steps or not all(steps):
        raise DecompositionError(
            "Failed to decompose task: the plan must be a non-empty list "
            "of non-empty instructions"
        )
    return steps
