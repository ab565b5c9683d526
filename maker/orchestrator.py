"""Step orchestrator for MAKER runs.

Drives the ordered instruction list: each instruction is resolved by the
consensus engine against the current state, its winning value is merged
into a new state, and the run moves on. Steps never overlap, since each
one needs the previous step's merged state.

Any step failure ends the run immediately. There is no retry and no
skipping; the caller gets the failing step and the last good state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from maker.consensus.engine import ConsensusEngine, VoteCallback
from maker.errors import StepFailedError, UnresolvedConsensusError
from maker.events import EventType, RunEventEmitter
from maker.planner import TaskDecomposer
from maker.providers.litellm_provider import LiteLLMProvider
from maker.providers.registry import resolve_model
from maker.ratelimit import AdmissionController
from maker.schemas.config import MakerConfig, ModelConfig
from maker.schemas.consensus import VoteKind
from maker.schemas.messages import TokenUsage, UsageMeter
from maker.schemas.run import RunResult, StepRecord, StepStatus
from maker.state import initial_state, merge_step
from maker.worker import MicroAgent

logger = logging.getLogger(__name__)


class StepOrchestrator:
    """Runs a plan step by step through the consensus engine.

    Each step moves pending -> resolving -> merged, or
    pending -> resolving -> failed, which ends the run.
    """

    def __init__(
        self,
        config: MakerConfig,
        engine: ConsensusEngine,
        *,
        decomposer: TaskDecomposer | None = None,
        emitter: RunEventEmitter | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        custom_prompt: str | None = None,
        usage: UsageMeter | None = None,
    ) -> None:
        self._config = config
        self._engine = engine
        self._decomposer = decomposer
        self._emitter = emitter
        self._sleep = sleep or asyncio.sleep
        self._custom_prompt = custom_prompt
        self._usage = usage

    async def run(self, task_text: str) -> RunResult:
        """Decompose ``task_text`` and execute every resulting step.

        Raises:
            DecompositionError: If the task cannot be decomposed.
            StepFailedError: If any step fails.
            RuntimeError: If no decomposer was configured.
        """
        if self._decomposer is None:
            raise RuntimeError("No decomposer configured; use run_steps() instead")

        instructions = await self._decomposer.decompose(task_text)
        await self._emit(EventType.PLAN_CREATED, steps=list(instructions))
        return await self.run_steps(task_text, instructions)

    async def run_steps(
        self,
        task_text: str,
        instructions: list[str],
        state: dict[str, Any] | None = None,
    ) -> RunResult:
        """Execute ``instructions`` in order, starting from ``state``.

        Args:
            task_text: The original task, kept in state for grounding.
            instructions: Ordered instructions to resolve.
            state: Starting state. Defaults to a fresh state for the task.

        Returns:
            RunResult with the final merged state and per-step records.

        Raises:
            StepFailedError: On the first failing step, carrying the last
                good state.
        """
        start = time.monotonic()
        instructions = list(instructions)
        state = dict(state) if state is not None else initial_state(task_text)
        records = [
            StepRecord(index=i, instruction=text)
            for i, text in enumerate(instructions)
        ]

        await self._emit(
            EventType.RUN_STARTED, task=task_text, total_steps=len(instructions),
        )

        for index, instruction in enumerate(instructions):
            await self._maybe_cool_down(index)
            state = await self._run_step(records, index, state)

        duration = time.monotonic() - start
        token_usage = (
            self._usage.snapshot() if self._usage is not None
            else TokenUsage(prompt_tokens=0, completion_tokens=0)
        )
        await self._emit(
            EventType.RUN_COMPLETED,
            total_steps=len(instructions),
            duration_seconds=duration,
            total_tokens=token_usage.total_tokens,
        )
        logger.info("Run completed: %d steps in %.1fs", len(instructions), duration)

        return RunResult(
            task=task_text,
            instructions=instructions,
            state=state,
            steps=records,
            duration_seconds=duration,
            token_usage=token_usage,
        )

    async def _run_step(
        self, records: list[StepRecord], index: int, state: dict[str, Any],
    ) -> dict[str, Any]:
        record = records[index]
        total = len(records)
        record.status = StepStatus.RESOLVING
        await self._emit(
            EventType.STEP_STARTED,
            index=record.index,
            instruction=record.instruction,
            total_steps=total,
        )
        logger.info("Step %d/%d: %s", record.index + 1, total, record.instruction)

        step_start = time.monotonic()
        try:
            outcome = await self._engine.resolve(
                state,
                record.instruction,
                on_vote=self._vote_relay(record.index),
                custom_prompt=self._custom_prompt,
            )
        except Exception as e:
            record.status = StepStatus.FAILED
            record.error = str(e)
            record.duration_seconds = time.monotonic() - step_start
            if isinstance(e, UnresolvedConsensusError):
                record.attempts = e.attempts
                record.votes = sum(e.counts.values())
            logger.error(
                "Step %d (%r) failed: %s", record.index + 1, record.instruction, e,
            )
            await self._emit(
                EventType.STEP_FAILED,
                index=record.index,
                instruction=record.instruction,
                reason=str(e),
            )
            raise StepFailedError(
                record.index, record.instruction, str(e), state, records[: index + 1],
            ) from e

        new_state = merge_step(state, outcome.value)

        record.status = StepStatus.MERGED
        record.value = outcome.value
        record.margin = outcome.margin
        record.attempts = outcome.attempts
        record.votes = outcome.votes
        record.flagged = outcome.flagged
        record.duration_seconds = time.monotonic() - step_start

        await self._emit(
            EventType.STEP_COMPLETED,
            index=record.index,
            instruction=record.instruction,
            value=outcome.value,
            margin=outcome.margin,
            attempts=outcome.attempts,
        )
        return new_state

    async def _maybe_cool_down(self, index: int) -> None:
        """Pause between steps so the admission window can fully reset."""
        every = self._config.cooldown_every
        if every <= 0 or index == 0 or index % every != 0:
            return
        seconds = self._config.cooldown_seconds
        logger.info("Cooling down for %.0fs after %d steps", seconds, index)
        await self._emit(EventType.COOLDOWN_STARTED, index=index, seconds=seconds)
        await self._sleep(seconds)
        await self._emit(EventType.COOLDOWN_FINISHED, index=index)

    def _vote_relay(self, index: int) -> VoteCallback | None:
        if self._emitter is None:
            return None
        emitter = self._emitter

        async def relay(kind: VoteKind) -> None:
            await emitter.emit(EventType.VOTE_CAST, index=index, kind=kind.value)

        return relay

    async def _emit(self, event_type: EventType, **data: Any) -> None:
        if self._emitter is not None:
            await self._emitter.emit(event_type, **data)


def build_orchestrator(
    config: MakerConfig,
    registry: dict[str, ModelConfig],
    *,
    emitter: RunEventEmitter | None = None,
    custom_prompt: str | None = None,
) -> StepOrchestrator:
    """Wire the production stack for ``config``.

    One admission controller is shared by every worker call of the run,
    sized from the model's requests-per-minute ceiling (or the config
    override), and one usage meter counts the tokens of the plan and
    every worker call.

    Raises:
        RuntimeError: If the configured model is not in the registry.
    """
    model_config = resolve_model(registry, config.model)
    provider = LiteLLMProvider(model_config)
    limiter = AdmissionController(config.effective_rpm(model_config))
    usage = UsageMeter()
    worker = MicroAgent(
        provider,
        limiter=limiter,
        timeout=config.default_timeout,
        dev_mode=config.dev_mode,
        usage=usage,
    )
    engine = ConsensusEngine(config, worker)
    decomposer = TaskDecomposer(
        provider,
        timeout=max(config.default_timeout, 90),
        max_steps=config.max_steps,
        usage=usage,
    )
    return StepOrchestrator(
        config,
        engine,
        decomposer=decomposer,
        emitter=emitter,
        custom_prompt=custom_prompt,
        usage=usage,
    )
