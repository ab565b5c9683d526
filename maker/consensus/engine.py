"""Consensus engine: First-to-Ahead-by-K voting over worker ballots.

Resolves one instruction by invoking the worker repeatedly and tallying
canonically keyed votes until one value leads the runner-up by K votes,
or the attempt ceiling is exhausted.

Three schedules share the same decision rule:
    - sequential: one invocation at a time, decision checked per ballot;
    - parallel, early termination: batches submitted concurrently, ballots
      consumed in submission order, decision checked per ballot;
    - parallel, exhaustive: each batch awaited in full, decision checked
      once per batch.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable, Iterable
from typing import Any

from maker.canonical import canonical_key
from maker.consensus.voting import build_outcome, is_decided, record_vote
from maker.errors import UnresolvedConsensusError
from maker.schemas.config import ConsensusStrategy, MakerConfig
from maker.schemas.consensus import (
    Ballot,
    ConsensusOutcome,
    CountedBallot,
    VoteKind,
    VoteTally,
)
from maker.worker import BallotSource

logger = logging.getLogger(__name__)

# Progress callback: receives one VoteKind per consumed ballot (sync or async)
VoteCallback = Callable[[VoteKind], Any]


class _StepRun:
    """Bookkeeping for a single resolve() call."""

    def __init__(self, generation: int, instruction: str) -> None:
        self.generation = generation
        self.instruction = instruction
        self.tally = VoteTally()
        self.attempts = 0
        self.flagged = 0
        self.closed = False


class ConsensusEngine:
    """Resolves instructions by First-to-Ahead-by-K voting.

    The engine never mutates the state it is given: every resolve() works
    on a deep copy that all of its worker invocations share.
    """

    def __init__(self, config: MakerConfig, source: BallotSource) -> None:
        self._config = config
        self._source = source
        self._generation = 0
        self._orphans: set[asyncio.Task] = set()

    @property
    def generation(self) -> int:
        """Number of resolve() calls started so far."""
        return self._generation

    @property
    def in_flight(self) -> int:
        """Abandoned invocations from decided steps that are still running."""
        return len(self._orphans)

    async def resolve(
        self,
        state: dict[str, Any],
        instruction: str,
        *,
        on_vote: VoteCallback | None = None,
        custom_prompt: str | None = None,
    ) -> ConsensusOutcome:
        """Run worker invocations for ``instruction`` until consensus.

        Args:
            state: Current state; a snapshot is taken and never written.
            instruction: The instruction to resolve.
            on_vote: Called with VoteKind.COUNTED or VoteKind.FLAGGED once
                     per consumed ballot.
            custom_prompt: Optional worker prompt template.

        Returns:
            ConsensusOutcome for the first value to lead by K votes.

        Raises:
            UnresolvedConsensusError: If max_attempts_per_step invocations
                did not produce a winner.
        """
        self._generation += 1
        run = _StepRun(self._generation, instruction)
        snapshot = copy.deepcopy(state)

        logger.debug(
            "Resolving %r (generation %d, strategy=%s, K=%d, max=%d)",
            instruction,
            run.generation,
            self._config.strategy.value,
            self._config.vote_margin_k,
            self._config.max_attempts_per_step,
        )

        try:
            if self._config.strategy == ConsensusStrategy.SEQUENTIAL:
                outcome = await self._resolve_sequential(
                    run, snapshot, on_vote, custom_prompt,
                )
            elif self._config.early_termination:
                outcome = await self._resolve_early(
                    run, snapshot, on_vote, custom_prompt,
                )
            else:
                outcome = await self._resolve_exhaustive(
                    run, snapshot, on_vote, custom_prompt,
                )
        finally:
            run.closed = True

        if outcome is None:
            logger.warning(
                "No consensus for %r after %d attempts (%d flagged, tally=%s)",
                instruction, run.attempts, run.flagged, run.tally.counts,
            )
            raise UnresolvedConsensusError(
                instruction,
                self._config.max_attempts_per_step,
                run.attempts,
                run.tally.counts,
            )

        logger.info(
            "Consensus on %r after %d attempts (margin %d, %d votes, %d flagged)",
            instruction, outcome.attempts, outcome.margin, outcome.votes, outcome.flagged,
        )
        return outcome

    # ── Strategies ────────────────────────────────────────────

    async def _resolve_sequential(
        self,
        run: _StepRun,
        snapshot: dict[str, Any],
        on_vote: VoteCallback | None,
        custom_prompt: str | None,
    ) -> ConsensusOutcome | None:
        while run.attempts < self._config.max_attempts_per_step:
            ballot = await self._source(snapshot, run.instruction, custom_prompt)
            run.attempts += 1
            await self._consume(run, ballot, on_vote)
            if is_decided(run.tally, self._config.vote_margin_k):
                return self._outcome(run)
        return None

    async def _resolve_early(
        self,
        run: _StepRun,
        snapshot: dict[str, Any],
        on_vote: VoteCallback | None,
        custom_prompt: str | None,
    ) -> ConsensusOutcome | None:
        while run.attempts < self._config.max_attempts_per_step:
            tasks = self._launch_batch(run, snapshot, custom_prompt)
            consumed = 0
            try:
                for task in tasks:
                    run.attempts += 1
                    ballot = await task
                    consumed += 1
                    await self._consume(run, ballot, on_vote)
                    if is_decided(run.tally, self._config.vote_margin_k):
                        return self._outcome(run)
            finally:
                self._abandon(tasks[consumed:])
        return None

    async def _resolve_exhaustive(
        self,
        run: _StepRun,
        snapshot: dict[str, Any],
        on_vote: VoteCallback | None,
        custom_prompt: str | None,
    ) -> ConsensusOutcome | None:
        while run.attempts < self._config.max_attempts_per_step:
            tasks = self._launch_batch(run, snapshot, custom_prompt)
            try:
                ballots = await asyncio.gather(*tasks)
            except BaseException:
                self._abandon(tasks)
                raise
            run.attempts += len(tasks)

            for ballot in ballots:
                await self._consume(run, ballot, on_vote)

            if is_decided(run.tally, self._config.vote_margin_k):
                return self._outcome(run)
        return None

    # ── Helpers ───────────────────────────────────────────────

    def _launch_batch(
        self,
        run: _StepRun,
        snapshot: dict[str, Any],
        custom_prompt: str | None,
    ) -> list[asyncio.Task[Ballot]]:
        remaining = self._config.max_attempts_per_step - run.attempts
        size = min(self._config.batch_size, remaining)
        loop = asyncio.get_running_loop()
        return [
            loop.create_task(self._source(snapshot, run.instruction, custom_prompt))
            for _ in range(size)
        ]

    def _is_current(self, run: _StepRun) -> bool:
        return not run.closed and run.generation == self._generation

    async def _consume(
        self, run: _StepRun, ballot: Ballot, on_vote: VoteCallback | None,
    ) -> None:
        """Apply one ballot to the tally, unless its step has concluded."""
        if not self._is_current(run):
            logger.debug("Discarding ballot for concluded step %r", run.instruction)
            return

        if isinstance(ballot, CountedBallot):
            record_vote(run.tally, canonical_key(ballot.value))
            kind = VoteKind.COUNTED
        else:
            run.flagged += 1
            kind = VoteKind.FLAGGED

        if on_vote is not None:
            await _notify(on_vote, kind)

    def _outcome(self, run: _StepRun) -> ConsensusOutcome:
        return build_outcome(run.tally, attempts=run.attempts, flagged=run.flagged)

    def _abandon(self, tasks: Iterable[asyncio.Task]) -> None:
        """Let unconsumed invocations finish in the background, ignored."""
        for task in tasks:
            self._orphans.add(task)
            task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task) -> None:
        self._orphans.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Abandoned invocation failed: %s", exc)


async def _notify(on_vote: VoteCallback, kind: VoteKind) -> None:
    """Invoke a progress callback; its failures never affect the vote."""
    try:
        result = on_vote(kind)
        if asyncio.iscoroutine(result):
            await result
    except Exception:
        logger.exception("Vote callback error for %s", kind)
