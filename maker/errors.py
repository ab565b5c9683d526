"""Exception hierarchy for MAKER runs.

Only whole-step and whole-run failures are exceptions. A worker reply that
cannot be used is a flagged ballot (see ``maker.schemas.consensus``), never
an exception.
"""

from __future__ import annotations

from typing import Any


class MakerError(Exception):
    """Base exception for all application-specific errors."""


class DecompositionError(MakerError):
    """Raised when a task cannot be turned into a list of instructions."""


class UnresolvedConsensusError(MakerError):
    """Raised when a step exhausts its attempt ceiling without a winner."""

    def __init__(
        self,
        instruction: str,
        max_attempts: int,
        attempts: int,
        counts: dict[str, int] | None = None,
    ) -> None:
        self.instruction = instruction
        self.max_attempts = max_attempts
        self.attempts = attempts
        self.counts = dict(counts or {})
        super().__init__(
            f"Failed to reach consensus after {max_attempts} attempts."
        )


class StepFailedError(MakerError):
    """Raised by the orchestrator when a step fails; terminates the run.

    Carries the failing step and the last good state so the caller can
    report what was accumulated before the failure.
    """

    def __init__(
        self,
        index: int,
        instruction: str,
        reason: str,
        state: dict[str, Any],
        steps: list | None = None,
    ) -> None:
        self.index = index
        self.instruction = instruction
        self.reason = reason
        self.state = state
        self.steps = list(steps or [])
        super().__init__(f"Step {index + 1} ({instruction!r}) failed: {reason}")
