"""Progress events for a MAKER run.

The orchestrator reports what it is doing through a RunEventEmitter; the
CLI turns those events into a status line, tests inspect the history.
Nothing in the engine depends on anyone listening.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    RUN_STARTED = "run_started"
    PLAN_CREATED = "plan_created"
    STEP_STARTED = "step_started"
    VOTE_CAST = "vote_cast"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    COOLDOWN_STARTED = "cooldown_started"
    COOLDOWN_FINISHED = "cooldown_finished"
    RUN_COMPLETED = "run_completed"


class RunEvent(BaseModel):
    """One progress notification."""

    type: EventType
    timestamp: float = Field(default_factory=time.time, description="Unix time")
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Payload; keys depend on the event type (index, value, kind, ...)",
    )


# Sync callables or coroutine functions
EventListener = Callable[[RunEvent], Any]


class RunEventEmitter:
    """Fans events out to listeners and keeps every event in memory.

    A failing listener is logged and skipped; it never interrupts the run
    or the listeners after it.
    """

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []
        self._events: list[RunEvent] = []

    @property
    def history(self) -> list[RunEvent]:
        return list(self._events)

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        """Unregister ``listener`` (matched by identity)."""
        self._listeners = [ln for ln in self._listeners if ln is not listener]

    async def emit(self, event_type: EventType, **data: Any) -> None:
        event = RunEvent(type=event_type, data=data)
        self._events.append(event)

        for listener in list(self._listeners):
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Listener %r failed on %s", listener, event_type)
