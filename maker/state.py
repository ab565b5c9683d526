"""State threaded between steps.

State is a plain ordered dict. It always carries the original task text
(for grounding, never overwritten) and a short history of recent step
results. Each merge returns a new dict; the previous state is untouched.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

logger = logging.getLogger(__name__)

ORIGINAL_TASK_KEY = "original_task"
HISTORY_KEY = "history"
CURRENT_VALUE_KEY = "current_value"

# Most recent step results kept in the history buffer
HISTORY_LIMIT = 5

# Fields a step result can never overwrite
_RESERVED_KEYS = frozenset({ORIGINAL_TASK_KEY, HISTORY_KEY})


def initial_state(task_text: str) -> dict[str, Any]:
    """Create the state a run starts from."""
    return {ORIGINAL_TASK_KEY: task_text, HISTORY_KEY: []}


def merge_step(state: dict[str, Any], value: Any) -> dict[str, Any]:
    """Merge an accepted step value into a new state.

    A mapping value has its fields merged (same-named fields are
    overwritten). Anything else, lists included, is stored under
    ``current_value``. The value is appended to the history, which keeps
    only the last HISTORY_LIMIT entries.
    """
    merged = copy.deepcopy(state)
    value = copy.deepcopy(value)

    history = list(merged.get(HISTORY_KEY) or [])
    history.append(copy.deepcopy(value))
    merged[HISTORY_KEY] = history[-HISTORY_LIMIT:]

    if isinstance(value, dict):
        for key, field in value.items():
            if key in _RESERVED_KEYS:
                logger.debug("Ignoring reserved field %r in step result", key)
                continue
            merged[key] = field
    else:
        merged[CURRENT_VALUE_KEY] = value

    return merged
