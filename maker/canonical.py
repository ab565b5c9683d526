"""Canonical encoding of ballot values.

Two structurally equal JSON values always encode to the same string, no
matter the order a worker emitted object fields in, so the encoding can be
used directly as a vote-tally key.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from typing import Any


class _Missing:
    """Marker for an absent value (distinct from JSON null)."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

NULL_TOKEN = "null"
MISSING_TOKEN = "undefined"


def canonical_key(value: Any = MISSING) -> str:
    """Encode a JSON-like value into a deterministic string.

    Rules:
        - ``None`` encodes as ``null``; ``MISSING`` as ``undefined``.
        - Scalars use their JSON literal. Integral floats encode like the
          equal integer, since ``92`` and ``92.0`` are one JSON number.
        - Lists and tuples encode element by element, in order.
        - Mappings sort their keys before encoding each pair.

    Never raises: values outside the JSON model are encoded as the JSON
    string of their ``str()`` form.
    """
    if value is MISSING:
        return MISSING_TOKEN
    if value is None:
        return NULL_TOKEN
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return json.dumps(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(canonical_key(item) for item in value) + "]"
    if isinstance(value, Mapping):
        pairs = sorted(
            ((str(k), v) for k, v in value.items()), key=lambda kv: kv[0],
        )
        return "{" + ",".join(
            f"{json.dumps(k, ensure_ascii=False)}:{canonical_key(v)}"
            for k, v in pairs
        ) + "}"
    return json.dumps(str(value), ensure_ascii=False)


def decode_key(key: str) -> Any:
    """Return the value a canonical key represents.

    ``undefined`` decodes to ``None``; every other key is valid JSON.
    """
    if key == MISSING_TOKEN:
        return None
    return json.loads(key)
