"""API keys for the worker models.

Shell variables always win. Missing ones are filled from
``~/.maker/keys.env`` first, then from ``.env`` in the working directory.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from maker.schemas.config import ModelConfig

logger = logging.getLogger(__name__)

MAKER_HOME = Path.home() / ".maker"
KEYS_FILE = MAKER_HOME / "keys.env"


def read_env_file(path: Path) -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines; comments, blanks and junk lines are skipped."""
    values: dict[str, str] = {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Could not read %s", path)
        return values

    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        name, _, value = line.partition("=")
        name = name.strip()
        if name:
            values[name] = value.strip().strip("'\"")
    return values


def load_keys_env(paths: list[Path] | None = None) -> list[str]:
    """Export keys from the key files into ``os.environ``.

    Returns the names that were newly set.
    """
    loaded: list[str] = []
    for path in paths if paths is not None else [KEYS_FILE, Path.cwd() / ".env"]:
        if not path.is_file():
            continue
        for name, value in read_env_file(path).items():
            if os.environ.get(name):
                continue
            os.environ[name] = value
            loaded.append(name)
            logger.debug("Loaded %s from %s", name, path)
    return loaded


def has_key(env_var: str) -> bool:
    return bool(os.environ.get(env_var))


def missing_keys(models: list[ModelConfig]) -> list[str]:
    """Key variables required by ``models`` that are unset, deduplicated."""
    return sorted({m.api_key_env for m in models if not has_key(m.api_key_env)})
