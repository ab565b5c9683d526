"""Model registry and TOML configuration loader.

Loads model definitions from models.toml and run defaults from
defaults.toml. Provides the high-quality profile used by ``--high``.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from pydantic import ValidationError

from maker.schemas.config import MakerConfig, ModelConfig

# Default config directory relative to the maker package
_CONFIG_DIR = Path(__file__).parent.parent / "config"

# Environment variable that switches dev mode on
DEV_MODE_ENV = "MAKER_DEV_MODE"

# Registry key and pacing used by the high-quality profile
HIGH_QUALITY_MODEL = "gemini-flash"
HIGH_QUALITY_COOLDOWN_EVERY = 60


def load_models(config_path: Path | None = None) -> dict[str, ModelConfig]:
    """Load the model registry from a TOML file.

    Args:
        config_path: Path to models.toml. Defaults to maker/config/models.toml.

    Returns:
        Dictionary mapping model keys to ModelConfig instances.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the TOML structure is invalid.
    """
    path = config_path or _CONFIG_DIR / "models.toml"
    if not path.exists():
        raise FileNotFoundError(f"Model registry not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    models_section = raw.get("models")
    if not models_section or not isinstance(models_section, dict):
        raise ValueError(f"No [models] section found in {path}")

    registry: dict[str, ModelConfig] = {}
    for key, entry in models_section.items():
        if not isinstance(entry, dict):
            continue
        try:
            registry[key] = ModelConfig(**entry)
        except ValidationError as e:
            raise ValueError(f"Invalid model entry '{key}' in {path}: {e}") from e

    return registry


def load_maker_config(config_path: Path | None = None) -> MakerConfig:
    """Load run defaults from a TOML file.

    The ``[consensus]``, ``[pacing]`` and ``[runtime]`` sections are
    flattened into one MakerConfig. ``MAKER_DEV_MODE=true`` in the
    environment turns dev mode on regardless of the file.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If a value fails validation.
    """
    path = config_path or _CONFIG_DIR / "defaults.toml"
    if not path.exists():
        raise FileNotFoundError(f"MAKER config not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    values: dict = {}
    for section in ("consensus", "pacing", "runtime"):
        values.update(raw.get(section, {}))

    if os.environ.get(DEV_MODE_ENV, "").lower() == "true":
        values["dev_mode"] = True

    try:
        return MakerConfig(**values)
    except ValidationError as e:
        raise ValueError(f"Invalid MAKER config in {path}: {e}") from e


def high_quality_profile(config: MakerConfig) -> MakerConfig:
    """Switch a config to the slower, higher-quality worker model.

    The smaller request budget of that model gets a periodic cooldown so
    the admission window can reset on long plans.
    """
    update: dict = {"model": HIGH_QUALITY_MODEL}
    if config.cooldown_every == 0:
        update["cooldown_every"] = HIGH_QUALITY_COOLDOWN_EVERY
    return config.model_copy(update=update)


def resolve_model(
    registry: dict[str, ModelConfig], key: str,
) -> ModelConfig:
    """Look up a registry entry by key.

    Raises:
        RuntimeError: If the key is not in the registry.
    """
    if key not in registry:
        raise RuntimeError(
            f"Model '{key}' not found in registry. "
            f"Available: {', '.join(sorted(registry))}"
        )
    return registry[key]
