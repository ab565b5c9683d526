"""MAKER provider layer.

Every model call goes through a ModelProvider; LiteLLMProvider is the
production implementation.
"""

from maker.providers.base import ModelProvider
from maker.providers.litellm_provider import LiteLLMProvider
from maker.providers.registry import (
    high_quality_profile,
    load_maker_config,
    load_models,
    resolve_model,
)

__all__ = [
    "LiteLLMProvider",
    "ModelProvider",
    "high_quality_profile",
    "load_maker_config",
    "load_models",
    "resolve_model",
]
