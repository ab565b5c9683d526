"""Provider interface used by the worker and the decomposer."""

from __future__ import annotations

from abc import ABC, abstractmethod

from maker.schemas.config import ModelConfig
from maker.schemas.messages import Completion


class ModelProvider(ABC):
    """One registry model, callable for single-turn completions.

    MAKER only ever needs one thing from a model: a system prompt plus a
    short user message in, raw reply text out. Retries, if any, are the
    provider's business; everything else is decided by voting.
    """

    def __init__(self, config: ModelConfig) -> None:
        self._config = config

    @property
    def config(self) -> ModelConfig:
        return self._config

    @property
    def provider_id(self) -> str:
        return self._config.provider

    @property
    def model_id(self) -> str:
        """LiteLLM routing id."""
        return self._config.model

    @property
    def display_name(self) -> str:
        return self._config.display_name

    @property
    def max_rpm(self) -> int:
        """Registry request budget; sizes the admission controller."""
        return self._config.max_rpm

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str,
        *,
        timeout: int = 60,
    ) -> Completion:
        """Return the model's reply to ``system`` followed by ``messages``.

        Raises:
            TimeoutError: If the call does not finish within ``timeout``.
            RuntimeError: On any other call failure.
        """
