"""LiteLLM-backed ModelProvider.

Worker calls are cheap and numerous: a failed call normally becomes a
flagged ballot and the vote simply moves on, so by default nothing is
retried here. A registry entry can opt into a few retries of transient
errors (``max_retries``), spaced by exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
import os

import litellm

# Keep LiteLLM's feedback banners out of CLI output
litellm.suppress_debug_info = True

from maker.providers.base import ModelProvider
from maker.schemas.config import ModelConfig
from maker.schemas.messages import Completion, TokenUsage

logger = logging.getLogger(__name__)

_BACKOFF_SECONDS = 1.0

_TRANSIENT_ERRORS = (
    litellm.RateLimitError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
    litellm.APIConnectionError,
)

# (substring, label) pairs checked in order against the lowercased error
_REASONS = (
    (("rate", "429"), "rate limit"),
    (("overloaded", "529"), "overloaded"),
    (("timeout",), "timeout"),
    (("503", "unavailable"), "service unavailable"),
    (("500", "internal"), "server error"),
    (("connection",), "connection error"),
)


def _short_error_reason(error: Exception) -> str:
    """One or two words describing a provider failure, for log lines."""
    if isinstance(error, TimeoutError):
        return "timeout"
    text = str(error).lower()
    for needles, label in _REASONS:
        if any(n in text for n in needles):
            return label
    return str(error)[:80]


class LiteLLMProvider(ModelProvider):
    """Calls any LiteLLM-routable model with a fixed temperature."""

    def __init__(self, config: ModelConfig) -> None:
        super().__init__(config)
        self._api_key = os.environ.get(config.api_key_env, "")

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str,
        *,
        timeout: int = 60,
    ) -> Completion:
        request: dict = {
            "model": self._config.model,
            "messages": [{"role": "system", "content": system}, *messages],
            "timeout": float(timeout),
            "temperature": self._config.temperature,
        }
        if self._api_key:
            request["api_key"] = self._api_key
        if self._config.api_base:
            request["api_base"] = self._config.api_base

        response = await self._send(request)

        usage = getattr(response, "usage", None)
        return Completion(
            content=_reply_text(response),
            model=self._config.model,
            token_usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )

    async def _send(self, request: dict) -> litellm.ModelResponse:
        """Run one request, retrying transient failures up to max_retries.

        Raises:
            TimeoutError: If the final try timed out.
            RuntimeError: For auth and bad-request errors (never retried)
                and for any other final failure.
        """
        tries = self._config.max_retries + 1
        error: Exception | None = None

        for attempt in range(1, tries + 1):
            try:
                return await litellm.acompletion(**request)
            except litellm.AuthenticationError:
                raise RuntimeError(
                    f"Authentication failed for {self._config.model}; "
                    f"check {self._config.api_key_env}"
                ) from None
            except litellm.BadRequestError as e:
                raise RuntimeError(f"Bad request to {self._config.model}: {e}") from e
            except TimeoutError:
                error = TimeoutError(
                    f"{self._config.model} timed out after {request['timeout']:.0f}s"
                )
            except _TRANSIENT_ERRORS as e:
                error = e

            if attempt < tries:
                delay = _BACKOFF_SECONDS * 2 ** (attempt - 1)
                logger.warning(
                    "%s: %s, retry %d/%d in %.1fs",
                    self._config.display_name,
                    _short_error_reason(error),
                    attempt,
                    tries - 1,
                    delay,
                )
                await asyncio.sleep(delay)

        if isinstance(error, TimeoutError):
            raise error
        raise RuntimeError(
            f"Call to {self._config.model} failed "
            f"({_short_error_reason(error)}): {error}"
        ) from error


def _reply_text(response: litellm.ModelResponse) -> str:
    if not response.choices:
        return ""
    message = response.choices[0].message
    return (message.content or "") if message else ""
