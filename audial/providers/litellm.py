from __future__ import annotations

import logging
import warnings
from collections.abc import AsyncIterator, Mapping
from typing import Any, Protocol

from pydantic import BaseModel

from ..errors import AudialError, LLMInferenceError, ModelNotAvailableError
from .routing import Provider, resolve_provider, to_litellm_model

_LOGGER = logging.getLogger("audial.providers.litellm")
_RESERVED_LITELLM_KWARGS = frozenset({"model", "messages", "api_key", "stream", "max_tokens"})
_litellm_logging_configured = False


class CompletionStreamer(Protocol):
    def stream(self, *, system_prompt: str, user_prompt: str) -> AsyncIterator[str]: ...


def _configure_litellm_logging(litellm_module: Any) -> None:
    global _litellm_logging_configured
    if _litellm_logging_configured:
        return
    _litellm_logging_configured = True
    try:
        litellm_module.turn_off_message_logging = True
        litellm_module.disable_streaming_logging = True
        litellm_module.suppress_debug_info = True
    except Exception as exc:
        _LOGGER.info("LiteLLM logging config failed: %s", exc, exc_info=True)
    warnings.filterwarnings("ignore", message="Pydantic serializer warnings")


def _chunk_text(chunk: Any) -> str:
    choices = getattr(chunk, "choices", None)
    if not choices:
        return ""
    delta = getattr(choices[0], "delta", None)
    content = getattr(delta, "content", None)
    return content if isinstance(content, str) else ""


class _LiteLLMRequest(BaseModel):
    model: str
    messages: list[dict[str, str]]
    max_tokens: int
    stream: bool = True
    temperature: float | None = None
    api_key: str | None = None


class LiteLLMStreamer:
    """Streams completion text chunks from any provider LiteLLM can route to."""

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
        litellm_kwargs: Mapping[str, Any] | None = None,
        provider: Provider | None = None,
    ) -> None:
        self._provider: Provider = provider or resolve_provider(model)
        self._model = to_litellm_model(model, self._provider)
        self._api_key = api_key
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._litellm_kwargs = dict(litellm_kwargs or {})
        if self._api_key is None:
            _LOGGER.debug("No API key provided; letting LiteLLM read from env vars.")
        invalid_keys = _RESERVED_LITELLM_KWARGS.intersection(self._litellm_kwargs)
        if invalid_keys:
            keys = ", ".join(sorted(invalid_keys))
            raise AudialError(f"litellm_kwargs cannot override: {keys}")

    @property
    def model(self) -> str:
        return self._model

    async def stream(self, *, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        try:
            import litellm  # type: ignore[import]
            from litellm import acompletion  # type: ignore[import]
        except ImportError as exc:
            _LOGGER.warning("LiteLLM not installed: %s", exc)
            raise ModelNotAvailableError("litellm is not installed") from exc

        _configure_litellm_logging(litellm)
        request = _LiteLLMRequest(
            model=self._model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            api_key=self._api_key or None,
        ).model_dump(exclude_none=True)
        request.update(self._litellm_kwargs)

        try:
            response: Any = await acompletion(**request)
        except Exception as exc:
            _LOGGER.warning("LiteLLM request failed: %s", exc, exc_info=True)
            raise LLMInferenceError(str(exc)) from exc

        try:
            async for chunk in response:
                text = _chunk_text(chunk)
                if text:
                    yield text
        except Exception as exc:
            _LOGGER.warning("LiteLLM stream failed: %s", exc, exc_info=True)
            raise LLMInferenceError(str(exc)) from exc
        finally:
            aclose = getattr(response, "aclose", None)
            if callable(aclose):
                try:
                    await aclose()
                except Exception as exc:
                    _LOGGER.info("LiteLLM stream close failed: %s", exc, exc_info=True)
