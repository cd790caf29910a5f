from __future__ import annotations

import logging
import os
from typing import Literal

from ..errors import (
    CredentialMismatchError,
    LLMInferenceError,
    MissingCredentialError,
    ProviderAuthError,
    ProviderModelError,
)

Provider = Literal["anthropic", "openai"]
KeyProvider = Provider | Literal["unknown"]

_LOGGER = logging.getLogger("audial.providers.routing")
_OPENAI_PREFIXES = ("gpt-", "o1", "o3")
_PROVIDER_NAMES: dict[Provider, str] = {"anthropic": "Anthropic", "openai": "OpenAI"}
_AUTH_MARKERS = (
    "authentication",
    "invalid api key",
    "invalid x-api-key",
    "401",
    "unauthorized",
)
_MODEL_MARKERS = ("model", "not found", "does not exist")
AUTH_ERROR_MESSAGE = "This API key does not exist. Please check your API key in Settings."
MISSING_CREDENTIAL_MESSAGE = (
    "No API key configured. Add one in Settings or set AUDIAL_API_KEY "
    "(or provider-specific env var)."
)


def resolve_provider(model: str) -> Provider:
    if model.startswith(_OPENAI_PREFIXES):
        return "openai"
    return "anthropic"


def detect_key_provider(api_key: str) -> KeyProvider:
    if api_key.startswith("sk-ant-"):
        return "anthropic"
    if api_key.startswith("sk-"):
        return "openai"
    return "unknown"


def _env_api_key(provider: Provider) -> str | None:
    upper = provider.upper()
    for name in (f"AUDIAL_{upper}_API_KEY", f"{upper}_API_KEY", "AUDIAL_API_KEY"):
        value = os.environ.get(name, "").strip()
        if value:
            _LOGGER.debug("Using API key from %s.", name)
            return value
    return None


def resolve_api_key(provider: Provider, request_key: str | None = None) -> str:
    """Pick one credential: request-supplied, else environment-configured."""
    api_key = (request_key or "").strip() or _env_api_key(provider)
    if not api_key:
        raise MissingCredentialError(MISSING_CREDENTIAL_MESSAGE)

    key_provider = detect_key_provider(api_key)
    if key_provider != "unknown" and key_provider != provider:
        raise CredentialMismatchError(
            f"You selected an {_PROVIDER_NAMES[provider]} model but provided an "
            f"{_PROVIDER_NAMES[key_provider]} API key. Please update your API key in "
            "Settings to match the selected model."
        )
    return api_key


def to_litellm_model(model: str, provider: Provider) -> str:
    if "/" in model:
        return model
    return f"{provider}/{model}"


def classify_provider_error(exc: BaseException) -> LLMInferenceError:
    """Map a transport failure onto a user-facing error category."""
    if isinstance(exc, (ProviderAuthError, ProviderModelError)):
        return exc
    message = str(exc) or type(exc).__name__
    lowered = message.lower()
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return ProviderAuthError(AUTH_ERROR_MESSAGE)
    if any(marker in lowered for marker in _MODEL_MARKERS):
        return ProviderModelError(
            f"Model error: {message}. Please select a valid model in Settings."
        )
    return LLMInferenceError(message)
