from .litellm import CompletionStreamer, LiteLLMStreamer
from .routing import (
    Provider,
    classify_provider_error,
    detect_key_provider,
    resolve_api_key,
    resolve_provider,
)

__all__ = [
    "CompletionStreamer",
    "LiteLLMStreamer",
    "Provider",
    "classify_provider_error",
    "detect_key_provider",
    "resolve_api_key",
    "resolve_provider",
]
