from __future__ import annotations


class AudialError(Exception):
    """Base error for the audial library."""


class InvalidPolicyError(AudialError):
    """Raised when validation policy overrides cannot be parsed."""


class ExtractionError(AudialError):
    """Raised when a model response does not contain exactly one usable code block."""

    def __init__(self, message: str, raw_response: str | None = None) -> None:
        super().__init__(message)
        self.raw_response = raw_response


class ConfigurationError(AudialError):
    """Raised when a request is rejected before any streaming begins."""

    status_code = 400


class MissingPromptError(ConfigurationError):
    """Raised when a generation request has no prompt."""


class MissingCredentialError(ConfigurationError):
    """Raised when no API key is available for the selected provider."""

    status_code = 401


class CredentialMismatchError(ConfigurationError):
    """Raised when an API key belongs to a different provider than the model."""


class LLMInferenceError(AudialError):
    """Raised when a model provider fails to produce a response."""


class ProviderAuthError(LLMInferenceError):
    """Raised when a provider rejects the credential."""


class ProviderModelError(LLMInferenceError):
    """Raised when a provider cannot serve the requested model."""


class ModelNotAvailableError(AudialError):
    """Raised when the provider client library is not installed."""


class StreamError(AudialError):
    """Raised by stream readers when the server reports a terminal error."""


class MissingSongCodeError(AudialError):
    """Raised when a song is saved without any code."""
