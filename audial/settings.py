from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .policy import ValidationPolicy

DEFAULT_MODEL = "claude-sonnet-4-20250514"
_DEFAULT_MAX_TOKENS = 4096
_DEFAULT_CHAT_HISTORY_LIMIT = 6
_DEFAULT_HOST = "127.0.0.1"
_DEFAULT_PORT = 8000


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _generation_policy_from_env() -> ValidationPolicy:
    # Generation is held to a tighter budget than the validator defaults.
    overrides: dict[str, Any] = {
        "maxVoices": _env_int("AUDIAL_MAX_VOICES", 6),
        "maxLines": _env_int("AUDIAL_MAX_LINES", 150),
        "maxRandomUsage": _env_int("AUDIAL_MAX_RANDOM_USAGE", 4),
    }
    return ValidationPolicy().merged(overrides)


class GenerationSettings(BaseModel):
    default_model: str = DEFAULT_MODEL
    max_tokens: int = Field(default=_DEFAULT_MAX_TOKENS, gt=0)
    chat_history_limit: int = Field(default=_DEFAULT_CHAT_HISTORY_LIMIT, ge=1)
    policy: ValidationPolicy = Field(default_factory=ValidationPolicy)
    host: str = _DEFAULT_HOST
    port: int = _DEFAULT_PORT

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def from_env(cls) -> "GenerationSettings":
        return cls(
            default_model=_env_str("AUDIAL_MODEL", DEFAULT_MODEL),
            max_tokens=_env_int("AUDIAL_MAX_TOKENS", _DEFAULT_MAX_TOKENS),
            chat_history_limit=_env_int("AUDIAL_CHAT_HISTORY_LIMIT", _DEFAULT_CHAT_HISTORY_LIMIT),
            policy=_generation_policy_from_env(),
            host=_env_str("AUDIAL_HOST", _DEFAULT_HOST),
            port=_env_int("AUDIAL_PORT", _DEFAULT_PORT),
        )
