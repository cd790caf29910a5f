from __future__ import annotations

import pytest

_ISOLATED_ENV = (
    "AUDIAL_API_KEY",
    "AUDIAL_ANTHROPIC_API_KEY",
    "AUDIAL_OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "AUDIAL_MODEL",
    "AUDIAL_MAX_TOKENS",
    "AUDIAL_MAX_VOICES",
    "AUDIAL_MAX_LINES",
    "AUDIAL_MAX_RANDOM_USAGE",
    "AUDIAL_CHAT_HISTORY_LIMIT",
    "AUDIAL_REFERENCE_DATA",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
