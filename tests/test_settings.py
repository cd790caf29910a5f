from __future__ import annotations

import pytest

from audial.schemas import ChatMessage, GenerateRequest
from audial.settings import DEFAULT_MODEL, GenerationSettings


def test_settings_from_env_defaults() -> None:
    settings = GenerationSettings.from_env()

    assert settings.default_model == DEFAULT_MODEL
    assert settings.max_tokens == 4096
    assert settings.chat_history_limit == 6
    assert settings.policy.max_voices == 6
    assert settings.policy.max_lines == 150
    assert settings.policy.max_random_usage == 4
    assert settings.policy.max_room_size == 0.95


def test_settings_from_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUDIAL_MODEL", "gpt-4o")
    monkeypatch.setenv("AUDIAL_MAX_TOKENS", "1024")
    monkeypatch.setenv("AUDIAL_MAX_VOICES", "3")
    monkeypatch.setenv("AUDIAL_MAX_RANDOM_USAGE", "not-a-number")

    settings = GenerationSettings.from_env()

    assert settings.default_model == "gpt-4o"
    assert settings.max_tokens == 1024
    assert settings.policy.max_voices == 3
    assert settings.policy.max_random_usage == 4


def test_generate_request_accepts_client_field_names() -> None:
    request = GenerateRequest.model_validate(
        {
            "prompt": "more swing",
            "mode": "edit",
            "currentCode": "setcpm(90)",
            "chatHistory": [{"role": "assistant", "content": "ok", "code": "setcpm(90)"}],
            "apiKey": "sk-ant-secret",
            "clientVersion": 3,
        }
    )

    assert request.effective_mode == "edit"
    assert request.current_code == "setcpm(90)"
    assert request.chat_history == (ChatMessage(role="assistant", content="ok", code="setcpm(90)"),)
    assert "sk-ant-secret" not in repr(request)


def test_edit_mode_without_code_is_new() -> None:
    assert GenerateRequest(prompt="x", mode="edit").effective_mode == "new"
    assert GenerateRequest(prompt="x", mode="edit", current_code="\n").effective_mode == "new"
